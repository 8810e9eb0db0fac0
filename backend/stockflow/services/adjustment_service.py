# Overview: Stock adjustments (stock-out with a fixed loss-reason taxonomy).

"""
Stock adjustments.

All-or-nothing: every line is checked (reason, quantity, current stock)
before any stock moves. A failing line rejects the whole request with a
per-line error list; each entry carries a code (insufficient_stock or
invalid). A batch whose only failures are stock shortfalls raises
InsufficientStock, anything else ValidationError.

If stock drops between the check and the apply, the conditional update
raises InsufficientStock and the transaction rolls back as a whole.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import StockAdjustment, StockAdjustmentLine
from ..models.documents import ADJUSTMENT_REASONS
from ..models.ledger import MOVEMENT_ADJUSTMENT
from ..errors import StockflowError, ValidationError, NotFound, InsufficientStock
from ..validation import coerce_int, require_positive_int, optional_str, require_list
from . import document_service
from .concurrency import begin_write, run_with_retry
from .stock_service import apply_stock_delta, resolve_target, current_stock

logger = logging.getLogger(__name__)

# Per-line error codes
INSUFFICIENT_STOCK = "insufficient_stock"
INVALID = "invalid"


def _validate_line(raw) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")
    if raw.get("product_id") is None:
        raise ValidationError("product_id is required")

    reason = raw.get("reason")
    if reason not in ADJUSTMENT_REASONS:
        raise ValidationError(f"reason must be one of: {', '.join(ADJUSTMENT_REASONS)}")

    line = {
        "product_id": coerce_int(raw.get("product_id"), "product_id"),
        "variant_sku": optional_str(raw.get("variant_sku"), "variant_sku", max_length=64),
        "quantity": require_positive_int(raw.get("quantity"), "quantity"),
        "reason": reason,
        "notes": optional_str(raw.get("notes"), "notes", max_length=1000),
    }
    target = resolve_target(line["product_id"], line["variant_sku"])
    line["variant_attributes"] = target.variant_attributes

    available = current_stock(target.product_id, target.variant_sku) or 0
    if line["quantity"] > available:
        raise InsufficientStock(
            f"Cannot adjust {line['quantity']} items. Current stock is only {available}.",
            details={"available": available},
        )
    return line


def validate_adjustment_items(items) -> list[dict]:
    require_list(items, "items")

    lines: list[dict] = []
    errors: list[dict] = []
    # Lines hitting the same product/variant must fit together
    requested: dict[tuple[int, str | None], int] = {}
    for index, raw in enumerate(items):
        try:
            line = _validate_line(raw)
        except StockflowError as exc:
            error = {
                "index": index,
                "product_id": raw.get("product_id") if isinstance(raw, dict) else None,
                "variant_sku": raw.get("variant_sku") if isinstance(raw, dict) else None,
                "error": exc.message,
                "code": INSUFFICIENT_STOCK if isinstance(exc, InsufficientStock) else INVALID,
            }
            if "available" in exc.details:
                error["available"] = exc.details["available"]
            errors.append(error)
            continue

        key = (line["product_id"], line["variant_sku"])
        requested[key] = requested.get(key, 0) + line["quantity"]
        available = current_stock(*key) or 0
        if requested[key] > available:
            errors.append({
                "index": index,
                "product_id": line["product_id"],
                "variant_sku": line["variant_sku"],
                "error": f"Cannot adjust {requested[key]} items in total. Current stock is only {available}.",
                "code": INSUFFICIENT_STOCK,
                "available": available,
            })
            continue
        lines.append(line)

    if errors:
        message = "Stock adjustment rejected: one or more items are invalid"
        if all(error["code"] == INSUFFICIENT_STOCK for error in errors):
            raise InsufficientStock(message, details={"errors": errors})
        raise ValidationError(message, details={"errors": errors})
    return lines


def create_stock_adjustment(items, *, performed_by_user_id: str, notes: str | None = None) -> StockAdjustment:
    notes = optional_str(notes, "notes", max_length=1000)

    def _op() -> StockAdjustment:
        begin_write()
        lines = validate_adjustment_items(items)

        adjustment_number = document_service.allocate(document_service.ADJUSTMENT)
        adjustment = StockAdjustment(
            adjustment_number=adjustment_number,
            performed_by_user_id=performed_by_user_id,
            notes=notes,
        )
        db.session.add(adjustment)
        db.session.flush()

        total_quantity = 0
        for line in lines:
            entry = apply_stock_delta(
                line["product_id"],
                line["variant_sku"],
                -line["quantity"],
                movement_type=MOVEMENT_ADJUSTMENT,
                reason=line["reason"],
                reference=adjustment_number,
                performed_by_user_id=performed_by_user_id,
                notes=line["notes"] or notes,
            )
            db.session.add(StockAdjustmentLine(
                adjustment_id=adjustment.id,
                product_id=line["product_id"],
                variant_sku=line["variant_sku"],
                variant_attributes=line["variant_attributes"],
                quantity=line["quantity"],
                previous_stock=entry.previous_stock,
                new_stock=entry.new_stock,
                reason=line["reason"],
                notes=line["notes"],
                ledger_entry_id=entry.id,
            ))
            total_quantity += line["quantity"]

        adjustment.total_quantity = total_quantity
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            document_service.raise_if_duplicate(exc, adjustment_number)
            raise
        return adjustment

    adjustment = run_with_retry(_op)
    logger.info("Stock adjustment %s recorded: %s units", adjustment.adjustment_number, adjustment.total_quantity)
    return adjustment


def list_stock_adjustments(*, page: int = 1, limit: int = 20) -> tuple[list[StockAdjustment], int]:
    query = db.session.query(StockAdjustment)
    total = query.count()
    adjustments = (
        query.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return adjustments, total


def get_stock_adjustment(adjustment_id: int) -> StockAdjustment:
    adjustment = db.session.get(StockAdjustment, adjustment_id)
    if not adjustment:
        raise NotFound("Stock adjustment not found")
    return adjustment
