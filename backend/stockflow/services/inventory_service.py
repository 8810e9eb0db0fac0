# Overview: Manual stock edits (single and bulk) on top of the stock projection.

"""
Manual stock edits.

Invariants:
- Every edit goes through stock_service.apply_stock_delta, so it is one
  atomic conditional update plus one ledger entry.
- A single edit is its own transaction.
- A bulk edit runs each line in its own transaction; a failing line is
  reported and never blocks or undoes the others.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import StockLedgerEntry
from ..models.ledger import MOVEMENT_ADD, MOVEMENT_REMOVE
from ..errors import StockflowError, ValidationError
from ..validation import (
    coerce_int,
    require_positive_int,
    optional_cents,
    optional_str,
    require_list,
)
from .concurrency import begin_write, run_with_retry
from .stock_service import apply_stock_delta

logger = logging.getLogger(__name__)

MANUAL_TYPES = (MOVEMENT_ADD, MOVEMENT_REMOVE)
DEFAULT_REASON = "Manual stock update"


def parse_stock_update(payload: dict) -> dict:
    """Validate one stock-update payload into apply_stock_delta arguments."""
    if not isinstance(payload, dict):
        raise ValidationError("Each update must be an object")

    if payload.get("product_id") is None or not payload.get("type") or payload.get("quantity") is None:
        raise ValidationError("product_id, type, and quantity are required")

    movement_type = payload.get("type")
    if movement_type not in MANUAL_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MANUAL_TYPES)}")

    return {
        "product_id": coerce_int(payload.get("product_id"), "product_id"),
        "variant_sku": optional_str(payload.get("variant_sku"), "variant_sku", max_length=64),
        "movement_type": movement_type,
        "quantity": require_positive_int(payload.get("quantity"), "quantity"),
        "reason": optional_str(payload.get("reason"), "reason", max_length=500) or DEFAULT_REASON,
        "reference": optional_str(payload.get("reference"), "reference", max_length=100),
        "cost_cents": optional_cents(payload.get("cost_cents"), "cost_cents"),
        "notes": optional_str(payload.get("notes"), "notes", max_length=1000),
    }


def update_stock(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    performed_by_user_id: str,
    variant_sku: str | None = None,
    reason: str = DEFAULT_REASON,
    reference: str | None = None,
    cost_cents: int | None = None,
    notes: str | None = None,
) -> StockLedgerEntry:
    """Add or remove stock for one product/variant and commit."""
    if movement_type not in MANUAL_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MANUAL_TYPES)}")
    if quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    delta = quantity if movement_type == MOVEMENT_ADD else -quantity

    def _op() -> StockLedgerEntry:
        begin_write()
        entry = apply_stock_delta(
            product_id,
            variant_sku,
            delta,
            movement_type=movement_type,
            reason=reason,
            reference=reference,
            performed_by_user_id=performed_by_user_id,
            cost_cents=cost_cents,
            notes=notes,
        )
        db.session.commit()
        return entry

    entry = run_with_retry(_op)
    logger.info(
        "Stock %s %s for product %s%s (%s -> %s)",
        movement_type,
        quantity,
        product_id,
        f" / {variant_sku}" if variant_sku else "",
        entry.previous_stock,
        entry.new_stock,
    )
    return entry


def bulk_update_stock(updates: list, *, performed_by_user_id: str) -> dict:
    """
    Apply many stock edits independently.

    Returns {"results", "errors", "total_processed", "success_count",
    "error_count"}.
    """
    require_list(updates, "updates")

    results: list[dict] = []
    errors: list[dict] = []

    for index, raw in enumerate(updates):
        product_id = raw.get("product_id") if isinstance(raw, dict) else None
        variant_sku = raw.get("variant_sku") if isinstance(raw, dict) else None
        try:
            args = parse_stock_update(raw)
            entry = update_stock(performed_by_user_id=performed_by_user_id, **args)
        except StockflowError as exc:
            errors.append({
                "index": index,
                "product_id": product_id,
                "variant_sku": variant_sku,
                "error": exc.message,
            })
            continue
        except SQLAlchemyError:
            logger.exception("Bulk stock update line %s failed", index)
            errors.append({
                "index": index,
                "product_id": product_id,
                "variant_sku": variant_sku,
                "error": "Internal server error",
            })
            continue

        results.append({
            "index": index,
            "product_id": entry.product_id,
            "variant_sku": entry.variant_sku,
            "success": True,
            "previous_stock": entry.previous_stock,
            "new_stock": entry.new_stock,
            "ledger_entry_id": entry.id,
        })

    return {
        "results": results,
        "errors": errors,
        "total_processed": len(updates),
        "success_count": len(results),
        "error_count": len(errors),
    }
