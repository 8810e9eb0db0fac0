# Overview: Purchase (stock-in with unit cost capture) documents.

"""
Purchases.

Flow:
1. Validate every line (product, variant, quantity, unit cost). Any invalid
   line rejects the whole request with a per-line error list; nothing is
   written.
2. In one write transaction: allocate PUR-NNNNNN, and per line add stock,
   overwrite cost_price_cents with the unit cost (last purchase wins, not a
   weighted average) and log an 'add' ledger entry referencing the number.
3. Totals are computed from the lines.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Purchase, PurchaseLine, Product, ProductVariant
from ..models.ledger import MOVEMENT_ADD
from ..errors import StockflowError, ValidationError, NotFound
from ..validation import coerce_int, require_positive_int, require_cents, optional_str, require_list
from . import document_service
from .concurrency import begin_write, run_with_retry
from .stock_service import apply_stock_delta, resolve_target

logger = logging.getLogger(__name__)

PURCHASE_REASON = "Purchase"


def _validate_line(raw) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")
    if raw.get("product_id") is None:
        raise ValidationError("product_id is required")

    line = {
        "product_id": coerce_int(raw.get("product_id"), "product_id"),
        "variant_sku": optional_str(raw.get("variant_sku"), "variant_sku", max_length=64),
        "quantity": require_positive_int(raw.get("quantity"), "quantity"),
        "unit_cost_cents": require_cents(raw.get("unit_cost_cents"), "unit_cost_cents"),
    }
    target = resolve_target(line["product_id"], line["variant_sku"])
    line["variant_attributes"] = target.variant_attributes
    return line


def validate_purchase_items(items) -> list[dict]:
    """Validate the whole batch; raise one ValidationError listing every bad line."""
    require_list(items, "items")

    lines: list[dict] = []
    errors: list[dict] = []
    for index, raw in enumerate(items):
        try:
            lines.append(_validate_line(raw))
        except StockflowError as exc:
            errors.append({
                "index": index,
                "product_id": raw.get("product_id") if isinstance(raw, dict) else None,
                "variant_sku": raw.get("variant_sku") if isinstance(raw, dict) else None,
                "error": exc.message,
            })

    if errors:
        raise ValidationError("Purchase rejected: one or more items are invalid", details={"errors": errors})
    return lines


def _previous_unit_cost(product_id: int, variant_sku: str | None) -> int | None:
    if variant_sku:
        return db.session.execute(
            select(ProductVariant.cost_price_cents).where(
                ProductVariant.product_id == product_id,
                ProductVariant.sku == variant_sku,
            )
        ).scalar()
    return db.session.execute(select(Product.cost_price_cents).where(Product.id == product_id)).scalar()


def _overwrite_unit_cost(product_id: int, variant_sku: str | None, unit_cost_cents: int) -> None:
    if variant_sku:
        stmt = update(ProductVariant).where(
            ProductVariant.product_id == product_id,
            ProductVariant.sku == variant_sku,
        )
    else:
        stmt = update(Product).where(Product.id == product_id)
    db.session.execute(
        stmt.values(cost_price_cents=unit_cost_cents).execution_options(synchronize_session="fetch")
    )


def create_purchase(items, *, performed_by_user_id: str, notes: str | None = None) -> Purchase:
    """Record a restock batch. All lines apply or none do."""
    notes = optional_str(notes, "notes", max_length=1000)

    def _op() -> Purchase:
        begin_write()
        lines = validate_purchase_items(items)

        purchase_number = document_service.allocate(document_service.PURCHASE)
        purchase = Purchase(
            purchase_number=purchase_number,
            performed_by_user_id=performed_by_user_id,
            notes=notes,
        )
        db.session.add(purchase)
        db.session.flush()

        total_quantity = 0
        total_cost = 0
        for line in lines:
            previous_cost = _previous_unit_cost(line["product_id"], line["variant_sku"])
            entry = apply_stock_delta(
                line["product_id"],
                line["variant_sku"],
                line["quantity"],
                movement_type=MOVEMENT_ADD,
                reason=PURCHASE_REASON,
                reference=purchase_number,
                performed_by_user_id=performed_by_user_id,
                cost_cents=line["unit_cost_cents"],
                notes=notes,
            )
            _overwrite_unit_cost(line["product_id"], line["variant_sku"], line["unit_cost_cents"])

            line_total = line["quantity"] * line["unit_cost_cents"]
            db.session.add(PurchaseLine(
                purchase_id=purchase.id,
                product_id=line["product_id"],
                variant_sku=line["variant_sku"],
                variant_attributes=line["variant_attributes"],
                quantity=line["quantity"],
                unit_cost_cents=line["unit_cost_cents"],
                previous_unit_cost_cents=previous_cost,
                line_total_cents=line_total,
                previous_stock=entry.previous_stock,
                new_stock=entry.new_stock,
                ledger_entry_id=entry.id,
            ))
            total_quantity += line["quantity"]
            total_cost += line_total

        purchase.total_quantity = total_quantity
        purchase.total_cost_cents = total_cost
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            document_service.raise_if_duplicate(exc, purchase_number)
            raise
        return purchase

    purchase = run_with_retry(_op)
    logger.info(
        "Purchase %s recorded: %s units, %s cents",
        purchase.purchase_number,
        purchase.total_quantity,
        purchase.total_cost_cents,
    )
    return purchase


def list_purchases(*, page: int = 1, limit: int = 20) -> tuple[list[Purchase], int]:
    query = db.session.query(Purchase)
    total = query.count()
    purchases = (
        query.order_by(Purchase.created_at.desc(), Purchase.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return purchases, total


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if not purchase:
        raise NotFound("Purchase not found")
    return purchase
