# Overview: Inventory ledger append and reporting queries.

"""
Inventory ledger.

Invariants:
- Entries are append-only: record_stock_movement inserts and flushes, nothing
  here updates or deletes an entry.
- The caller owns the transaction. An entry commits together with the stock
  change it describes, or not at all.
- Summary and analytics are reporting views over the ledger, never a source
  of truth for stock levels (the product/variant counters are).
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import StockLedgerEntry, Product, ProductVariant
from ..models.ledger import MOVEMENT_TYPES, MOVEMENT_ADD
from ..errors import ValidationError, NotFound
from ..time_utils import utcnow, period_window


def record_stock_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    previous_stock: int,
    new_stock: int,
    reason: str,
    reference: str | None = None,
    performed_by_user_id: str | None = None,
    variant_sku: str | None = None,
    variant_attributes: list | None = None,
    cost_cents: int | None = None,
    notes: str | None = None,
) -> StockLedgerEntry:
    """
    Append one ledger entry.

    quantity is the magnitude of the change; the signed delta is derived from
    the before/after counts and must agree with movement_type.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError(f"Unknown movement type: {movement_type}")
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    expected = previous_stock + quantity if movement_type == MOVEMENT_ADD else previous_stock - quantity
    if new_stock != expected:
        raise ValueError(
            f"Ledger arithmetic mismatch: {movement_type} {quantity} from {previous_stock} "
            f"cannot yield {new_stock}"
        )

    entry = StockLedgerEntry(
        product_id=product_id,
        variant_sku=variant_sku,
        variant_attributes=variant_attributes,
        type=movement_type,
        quantity=quantity,
        quantity_delta=new_stock - previous_stock,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason,
        reference=reference,
        performed_by_user_id=performed_by_user_id,
        cost_cents=cost_cents,
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _require_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")
    return product


def list_stock_history(
    product_id: int,
    *,
    variant_sku: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[StockLedgerEntry], int]:
    """Paginated ledger for a product (optionally one variant), newest first."""
    _require_product(product_id)

    query = db.session.query(StockLedgerEntry).filter(StockLedgerEntry.product_id == product_id)
    if variant_sku:
        query = query.filter(StockLedgerEntry.variant_sku == variant_sku)

    total = query.count()
    entries = (
        query.order_by(StockLedgerEntry.created_at.desc(), StockLedgerEntry.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return entries, total


def get_stock_summary(
    product_id: int,
    *,
    variant_sku: str | None = None,
    days: int = 30,
) -> dict:
    """
    Aggregate ledger movements for one product over a rolling window.

    Returns totals by type, a monthly breakdown and the ten most recent
    entries in the window.
    """
    if days < 1:
        raise ValidationError("days must be a positive integer")
    _require_product(product_id)

    since = utcnow() - timedelta(days=days)
    base = db.session.query(StockLedgerEntry).filter(
        StockLedgerEntry.product_id == product_id,
        StockLedgerEntry.created_at >= since,
    )
    if variant_sku:
        base = base.filter(StockLedgerEntry.variant_sku == variant_sku)

    by_type_rows = (
        base.with_entities(
            StockLedgerEntry.type,
            func.count(StockLedgerEntry.id),
            func.coalesce(func.sum(StockLedgerEntry.quantity), 0),
            func.coalesce(func.sum(StockLedgerEntry.quantity * func.coalesce(StockLedgerEntry.cost_cents, 0)), 0),
        )
        .group_by(StockLedgerEntry.type)
        .all()
    )
    by_type = {
        movement_type: {"count": 0, "total_quantity": 0, "total_cost_cents": 0}
        for movement_type in MOVEMENT_TYPES
    }
    for movement_type, count, total_quantity, total_cost in by_type_rows:
        by_type[movement_type] = {
            "count": int(count),
            "total_quantity": int(total_quantity),
            "total_cost_cents": int(total_cost),
        }

    # Month bucketing in Python keeps the query dialect-neutral
    entries = base.order_by(StockLedgerEntry.created_at.desc(), StockLedgerEntry.id.desc()).all()
    monthly: dict[tuple[str, str], dict] = {}
    for entry in entries:
        key = (entry.created_at.strftime("%Y-%m"), entry.type)
        bucket = monthly.setdefault(key, {"month": key[0], "type": key[1], "count": 0, "total_quantity": 0})
        bucket["count"] += 1
        bucket["total_quantity"] += entry.quantity

    return {
        "product_id": product_id,
        "variant_sku": variant_sku,
        "period_days": days,
        "summary": by_type,
        "monthly": sorted(monthly.values(), key=lambda row: (row["month"], row["type"]), reverse=True),
        "recent": [entry.to_dict() for entry in entries[:10]],
    }


def get_stock_analytics(
    *,
    period: str = "30days",
    start=None,
    end=None,
    low_stock_threshold: int = 5,
) -> dict:
    """
    Store-wide stock movement figures for a reporting period.

    stock_added sums 'add' entries; stock_removed sums 'remove' and
    'adjustment' entries.
    """
    try:
        window_start, window_end = period_window(period, start=start, end=end)
    except ValueError as exc:
        raise ValidationError(str(exc))

    rows = (
        db.session.query(
            StockLedgerEntry.type,
            func.count(StockLedgerEntry.id),
            func.coalesce(func.sum(StockLedgerEntry.quantity), 0),
        )
        .filter(StockLedgerEntry.created_at >= window_start, StockLedgerEntry.created_at <= window_end)
        .group_by(StockLedgerEntry.type)
        .all()
    )
    by_type = {movement_type: {"count": 0, "total_quantity": 0} for movement_type in MOVEMENT_TYPES}
    for movement_type, count, total_quantity in rows:
        by_type[movement_type] = {"count": int(count), "total_quantity": int(total_quantity)}

    total_products = db.session.query(func.count(Product.id)).filter(Product.is_active.is_(True)).scalar()
    from .stock_service import stock_range_filter

    low_stock_products = (
        db.session.query(func.count(Product.id))
        .filter(Product.is_active.is_(True), stock_range_filter("low", low_stock_threshold))
        .scalar()
    )
    out_of_stock_variants = (
        db.session.query(func.count(ProductVariant.id))
        .filter(ProductVariant.is_active.is_(True), ProductVariant.stock_quantity <= 0)
        .scalar()
    )

    return {
        "period": period,
        "start": window_start.isoformat(),
        "end": window_end.isoformat(),
        "stock_added": by_type["add"]["total_quantity"],
        "stock_removed": by_type["remove"]["total_quantity"] + by_type["adjustment"]["total_quantity"],
        "by_type": by_type,
        "total_products": int(total_products or 0),
        "low_stock_count": int(low_stock_products or 0),
        "out_of_stock_variant_count": int(out_of_stock_variants or 0),
    }
