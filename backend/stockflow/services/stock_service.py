# Overview: Stock projection; the single write path for product and variant stock.

"""
Stock projection.

Invariants:
- apply_stock_delta is the only code path that changes stock_quantity or
  total_stock. Every call writes exactly one ledger entry.
- Each change is one conditional UPDATE (stock + delta >= 0) executed against
  the database, never a read-then-write pair. A failed condition surfaces as
  InsufficientStock.
- For products with variants, total_stock is recomputed as the SUM of
  variant stock in the same transaction as the variant change.
- Stock status (out_of_stock / low_stock / in_stock) is derived at read time
  and never stored.

The caller owns the transaction (see concurrency.begin_write/run_with_retry).
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select, update, func, or_, and_, case
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Product, ProductVariant, StockLedgerEntry
from ..models.ledger import MOVEMENT_ADD, MOVEMENT_REMOVE, MOVEMENT_ADJUSTMENT
from ..models.catalog import DEFAULT_LOW_STOCK_THRESHOLD
from ..errors import NotFound, InsufficientStock, ValidationError
from ..validation import coerce_int, require_positive_int, optional_str
from .concurrency import lock_product_row
from .ledger_service import record_stock_movement

OUT_OF_STOCK = "out_of_stock"
LOW_STOCK = "low_stock"
IN_STOCK = "in_stock"

STOCK_FILTERS = ("all", "low", "out", "in")


@dataclass(frozen=True)
class StockTarget:
    """Resolved (product, variant?) pair a stock change applies to."""
    product_id: int
    variant_sku: str | None
    variant_attributes: list | None


def parse_stock_item(raw) -> dict:
    """Validate a {product_id, variant_sku?, quantity} cart/order item."""
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")
    if raw.get("product_id") is None:
        raise ValidationError("product_id is required")
    return {
        "product_id": coerce_int(raw.get("product_id"), "product_id"),
        "variant_sku": optional_str(raw.get("variant_sku"), "variant_sku", max_length=64),
        "quantity": require_positive_int(raw.get("quantity"), "quantity"),
    }


def classify_stock_status(quantity: int, threshold: int | None = None) -> str:
    if threshold is None:
        threshold = DEFAULT_LOW_STOCK_THRESHOLD
    if quantity <= 0:
        return OUT_OF_STOCK
    if quantity <= threshold:
        return LOW_STOCK
    return IN_STOCK


def product_stock_status(product: Product) -> str:
    """
    Product-level status: out when the aggregate is zero, low when any
    variant is at/below its own threshold or the aggregate is at/below the
    product threshold.
    """
    total = product.total_stock or 0
    if total <= 0:
        return OUT_OF_STOCK
    for variant in product.variants:
        if variant.stock_quantity <= variant.low_stock_threshold:
            return LOW_STOCK
    if total <= product.low_stock_threshold:
        return LOW_STOCK
    return IN_STOCK


def resolve_target(product_id: int, variant_sku: str | None) -> StockTarget:
    """
    Validate the (product, sku) pair before mutating.

    A product with variants requires a sku; a sku on a variant-less product
    does not exist.
    """
    exists = db.session.execute(select(Product.id).where(Product.id == product_id)).scalar()
    if exists is None:
        raise NotFound("Product not found", details={"product_id": product_id})

    if variant_sku:
        row = db.session.execute(
            select(ProductVariant.attributes).where(
                ProductVariant.product_id == product_id,
                ProductVariant.sku == variant_sku,
            )
        ).first()
        if row is None:
            raise NotFound("Variant not found", details={"product_id": product_id, "variant_sku": variant_sku})
        return StockTarget(product_id, variant_sku, row[0] or [])

    variant_count = db.session.execute(
        select(func.count(ProductVariant.id)).where(ProductVariant.product_id == product_id)
    ).scalar()
    if variant_count:
        raise ValidationError(
            "variant_sku is required for products with variants",
            details={"product_id": product_id},
        )
    return StockTarget(product_id, None, None)


def current_stock(product_id: int, variant_sku: str | None) -> int | None:
    """Fresh stock read (bypasses the session identity map)."""
    if variant_sku:
        return db.session.execute(
            select(ProductVariant.stock_quantity).where(
                ProductVariant.product_id == product_id,
                ProductVariant.sku == variant_sku,
            )
        ).scalar()
    return db.session.execute(select(Product.total_stock).where(Product.id == product_id)).scalar()


def recompute_product_total(product_id: int) -> None:
    """total_stock = SUM(variant stock), in one statement."""
    variant_sum = (
        select(func.coalesce(func.sum(ProductVariant.stock_quantity), 0))
        .where(ProductVariant.product_id == product_id)
        .scalar_subquery()
    )
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(total_stock=variant_sum)
        .execution_options(synchronize_session="fetch")
    )


def _conditional_update(target: StockTarget, delta: int, expected: int | None) -> int:
    """
    Apply delta if the result stays non-negative (and, for compare-and-set,
    the current value equals expected). Returns the row count.
    """
    if target.variant_sku:
        column = ProductVariant.stock_quantity
        stmt = update(ProductVariant).where(
            ProductVariant.product_id == target.product_id,
            ProductVariant.sku == target.variant_sku,
            column + delta >= 0,
        )
    else:
        column = Product.total_stock
        stmt = update(Product).where(
            Product.id == target.product_id,
            column + delta >= 0,
        )
    if expected is not None:
        stmt = stmt.where(column == expected)

    stmt = stmt.values({column.key: column + delta}).execution_options(synchronize_session="fetch")
    return db.session.execute(stmt).rowcount


def _insufficient(target: StockTarget, delta: int, movement_type: str) -> InsufficientStock:
    available = current_stock(target.product_id, target.variant_sku)
    verb = "adjust" if movement_type == MOVEMENT_ADJUSTMENT else "remove"
    return InsufficientStock(
        f"Cannot {verb} {abs(delta)} items. Current stock is only {available}.",
        details={
            "product_id": target.product_id,
            "variant_sku": target.variant_sku,
            "requested": abs(delta),
            "available": available,
        },
    )


def apply_stock_delta(
    product_id: int,
    variant_sku: str | None,
    delta: int,
    *,
    movement_type: str,
    reason: str,
    reference: str | None = None,
    performed_by_user_id: str | None = None,
    cost_cents: int | None = None,
    notes: str | None = None,
    expected_current: int | None = None,
) -> StockLedgerEntry:
    """
    Change stock by delta and log it.

    - positive delta requires movement_type 'add'; negative requires
      'remove' or 'adjustment'
    - expected_current turns the update into a compare-and-set; a mismatch
      raises StaleDataError so run_with_retry re-reads and retries
    - returns the ledger entry (previous_stock/new_stock are exact)
    """
    if delta == 0:
        raise ValidationError("quantity must be non-zero")
    if delta > 0 and movement_type != MOVEMENT_ADD:
        raise ValueError(f"Positive delta requires '{MOVEMENT_ADD}', got '{movement_type}'")
    if delta < 0 and movement_type not in (MOVEMENT_REMOVE, MOVEMENT_ADJUSTMENT):
        raise ValueError(f"Negative delta cannot be logged as '{movement_type}'")

    target = resolve_target(product_id, variant_sku)
    if target.variant_sku:
        lock_product_row(target.product_id)

    if not _conditional_update(target, delta, expected_current):
        if expected_current is not None:
            observed = current_stock(target.product_id, target.variant_sku)
            if observed != expected_current:
                raise StaleDataError(
                    f"Stock changed concurrently (expected {expected_current}, found {observed})"
                )
        raise _insufficient(target, delta, movement_type)

    new_stock = current_stock(target.product_id, target.variant_sku)
    if target.variant_sku:
        recompute_product_total(target.product_id)

    return record_stock_movement(
        product_id=target.product_id,
        variant_sku=target.variant_sku,
        variant_attributes=target.variant_attributes,
        movement_type=movement_type,
        quantity=abs(delta),
        previous_stock=new_stock - delta,
        new_stock=new_stock,
        reason=reason,
        reference=reference,
        performed_by_user_id=performed_by_user_id,
        cost_cents=cost_cents,
        notes=notes,
    )


def increment_total_sold(product_id: int, quantity: int) -> None:
    """Atomic lifetime-sold change; decrements clamp at zero."""
    value = Product.total_sold + quantity
    if quantity < 0:
        value = case((value < 0, 0), else_=value)
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(total_sold=value)
        .execution_options(synchronize_session="fetch")
    )


# =============================================================================
# Read side
# =============================================================================

def stock_range_filter(stock_filter: str, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD):
    """
    Numeric approximation of stock status for list queries.

    A product matches when its aggregate OR any variant falls in the range.
    Per-variant thresholds are not consulted, so a variant with threshold 10
    and stock 7 is classified low_stock but matched by 'in', not 'low'.
    """
    if stock_filter == "low":
        return or_(
            and_(Product.total_stock > 0, Product.total_stock <= threshold),
            Product.variants.any(and_(ProductVariant.stock_quantity > 0, ProductVariant.stock_quantity <= threshold)),
        )
    if stock_filter == "out":
        return or_(
            Product.total_stock <= 0,
            Product.variants.any(ProductVariant.stock_quantity <= 0),
        )
    if stock_filter == "in":
        return or_(
            Product.total_stock > threshold,
            Product.variants.any(ProductVariant.stock_quantity > threshold),
        )
    return None


def inventory_row(product: Product) -> dict:
    low_variants = [v for v in product.variants if v.stock_quantity <= v.low_stock_threshold]
    return {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "total_stock": product.total_stock,
        "stock_status": product_stock_status(product),
        "total_sold": product.total_sold,
        "is_active": product.is_active,
        "low_stock_variants": len(low_variants),
        "variants": [
            {
                "sku": v.sku,
                "attributes": v.attributes or [],
                "stock_quantity": v.stock_quantity,
                "current_price_cents": v.current_price_cents,
                "cost_price_cents": v.cost_price_cents,
                "low_stock_threshold": v.low_stock_threshold,
                "stock_status": classify_stock_status(v.stock_quantity, v.low_stock_threshold),
            }
            for v in product.variants
        ],
    }


def get_inventory(
    *,
    page: int = 1,
    limit: int = 20,
    stock_filter: str = "all",
    threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> tuple[list[dict], int]:
    """Inventory overview, most recently updated first."""
    if stock_filter not in STOCK_FILTERS:
        raise ValidationError(f"stock_filter must be one of: {', '.join(STOCK_FILTERS)}")

    query = db.session.query(Product)
    condition = stock_range_filter(stock_filter, threshold)
    if condition is not None:
        query = query.filter(condition)

    total = query.count()
    products = (
        query.order_by(Product.updated_at.desc(), Product.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return [inventory_row(p) for p in products], total


def get_low_stock_products(threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> list[dict]:
    """Active products with aggregate or any variant in (0, threshold]."""
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), stock_range_filter("low", threshold))
        .order_by(Product.total_stock.asc(), Product.id.asc())
        .all()
    )
    rows = []
    for product in products:
        rows.append({
            "id": product.id,
            "name": product.name,
            "total_stock": product.total_stock,
            "low_stock_variants": [
                {
                    "sku": v.sku,
                    "attributes": v.attributes or [],
                    "stock_quantity": v.stock_quantity,
                    "low_stock_threshold": v.low_stock_threshold,
                }
                for v in product.variants
                if v.stock_quantity <= (v.low_stock_threshold or threshold)
            ],
            "is_active": product.is_active,
        })
    return rows


def check_stock_availability(items: list[dict]) -> dict:
    """
    Non-binding availability check for a cart.

    items: [{"product_id", "variant_sku"?, "quantity"}] (already validated)
    Returns {"available": bool, "items": [...]} with one row per input item.
    Confirmation still re-checks atomically.
    """
    results = []
    all_available = True
    for item in items:
        product_id = item["product_id"]
        variant_sku = item.get("variant_sku")
        requested = item["quantity"]
        row = {
            "product_id": product_id,
            "variant_sku": variant_sku,
            "requested": requested,
            "available_stock": 0,
            "available": False,
        }
        try:
            target = resolve_target(product_id, variant_sku)
        except (NotFound, ValidationError) as exc:
            row["error"] = exc.message
            all_available = False
            results.append(row)
            continue

        stock = current_stock(target.product_id, target.variant_sku) or 0
        row["available_stock"] = stock
        row["available"] = stock >= requested
        if not row["available"]:
            all_available = False
        results.append(row)

    return {"available": all_available, "items": results}


def verify_stock_invariants() -> list[dict]:
    """
    Audit aggregates and ledger arithmetic.

    Returns a list of violations (empty when consistent).
    """
    violations: list[dict] = []

    variant_sums = (
        db.session.query(
            ProductVariant.product_id,
            func.sum(ProductVariant.stock_quantity),
        )
        .group_by(ProductVariant.product_id)
        .all()
    )
    for product_id, variant_sum in variant_sums:
        total = db.session.execute(select(Product.total_stock).where(Product.id == product_id)).scalar()
        if total != variant_sum:
            violations.append({
                "kind": "aggregate_mismatch",
                "product_id": product_id,
                "total_stock": total,
                "variant_sum": int(variant_sum or 0),
            })

    bad_entries = (
        db.session.query(StockLedgerEntry)
        .filter(
            or_(
                and_(
                    StockLedgerEntry.type == MOVEMENT_ADD,
                    StockLedgerEntry.new_stock != StockLedgerEntry.previous_stock + StockLedgerEntry.quantity,
                ),
                and_(
                    StockLedgerEntry.type != MOVEMENT_ADD,
                    StockLedgerEntry.new_stock != StockLedgerEntry.previous_stock - StockLedgerEntry.quantity,
                ),
            )
        )
        .all()
    )
    for entry in bad_entries:
        violations.append({
            "kind": "ledger_arithmetic",
            "entry_id": entry.id,
            "product_id": entry.product_id,
            "type": entry.type,
        })

    negative = (
        db.session.query(ProductVariant.id, ProductVariant.sku)
        .filter(ProductVariant.stock_quantity < 0)
        .all()
    )
    for variant_id, sku in negative:
        violations.append({"kind": "negative_stock", "variant_id": variant_id, "variant_sku": sku})

    return violations


def recompute_all_product_totals() -> int:
    """Repair every variant-backed aggregate. Returns the number of products touched."""
    product_ids = [
        row[0]
        for row in db.session.query(ProductVariant.product_id).distinct().all()
    ]
    for product_id in product_ids:
        recompute_product_total(product_id)
    return len(product_ids)
