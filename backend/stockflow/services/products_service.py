# Overview: Product stock-field creation and edits; stock diffs are logged.

from __future__ import annotations

import logging
import re

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Product, ProductVariant
from ..models.ledger import MOVEMENT_ADD, MOVEMENT_REMOVE
from ..errors import ValidationError, NotFound, ConflictError
from ..validation import (
    require_str,
    optional_str,
    optional_cents,
    require_non_negative_int,
)
from .concurrency import begin_write, run_with_retry
from .stock_service import apply_stock_delta, current_stock

logger = logging.getLogger(__name__)

INITIAL_STOCK_REASON = "Initial stock"
PRODUCT_EDIT_REASON = "Product edit"

VARIANT_PRICE_FIELDS = ("current_price_cents", "original_price_cents", "cost_price_cents")


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "product"


def _parse_attributes(value) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("attributes must be an array")
    attributes = []
    for attr in value:
        if not isinstance(attr, dict) or not attr.get("name"):
            raise ValidationError("each attribute needs a name and value")
        attributes.append({"name": str(attr["name"]), "value": str(attr.get("value", ""))})
    return attributes


def _parse_variant(raw) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("Each variant must be an object")
    return {
        "sku": require_str(raw.get("sku"), "sku", max_length=64),
        "attributes": _parse_attributes(raw.get("attributes")),
        "current_price_cents": optional_cents(raw.get("current_price_cents"), "current_price_cents"),
        "original_price_cents": optional_cents(raw.get("original_price_cents"), "original_price_cents"),
        "cost_price_cents": optional_cents(raw.get("cost_price_cents"), "cost_price_cents"),
        "stock_quantity": require_non_negative_int(raw.get("stock_quantity", 0), "stock_quantity"),
        "low_stock_threshold": require_non_negative_int(
            raw.get("low_stock_threshold", 5), "low_stock_threshold"
        ),
    }


def create_product(payload: dict, *, performed_by_user_id: str) -> Product:
    """
    Create a product (optionally with variants) and log its initial stock.

    Stock starts at zero on insert and is raised through apply_stock_delta so
    the opening balance has a ledger entry.
    """
    name = require_str(payload.get("name"), "name", max_length=255)
    slug = optional_str(payload.get("slug"), "slug", max_length=255) or slugify(name)
    variants = [_parse_variant(v) for v in (payload.get("variants") or [])]
    skus = [v["sku"] for v in variants]
    if len(set(skus)) != len(skus):
        raise ValidationError("Variant SKUs must be unique")

    initial_stock = require_non_negative_int(payload.get("total_stock", 0), "total_stock")
    if variants and initial_stock:
        raise ValidationError("total_stock is derived from variants; set stock_quantity per variant")

    def _op() -> Product:
        begin_write()
        product = Product(
            name=name,
            slug=slug,
            price_cents=optional_cents(payload.get("price_cents"), "price_cents"),
            cost_price_cents=optional_cents(payload.get("cost_price_cents"), "cost_price_cents"),
            low_stock_threshold=require_non_negative_int(
                payload.get("low_stock_threshold", 5), "low_stock_threshold"
            ),
            total_stock=0,
            total_sold=0,
        )
        db.session.add(product)
        for variant in variants:
            db.session.add(ProductVariant(
                product=product,
                sku=variant["sku"],
                attributes=variant["attributes"],
                current_price_cents=variant["current_price_cents"],
                original_price_cents=variant["original_price_cents"],
                cost_price_cents=variant["cost_price_cents"],
                stock_quantity=0,
                low_stock_threshold=variant["low_stock_threshold"],
            ))
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("A product with this slug or variant SKU already exists")

        if variants:
            for variant in variants:
                if variant["stock_quantity"]:
                    apply_stock_delta(
                        product.id,
                        variant["sku"],
                        variant["stock_quantity"],
                        movement_type=MOVEMENT_ADD,
                        reason=INITIAL_STOCK_REASON,
                        performed_by_user_id=performed_by_user_id,
                        cost_cents=variant["cost_price_cents"],
                    )
        elif initial_stock:
            apply_stock_delta(
                product.id,
                None,
                initial_stock,
                movement_type=MOVEMENT_ADD,
                reason=INITIAL_STOCK_REASON,
                performed_by_user_id=performed_by_user_id,
                cost_cents=product.cost_price_cents,
            )

        db.session.commit()
        return product

    product = run_with_retry(_op)
    logger.info("Product %s created with %s variant(s)", product.id, len(variants))
    return product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")
    return product


def _set_stock_level(
    product_id: int,
    variant_sku: str | None,
    target_level: int,
    *,
    performed_by_user_id: str,
) -> dict | None:
    """Diff the stock field against its stored value and log the change."""
    observed = current_stock(product_id, variant_sku)
    if observed is None:
        raise NotFound("Variant not found" if variant_sku else "Product not found")
    delta = target_level - observed
    if delta == 0:
        return None

    entry = apply_stock_delta(
        product_id,
        variant_sku,
        delta,
        movement_type=MOVEMENT_ADD if delta > 0 else MOVEMENT_REMOVE,
        reason=PRODUCT_EDIT_REASON,
        performed_by_user_id=performed_by_user_id,
        expected_current=observed,
    )
    return {
        "variant_sku": variant_sku,
        "previous_stock": entry.previous_stock,
        "new_stock": entry.new_stock,
        "ledger_entry_id": entry.id,
    }


def update_product_stock_fields(product_id: int, payload: dict, *, performed_by_user_id: str) -> tuple[Product, list[dict]]:
    """
    Edit the stock-related fields this core owns.

    Accepted keys: total_stock (variant-less products only), price_cents,
    cost_price_cents, low_stock_threshold, and variants: [{sku,
    stock_quantity?, current_price_cents?, original_price_cents?,
    cost_price_cents?, low_stock_threshold?}].

    Any stock count change is logged as a 'Product edit' ledger entry.
    Returns (product, stock_changes).
    """
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("No fields to update")

    product_fields = {}
    for key in ("price_cents", "cost_price_cents"):
        if key in payload:
            product_fields[key] = optional_cents(payload[key], key)
    if "low_stock_threshold" in payload:
        product_fields["low_stock_threshold"] = require_non_negative_int(
            payload["low_stock_threshold"], "low_stock_threshold"
        )
    total_stock = None
    if "total_stock" in payload:
        total_stock = require_non_negative_int(payload["total_stock"], "total_stock")

    variant_edits = []
    for raw in payload.get("variants") or []:
        if not isinstance(raw, dict):
            raise ValidationError("Each variant must be an object")
        edit = {"sku": require_str(raw.get("sku"), "sku", max_length=64)}
        for key in VARIANT_PRICE_FIELDS:
            if key in raw:
                edit[key] = optional_cents(raw[key], key)
        if "low_stock_threshold" in raw:
            edit["low_stock_threshold"] = require_non_negative_int(raw["low_stock_threshold"], "low_stock_threshold")
        if "stock_quantity" in raw:
            edit["stock_quantity"] = require_non_negative_int(raw["stock_quantity"], "stock_quantity")
        variant_edits.append(edit)

    def _op() -> list[dict]:
        begin_write()
        product = db.session.get(Product, product_id)
        if not product:
            raise NotFound("Product not found")

        changes: list[dict] = []
        has_variants = bool(product.variants)
        if total_stock is not None:
            if has_variants:
                raise ValidationError("total_stock is derived from variants; edit stock_quantity per variant")
            change = _set_stock_level(product_id, None, total_stock, performed_by_user_id=performed_by_user_id)
            if change:
                changes.append(change)

        if product_fields:
            db.session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(**product_fields)
                .execution_options(synchronize_session="fetch")
            )

        for edit in variant_edits:
            sku = edit["sku"]
            fields = {k: v for k, v in edit.items() if k not in ("sku", "stock_quantity")}
            if fields:
                result = db.session.execute(
                    update(ProductVariant)
                    .where(ProductVariant.product_id == product_id, ProductVariant.sku == sku)
                    .values(**fields)
                    .execution_options(synchronize_session="fetch")
                )
                if not result.rowcount:
                    raise NotFound("Variant not found", details={"variant_sku": sku})
            if "stock_quantity" in edit:
                change = _set_stock_level(
                    product_id, sku, edit["stock_quantity"], performed_by_user_id=performed_by_user_id
                )
                if change:
                    changes.append(change)

        db.session.commit()
        return changes

    try:
        changes = run_with_retry(_op)
    except StaleDataError:
        raise ConflictError("Stock changed while editing, please reload and retry")

    if changes:
        logger.info("Product %s edit changed stock: %s", product_id, changes)
    return get_product(product_id), changes
