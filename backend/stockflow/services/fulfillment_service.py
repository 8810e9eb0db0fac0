# Overview: Order creation and update orchestration.

"""
Fulfillment orchestration.

Creates orders from checkout requests and routes order updates through the
lifecycle state machine. Collaborator hooks (coupon usage, loyalty earn) run
after the database commit and are best-effort.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, Product, ProductVariant
from ..models.orders import ORDER_STATUSES, PAYMENT_STATUSES
from ..errors import ValidationError, NotFound, InsufficientStock
from ..validation import (
    require_non_negative_int,
    require_str,
    optional_str,
    require_list,
)
from . import document_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .order_lifecycle import apply_transition, apply_payment_status, record_status, run_followups
from .stock_service import resolve_target, check_stock_availability, parse_stock_item

logger = logging.getLogger(__name__)


def _snapshot(item: dict) -> dict:
    """Resolve name and unit price at checkout time."""
    target = resolve_target(item["product_id"], item["variant_sku"])
    product = db.session.get(Product, target.product_id)
    if not product.is_active:
        raise ValidationError(f"Product {product.name} is not available", details={"product_id": product.id})

    name = product.name
    price = product.price_cents
    if target.variant_sku:
        variant = (
            db.session.query(ProductVariant)
            .filter_by(product_id=product.id, sku=target.variant_sku)
            .one()
        )
        if not variant.is_active:
            raise ValidationError(f"Variant {variant.sku} is not available", details={"variant_sku": variant.sku})
        price = variant.current_price_cents if variant.current_price_cents is not None else price
        values = [str(attr.get("value")) for attr in (variant.attributes or []) if attr.get("value")]
        if values:
            name = f"{product.name} ({' / '.join(values)})"

    if price is None:
        raise ValidationError(f"Product {product.name} has no price", details={"product_id": product.id})

    return {
        **item,
        "name": name[:255],
        "unit_price_cents": price,
        "line_total_cents": price * item["quantity"],
    }


def create_order(
    *,
    user_id: str,
    items,
    shipping_address: dict | None,
    payment_method: str,
    coupon_code: str | None = None,
    coupon_discount_cents: int = 0,
    loyalty_points_used: int = 0,
    loyalty_discount_cents: int = 0,
    shipping_cost_cents: int = 0,
    notes: str | None = None,
) -> Order:
    """
    Create an order from a checkout request.

    The order starts 'pending'. When loyalty points cover the whole total
    it is created 'confirmed' and 'paid', and stock is taken in the same
    transaction.
    """
    require_list(items, "items")
    parsed = [parse_stock_item(raw) for raw in items]
    payment_method = require_str(payment_method, "payment_method", max_length=32).lower()
    coupon_code = optional_str(coupon_code, "coupon_code", max_length=64)
    coupon_discount_cents = require_non_negative_int(coupon_discount_cents or 0, "coupon_discount_cents")
    loyalty_points_used = require_non_negative_int(loyalty_points_used or 0, "loyalty_points_used")
    loyalty_discount_cents = require_non_negative_int(loyalty_discount_cents or 0, "loyalty_discount_cents")
    shipping_cost_cents = require_non_negative_int(shipping_cost_cents or 0, "shipping_cost_cents")
    notes = optional_str(notes, "notes", max_length=1000)
    if shipping_address is not None and not isinstance(shipping_address, dict):
        raise ValidationError("shipping_address must be an object")

    def _op():
        begin_write()
        lines = [_snapshot(item) for item in parsed]

        availability = check_stock_availability(parsed)
        if not availability["available"]:
            raise InsufficientStock(
                "Insufficient stock for one or more items",
                details={"items": [row for row in availability["items"] if not row["available"]]},
            )

        subtotal = sum(line["line_total_cents"] for line in lines)
        total = max(subtotal + shipping_cost_cents - coupon_discount_cents - loyalty_discount_cents, 0)

        order_number = document_service.allocate(document_service.ORDER)
        order = Order(
            order_number=order_number,
            user_id=user_id,
            status="pending",
            payment_status="pending",
            payment_method=payment_method,
            shipping_address=shipping_address,
            subtotal_cents=subtotal,
            coupon_code=coupon_code,
            coupon_discount_cents=coupon_discount_cents,
            loyalty_points_used=loyalty_points_used,
            loyalty_discount_cents=loyalty_discount_cents,
            shipping_cost_cents=shipping_cost_cents,
            total_cents=total,
            notes=notes,
        )
        db.session.add(order)
        for line in lines:
            order.items.append(OrderItem(
                product_id=line["product_id"],
                variant_sku=line["variant_sku"],
                name=line["name"],
                unit_price_cents=line["unit_price_cents"],
                quantity=line["quantity"],
                line_total_cents=line["line_total_cents"],
            ))
        record_status(order, "pending", from_status=None, actor_user_id=user_id, note="Order placed")
        db.session.flush()

        followups: list[dict] = []
        if loyalty_points_used > 0 and total == 0:
            followups += apply_transition(
                order, "confirmed", actor_user_id=user_id, note="Paid in full with loyalty points"
            )
            followups += apply_payment_status(order, "paid")

        if coupon_code:
            followups.append({"kind": "coupon", "code": coupon_code})

        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            document_service.raise_if_duplicate(exc, order_number)
            raise
        return order, followups

    order, followups = run_with_retry(_op)
    logger.info("Order %s created for user %s (%s)", order.order_number, user_id, order.status)
    run_followups(followups)
    return order


def update_order(
    order_id: int,
    *,
    actor_user_id: str,
    status: str | None = None,
    payment_status: str | None = None,
    note: str | None = None,
    admin_notes: str | None = None,
) -> Order:
    """
    Apply a status and/or payment-status change.

    A status equal to the current one is ignored. Both changes commit
    together; collaborator follow-ups run afterwards.
    """
    if status is None and payment_status is None and admin_notes is None:
        raise ValidationError("Nothing to update: provide status, payment_status or admin_notes")
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
    note = optional_str(note, "note", max_length=500)
    admin_notes = optional_str(admin_notes, "admin_notes", max_length=1000)

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFound("Order not found")

        followups: list[dict] = []
        if status is not None and status != order.status:
            followups += apply_transition(order, status, actor_user_id=actor_user_id, note=note)
        if payment_status is not None:
            followups += apply_payment_status(order, payment_status)
        if admin_notes is not None:
            order.admin_notes = admin_notes

        db.session.commit()
        return order, followups

    order, followups = run_with_retry(_op)
    run_followups(followups)
    return order


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def list_orders(
    *,
    user_id: str | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Order], int]:
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")

    query = db.session.query(Order)
    if user_id:
        query = query.filter(Order.user_id == user_id)
    if status:
        query = query.filter(Order.status == status)

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return orders, total
