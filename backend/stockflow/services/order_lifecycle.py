# Overview: Order status state machine and its stock/ledger/metric side effects.

"""
Order lifecycle.

States: pending, confirmed, processing, shipped, delivered, cancelled, returned

    pending    -> confirmed, cancelled
    confirmed  -> processing, cancelled
    processing -> shipped, cancelled
    shipped    -> delivered, returned
    delivered  -> returned
    cancelled, returned: terminal

Side effects are keyed to the edge:
- -> confirmed: take stock for every item (ledger 'remove', "Order confirmed")
- shipped/delivered -> returned: put stock back (ledger 'add', "Order returned");
  delivered -> returned also lowers total_sold when RETURN_DECREMENTS_TOTAL_SOLD
- confirmed/processing -> cancelled: stock stays taken by default; put it
  back (ledger 'add', "Order cancelled") only when RESTOCK_ON_CANCEL is on
- -> delivered: total_sold += quantity; COD orders without spent points
  schedule the loyalty earn

All side effects of one transition share the caller's transaction, so an
InsufficientStock on any item leaves the order and every item untouched.
Collaborator calls are returned as follow-ups and run after commit.
"""

from __future__ import annotations

import logging

from flask import current_app

from ..extensions import db
from ..models import Order, OrderStatusEvent
from ..models.orders import ORDER_STATUSES, PAYMENT_STATUSES
from ..models.ledger import MOVEMENT_ADD, MOVEMENT_REMOVE
from ..errors import ValidationError, NotFound, InvalidTransition
from ..time_utils import utcnow
from . import collaborators
from .concurrency import begin_write, lock_for_update, run_with_retry
from .stock_service import apply_stock_delta, increment_total_sold

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered", "returned"}),
    "delivered": frozenset({"returned"}),
    "cancelled": frozenset(),
    "returned": frozenset(),
}

# Cancelling from these gives reserved stock back
RESTOCKABLE_ON_CANCEL = frozenset({"confirmed", "processing"})

COD = "cod"


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ORDER_TRANSITIONS.get(from_status, frozenset())


def _loyalty_followup(order: Order, trigger: str) -> dict:
    order.loyalty_awarded = True
    return {
        "kind": "loyalty",
        "user_id": order.user_id,
        "order_id": order.id,
        "items": [
            {
                "product_id": item.product_id,
                "variant_sku": item.variant_sku,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
            }
            for item in order.items
        ],
        "trigger": trigger,
    }


def _move_item_stock(order: Order, *, direction: int, reason: str, actor_user_id: str | None) -> None:
    movement_type = MOVEMENT_ADD if direction > 0 else MOVEMENT_REMOVE
    for item in order.items:
        apply_stock_delta(
            item.product_id,
            item.variant_sku,
            direction * item.quantity,
            movement_type=movement_type,
            reason=reason,
            reference=order.order_number,
            performed_by_user_id=actor_user_id,
        )


def record_status(order: Order, status: str, *, from_status: str | None, actor_user_id: str | None, note: str | None) -> OrderStatusEvent:
    event = OrderStatusEvent(
        order=order,
        from_status=from_status,
        status=status,
        occurred_at=utcnow(),
        actor_user_id=actor_user_id,
        note=note,
    )
    db.session.add(event)
    return event


def apply_transition(
    order: Order,
    new_status: str,
    *,
    actor_user_id: str | None,
    note: str | None = None,
) -> list[dict]:
    """
    Move order to new_status inside the caller's write transaction.

    Raises InvalidTransition for edges outside the table, including
    new_status == order.status. Returns after-commit follow-ups.
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")

    from_status = order.status
    if not can_transition(from_status, new_status):
        raise InvalidTransition(from_status, new_status)

    followups: list[dict] = []

    if new_status == "confirmed":
        _move_item_stock(order, direction=-1, reason="Order confirmed", actor_user_id=actor_user_id)

    elif new_status == "returned":
        _move_item_stock(order, direction=1, reason="Order returned", actor_user_id=actor_user_id)
        if from_status == "delivered" and current_app.config.get("RETURN_DECREMENTS_TOTAL_SOLD", False):
            for item in order.items:
                increment_total_sold(item.product_id, -item.quantity)

    elif new_status == "cancelled":
        if from_status in RESTOCKABLE_ON_CANCEL and current_app.config.get("RESTOCK_ON_CANCEL", False):
            _move_item_stock(order, direction=1, reason="Order cancelled", actor_user_id=actor_user_id)

    elif new_status == "delivered":
        for item in order.items:
            increment_total_sold(item.product_id, item.quantity)
        if (
            (order.payment_method or "").lower() == COD
            and not order.spent_loyalty_points
            and not order.loyalty_awarded
        ):
            followups.append(_loyalty_followup(order, collaborators.TRIGGER_ORDER_DELIVERED))

    order.status = new_status
    record_status(order, new_status, from_status=from_status, actor_user_id=actor_user_id, note=note)
    logger.info("Order %s %s -> %s", order.order_number, from_status, new_status)
    return followups


def apply_payment_status(order: Order, payment_status: str) -> list[dict]:
    """
    Independent payment axis. Entering 'paid' schedules the loyalty earn
    unless points were spent on the order.
    """
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
    if payment_status == order.payment_status:
        return []

    previous = order.payment_status
    order.payment_status = payment_status
    logger.info("Order %s payment %s -> %s", order.order_number, previous, payment_status)

    if payment_status == "paid" and not order.spent_loyalty_points and not order.loyalty_awarded:
        return [_loyalty_followup(order, collaborators.TRIGGER_PAYMENT_SUCCESS)]
    return []


def run_followups(followups: list[dict]) -> None:
    """Run collaborator calls scheduled by a committed transaction."""
    for followup in followups:
        if followup["kind"] == "loyalty":
            collaborators.award_loyalty(
                user_id=followup["user_id"],
                order_id=followup["order_id"],
                items=followup["items"],
                trigger=followup["trigger"],
            )
        elif followup["kind"] == "coupon":
            collaborators.record_coupon_usage(followup["code"])


def transition_order(
    order_id: int,
    new_status: str,
    *,
    actor_user_id: str | None,
    note: str | None = None,
) -> Order:
    """Transition one order and commit; follow-ups run after the commit."""
    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFound("Order not found")
        followups = apply_transition(order, new_status, actor_user_id=actor_user_id, note=note)
        db.session.commit()
        return order, followups

    order, followups = run_with_retry(_op)
    run_followups(followups)
    return order
