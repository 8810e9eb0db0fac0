# Overview: Outbound loyalty and coupon collaborators (best-effort hooks).

"""
Outbound collaborators.

Loyalty and coupon bookkeeping live in other services. This module only
calls them:
- loyalty: earn_coins_from_order(user_id, order_id, items, trigger)
- coupon: increment_usage(code)

Calls happen after the triggering transaction commits. A failing call is
logged at WARNING and never rolls back or fails the order operation.

The factory installs one gateway of each kind on app.extensions; without a
configured base URL the gateway only logs.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx
from flask import current_app

logger = logging.getLogger(__name__)

LOYALTY_EXTENSION = "stockflow.loyalty"
COUPON_EXTENSION = "stockflow.coupon"

TRIGGER_ORDER_DELIVERED = "order_delivered"
TRIGGER_PAYMENT_SUCCESS = "payment_success"


class LoggingLoyaltyGateway:
    def earn_coins_from_order(self, *, user_id: str, order_id: int, items: list[dict], trigger: str) -> None:
        logger.info(
            "Loyalty earn (no service configured): user=%s order=%s items=%s trigger=%s",
            user_id,
            order_id,
            len(items),
            trigger,
        )


class LoggingCouponGateway:
    def increment_usage(self, code: str) -> None:
        logger.info("Coupon usage increment (no service configured): %s", code)


class HttpLoyaltyGateway:
    def __init__(self, base_url: str, *, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def earn_coins_from_order(self, *, user_id: str, order_id: int, items: list[dict], trigger: str) -> None:
        response = httpx.post(
            f"{self.base_url}/earn-from-order",
            json={"user_id": user_id, "order_id": order_id, "items": items, "trigger": trigger},
            timeout=self.timeout,
        )
        response.raise_for_status()


class HttpCouponGateway:
    def __init__(self, base_url: str, *, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def increment_usage(self, code: str) -> None:
        response = httpx.post(
            f"{self.base_url}/{quote(code, safe='')}/use",
            timeout=self.timeout,
        )
        response.raise_for_status()


def init_collaborators(app) -> None:
    timeout = app.config.get("COLLABORATOR_TIMEOUT_SECONDS", 5.0)

    loyalty_url = app.config.get("LOYALTY_SERVICE_URL")
    app.extensions[LOYALTY_EXTENSION] = (
        HttpLoyaltyGateway(loyalty_url, timeout=timeout) if loyalty_url else LoggingLoyaltyGateway()
    )

    coupon_url = app.config.get("COUPON_SERVICE_URL")
    app.extensions[COUPON_EXTENSION] = (
        HttpCouponGateway(coupon_url, timeout=timeout) if coupon_url else LoggingCouponGateway()
    )


def _best_effort(label: str, func, *args, **kwargs) -> bool:
    try:
        func(*args, **kwargs)
        return True
    except Exception:
        # Collaborator failures must not undo committed stock/order changes
        logger.warning("%s failed", label, exc_info=True)
        return False


def award_loyalty(*, user_id: str, order_id: int, items: list[dict], trigger: str) -> bool:
    gateway = current_app.extensions[LOYALTY_EXTENSION]
    return _best_effort(
        f"Loyalty earn for order {order_id}",
        gateway.earn_coins_from_order,
        user_id=user_id,
        order_id=order_id,
        items=items,
        trigger=trigger,
    )


def record_coupon_usage(code: str) -> bool:
    gateway = current_app.extensions[COUPON_EXTENSION]
    return _best_effort(f"Coupon usage increment for {code}", gateway.increment_usage, code)
