"""
Outbound collaborator tests.

Verifies:
- the HTTP coupon gateway escapes the code into a single path segment
- the HTTP loyalty gateway posts the earn payload
- a failing collaborator is logged and reported, never raised
"""

import httpx
import pytest

from stockflow.services import collaborators


@pytest.fixture
def captured_posts(monkeypatch):
    calls = []

    def fake_post(url, **kwargs):
        calls.append({"url": url, **kwargs})
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(collaborators.httpx, "post", fake_post)
    return calls


# =============================================================================
# HTTP GATEWAYS
# =============================================================================


class TestHttpGateways:
    def test_coupon_code_is_path_escaped(self, captured_posts):
        gateway = collaborators.HttpCouponGateway("http://coupons.local/api/coupons/", timeout=2)
        gateway.increment_usage("SAVE 10/../admin")

        assert captured_posts[0]["url"] == "http://coupons.local/api/coupons/SAVE%2010%2F..%2Fadmin/use"
        assert captured_posts[0]["timeout"] == 2

    def test_plain_coupon_code_unchanged(self, captured_posts):
        collaborators.HttpCouponGateway("http://coupons.local").increment_usage("WELCOME10")
        assert captured_posts[0]["url"] == "http://coupons.local/WELCOME10/use"

    def test_loyalty_earn_payload(self, captured_posts):
        gateway = collaborators.HttpLoyaltyGateway("http://loyalty.local")
        items = [{"product_id": 1, "variant_sku": None, "quantity": 2, "unit_price_cents": 500}]
        gateway.earn_coins_from_order(user_id="cust-1", order_id=7, items=items, trigger="payment_success")

        call = captured_posts[0]
        assert call["url"] == "http://loyalty.local/earn-from-order"
        assert call["json"] == {"user_id": "cust-1", "order_id": 7, "items": items, "trigger": "payment_success"}


class TestBestEffort:
    def test_http_error_is_swallowed(self, app, monkeypatch):
        def failing_post(url, **kwargs):
            return httpx.Response(503, request=httpx.Request("POST", url))

        monkeypatch.setattr(collaborators.httpx, "post", failing_post)
        monkeypatch.setitem(
            app.extensions, collaborators.COUPON_EXTENSION, collaborators.HttpCouponGateway("http://coupons.local")
        )

        assert collaborators.record_coupon_usage("WELCOME10") is False
