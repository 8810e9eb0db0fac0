"""
Order API tests.

Verifies:
- checkout snapshots names/prices and does not take stock until confirmation
- PATCH drives the lifecycle; invalid edges answer 400 naming both states
- repeating the current status is a no-op
- orders paid in full with loyalty points are confirmed and paid at creation
- coupon usage is reported after commit
"""

from stockflow.extensions import db
from stockflow.models import Product, ProductVariant, StockLedgerEntry


def _create(client, headers, items, **extra):
    payload = {"items": items, "shipping_address": {"line1": "1 Main St"}, "payment_method": "cod"}
    payload.update(extra)
    return client.post("/api/orders", json=payload, headers=headers)


# =============================================================================
# CREATE
# =============================================================================


class TestCreateOrder:
    def test_checkout_snapshot(self, client, tee, mug, actor_headers):
        response = _create(
            client,
            actor_headers,
            [
                {"product_id": tee.id, "variant_sku": "TEE-M", "quantity": 2},
                {"product_id": mug.id, "quantity": 1},
            ],
            shipping_cost_cents=500,
            coupon_discount_cents=200,
        )
        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["order_number"] == "ORD-000001"
        assert order["status"] == "pending"
        assert order["user_id"] == "admin-1"
        assert order["subtotal_cents"] == 6200
        assert order["total_cents"] == 6500
        assert [item["name"] for item in order["items"]] == ["Tee (M)", "Mug"]
        assert order["status_history"][0]["status"] == "pending"

        # Stock is taken on confirmation, not checkout
        assert db.session.get(Product, tee.id).total_stock == 14
        assert db.session.query(StockLedgerEntry).count() == 0

    def test_insufficient_stock_at_checkout(self, client, mug, actor_headers):
        response = _create(client, actor_headers, [{"product_id": mug.id, "quantity": 3}])
        assert response.status_code == 400
        body = response.get_json()
        assert body["error"] == "Insufficient stock for one or more items"
        assert body["details"]["items"][0]["available_stock"] == 2

    def test_total_never_negative(self, client, mug, actor_headers):
        response = _create(client, actor_headers, [{"product_id": mug.id, "quantity": 1}], coupon_discount_cents=5000)
        assert response.get_json()["order"]["total_cents"] == 0

    def test_loyalty_paid_order_confirmed_and_paid(self, client, mug, actor_headers, loyalty_spy):
        response = _create(
            client,
            actor_headers,
            [{"product_id": mug.id, "quantity": 2}],
            payment_method="loyalty_points",
            loyalty_points_used=2400,
            loyalty_discount_cents=2400,
        )
        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["status"] == "confirmed"
        assert order["payment_status"] == "paid"
        assert db.session.get(Product, mug.id).total_stock == 0
        # Points were spent, so nothing is earned
        assert loyalty_spy.calls == []

    def test_coupon_usage_reported(self, client, mug, actor_headers, coupon_spy):
        response = _create(
            client,
            actor_headers,
            [{"product_id": mug.id, "quantity": 1}],
            coupon_code="WELCOME10",
            coupon_discount_cents=120,
        )
        assert response.status_code == 201
        assert coupon_spy.codes == ["WELCOME10"]

    def test_requires_actor(self, client, mug):
        response = client.post("/api/orders", json={"items": [{"product_id": mug.id, "quantity": 1}]})
        assert response.status_code == 401

    def test_list_filters(self, client, mug, actor_headers):
        _create(client, actor_headers, [{"product_id": mug.id, "quantity": 1}])
        _create(client, {"X-User-Id": "cust-9"}, [{"product_id": mug.id, "quantity": 1}])

        body = client.get("/api/orders?user_id=cust-9").get_json()
        assert body["pagination"]["total"] == 1
        assert body["orders"][0]["user_id"] == "cust-9"
        assert client.get("/api/orders?status=shipped").get_json()["orders"] == []
        assert client.get("/api/orders?status=lost").status_code == 400


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateOrder:
    def _order(self, client, headers, tee):
        response = _create(client, headers, [{"product_id": tee.id, "variant_sku": "TEE-M", "quantity": 3}])
        return response.get_json()["order"]["id"]

    def test_confirm_via_patch(self, client, tee, actor_headers):
        order_id = self._order(client, actor_headers, tee)
        response = client.patch(f"/api/orders/{order_id}", json={"status": "confirmed"}, headers=actor_headers)
        assert response.status_code == 200
        order = response.get_json()["order"]
        assert order["status"] == "confirmed"
        assert set(order["status_timestamps"]) == {"pending", "confirmed"}
        stock = db.session.query(ProductVariant.stock_quantity).filter_by(sku="TEE-M").scalar()
        assert stock == 7

    def test_invalid_transition_400(self, client, tee, actor_headers):
        order_id = self._order(client, actor_headers, tee)
        response = client.patch(f"/api/orders/{order_id}", json={"status": "delivered"}, headers=actor_headers)
        assert response.status_code == 400
        body = response.get_json()
        assert body["error"] == "Invalid status transition from pending to delivered"
        assert body["details"] == {"from_status": "pending", "to_status": "delivered"}

    def test_terminal_state_rejects_everything(self, client, tee, actor_headers):
        order_id = self._order(client, actor_headers, tee)
        client.patch(f"/api/orders/{order_id}", json={"status": "cancelled"}, headers=actor_headers)
        response = client.patch(f"/api/orders/{order_id}", json={"status": "confirmed"}, headers=actor_headers)
        assert response.status_code == 400
        assert "from cancelled to confirmed" in response.get_json()["error"]

    def test_same_status_is_noop(self, client, tee, actor_headers):
        order_id = self._order(client, actor_headers, tee)
        client.patch(f"/api/orders/{order_id}", json={"status": "confirmed"}, headers=actor_headers)
        response = client.patch(f"/api/orders/{order_id}", json={"status": "confirmed"}, headers=actor_headers)
        assert response.status_code == 200
        assert len(response.get_json()["order"]["status_history"]) == 2
        assert db.session.query(StockLedgerEntry).count() == 1

    def test_admin_notes_only(self, client, tee, actor_headers):
        order_id = self._order(client, actor_headers, tee)
        response = client.patch(f"/api/orders/{order_id}", json={"admin_notes": "call first"}, headers=actor_headers)
        assert response.status_code == 200
        assert response.get_json()["order"]["admin_notes"] == "call first"

    def test_empty_patch_rejected(self, client, tee, actor_headers):
        order_id = self._order(client, actor_headers, tee)
        assert client.patch(f"/api/orders/{order_id}", json={}, headers=actor_headers).status_code == 400

    def test_unknown_order_404(self, client, db_session, actor_headers):
        response = client.patch("/api/orders/9999", json={"status": "confirmed"}, headers=actor_headers)
        assert response.status_code == 404

    def test_full_cod_flow_awards_once(self, client, tee, actor_headers, loyalty_spy):
        order_id = self._order(client, actor_headers, tee)
        for status in ("confirmed", "processing", "shipped", "delivered"):
            response = client.patch(f"/api/orders/{order_id}", json={"status": status}, headers=actor_headers)
            assert response.status_code == 200

        response = client.patch(f"/api/orders/{order_id}", json={"payment_status": "paid"}, headers=actor_headers)
        assert response.get_json()["order"]["loyalty_awarded"] is True
        assert len(loyalty_spy.calls) == 1
        assert db.session.get(Product, tee.id).total_sold == 3
