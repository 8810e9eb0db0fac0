"""
Purchase tests.

Verifies:
- a purchase adds stock, overwrites the unit cost and logs an 'add' entry
  referencing the purchase number
- every line is validated before any stock moves
- purchase numbers are sequential and zero padded
- list/detail endpoints
"""

import pytest

from stockflow.extensions import db
from stockflow.errors import ValidationError, NotFound
from stockflow.models import Product, ProductVariant, Purchase, StockLedgerEntry
from stockflow.services.purchase_service import create_purchase, get_purchase


# =============================================================================
# SERVICE
# =============================================================================


class TestCreatePurchase:
    def test_purchase_adds_stock_and_captures_cost(self, mug):
        purchase = create_purchase(
            [{"product_id": mug.id, "quantity": 5, "unit_cost_cents": 100}],
            performed_by_user_id="admin-1",
        )

        product = db.session.get(Product, mug.id)
        db.session.refresh(product)
        assert product.total_stock == 7
        assert product.cost_price_cents == 100

        assert purchase.purchase_number == "PUR-000001"
        assert purchase.total_quantity == 5
        assert purchase.total_cost_cents == 500

        entry = db.session.query(StockLedgerEntry).one()
        assert entry.type == "add"
        assert entry.quantity == 5
        assert (entry.previous_stock, entry.new_stock) == (2, 7)
        assert entry.reference == "PUR-000001"
        assert entry.cost_cents == 100
        assert entry.performed_by_user_id == "admin-1"

        line = purchase.lines[0]
        assert line.previous_unit_cost_cents is None
        assert line.line_total_cents == 500
        assert line.ledger_entry_id == entry.id

    def test_last_purchase_wins_for_variant_cost(self, tee):
        create_purchase(
            [{"product_id": tee.id, "variant_sku": "TEE-L", "quantity": 2, "unit_cost_cents": 900}],
            performed_by_user_id="admin-1",
        )
        second = create_purchase(
            [{"product_id": tee.id, "variant_sku": "TEE-L", "quantity": 1, "unit_cost_cents": 1100}],
            performed_by_user_id="admin-1",
        )

        variant = db.session.query(ProductVariant).filter_by(sku="TEE-L").one()
        db.session.refresh(variant)
        assert variant.cost_price_cents == 1100
        assert variant.stock_quantity == 7
        assert second.lines[0].previous_unit_cost_cents == 900
        assert db.session.get(Product, tee.id).total_stock == 17

    def test_numbers_are_sequential(self, mug):
        numbers = [
            create_purchase(
                [{"product_id": mug.id, "quantity": 1, "unit_cost_cents": 50}],
                performed_by_user_id="admin-1",
            ).purchase_number
            for _ in range(3)
        ]
        assert numbers == ["PUR-000001", "PUR-000002", "PUR-000003"]

    def test_one_bad_line_rejects_everything(self, tee, mug):
        with pytest.raises(ValidationError) as exc_info:
            create_purchase(
                [
                    {"product_id": mug.id, "quantity": 5, "unit_cost_cents": 100},
                    {"product_id": tee.id, "quantity": 1, "unit_cost_cents": 100},
                    {"product_id": mug.id, "quantity": 0, "unit_cost_cents": 100},
                ],
                performed_by_user_id="admin-1",
            )

        errors = exc_info.value.details["errors"]
        assert [e["index"] for e in errors] == [1, 2]
        assert "variant_sku is required" in errors[0]["error"]

        assert db.session.get(Product, mug.id).total_stock == 2
        assert db.session.query(Purchase).count() == 0
        assert db.session.query(StockLedgerEntry).count() == 0

    def test_rejected_purchase_does_not_burn_a_number(self, mug):
        with pytest.raises(ValidationError):
            create_purchase(
                [{"product_id": mug.id, "quantity": 1, "unit_cost_cents": -1}],
                performed_by_user_id="admin-1",
            )
        purchase = create_purchase(
            [{"product_id": mug.id, "quantity": 1, "unit_cost_cents": 1}],
            performed_by_user_id="admin-1",
        )
        assert purchase.purchase_number == "PUR-000001"

    def test_empty_items_rejected(self, db_session):
        with pytest.raises(ValidationError):
            create_purchase([], performed_by_user_id="admin-1")

    def test_missing_purchase(self, db_session):
        with pytest.raises(NotFound):
            get_purchase(999)


# =============================================================================
# API
# =============================================================================


class TestPurchaseRoutes:
    def test_create_requires_actor(self, client, mug):
        response = client.post(
            "/api/inventory/purchases",
            json={"items": [{"product_id": mug.id, "quantity": 1, "unit_cost_cents": 10}]},
        )
        assert response.status_code == 401

    def test_create_list_and_detail(self, client, mug, actor_headers):
        response = client.post(
            "/api/inventory/purchases",
            json={"items": [{"product_id": mug.id, "quantity": 5, "unit_cost_cents": 100}], "notes": "weekly"},
            headers=actor_headers,
        )
        assert response.status_code == 201
        purchase = response.get_json()["purchase"]
        assert purchase["purchase_number"] == "PUR-000001"
        assert purchase["notes"] == "weekly"
        assert purchase["items"][0]["product_name"] == "Mug"
        assert purchase["items"][0]["new_stock"] == 7

        listing = client.get("/api/inventory/purchases").get_json()
        assert listing["pagination"]["total"] == 1
        assert listing["purchases"][0]["item_count"] == 1

        detail = client.get(f"/api/inventory/purchases/{purchase['id']}")
        assert detail.status_code == 200
        assert detail.get_json()["purchase"]["total_cost_cents"] == 500

    def test_invalid_line_returns_400_with_errors(self, client, mug, actor_headers):
        response = client.post(
            "/api/inventory/purchases",
            json={"items": [{"product_id": 99999, "quantity": 1, "unit_cost_cents": 10}]},
            headers=actor_headers,
        )
        assert response.status_code == 400
        body = response.get_json()
        assert body["error"] == "Purchase rejected: one or more items are invalid"
        assert body["details"]["errors"][0]["error"] == "Product not found"

    def test_unknown_purchase_404(self, client, db_session):
        assert client.get("/api/inventory/purchases/12345").status_code == 404
