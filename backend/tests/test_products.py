"""
Product stock-field tests.

Verifies:
- creating a product logs its opening stock as 'Initial stock'
- stock edits are diffed against the stored value and logged
- total_stock is derived for variant products and cannot be set directly
- duplicate SKUs conflict
"""

from stockflow.extensions import db
from stockflow.models import Product, ProductVariant, StockLedgerEntry


# =============================================================================
# CREATE
# =============================================================================


class TestCreateProduct:
    def test_simple_product_initial_stock_logged(self, client, db_session, actor_headers):
        response = client.post(
            "/api/products",
            json={"name": "Desk Lamp", "price_cents": 4500, "total_stock": 8, "cost_price_cents": 2000},
            headers=actor_headers,
        )
        assert response.status_code == 201
        product = response.get_json()["product"]
        assert product["slug"] == "desk-lamp"
        assert product["total_stock"] == 8
        assert product["stock_status"] == "in_stock"

        entry = db.session.query(StockLedgerEntry).one()
        assert entry.reason == "Initial stock"
        assert (entry.previous_stock, entry.new_stock) == (0, 8)
        assert entry.cost_cents == 2000
        assert entry.performed_by_user_id == "admin-1"

    def test_variant_product_total_is_sum(self, client, db_session, actor_headers):
        response = client.post(
            "/api/products",
            json={
                "name": "Hoodie",
                "price_cents": 6000,
                "variants": [
                    {"sku": "HD-S", "stock_quantity": 3, "attributes": [{"name": "Size", "value": "S"}]},
                    {"sku": "HD-M", "stock_quantity": 0},
                ],
            },
            headers=actor_headers,
        )
        assert response.status_code == 201
        body = response.get_json()["product"]
        assert body["total_stock"] == 3
        assert body["stock_status"] == "low_stock"
        assert db.session.query(StockLedgerEntry).count() == 1

    def test_total_stock_with_variants_rejected(self, client, db_session, actor_headers):
        response = client.post(
            "/api/products",
            json={"name": "Cap", "total_stock": 5, "variants": [{"sku": "CAP-1", "stock_quantity": 5}]},
            headers=actor_headers,
        )
        assert response.status_code == 400

    def test_duplicate_sku_conflicts(self, client, tee, actor_headers):
        response = client.post(
            "/api/products",
            json={"name": "Other Tee", "variants": [{"sku": "TEE-M", "stock_quantity": 1}]},
            headers=actor_headers,
        )
        assert response.status_code == 409
        assert db.session.query(Product).count() == 1

    def test_get_unknown_product(self, client, db_session):
        assert client.get("/api/products/5555").status_code == 404


# =============================================================================
# STOCK FIELD EDITS
# =============================================================================


class TestStockFieldEdits:
    def test_variant_stock_edit_is_logged(self, client, tee, actor_headers):
        response = client.patch(
            f"/api/products/{tee.id}/stock-fields",
            json={"variants": [{"sku": "TEE-L", "stock_quantity": 9, "cost_price_cents": 700}]},
            headers=actor_headers,
        )
        assert response.status_code == 200
        body = response.get_json()
        assert body["stock_changes"] == [{
            "variant_sku": "TEE-L",
            "previous_stock": 4,
            "new_stock": 9,
            "ledger_entry_id": body["stock_changes"][0]["ledger_entry_id"],
        }]
        assert body["product"]["total_stock"] == 19

        entry = db.session.query(StockLedgerEntry).one()
        assert entry.type == "add"
        assert entry.reason == "Product edit"
        variant = db.session.query(ProductVariant).filter_by(sku="TEE-L").one()
        assert variant.cost_price_cents == 700

    def test_lowering_stock_logs_remove(self, client, mug, actor_headers):
        response = client.patch(
            f"/api/products/{mug.id}/stock-fields",
            json={"total_stock": 0},
            headers=actor_headers,
        )
        assert response.status_code == 200
        entry = db.session.query(StockLedgerEntry).one()
        assert (entry.type, entry.quantity, entry.new_stock) == ("remove", 2, 0)
        assert response.get_json()["product"]["stock_status"] == "out_of_stock"

    def test_unchanged_stock_not_logged(self, client, mug, actor_headers):
        response = client.patch(
            f"/api/products/{mug.id}/stock-fields",
            json={"total_stock": 2, "low_stock_threshold": 1},
            headers=actor_headers,
        )
        assert response.status_code == 200
        assert response.get_json()["stock_changes"] == []
        assert response.get_json()["product"]["low_stock_threshold"] == 1
        assert db.session.query(StockLedgerEntry).count() == 0

    def test_total_stock_on_variant_product_rejected(self, client, tee, actor_headers):
        response = client.patch(
            f"/api/products/{tee.id}/stock-fields",
            json={"total_stock": 50},
            headers=actor_headers,
        )
        assert response.status_code == 400
        assert db.session.get(Product, tee.id).total_stock == 14

    def test_unknown_variant_404(self, client, tee, actor_headers):
        response = client.patch(
            f"/api/products/{tee.id}/stock-fields",
            json={"variants": [{"sku": "TEE-XXL", "stock_quantity": 1}]},
            headers=actor_headers,
        )
        assert response.status_code == 404
