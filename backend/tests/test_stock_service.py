"""
Stock projection tests.

Verifies:
- aggregate == sum of variant stock after every mutation
- ledger arithmetic per movement type
- stock never goes negative (rejected removes leave stock and ledger untouched)
- product/variant resolution errors
- stock-status classification vs numeric list filters at the threshold boundary
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from stockflow.extensions import db
from stockflow.errors import InsufficientStock, NotFound, ValidationError
from stockflow.models import Product, ProductVariant, StockLedgerEntry
from stockflow.services import stock_service
from stockflow.services.stock_service import apply_stock_delta, classify_stock_status


def _variant_stock(sku):
    return db.session.query(ProductVariant.stock_quantity).filter_by(sku=sku).scalar()


def _total(product_id):
    return db.session.query(Product.total_stock).filter_by(id=product_id).scalar()


def _variant_sum(product_id):
    return sum(
        v.stock_quantity
        for v in db.session.query(ProductVariant).filter_by(product_id=product_id).all()
    )


# =============================================================================
# APPLY STOCK DELTA
# =============================================================================


class TestApplyStockDelta:
    def test_add_to_variant_recomputes_aggregate(self, tee):
        entry = apply_stock_delta(tee.id, "TEE-M", 5, movement_type="add", reason="Restock")
        db.session.commit()

        assert _variant_stock("TEE-M") == 15
        assert _total(tee.id) == 19
        assert _total(tee.id) == _variant_sum(tee.id)
        assert entry.previous_stock == 10
        assert entry.new_stock == 15
        assert entry.quantity == 5
        assert entry.quantity_delta == 5
        assert entry.variant_attributes == [{"name": "Size", "value": "M"}]

    def test_remove_from_variant(self, tee):
        entry = apply_stock_delta(tee.id, "TEE-L", -4, movement_type="remove", reason="Sold offline")
        db.session.commit()

        assert _variant_stock("TEE-L") == 0
        assert _total(tee.id) == 10
        assert entry.new_stock == entry.previous_stock - entry.quantity

    def test_adjustment_logs_negative_delta(self, tee):
        entry = apply_stock_delta(tee.id, "TEE-M", -3, movement_type="adjustment", reason="damaged")
        db.session.commit()

        assert entry.type == "adjustment"
        assert entry.quantity == 3
        assert entry.quantity_delta == -3

    def test_over_large_remove_rejected_and_unchanged(self, tee):
        with pytest.raises(InsufficientStock) as exc_info:
            apply_stock_delta(tee.id, "TEE-L", -10, movement_type="remove", reason="x")
        db.session.rollback()

        assert str(exc_info.value) == "Cannot remove 10 items. Current stock is only 4."
        assert exc_info.value.details["available"] == 4
        assert _variant_stock("TEE-L") == 4
        assert _total(tee.id) == 14
        assert db.session.query(StockLedgerEntry).count() == 0

    def test_variantless_product_mutated_directly(self, mug):
        apply_stock_delta(mug.id, None, 3, movement_type="add", reason="Restock")
        db.session.commit()
        assert _total(mug.id) == 5

        with pytest.raises(InsufficientStock):
            apply_stock_delta(mug.id, None, -6, movement_type="remove", reason="x")
        db.session.rollback()
        assert _total(mug.id) == 5

    def test_variant_product_requires_sku(self, tee):
        with pytest.raises(ValidationError):
            apply_stock_delta(tee.id, None, 1, movement_type="add", reason="x")

    def test_unknown_sku_not_found(self, tee):
        with pytest.raises(NotFound):
            apply_stock_delta(tee.id, "NOPE", 1, movement_type="add", reason="x")

    def test_unknown_product_not_found(self, db_session):
        with pytest.raises(NotFound):
            apply_stock_delta(9999, None, 1, movement_type="add", reason="x")

    def test_zero_delta_rejected(self, mug):
        with pytest.raises(ValidationError):
            apply_stock_delta(mug.id, None, 0, movement_type="add", reason="x")

    def test_movement_type_must_match_sign(self, mug):
        with pytest.raises(ValueError):
            apply_stock_delta(mug.id, None, -1, movement_type="add", reason="x")
        with pytest.raises(ValueError):
            apply_stock_delta(mug.id, None, 1, movement_type="remove", reason="x")

    def test_every_mutation_writes_one_ledger_entry(self, tee):
        apply_stock_delta(tee.id, "TEE-M", 2, movement_type="add", reason="a")
        apply_stock_delta(tee.id, "TEE-M", -1, movement_type="remove", reason="b")
        apply_stock_delta(tee.id, "TEE-L", -1, movement_type="adjustment", reason="lost")
        db.session.commit()

        entries = db.session.query(StockLedgerEntry).order_by(StockLedgerEntry.id).all()
        assert [(e.type, e.previous_stock, e.new_stock) for e in entries] == [
            ("add", 10, 12),
            ("remove", 12, 11),
            ("adjustment", 4, 3),
        ]
        for entry in entries:
            sign = 1 if entry.type == "add" else -1
            assert entry.new_stock == entry.previous_stock + sign * entry.quantity
        assert _total(tee.id) == _variant_sum(tee.id) == 14

    def test_compare_and_set_mismatch_is_stale(self, mug):
        with pytest.raises(StaleDataError):
            apply_stock_delta(mug.id, None, 3, movement_type="add", reason="edit", expected_current=7)
        db.session.rollback()
        assert _total(mug.id) == 2

    def test_variant_writes_lock_parent_product_first(self, tee, mug, monkeypatch):
        locked = []
        monkeypatch.setattr(stock_service, "lock_product_row", locked.append)

        apply_stock_delta(tee.id, "TEE-M", -1, movement_type="remove", reason="sale")
        apply_stock_delta(mug.id, None, -1, movement_type="remove", reason="sale")
        db.session.commit()

        # Variant-less products are guarded by their own conditional UPDATE
        assert locked == [tee.id]


# =============================================================================
# STOCK STATUS
# =============================================================================


class TestStockStatus:
    @pytest.mark.parametrize(
        "quantity,threshold,expected",
        [
            (0, 5, "out_of_stock"),
            (-1, 5, "out_of_stock"),
            (1, 5, "low_stock"),
            (5, 5, "low_stock"),
            (6, 5, "in_stock"),
            (7, 10, "low_stock"),
            (11, 10, "in_stock"),
        ],
    )
    def test_classification(self, quantity, threshold, expected):
        assert classify_stock_status(quantity, threshold) == expected

    def test_threshold_boundary_filter_diverges_from_classification(self, make_product):
        """A variant with threshold 10 and stock 7 is low by status but 'in' by the numeric filter."""
        product = make_product(
            "Jacket",
            variants=[{"sku": "JKT-1", "stock_quantity": 7, "low_stock_threshold": 10}],
            low_stock_threshold=5,
        )

        rows, _ = stock_service.get_inventory(stock_filter="all")
        row = next(r for r in rows if r["id"] == product.id)
        assert row["stock_status"] == "low_stock"
        assert row["variants"][0]["stock_status"] == "low_stock"

        low_ids = [r["id"] for r in stock_service.get_inventory(stock_filter="low")[0]]
        in_ids = [r["id"] for r in stock_service.get_inventory(stock_filter="in")[0]]
        assert product.id not in low_ids
        assert product.id in in_ids

    def test_out_filter_matches_any_empty_variant(self, make_product):
        product = make_product(
            "Socks",
            variants=[
                {"sku": "SOCK-A", "stock_quantity": 0},
                {"sku": "SOCK-B", "stock_quantity": 20},
            ],
        )
        out_ids = [r["id"] for r in stock_service.get_inventory(stock_filter="out")[0]]
        assert product.id in out_ids

    def test_unknown_filter_rejected(self, db_session):
        with pytest.raises(ValidationError):
            stock_service.get_inventory(stock_filter="weird")

    def test_low_stock_products(self, tee, mug, make_product):
        make_product("Plenty", total_stock=50)
        rows = stock_service.get_low_stock_products(5)
        names = {r["name"] for r in rows}
        assert names == {"Tee", "Mug"}
        tee_row = next(r for r in rows if r["name"] == "Tee")
        assert [v["sku"] for v in tee_row["low_stock_variants"]] == ["TEE-L"]


# =============================================================================
# AVAILABILITY AND CONSISTENCY TOOLS
# =============================================================================


class TestAvailabilityAndVerification:
    def test_check_stock_availability(self, tee, mug):
        result = stock_service.check_stock_availability([
            {"product_id": tee.id, "variant_sku": "TEE-M", "quantity": 10},
            {"product_id": mug.id, "variant_sku": None, "quantity": 3},
            {"product_id": 9999, "variant_sku": None, "quantity": 1},
        ])
        assert result["available"] is False
        assert [row["available"] for row in result["items"]] == [True, False, False]
        assert result["items"][1]["available_stock"] == 2
        assert result["items"][2]["error"] == "Product not found"

    def test_verify_detects_and_recompute_repairs(self, tee):
        assert stock_service.verify_stock_invariants() == []

        db.session.query(Product).filter_by(id=tee.id).update({"total_stock": 99})
        db.session.commit()
        violations = stock_service.verify_stock_invariants()
        assert violations == [{
            "kind": "aggregate_mismatch",
            "product_id": tee.id,
            "total_stock": 99,
            "variant_sum": 14,
        }]

        assert stock_service.recompute_all_product_totals() == 1
        db.session.commit()
        assert stock_service.verify_stock_invariants() == []
        assert _total(tee.id) == 14

    def test_increment_total_sold_clamps_at_zero(self, mug):
        stock_service.increment_total_sold(mug.id, 3)
        stock_service.increment_total_sold(mug.id, -5)
        db.session.commit()
        assert db.session.query(Product.total_sold).filter_by(id=mug.id).scalar() == 0
