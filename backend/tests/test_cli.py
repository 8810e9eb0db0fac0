"""
CLI tests.

Verifies:
- inventory verify passes on consistent data and exits 1 on drift
- recompute-totals repairs drifted aggregates
- low-stock lists products and their low variants
"""

from stockflow.extensions import db
from stockflow.models import Product


class TestInventoryCommands:
    def test_verify_ok(self, app, tee):
        result = app.test_cli_runner().invoke(args=["inventory", "verify"])
        assert result.exit_code == 0
        assert "OK" in result.output

    def test_verify_reports_drift_then_recompute_fixes(self, app, tee):
        db.session.query(Product).filter_by(id=tee.id).update({"total_stock": 3})
        db.session.commit()

        runner = app.test_cli_runner()
        result = runner.invoke(args=["inventory", "verify"])
        assert result.exit_code == 1
        assert "aggregate_mismatch" in result.output

        result = runner.invoke(args=["inventory", "recompute-totals"])
        assert result.exit_code == 0
        assert "1 product(s)" in result.output
        assert db.session.get(Product, tee.id).total_stock == 14

        assert runner.invoke(args=["inventory", "verify"]).exit_code == 0

    def test_low_stock(self, app, tee, mug):
        result = app.test_cli_runner().invoke(args=["inventory", "low-stock", "--threshold", "5"])
        assert result.exit_code == 0
        assert "Mug" in result.output
        assert "TEE-L: 4" in result.output

    def test_reset_requires_confirmation(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "reset-db"])
        assert result.exit_code != 0
