"""
Pytest fixtures for stockflow backend tests.

Provides the in-memory application, per-test table wipe, test client,
product factories and a recording loyalty/coupon gateway.
"""

import pytest
from stockflow import create_app
from stockflow.extensions import db
from stockflow.models import Product, ProductVariant
from stockflow.services import collaborators
from stockflow.services.products_service import slugify


ACTOR = "admin-1"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOYALTY_SERVICE_URL': None,
        'COUPON_SERVICE_URL': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def actor_headers():
    return {"X-User-Id": ACTOR}


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory for seeded products (no ledger entries).

    make_product("Tee", variants=[{"sku": "TEE-M", "stock_quantity": 10}])
    make_product("Mug", total_stock=2)
    """
    def _make(name, *, price_cents=1000, total_stock=0, variants=None, low_stock_threshold=5):
        product = Product(
            name=name,
            slug=slugify(name),
            price_cents=price_cents,
            total_stock=total_stock,
            total_sold=0,
            low_stock_threshold=low_stock_threshold,
        )
        db_session.add(product)
        for fields in variants or []:
            fields = dict(fields)
            fields.setdefault("attributes", [])
            fields.setdefault("current_price_cents", price_cents)
            db_session.add(ProductVariant(product=product, **fields))
        if variants:
            product.total_stock = sum(v.get("stock_quantity", 0) for v in variants)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def tee(make_product):
    """Product with two variants: TEE-M (10) and TEE-L (4)."""
    return make_product(
        "Tee",
        price_cents=2500,
        variants=[
            {"sku": "TEE-M", "stock_quantity": 10, "attributes": [{"name": "Size", "value": "M"}]},
            {"sku": "TEE-L", "stock_quantity": 4, "attributes": [{"name": "Size", "value": "L"}]},
        ],
    )


@pytest.fixture(scope='function')
def mug(make_product):
    """Variant-less product with stock 2."""
    return make_product("Mug", price_cents=1200, total_stock=2)


class RecordingLoyaltyGateway:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def earn_coins_from_order(self, *, user_id, order_id, items, trigger):
        self.calls.append({"user_id": user_id, "order_id": order_id, "items": items, "trigger": trigger})
        if self.fail:
            raise RuntimeError("loyalty service unavailable")


class RecordingCouponGateway:
    def __init__(self):
        self.codes = []

    def increment_usage(self, code):
        self.codes.append(code)


@pytest.fixture(scope='function')
def loyalty_spy(app, monkeypatch):
    spy = RecordingLoyaltyGateway()
    monkeypatch.setitem(app.extensions, collaborators.LOYALTY_EXTENSION, spy)
    return spy


@pytest.fixture(scope='function')
def coupon_spy(app, monkeypatch):
    spy = RecordingCouponGateway()
    monkeypatch.setitem(app.extensions, collaborators.COUPON_EXTENSION, spy)
    return spy


@pytest.fixture(scope='function')
def failing_loyalty(app, monkeypatch):
    spy = RecordingLoyaltyGateway(fail=True)
    monkeypatch.setitem(app.extensions, collaborators.LOYALTY_EXTENSION, spy)
    return spy
