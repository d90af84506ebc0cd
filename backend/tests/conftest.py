"""
Pytest fixtures for posledger backend tests.

Provides test database setup, a pinned business clock, catalog factories and
the Flask test client.
"""

import itertools
from datetime import datetime, timedelta

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.models import Product
from posledger.services import material_service, recipe_service
from posledger.time_utils import BusinessClock


PINNED_NOW = datetime(2026, 10, 19, 10, 0, 0)


class FixedClock(BusinessClock):
    """BusinessClock whose 'now' only moves when a test moves it."""

    def __init__(self, moment: datetime, tz_name: str = "UTC"):
        super().__init__(tz_name)
        self.moment = moment

    def now(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> datetime:
        self.moment = self.moment + timedelta(**kwargs)
        return self.moment


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'INITIAL_ORDER_SEQUENCE': 0,
        'BUSINESS_TIMEZONE': 'UTC',
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(autouse=True)
def clock(app):
    """Pin 'now' to PINNED_NOW for every test."""
    original = app.extensions["business_clock"]
    fixed = FixedClock(PINNED_NOW)
    app.extensions["business_clock"] = fixed
    yield fixed
    app.extensions["business_clock"] = original


@pytest.fixture(scope='function')
def client(app, db_session):
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


@pytest.fixture
def make_product(db_session):
    def _make(name="Pearl Milk Tea", price_cents=6000, category="milk-tea"):
        product = Product(name=name, price_cents=price_cents, category=category, is_active=True)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def make_material(db_session):
    def _make(name="Tapioca pearls", unit="g", stock="1000", threshold="200"):
        return material_service.create_material(
            name=name, unit=unit, current_stock=stock, alert_threshold=threshold,
        )
    return _make


@pytest.fixture
def set_recipe(db_session):
    def _set(product, rows):
        """rows: {material: per-unit quantity}"""
        return recipe_service.update_recipes(product.id, [
            {"material_id": material.id, "quantity": str(qty)}
            for material, qty in rows.items()
        ])
    return _set


@pytest.fixture
def order_payload():
    """
    Build an order payload. Each call gets a distinct ordered_at one second
    after the previous one unless ordered_at is given.
    """
    ticks = itertools.count()

    def _build(items=None, **fields):
        payload = {
            "items": items if items is not None else [
                {"product_name": "Black Tea", "unit_price_cents": 3000, "quantity": 1},
            ],
            "ordered_at": (PINNED_NOW + timedelta(seconds=next(ticks))).isoformat() + "Z",
        }
        payload.update(fields)
        return payload
    return _build
