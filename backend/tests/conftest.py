"""
Pytest fixtures for back office tests.

Provides test database setup, catalog fixtures, and test client.
"""

import pytest

from backoffice import create_app
from backoffice.config import TestConfig
from backoffice.extensions import db
from backoffice.models import Customer, PromoCode, User
from backoffice.services import catalog_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def cashier(db_session):
    user = User(username="cashier", full_name="Caissier", role="cashier")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: products are created through the catalog so opening stock hits the ledger."""
    counter = {"n": 0}

    def _make(stock=10, price_cents=1000, min_stock=0, **extra):
        counter["n"] += 1
        payload = {
            "name": extra.pop("name", f"Produit {counter['n']}"),
            "sku": extra.pop("sku", f"SKU-{counter['n']:04d}"),
            "price_cents": price_cents,
            "min_stock": min_stock,
            "stock": stock,
        }
        payload.update(extra)
        return catalog_service.create_product(payload)

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product(stock=5, price_cents=1000, name="Savon", sku="SAV-001")


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Awa Diop", phone="770000000")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def save10(db_session):
    """SAVE10: 10% off orders of at least 1000 cents."""
    promo = PromoCode(code="SAVE10", promo_type="percentage", value=10, min_amount_cents=1000)
    db_session.add(promo)
    db_session.commit()
    return promo


def user_headers(user) -> dict:
    """Helper to attribute a request to a user."""
    return {'X-User-Id': str(user.id)}
