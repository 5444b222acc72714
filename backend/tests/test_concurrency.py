# Overview: Pytest coverage for concurrent sales against a file-backed SQLite database.

"""
Concurrency Tests

Two cashiers sell the last unit at the same moment. The in-memory test
database shares a single connection, so these tests run a separate app on a
file database where each thread gets its own connection and BEGIN IMMEDIATE
actually serializes the writers.
"""

import threading

import pytest

from backoffice import create_app
from backoffice.config import TestConfig
from backoffice.errors import InsufficientStockError
from backoffice.extensions import db
from backoffice.models import InventoryMovement, Product, Sale
from backoffice.services import catalog_service, sales_service


@pytest.fixture
def file_app(tmp_path):
    app = create_app(TestConfig, {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 15}},
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _sell_concurrently(app, product_id, quantity, workers):
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                barrier.wait()
                sales_service.create_sale({
                    "items": [{"product_id": product_id, "quantity": quantity}],
                    "payment_method": "card",
                })
                result = "ok"
            except InsufficientStockError:
                result = "insufficient"
            except Exception as exc:  # surfaced in the assertion message
                result = repr(exc)
            finally:
                db.session.remove()
            with lock:
                outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


class TestLastUnit:
    def test_only_one_sale_wins_the_last_unit(self, file_app):
        with file_app.app_context():
            product_id = catalog_service.create_product(
                {"name": "Dernier", "sku": "LAST-1", "price_cents": 500, "stock": 1}
            ).id
            db.session.remove()

        outcomes = _sell_concurrently(file_app, product_id, 1, workers=2)

        assert sorted(outcomes) == ["insufficient", "ok"], outcomes
        with file_app.app_context():
            assert db.session.get(Product, product_id).stock == 0
            assert db.session.query(Sale).count() == 1
            assert db.session.query(InventoryMovement).filter_by(reason="sale").count() == 1

    def test_stock_never_negative_under_load(self, file_app):
        with file_app.app_context():
            product_id = catalog_service.create_product(
                {"name": "Lot", "sku": "LOT-1", "price_cents": 100, "stock": 5}
            ).id
            db.session.remove()

        outcomes = _sell_concurrently(file_app, product_id, 2, workers=4)

        assert outcomes.count("ok") == 2, outcomes
        assert outcomes.count("insufficient") == 2, outcomes
        with file_app.app_context():
            assert db.session.get(Product, product_id).stock == 1
