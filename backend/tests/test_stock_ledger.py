# Overview: Pytest coverage for the stock ledger service.

"""
Stock Ledger Tests

Product.stock only changes through the ledger, every change appends exactly
one movement, and decrements never take stock below zero unless the caller
explicitly asked for clamping.
"""

import pytest

from backoffice.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from backoffice.extensions import db
from backoffice.models import InventoryMovement, Product, Replenishment, Supplier
from backoffice.services import stock_ledger_service


def _movements(product_id):
    return (
        db.session.query(InventoryMovement)
        .filter_by(product_id=product_id)
        .order_by(InventoryMovement.id)
        .all()
    )


class TestAdjust:
    """adjust(product_id, delta, reason, source_ref) -> previous/new stock."""

    def test_initial_stock_is_a_ledger_movement(self, db_session, product):
        """Opening quantity at product creation is recorded as an `initial` movement."""
        movements = _movements(product.id)
        assert len(movements) == 1
        assert movements[0].reason == "initial"
        assert movements[0].quantity_delta == 5
        assert product.stock == 5

    def test_decrement_returns_previous_and_new(self, db_session, product):
        result = stock_ledger_service.adjust(product.id, -3, "sale", 42)

        assert result.previous_stock == 5
        assert result.new_stock == 2
        assert db.session.get(Product, product.id).stock == 2

        last = _movements(product.id)[-1]
        assert last.quantity_delta == -3
        assert last.reason == "sale"
        assert last.source_ref == "42"

    def test_sale_then_cancellation_round_trip(self, db_session, product):
        """-n for a sale and +n for its cancellation leaves stock unchanged."""
        before = product.stock
        stock_ledger_service.adjust(product.id, -4, "sale", 7)
        stock_ledger_service.adjust(product.id, 4, "cancellation", 7)

        assert db.session.get(Product, product.id).stock == before

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_ledger_service.adjust(99999, -1, "sale", 1)

    def test_insufficient_stock_is_rejected(self, db_session, product):
        """Strict decrements fail instead of going negative; nothing is recorded."""
        with pytest.raises(InsufficientStockError) as exc:
            stock_ledger_service.adjust(product.id, -6, "sale", 1)

        assert exc.value.available == 5
        assert exc.value.requested == 6
        assert exc.value.status_code == 409
        assert db.session.get(Product, product.id).stock == 5
        assert len(_movements(product.id)) == 1

    def test_clamped_decrement_stops_at_zero(self, db_session, product):
        result = stock_ledger_service.adjust(product.id, -8, "adjustment", clamp=True)

        assert result.new_stock == 0
        assert result.quantity_delta == -5

    def test_unknown_reason(self, db_session, product):
        with pytest.raises(ValidationError):
            stock_ledger_service.adjust(product.id, 1, "gift", None)

    def test_replayed_source_ref_is_not_applied_twice(self, db_session, product):
        """Same (reason, source_ref, product) replays the first result."""
        first = stock_ledger_service.adjust(product.id, -2, "sale", 100)
        second = stock_ledger_service.adjust(product.id, -2, "sale", 100)

        assert second.replayed is True
        assert second.movement_id == first.movement_id
        assert db.session.get(Product, product.id).stock == 3
        assert len(_movements(product.id)) == 2

    def test_replayed_key_with_different_delta_conflicts(self, db_session, product):
        stock_ledger_service.adjust(product.id, -2, "sale", 100)
        with pytest.raises(ConflictError):
            stock_ledger_service.adjust(product.id, -3, "sale", 100)


class TestGetStock:
    def test_follows_ledger(self, db_session, product):
        stock_ledger_service.adjust(product.id, -2, "sale", 9)
        assert stock_ledger_service.get_stock(product.id) == 3

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_ledger_service.get_stock(99999)


class TestDirectWritesForbidden:
    """The stock column has no public setter."""

    def test_assignment_raises(self, db_session, product):
        with pytest.raises(AttributeError):
            product.stock = 50

    def test_constructor_raises(self, db_session):
        with pytest.raises(AttributeError):
            Product(name="X", sku="X-1", price_cents=100, stock=3)

    def test_movements_are_append_only(self, db_session, product):
        movement = _movements(product.id)[0]
        movement.notes = "rewritten"
        with pytest.raises(ValueError):
            db.session.flush()
        db.session.rollback()


class TestSetAndBulk:
    def test_set_stock_records_one_delta(self, db_session, product):
        updated, result = stock_ledger_service.set_stock(product.id, 12, "Inventaire", notes="Comptage")

        assert updated.stock == 12
        assert result.previous_stock == 5
        assert result.quantity_delta == 7
        last = _movements(product.id)[-1]
        assert last.reason == "adjustment"
        assert "Inventaire" in last.notes

    def test_set_stock_negative_clamps_to_zero(self, db_session, product):
        updated, result = stock_ledger_service.set_stock(product.id, -4, "Casse")
        assert updated.stock == 0
        assert result.quantity_delta == -5

    def test_bulk_rows_fail_independently(self, db_session, make_product):
        a = make_product(stock=10)
        b = make_product(stock=3)

        results = stock_ledger_service.bulk_adjust([
            {"product_id": a.id, "type": "add", "adjustment": 5},
            {"product_id": b.id, "type": "remove", "adjustment": 7},
            {"product_id": 99999, "type": "set", "adjustment": 1},
            {"product_id": a.id, "type": "explode", "adjustment": 1},
        ])

        assert [r["success"] for r in results] == [True, True, False, False]
        assert results[0]["new_stock"] == 15
        assert results[1]["new_stock"] == 0  # remove clamps at zero
        assert db.session.get(Product, a.id).stock == 15
        assert db.session.get(Product, b.id).stock == 0

    def test_bulk_set_same_product_twice(self, db_session, product):
        results = stock_ledger_service.bulk_adjust([
            {"product_id": product.id, "type": "set", "adjustment": 20},
            {"product_id": product.id, "type": "remove", "adjustment": 4},
        ])
        assert results[1]["previous_stock"] == 20
        assert db.session.get(Product, product.id).stock == 16


class TestReceive:
    def test_receive_creates_replenishment_and_movement(self, db_session, product):
        supplier = Supplier(name="Grossiste")
        db_session.add(supplier)
        db_session.commit()

        rep = stock_ledger_service.receive(
            product_id=product.id,
            quantity=24,
            unit_cost_cents=300,
            supplier_id=supplier.id,
            delivery_cost_cents=500,
            receipt_number="BL-1",
        )

        assert rep.total_cost_cents == 24 * 300 + 500
        assert db.session.get(Product, product.id).stock == 29
        last = _movements(product.id)[-1]
        assert last.reason == "replenishment"
        assert last.source_ref == f"replenishment:{rep.id}"

    def test_receive_unknown_supplier_writes_nothing(self, db_session, product):
        with pytest.raises(NotFoundError):
            stock_ledger_service.receive(product_id=product.id, quantity=1, unit_cost_cents=1, supplier_id=404)
        assert db.session.query(Replenishment).count() == 0
        assert db.session.get(Product, product.id).stock == 5


class TestListMovements:
    def test_filters_and_order(self, db_session, product, make_product):
        other = make_product(stock=2)
        stock_ledger_service.adjust(product.id, -1, "sale", 1)
        stock_ledger_service.adjust(product.id, 1, "cancellation", 1)

        movements = stock_ledger_service.list_movements(product_id=product.id)
        assert [m.reason for m in movements] == ["cancellation", "sale", "initial"]

        sales_only = stock_ledger_service.list_movements(reason="sale")
        assert len(sales_only) == 1
        assert all(m.product_id != other.id for m in sales_only)
