# Overview: Pytest coverage for sale creation, edits, cancellation and returns.

"""
Sales Workflow Tests

Covers the all-or-nothing sale transaction (sale + items + ledger + promo),
the best-effort side effects that follow it (cash session, activity log),
the cancellation window and the bounds on partial returns.
"""

from datetime import timedelta

import pytest

from backoffice.errors import (
    CancellationWindowError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    PromoBelowMinimumError,
    ValidationError,
)
from backoffice.extensions import db
from backoffice.models import ActivityLog, InventoryMovement, Product, PromoCode, Sale
from backoffice.services import cash_session_service, sales_service
from backoffice.time_utils import utcnow


def _sale_payload(*lines, payment_method="cash", **extra):
    payload = {
        "items": [{"product_id": p.id, "quantity": q} for p, q in lines],
        "payment_method": payment_method,
    }
    payload.update(extra)
    return payload


def _stock(product_id):
    return db.session.get(Product, product_id).stock


def _side_effect(outcome, name):
    return next(e for e in outcome.side_effects if e.name == name)


class TestCreateSale:
    def test_sale_decrements_stock_through_ledger(self, db_session, product):
        """Stock 5, sell 3: stock 2 and one `sale` movement of -3."""
        outcome = sales_service.create_sale(_sale_payload((product, 3)))
        sale = outcome.sale

        assert sale.status == "completed"
        assert sale.total_cents == 3000
        assert sale.final_cents == 3000
        assert sale.reference == f"V-{sale.id:06d}"
        assert _stock(product.id) == 2

        movements = db.session.query(InventoryMovement).filter_by(reason="sale").all()
        assert len(movements) == 1
        assert movements[0].quantity_delta == -3
        assert movements[0].source_ref == str(sale.id)

    def test_insufficient_stock_rolls_back_everything(self, db_session, make_product):
        plenty = make_product(stock=5)
        scarce = make_product(stock=1)

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_sale(_sale_payload((plenty, 2), (scarce, 3)))

        assert exc.value.product_id == scarce.id
        assert db.session.query(Sale).count() == 0
        assert db.session.query(InventoryMovement).filter_by(reason="sale").count() == 0
        assert _stock(plenty.id) == 5
        assert _stock(scarce.id) == 1

    def test_same_product_on_two_lines_is_checked_in_total(self, db_session, product):
        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(_sale_payload((product, 3), (product, 3)))
        assert _stock(product.id) == 5

    def test_empty_sale_rejected(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.create_sale({"items": [], "payment_method": "cash"})

    def test_unknown_payment_method(self, db_session, product):
        with pytest.raises(ValidationError):
            sales_service.create_sale(_sale_payload((product, 1), payment_method="bitcoin"))

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            sales_service.create_sale({"items": [{"product_id": 4242, "quantity": 1}], "payment_method": "cash"})

    def test_unknown_customer(self, db_session, product):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(_sale_payload((product, 1), customer_id=4242))
        assert _stock(product.id) == 5

    def test_line_discount_cannot_exceed_line(self, db_session, product):
        payload = {
            "items": [{"product_id": product.id, "quantity": 1, "discount_cents": 1500}],
            "payment_method": "card",
        }
        with pytest.raises(ValidationError):
            sales_service.create_sale(payload)

    def test_promo_code_applied_and_redeemed(self, db_session, product, save10):
        outcome = sales_service.create_sale(_sale_payload((product, 2), promo_code="save10"))

        assert outcome.sale.discount_cents == 200
        assert outcome.sale.final_cents == 1800
        assert outcome.sale.promo_code == "SAVE10"
        assert db.session.get(PromoCode, save10.id).used_count == 1

    def test_unusable_promo_rolls_back_sale(self, db_session, make_product, save10):
        cheap = make_product(stock=5, price_cents=300)
        with pytest.raises(PromoBelowMinimumError):
            sales_service.create_sale(_sale_payload((cheap, 1), promo_code="SAVE10"))

        assert db.session.query(Sale).count() == 0
        assert _stock(cheap.id) == 5
        assert db.session.get(PromoCode, save10.id).used_count == 0

    def test_idempotency_key_replays(self, db_session, product):
        first = sales_service.create_sale(_sale_payload((product, 1)), idempotency_key="k-1")
        second = sales_service.create_sale(_sale_payload((product, 1)), idempotency_key="k-1")

        assert second.replayed is True
        assert second.sale.id == first.sale.id
        assert db.session.query(Sale).count() == 1
        assert _stock(product.id) == 4

    def test_idempotency_key_reused_for_other_items_conflicts(self, db_session, product):
        first = sales_service.create_sale(_sale_payload((product, 1)), idempotency_key="k-2")

        with pytest.raises(ConflictError) as exc:
            sales_service.create_sale(_sale_payload((product, 2)), idempotency_key="k-2")

        assert exc.value.details["sale_id"] == first.sale.id
        assert exc.value.details["fields"] == ["items"]
        assert db.session.query(Sale).count() == 1
        assert _stock(product.id) == 4

    def test_idempotency_key_reused_for_other_amounts_conflicts(self, db_session, product):
        sales_service.create_sale(_sale_payload((product, 1)), idempotency_key="k-3")

        payload = {
            "items": [{"product_id": product.id, "quantity": 1, "unit_price_cents": 500}],
            "payment_method": "card",
        }
        with pytest.raises(ConflictError) as exc:
            sales_service.create_sale(payload, idempotency_key="k-3")

        assert set(exc.value.details["fields"]) == {"payment_method", "amounts"}


class TestSideEffects:
    def test_cash_sale_is_booked_to_open_session(self, db_session, product):
        session = cash_session_service.open_session(5000)

        outcome = sales_service.create_sale(_sale_payload((product, 2)))

        assert _side_effect(outcome, "cash_session").ok
        refreshed = cash_session_service.get_session(session.id)
        assert refreshed.accumulated_sales_cents == 2000
        assert refreshed.sales_count == 1
        assert outcome.sale.cash_session_id == session.id

    def test_card_sale_is_not_booked(self, db_session, product):
        session = cash_session_service.open_session(0)
        outcome = sales_service.create_sale(_sale_payload((product, 1), payment_method="card"))

        assert all(e.name != "cash_session" for e in outcome.side_effects)
        assert cash_session_service.get_session(session.id).accumulated_sales_cents == 0

    def test_no_open_session_does_not_fail_sale(self, db_session, product):
        outcome = sales_service.create_sale(_sale_payload((product, 1)))

        effect = _side_effect(outcome, "cash_session")
        assert effect.ok is False
        assert effect.error == "NoOpenSession"
        assert outcome.sale.id is not None
        assert _stock(product.id) == 4

    def test_activity_logged(self, db_session, product, cashier):
        outcome = sales_service.create_sale(_sale_payload((product, 1)), user_id=cashier.id)

        assert _side_effect(outcome, "activity_log").ok
        entry = db.session.query(ActivityLog).filter_by(action="SALE_CREATED").one()
        assert entry.entity_id == outcome.sale.id
        assert entry.user_id == cashier.id

    def test_failing_side_effect_is_reported_not_raised(self, db_session, product, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("drawer offline")

        monkeypatch.setattr(cash_session_service, "add_sales_amount", boom)
        outcome = sales_service.create_sale(_sale_payload((product, 1)))

        effect = _side_effect(outcome, "cash_session")
        assert effect.ok is False
        assert db.session.get(Sale, outcome.sale.id) is not None


class TestCancelSale:
    def test_cancel_restores_stock(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 3))).sale
        outcome = sales_service.cancel_sale(sale.id, reason="Erreur de saisie")

        assert outcome.sale.status == "cancelled"
        assert outcome.sale.cancel_reason == "Erreur de saisie"
        assert _stock(product.id) == 5
        restock = db.session.query(InventoryMovement).filter_by(reason="cancellation").one()
        assert restock.quantity_delta == 3

    def test_cancel_within_window(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 1))).sale
        sale.sold_at = utcnow() - timedelta(hours=1)
        db.session.commit()

        assert sales_service.cancel_sale(sale.id).sale.status == "cancelled"

    def test_cancel_after_window_rejected(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 1))).sale
        sale.sold_at = utcnow() - timedelta(hours=25)
        db.session.commit()

        with pytest.raises(CancellationWindowError) as exc:
            sales_service.cancel_sale(sale.id)

        assert "24 heures" in exc.value.message
        assert db.session.get(Sale, sale.id).status == "completed"
        assert _stock(product.id) == 4

    def test_cancel_twice_conflicts(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 1))).sale
        sales_service.cancel_sale(sale.id)
        with pytest.raises(ConflictError):
            sales_service.cancel_sale(sale.id)
        assert _stock(product.id) == 5

    def test_cancel_unbooks_cash(self, db_session, product):
        session = cash_session_service.open_session(0)
        sale = sales_service.create_sale(_sale_payload((product, 2))).sale

        outcome = sales_service.cancel_sale(sale.id)

        assert _side_effect(outcome, "cash_session").ok
        refreshed = cash_session_service.get_session(session.id)
        assert refreshed.accumulated_sales_cents == 0
        assert refreshed.sales_count == 0

    def test_cancel_after_partial_return_restores_the_rest(self, db_session, product):
        session = cash_session_service.open_session(0)
        sale = sales_service.create_sale(_sale_payload((product, 3))).sale
        item_id = sale.items[0].id
        sales_service.process_return(sale.id, {"reason": "Défaut", "items": [{"item_id": item_id, "quantity": 1}]})

        sales_service.cancel_sale(sale.id)

        assert _stock(product.id) == 5
        assert cash_session_service.get_session(session.id).accumulated_sales_cents == 0


class TestReturns:
    def test_partial_return(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 3))).sale
        item_id = sale.items[0].id

        outcome = sales_service.process_return(
            sale.id, {"reason": "Défaut", "items": [{"item_id": item_id, "quantity": 1}]}
        )

        assert outcome.sale.status == "partially_returned"
        assert outcome.sale_return.refund_cents == 1000
        assert outcome.sale.items[0].returned_quantity == 1
        assert outcome.sale.items[0].quantity == 3
        assert _stock(product.id) == 3

    def test_cumulative_returns_bounded_by_quantity_sold(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 3))).sale
        item_id = sale.items[0].id
        sales_service.process_return(sale.id, {"reason": "Défaut", "items": [{"item_id": item_id, "quantity": 2}]})

        with pytest.raises(ValidationError) as exc:
            sales_service.process_return(sale.id, {"reason": "Défaut", "items": [{"item_id": item_id, "quantity": 2}]})
        assert exc.value.details["returnable"] == 1

        last = sales_service.process_return(
            sale.id, {"reason": "Défaut", "items": [{"item_id": item_id, "quantity": 1}]}
        )
        assert last.sale.fully_returned is True
        assert last.sale.status == "partially_returned"
        assert _stock(product.id) == 5

    def test_refund_total_capped_by_amount_paid(self, db_session, product, save10):
        sale = sales_service.create_sale(_sale_payload((product, 3), promo_code="SAVE10")).sale
        assert sale.final_cents == 2700

        outcome = sales_service.process_return(
            sale.id, {"reason": "Retour", "items": [{"item_id": sale.items[0].id, "quantity": 3}]}
        )
        assert outcome.sale_return.refund_cents == 2700

    def test_reason_required(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 1))).sale
        with pytest.raises(ValidationError):
            sales_service.process_return(sale.id, {"items": [{"item_id": sale.items[0].id, "quantity": 1}]})

    def test_item_from_another_sale(self, db_session, product):
        a = sales_service.create_sale(_sale_payload((product, 1))).sale
        b = sales_service.create_sale(_sale_payload((product, 1))).sale
        with pytest.raises(ValidationError):
            sales_service.process_return(a.id, {"reason": "x", "items": [{"item_id": b.items[0].id, "quantity": 1}]})

    def test_cancelled_sale_rejects_returns(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 2))).sale
        item_id = sale.items[0].id
        sales_service.cancel_sale(sale.id)

        with pytest.raises(ConflictError):
            sales_service.process_return(sale.id, {"reason": "x", "items": [{"item_id": item_id, "quantity": 1}]})
        assert _stock(product.id) == 5

    def test_cash_refund_leaves_sale_count(self, db_session, product):
        session = cash_session_service.open_session(0)
        sale = sales_service.create_sale(_sale_payload((product, 2))).sale
        sales_service.process_return(sale.id, {"reason": "x", "items": [{"item_id": sale.items[0].id, "quantity": 1}]})

        refreshed = cash_session_service.get_session(session.id)
        assert refreshed.accumulated_sales_cents == 1000
        assert refreshed.sales_count == 1


    def test_discounted_partial_returns_refund_what_was_paid(self, db_session, product, save10):
        """2 x 1000 with SAVE10 pays 1800: each unit returned gives back 900."""
        sale = sales_service.create_sale(_sale_payload((product, 2), promo_code="SAVE10")).sale
        item_id = sale.items[0].id
        assert sale.final_cents == 1800

        first = sales_service.process_return(sale.id, {"reason": "x", "items": [{"item_id": item_id, "quantity": 1}]})
        second = sales_service.process_return(sale.id, {"reason": "x", "items": [{"item_id": item_id, "quantity": 1}]})

        for outcome in (first, second):
            assert outcome.sale_return.refund_cents == 900
            assert sum(row.refund_cents for row in outcome.sale_return.items) == outcome.sale_return.refund_cents

    def test_taxed_full_return_refunds_tax_and_empties_drawer(self, app, db_session, product, monkeypatch):
        monkeypatch.setitem(app.config, "DEFAULT_TAX_RATE_BPS", 1000)
        session = cash_session_service.open_session(0)
        sale = sales_service.create_sale(_sale_payload((product, 1))).sale
        assert sale.final_cents == 1100

        outcome = sales_service.process_return(
            sale.id, {"reason": "x", "items": [{"item_id": sale.items[0].id, "quantity": 1}]}
        )

        assert outcome.sale_return.refund_cents == 1100
        assert outcome.sale_return.items[0].refund_cents == 1100
        assert cash_session_service.get_session(session.id).accumulated_sales_cents == 0

    def test_discount_spread_over_lines_sums_to_paid(self, db_session, make_product, save10):
        """Promo discount is shared between lines pro rata; full returns add up to final_cents."""
        a = make_product(stock=5, price_cents=1000)
        b = make_product(stock=5, price_cents=333)
        sale = sales_service.create_sale(_sale_payload((a, 1), (b, 3), promo_code="SAVE10")).sale
        assert sale.final_cents == 1799

        outcome = sales_service.process_return(sale.id, {
            "reason": "x",
            "items": [{"item_id": item.id, "quantity": item.quantity} for item in sale.items],
        })

        rows = sorted(outcome.sale_return.items, key=lambda r: r.sale_item_id)
        assert [r.refund_cents for r in rows] == [900, 899]
        assert outcome.sale_return.refund_cents == 1799


class TestUpdateSale:
    def test_item_quantities_reconciled(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 2), payment_method="card")).sale

        outcome = sales_service.update_sale(sale.id, {"items": [{"product_id": product.id, "quantity": 4}]})

        assert outcome.sale.total_cents == 4000
        assert outcome.sale.final_cents == 4000
        assert _stock(product.id) == 1
        edit = db.session.query(InventoryMovement).filter_by(reason="sale_edit").one()
        assert edit.quantity_delta == -2

    def test_edit_beyond_stock_rolls_back(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 2), payment_method="card")).sale
        with pytest.raises(InsufficientStockError):
            sales_service.update_sale(sale.id, {"items": [{"product_id": product.id, "quantity": 9}]})

        assert db.session.get(Sale, sale.id).total_cents == 2000
        assert _stock(product.id) == 3

    def test_cancelled_sale_is_frozen(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 1))).sale
        sales_service.cancel_sale(sale.id)
        with pytest.raises(ConflictError):
            sales_service.update_sale(sale.id, {"notes": "trop tard"})

    def test_items_locked_after_return(self, db_session, product):
        sale = sales_service.create_sale(_sale_payload((product, 2))).sale
        sales_service.process_return(sale.id, {"reason": "x", "items": [{"item_id": sale.items[0].id, "quantity": 1}]})
        with pytest.raises(ConflictError):
            sales_service.update_sale(sale.id, {"items": [{"product_id": product.id, "quantity": 1}]})

    def test_promo_dropped_when_edit_falls_below_minimum(self, db_session, make_product, save10):
        """SAVE10 needs 1000: editing 2 x 600 down to 1 x 600 removes the discount."""
        item = make_product(stock=5, price_cents=600)
        sale = sales_service.create_sale(_sale_payload((item, 2), payment_method="card", promo_code="SAVE10")).sale
        assert sale.discount_cents == 120

        outcome = sales_service.update_sale(sale.id, {"items": [{"product_id": item.id, "quantity": 1}]})

        assert outcome.sale.total_cents == 600
        assert outcome.sale.discount_cents == 0
        assert outcome.sale.final_cents == 600

    def test_cash_rebooked_on_amount_change(self, db_session, product):
        session = cash_session_service.open_session(0)
        sale = sales_service.create_sale(_sale_payload((product, 1))).sale

        sales_service.update_sale(sale.id, {"items": [{"product_id": product.id, "quantity": 3}]})

        refreshed = cash_session_service.get_session(session.id)
        assert refreshed.accumulated_sales_cents == 3000
        assert refreshed.sales_count == 1
