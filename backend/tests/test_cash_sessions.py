# Overview: Pytest coverage for cash session lifecycle and bookkeeping.

import pytest
from sqlalchemy.exc import IntegrityError

from backoffice.errors import ConflictError, NotFoundError, ValidationError
from backoffice.extensions import db
from backoffice.models import CashSession
from backoffice.services import cash_session_service


class TestLifecycle:
    """none-open -> open -> closed; closed sessions are never reopened."""

    def test_open_then_current(self, db_session):
        session = cash_session_service.open_session(10000)

        current = cash_session_service.current_session()
        assert current.id == session.id
        assert current.expected_cents == 10000

    def test_second_open_conflicts(self, db_session):
        cash_session_service.open_session(10000)
        with pytest.raises(ConflictError):
            cash_session_service.open_session(5000)
        assert db.session.query(CashSession).count() == 1

    def test_database_rejects_two_open_rows(self, db_session):
        """Partial unique index backs the service check."""
        db_session.add(CashSession(status="open", opening_cents=0))
        db_session.commit()
        db_session.add(CashSession(status="open", opening_cents=0))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_negative_opening_amount(self, db_session):
        with pytest.raises(ValidationError):
            cash_session_service.open_session(-1)

    def test_close_records_variance(self, db_session):
        cash_session_service.open_session(10000)
        cash_session_service.add_sales_amount(2500)
        cash_session_service.add_sales_amount(1500)

        closed = cash_session_service.close_session(13500, notes="Fin de journée")

        assert closed.status == "closed"
        assert closed.expected_cents == 14000
        assert closed.variance_cents == -500
        assert closed.closing_cents == 13500
        assert cash_session_service.current_session() is None

    def test_close_without_open_session(self, db_session):
        with pytest.raises(NotFoundError):
            cash_session_service.close_session(0)

    def test_new_session_after_close(self, db_session):
        first = cash_session_service.open_session(100)
        cash_session_service.close_session(100)
        second = cash_session_service.open_session(200)

        assert second.id != first.id
        assert [s.id for s in cash_session_service.session_history()] == [second.id, first.id]

    def test_count_keeps_session_open(self, db_session):
        cash_session_service.open_session(5000)
        cash_session_service.add_sales_amount(1000)

        counted = cash_session_service.count_session(6200)

        assert counted.status == "open"
        assert counted.counted_cents == 6200
        assert counted.variance_cents == 200

    def test_close_checks_session_id(self, db_session):
        session = cash_session_service.open_session(0)

        with pytest.raises(ConflictError) as exc:
            cash_session_service.close_session(0, session_id=session.id + 1)

        assert exc.value.details["open_session_id"] == session.id
        assert cash_session_service.current_session().id == session.id
        assert cash_session_service.close_session(0, session_id=session.id).status == "closed"

    def test_count_with_matching_session_id(self, db_session):
        session = cash_session_service.open_session(300)
        counted = cash_session_service.count_session(300, session_id=session.id)
        assert counted.variance_cents == 0

        with pytest.raises(ConflictError):
            cash_session_service.count_session(300, session_id=session.id + 1)


class TestUpdateSession:
    def test_notes_and_float_while_open(self, db_session):
        session = cash_session_service.open_session(1000)

        updated = cash_session_service.update_session(session.id, notes="Recompté", opening_cents=1500)

        assert updated.notes == "Recompté"
        assert updated.expected_cents == 1500

    def test_closed_session_keeps_its_float(self, db_session):
        session = cash_session_service.open_session(1000)
        cash_session_service.close_session(1000)

        with pytest.raises(ConflictError):
            cash_session_service.update_session(session.id, opening_cents=0)

        updated = cash_session_service.update_session(session.id, notes="Écart expliqué")
        assert updated.notes == "Écart expliqué"
        assert updated.opening_cents == 1000

    def test_unknown_session(self, db_session):
        with pytest.raises(NotFoundError):
            cash_session_service.update_session(404, notes="x")

    def test_negative_float(self, db_session):
        session = cash_session_service.open_session(0)
        with pytest.raises(ValidationError):
            cash_session_service.update_session(session.id, opening_cents=-1)


class TestSalesBookkeeping:
    def test_add_without_open_session_is_silent(self, db_session):
        assert cash_session_service.add_sales_amount(1000) is None

    def test_add_and_remove(self, db_session):
        session = cash_session_service.open_session(0)
        cash_session_service.add_sales_amount(3000)
        cash_session_service.remove_sales_amount(1000, session_id=session.id)

        refreshed = cash_session_service.get_session(session.id)
        assert refreshed.accumulated_sales_cents == 2000
        assert refreshed.sales_count == 0

    def test_remove_from_closed_session_is_ignored(self, db_session):
        session = cash_session_service.open_session(0)
        cash_session_service.add_sales_amount(3000)
        cash_session_service.close_session(3000)
        cash_session_service.open_session(0)

        assert cash_session_service.remove_sales_amount(3000, session_id=session.id) is None
        assert cash_session_service.get_session(session.id).accumulated_sales_cents == 3000
