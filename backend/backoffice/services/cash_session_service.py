"""
Cash Session Service

WHY: Track the drawer for the current shift: opening float, cash-paid sales
booked while the session is open, and the counted amount at close so the
variance (counted - expected) is recorded.

DESIGN PRINCIPLES:
- At most one session is open at any time (service check + partial unique index)
- Closed sessions are immutable; the next shift opens a new row
- Sales totals are updated under a row lock so concurrent sales do not lose
  increments
- Sales bookkeeping is called by the sale workflow AFTER the sale commits;
  a failure here never undoes a sale (the caller records it as a side effect)
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CashSession
from ..models.cash import SESSION_STATUS_CLOSED, SESSION_STATUS_OPEN
from ..time_utils import utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry


logger = logging.getLogger(__name__)


def current_session() -> CashSession | None:
    """The open session, or None."""
    return db.session.query(CashSession).filter_by(status=SESSION_STATUS_OPEN).first()


def get_session(session_id: int) -> CashSession:
    session = db.session.get(CashSession, session_id)
    if session is None:
        raise NotFoundError("Session de caisse non trouvée", details={"session_id": session_id})
    return session


def session_history(limit: int = 30) -> list[CashSession]:
    return (
        db.session.query(CashSession)
        .order_by(CashSession.opened_at.desc(), CashSession.id.desc())
        .limit(limit)
        .all()
    )


def open_session(opening_cents: int, *, user_id: int | None = None, notes: str | None = None) -> CashSession:
    """
    Open a new session with the given float.

    Raises:
        ValidationError: negative opening amount
        ConflictError: a session is already open
    """
    if opening_cents < 0:
        raise ValidationError("Le fond de caisse doit être >= 0")

    def _op():
        begin_write()
        existing = current_session()
        if existing is not None:
            raise ConflictError(
                "Une session de caisse est déjà ouverte",
                details={"session_id": existing.id},
            )

        session = CashSession(
            status=SESSION_STATUS_OPEN,
            opened_at=utcnow(),
            opening_cents=opening_cents,
            accumulated_sales_cents=0,
            sales_count=0,
            notes=notes,
            opened_by_user_id=user_id,
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError:
            # Lost the race against another open: the partial unique index fired
            db.session.rollback()
            raise ConflictError("Une session de caisse est déjà ouverte")
        db.session.commit()
        logger.info("Cash session %s opened with %s cents", session.id, opening_cents)
        return session

    return run_with_retry(_op)


def _locked_open_session() -> CashSession | None:
    return lock_for_update(
        db.session.query(CashSession).filter_by(status=SESSION_STATUS_OPEN)
    ).first()


def _require_open(session_id: int | None) -> CashSession:
    """Locked open session; when session_id is given it must be that session."""
    session = _locked_open_session()
    if session is None:
        raise NotFoundError("Aucune session de caisse ouverte")
    if session_id is not None and session.id != session_id:
        raise ConflictError(
            "Cette session de caisse n'est pas la session ouverte",
            details={"session_id": session_id, "open_session_id": session.id},
        )
    return session


def close_session(
    counted_cents: int,
    *,
    session_id: int | None = None,
    user_id: int | None = None,
    notes: str | None = None,
) -> CashSession:
    """
    Close the open session.

    variance = counted - (opening + accumulated sales).

    Raises:
        ValidationError: negative counted amount
        NotFoundError: no session is open
        ConflictError: session_id is given and is not the open session
    """
    if counted_cents < 0:
        raise ValidationError("Le montant compté doit être >= 0")

    def _op():
        begin_write()
        session = _require_open(session_id)

        now = utcnow()
        session.status = SESSION_STATUS_CLOSED
        session.closed_at = now
        session.counted_cents = counted_cents
        session.counted_at = now
        session.closing_cents = counted_cents
        session.variance_cents = counted_cents - session.expected_cents
        session.closed_by_user_id = user_id
        if notes:
            session.notes = f"{session.notes}\n{notes}" if session.notes else notes
        db.session.commit()
        logger.info(
            "Cash session %s closed: expected=%s counted=%s variance=%s",
            session.id,
            session.expected_cents,
            counted_cents,
            session.variance_cents,
        )
        return session

    return run_with_retry(_op)


def count_session(counted_cents: int, *, session_id: int | None = None, notes: str | None = None) -> CashSession:
    """Mid-shift count: records the counted amount and variance without closing."""
    if counted_cents < 0:
        raise ValidationError("Le montant compté doit être >= 0")

    def _op():
        begin_write()
        session = _require_open(session_id)
        session.counted_cents = counted_cents
        session.counted_at = utcnow()
        session.variance_cents = counted_cents - session.expected_cents
        if notes:
            session.notes = f"{session.notes}\n{notes}" if session.notes else notes
        db.session.commit()
        return session

    return run_with_retry(_op)


def update_session(session_id: int, *, notes=..., opening_cents=...) -> CashSession:
    """
    Edit a session's notes, and its opening float while it is still open.

    Sales totals, counts and variance are never edited by hand.

    Raises:
        NotFoundError: unknown session
        ConflictError: opening float change on a closed session
        ValidationError: negative opening float
    """
    if opening_cents is not ... and opening_cents < 0:
        raise ValidationError("Le fond de caisse doit être >= 0")

    def _op():
        begin_write()
        session = lock_for_update(db.session.query(CashSession).filter_by(id=session_id)).first()
        if session is None:
            raise NotFoundError("Session de caisse non trouvée", details={"session_id": session_id})
        if opening_cents is not ...:
            if not session.is_open:
                raise ConflictError(
                    "Session de caisse fermée: fond de caisse non modifiable",
                    details={"session_id": session_id},
                )
            session.opening_cents = opening_cents
        if notes is not ...:
            session.notes = notes
        db.session.commit()
        return session

    return run_with_retry(_op)


def add_sales_amount(amount_cents: int, *, sale=None) -> CashSession | None:
    """
    Book a cash-paid sale into the open session.

    When `sale` is given its cash_session_id is set in the same transaction,
    so a sale is never linked to a session that did not count it.

    Returns the session, or None when no session is open (the sale still
    stands; it is just not attributed to a drawer).
    """
    def _op():
        begin_write()
        session = _locked_open_session()
        if session is None:
            db.session.rollback()
            return None
        session.accumulated_sales_cents = (session.accumulated_sales_cents or 0) + amount_cents
        session.sales_count = (session.sales_count or 0) + 1
        if sale is not None:
            sale.cash_session_id = session.id
        db.session.commit()
        return session

    return run_with_retry(_op)


def remove_sales_amount(amount_cents: int, *, session_id: int | None = None, count_sale: bool = True) -> CashSession | None:
    """
    Take a cancelled sale or a cash refund back out of the session.

    When session_id is given, only that session is touched and only while it
    is still open; a closed session's totals are final.
    """
    def _op():
        begin_write()
        session = _locked_open_session()
        if session is None or (session_id is not None and session.id != session_id):
            db.session.rollback()
            return None
        session.accumulated_sales_cents = (session.accumulated_sales_cents or 0) - amount_cents
        if count_sale:
            session.sales_count = max(0, (session.sales_count or 0) - 1)
        db.session.commit()
        return session

    return run_with_retry(_op)
