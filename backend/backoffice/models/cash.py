from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


SESSION_STATUS_OPEN = "open"
SESSION_STATUS_CLOSED = "closed"


class CashSession(db.Model):
    """
    Register session.

    LIFECYCLE: open -> closed. A closed session is never reopened; the next
    shift opens a new row. "The current session" is a query for the row with
    status='open', and the partial unique index below makes a second open row
    impossible at the database level.

    accumulated_sales_cents is the running total of cash-paid sales (net of
    cancellations and cash refunds) booked while open.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_single_open",
            "status",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_OPEN, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opening_cents = db.Column(db.Integer, nullable=False, default=0)
    accumulated_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    sales_count = db.Column(db.Integer, nullable=False, default=0)

    # Reconciliation: last count (open or at close) and its variance
    counted_cents = db.Column(db.Integer, nullable=True)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closing_cents = db.Column(db.Integer, nullable=True)
    variance_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    notes = db.Column(db.Text, nullable=True)
    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def expected_cents(self) -> int:
        return (self.opening_cents or 0) + (self.accumulated_sales_cents or 0)

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_STATUS_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "opening_cents": self.opening_cents,
            "accumulated_sales_cents": self.accumulated_sales_cents,
            "sales_count": self.sales_count,
            "expected_cents": self.expected_cents,
            "counted_cents": self.counted_cents,
            "counted_at": to_utc_z(self.counted_at) if self.counted_at else None,
            "closing_cents": self.closing_cents,
            "variance_cents": self.variance_cents,
            "notes": self.notes,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "version_id": self.version_id,
        }
