from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class ActivityLog(db.Model):
    """Fire-and-forget audit trail of user-visible business events."""
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_category_created", "category", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False, index=True)  # e.g. SALE_CREATED
    category = db.Column(db.String(32), nullable=False)  # SALES, CASH, INVENTORY, PROMO
    details = db.Column(db.Text, nullable=True)
    entity_type = db.Column(db.String(32), nullable=True)
    entity_id = db.Column(db.Integer, nullable=True)
    amount_cents = db.Column(db.Integer, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "category": self.category,
            "details": self.details,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "amount_cents": self.amount_cents,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_product_type_read", "product_id", "type", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False)  # stock_out, stock_critical, stock_low
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(16), nullable=False, default="normal")
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "product_id": self.product_id,
            "payload": self.payload,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
            "read_at": to_utc_z(self.read_at) if self.read_at else None,
        }
