from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


# Movement reasons
REASON_INITIAL = "initial"
REASON_SALE = "sale"
REASON_SALE_EDIT = "sale_edit"
REASON_CANCELLATION = "cancellation"
REASON_RETURN = "return"
REASON_ADJUSTMENT = "adjustment"
REASON_REPLENISHMENT = "replenishment"

MOVEMENT_REASONS = {
    REASON_INITIAL,
    REASON_SALE,
    REASON_SALE_EDIT,
    REASON_CANCELLATION,
    REASON_RETURN,
    REASON_ADJUSTMENT,
    REASON_REPLENISHMENT,
}


class InventoryMovement(db.Model):
    """
    Append-only stock ledger entry.

    Product.stock == SUM(quantity_delta) over a product's movements.
    previous_stock/new_stock snapshot the materialized value around the change.

    idempotency_key is set for movements driven by a document (sale,
    cancellation, return) so that a replayed request cannot apply the
    same delta twice.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_movements_reason_occurred", "reason", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(32), nullable=False)
    source_ref = db.Column(db.String(64), nullable=True, index=True)
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)
    notes = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity_delta": self.quantity_delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "source_ref": self.source_ref,
            "notes": self.notes,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


@event.listens_for(InventoryMovement, "before_update")
def _movement_is_immutable(mapper, connection, target):
    raise ValueError("inventory movements are append-only")


@event.listens_for(InventoryMovement, "before_delete")
def _movement_is_undeletable(mapper, connection, target):
    raise ValueError("inventory movements are append-only")


class Replenishment(db.Model):
    """Goods received from a supplier. Always paired with a `replenishment` movement."""
    __tablename__ = "replenishments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    delivery_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    receipt_number = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")
    supplier = db.relationship("Supplier")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "supplier_id": self.supplier_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "delivery_cost_cents": self.delivery_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "receipt_number": self.receipt_number,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
