from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_PARTIALLY_RETURNED = "partially_returned"
SALE_STATUS_CANCELLED = "cancelled"


class Sale(db.Model):
    """
    Customer sale with its line items.

    Never hard-deleted. Lifecycle:
    - completed -> partially_returned (any return of at least one unit)
    - partially_returned -> partially_returned (further returns)
    - completed | partially_returned -> cancelled (within the cancel window)
    Cancelled sales accept neither edits nor returns.

    cash_session_id records which register session the amount was booked
    against (cash payments only, NULL when bookkeeping did not happen).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_sold_at", "status", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(32), nullable=True, unique=True)
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    payment_method = db.Column(db.String(32), nullable=False)

    # Amounts (cents): total is the pre-discount, pre-tax line sum
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    final_cents = db.Column(db.Integer, nullable=False, default=0)

    promo_code_id = db.Column(db.Integer, db.ForeignKey("promo_codes.id"), nullable=True)
    promo_code = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(24), nullable=False, default=SALE_STATUS_COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)

    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=True, index=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
    )
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def fully_returned(self) -> bool:
        return bool(self.items) and all(i.returned_quantity >= i.quantity for i in self.items)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "reference": self.reference,
            "sold_at": to_utc_z(self.sold_at),
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "user_id": self.user_id,
            "payment_method": self.payment_method,
            "total_cents": self.total_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "final_cents": self.final_cents,
            "promo_code": self.promo_code,
            "status": self.status,
            "fully_returned": self.fully_returned,
            "notes": self.notes,
            "cash_session_id": self.cash_session_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line item. quantity is the historical quantity sold and is never
    rewritten by returns; returned_quantity is the running total of
    units taken back (always <= quantity).
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("returned_quantity <= quantity", name="ck_sale_items_returned_le_sold"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    returned_quantity = db.Column(db.Integer, nullable=False, default=0)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    @property
    def returnable_quantity(self) -> int:
        return self.quantity - (self.returned_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
            "returned_quantity": self.returned_quantity,
        }


class SaleReturn(db.Model):
    """One return request against a sale. Its id is the ledger source ref for restocks."""
    __tablename__ = "sale_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=False)
    refund_cents = db.Column(db.Integer, nullable=False, default=0)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True, order_by="SaleReturn.id"))
    items = db.relationship("SaleReturnItem", back_populates="sale_return", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "reason": self.reason,
            "refund_cents": self.refund_cents,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class SaleReturnItem(db.Model):
    __tablename__ = "sale_return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("sale_returns.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    refund_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    sale_return = db.relationship("SaleReturn", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "refund_cents": self.refund_cents,
            "reason": self.reason,
        }
