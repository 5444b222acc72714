from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


PROMO_TYPE_PERCENTAGE = "percentage"
PROMO_TYPE_FIXED = "fixed"
PROMO_TYPES = {PROMO_TYPE_PERCENTAGE, PROMO_TYPE_FIXED}


class PromoCode(db.Model):
    """
    Discount code.

    code is stored upper-cased and trimmed (see promo_service.normalize_code).
    value is a whole percent for `percentage` codes and cents for `fixed` codes.
    max_uses NULL means unlimited; expires_at NULL means no expiry.
    """
    __tablename__ = "promo_codes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    promo_type = db.Column(db.String(16), nullable=False)
    value = db.Column(db.Integer, nullable=False)
    min_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    max_uses = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        expires_at = self.expires_at.replace(tzinfo=None)
        return expires_at < (now or utcnow())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "promo_type": self.promo_type,
            "value": self.value,
            "min_amount_cents": self.min_amount_cents,
            "max_uses": self.max_uses,
            "used_count": self.used_count,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
