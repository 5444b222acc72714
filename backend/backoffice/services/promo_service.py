"""
Promo Code Service

WHY: Validate a discount code against an order amount and compute the
discount, plus the admin side (list/create/update/deactivate).

Check order (each failure is a distinct error type):
1. normalize (trim + upper)
2. lookup without expiry filter -> PromoNotFoundError ("Code promo invalide")
3. expired                      -> PromoExpiredError ("Code promo expiré")
4. amount < min_amount_cents    -> PromoBelowMinimumError (carries the minimum)
5. used_count >= max_uses       -> PromoUsageLimitError

Looking the code up before checking expiry keeps "unknown" and "expired"
distinguishable for the cashier.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import or_

from ..errors import (
    ConflictError,
    NotFoundError,
    PromoBelowMinimumError,
    PromoExpiredError,
    PromoNotFoundError,
    PromoUsageLimitError,
    ValidationError,
)
from ..extensions import db
from ..models import PromoCode
from ..models.promotions import PROMO_TYPE_PERCENTAGE
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, enforce_rules_promo_code, validate_payload
from .concurrency import lock_for_update


PROMO_POLICY = ModelValidationPolicy(
    writable_fields={
        "code",
        "description",
        "promo_type",
        "value",
        "min_amount_cents",
        "max_uses",
        "expires_at",
        "is_active",
    },
    required_on_create={"code", "promo_type", "value"},
)


@dataclass(frozen=True)
class PromoEvaluation:
    promo_code_id: int
    code: str
    order_cents: int
    discount_cents: int
    final_cents: int

    def to_dict(self) -> dict:
        return {
            "promo_code_id": self.promo_code_id,
            "code": self.code,
            "amount_cents": self.order_cents,
            "discount_cents": self.discount_cents,
            "final_cents": self.final_cents,
        }


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def compute_discount(promo: PromoCode, amount_cents: int) -> int:
    """Percentage rounds half-up to the cent. Never more than the amount itself."""
    if promo.promo_type == PROMO_TYPE_PERCENTAGE:
        discount = (amount_cents * promo.value + 50) // 100
    else:
        discount = promo.value
    return max(0, min(discount, amount_cents))


def _check_usable(promo: PromoCode | None, amount_cents: int) -> PromoCode:
    if promo is None or not promo.is_active:
        raise PromoNotFoundError()
    if promo.is_expired(utcnow()):
        raise PromoExpiredError()
    if amount_cents < (promo.min_amount_cents or 0):
        raise PromoBelowMinimumError(promo.min_amount_cents)
    if promo.max_uses is not None and (promo.used_count or 0) >= promo.max_uses:
        raise PromoUsageLimitError(promo.max_uses)
    return promo


def _evaluation(promo: PromoCode, amount_cents: int) -> PromoEvaluation:
    discount = compute_discount(promo, amount_cents)
    return PromoEvaluation(
        promo_code_id=promo.id,
        code=promo.code,
        order_cents=amount_cents,
        discount_cents=discount,
        final_cents=max(0, amount_cents - discount),
    )


def validate(code: str, amount_cents: int) -> PromoEvaluation:
    """Read-only check: does not consume a use."""
    if amount_cents is None or amount_cents < 0:
        raise ValidationError("Le montant doit être >= 0")
    normalized = normalize_code(code)
    if not normalized:
        raise ValidationError("Le code promo est requis")

    promo = db.session.query(PromoCode).filter_by(code=normalized).first()
    return _evaluation(_check_usable(promo, amount_cents), amount_cents)


def redeem(code: str, amount_cents: int) -> PromoEvaluation:
    """
    Validate under a row lock and consume one use.

    Runs inside the caller's transaction (sale creation); no commit here, so a
    failed sale does not burn a use.
    """
    normalized = normalize_code(code)
    if not normalized:
        raise ValidationError("Le code promo est requis")

    promo = lock_for_update(db.session.query(PromoCode).filter_by(code=normalized)).first()
    promo = _check_usable(promo, amount_cents)
    promo.used_count = (promo.used_count or 0) + 1
    return _evaluation(promo, amount_cents)


# =============================================================================
# ADMIN
# =============================================================================

def list_promo_codes(include_inactive: bool = False) -> list[PromoCode]:
    """Active, non-expired codes unless include_inactive is set."""
    q = db.session.query(PromoCode)
    if not include_inactive:
        q = q.filter(PromoCode.is_active.is_(True)).filter(
            or_(PromoCode.expires_at.is_(None), PromoCode.expires_at >= utcnow())
        )
    return q.order_by(PromoCode.created_at.desc(), PromoCode.id.desc()).all()


def get_promo_code(promo_id: int) -> PromoCode:
    promo = db.session.get(PromoCode, promo_id)
    if promo is None:
        raise NotFoundError("Code promo non trouvé")
    return promo


def create_promo_code(payload: dict) -> PromoCode:
    patch = validate_payload(model=PromoCode, payload=payload, policy=PROMO_POLICY, partial=False)
    patch["code"] = normalize_code(patch["code"])
    if not patch["code"]:
        raise ValidationError("Le code promo est requis")
    enforce_rules_promo_code(patch)

    if db.session.query(PromoCode).filter_by(code=patch["code"]).first() is not None:
        raise ConflictError("Ce code promo existe déjà", details={"code": patch["code"]})

    promo = PromoCode(**patch)
    db.session.add(promo)
    db.session.commit()
    return promo


def update_promo_code(promo_id: int, payload: dict) -> PromoCode:
    promo = get_promo_code(promo_id)
    patch = validate_payload(model=PromoCode, payload=payload, policy=PROMO_POLICY, partial=True)

    if "code" in patch:
        patch["code"] = normalize_code(patch["code"])
        clash = db.session.query(PromoCode).filter(
            PromoCode.code == patch["code"], PromoCode.id != promo_id
        ).first()
        if clash is not None:
            raise ConflictError("Ce code promo existe déjà", details={"code": patch["code"]})

    # Percent cap needs the effective type when only the value changes
    rules = dict(patch)
    rules.setdefault("promo_type", promo.promo_type)
    enforce_rules_promo_code(rules)

    for key, value in patch.items():
        setattr(promo, key, value)
    db.session.commit()
    return promo


def deactivate_promo_code(promo_id: int) -> PromoCode:
    promo = get_promo_code(promo_id)
    promo.is_active = False
    db.session.commit()
    return promo
