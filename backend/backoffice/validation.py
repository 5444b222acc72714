from __future__ import annotations
from datetime import datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - aliases: client field name -> model attribute (e.g. "stock" is not writable)
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    aliases: dict[str, str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} doit être un entier")
        if 'e' in stripped.lower() or '.' in stripped:
            raise ValidationError(f"{field} doit être un entier")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} doit être un entier")
    raise ValidationError(f"{field} doit être un entier")


def require_int(payload: dict, field: str, *, minimum: int | None = None, default: Any = ...) -> int:
    if field not in payload or payload[field] is None:
        if default is not ...:
            return default
        raise ValidationError(f"{field} est requis")
    value = coerce_int(payload[field], field)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} doit être >= {minimum}")
    return value


def require_amount(payload: dict, field: str, *, default: Any = ...) -> int:
    value = require_int(payload, field, minimum=0, default=default)
    if value is not None and value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} ne peut pas dépasser {MAX_AMOUNT_CENTS}")
    return value


def require_str(payload: dict, field: str, *, required: bool = True, max_length: int | None = None) -> str | None:
    raw = payload.get(field)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            raise ValidationError(f"{field} est requis")
        return None
    value = str(raw).strip()
    if max_length and len(value) > max_length:
        raise ValidationError(f"{field} dépasse la longueur maximale {max_length}")
    return value


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Corps JSON invalide")
    return payload


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} doit être une date ISO-8601")
            if dt is None:
                raise ValidationError(f"{col.key} doit être une date ISO-8601")
            return dt
        raise ValidationError(f"{col.key} doit être une date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    payload = require_json_object(payload)
    aliases = policy.aliases or {}
    payload = {aliases.get(k, k): v for k, v in payload.items()}

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Champs requis manquants: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Champ non autorisé: {k}")
        if k not in cols:
            raise ValidationError(f"Champ inconnu: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} ne peut pas être nul")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} ne peut pas être vide")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} dépasse la longueur maximale {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_amounts(patch: dict, *fields: str) -> None:
    """Range checks for money columns that SQLAlchemy metadata cannot express."""
    for field in fields:
        if field in patch and patch[field] is not None:
            value = patch[field]
            if value < 0:
                raise ValidationError(f"{field} doit être >= 0")
            if value > MAX_AMOUNT_CENTS:
                raise ValidationError(f"{field} ne peut pas dépasser {MAX_AMOUNT_CENTS}")


def enforce_rules_promo_code(patch: dict) -> None:
    from .models.promotions import PROMO_TYPES, PROMO_TYPE_PERCENTAGE

    if "promo_type" in patch and patch["promo_type"] not in PROMO_TYPES:
        raise ValidationError(f"promo_type doit être l'un de: {', '.join(sorted(PROMO_TYPES))}")
    if "value" in patch:
        if patch["value"] is None or patch["value"] <= 0:
            raise ValidationError("value doit être > 0")
        if patch.get("promo_type") == PROMO_TYPE_PERCENTAGE and patch["value"] > 100:
            raise ValidationError("Un pourcentage ne peut pas dépasser 100")
    if "max_uses" in patch and patch["max_uses"] is not None and patch["max_uses"] <= 0:
        raise ValidationError("max_uses doit être > 0")
    enforce_rules_amounts(patch, "min_amount_cents")
