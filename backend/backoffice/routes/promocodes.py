# Overview: Flask API routes for promo codes (admin and validation).

from flask import Blueprint, request, jsonify, current_app

from ..errors import GENERIC_INTERNAL_MESSAGE, ServiceError
from ..extensions import db
from ..services import promo_service
from ..validation import require_amount


promocodes_bp = Blueprint("promocodes", __name__, url_prefix="/api/promocodes")


@promocodes_bp.get("/")
@promocodes_bp.get("")
def list_promocodes_route():
    """Active, non-expired codes. ?all=1 includes inactive and expired ones."""
    include_inactive = request.args.get("all", "").lower() in ("1", "true", "yes")
    try:
        codes = promo_service.list_promo_codes(include_inactive=include_inactive)
        return jsonify({"promocodes": [c.to_dict() for c in codes]}), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list promo codes")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@promocodes_bp.post("/")
@promocodes_bp.post("")
def create_or_validate_route():
    """
    POST                   -> create a code
    POST ?action=validate  -> {"code": "SAVE10", "amount_cents": 2000}
                              answers {"discount_cents": 200, "final_cents": 1800, ...}
    """
    try:
        data = request.get_json(silent=True) or {}

        if request.args.get("action") == "validate":
            if "amount_cents" not in data and "amount" in data:
                data = dict(data, amount_cents=data["amount"])
            evaluation = promo_service.validate(data.get("code"), require_amount(data, "amount_cents"))
            return jsonify({"valid": True, **evaluation.to_dict()}), 200

        promo = promo_service.create_promo_code(data)
        return jsonify({"promocode": promo.to_dict()}), 201

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Promo code request failed")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@promocodes_bp.put("/<int:promo_id>")
def update_promocode_route(promo_id: int):
    try:
        promo = promo_service.update_promo_code(promo_id, request.get_json(silent=True) or {})
        return jsonify({"promocode": promo.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update promo code")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@promocodes_bp.delete("/<int:promo_id>")
def deactivate_promocode_route(promo_id: int):
    """Soft delete: the code is deactivated, past sales keep referencing it."""
    try:
        promo = promo_service.deactivate_promo_code(promo_id)
        return jsonify({"promocode": promo.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to deactivate promo code")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500
