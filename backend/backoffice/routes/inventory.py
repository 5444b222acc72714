# Overview: Flask API routes for stock adjustments, movements and replenishments.

# backend/backoffice/routes/inventory.py
"""
Inventory API routes

Every endpoint that changes stock goes through the stock ledger service:
- POST /adjust        direct-set (physical count), one `adjustment` movement
- POST /bulk-adjust   add | remove | set rows, clamped at zero
- POST /replenishments goods received, one `replenishment` movement
- GET  /stock/<id>     current quantity
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import GENERIC_INTERNAL_MESSAGE, ServiceError, ValidationError
from ..extensions import db
from ..services import activity_service, stock_ledger_service
from ..services.activity_service import CATEGORY_INVENTORY
from ..decorators import resolve_user
from ..time_utils import parse_iso_datetime
from ..validation import require_amount, require_int, require_str


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _date_args():
    try:
        return parse_iso_datetime(request.args.get("start")), parse_iso_datetime(request.args.get("end"))
    except ValueError:
        raise ValidationError("Date invalide (format ISO-8601 attendu)")


@inventory_bp.post("/adjust")
@resolve_user
def adjust_route():
    """
    Request body: {"product_id": 1, "new_stock": 12, "reason": "Inventaire", "notes": "..."}
    Returns the updated product and the movement figures.
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = require_int(data, "product_id", minimum=1)
        new_stock = require_int(data, "new_stock")
        reason = require_str(data, "reason", max_length=255)

        product, result = stock_ledger_service.set_stock(
            product_id,
            new_stock,
            reason,
            notes=data.get("notes"),
            user_id=g.user_id,
        )
        activity_service.log_activity(
            "STOCK_ADJUSTED",
            CATEGORY_INVENTORY,
            details=f"{product.name}: {result.previous_stock} -> {result.new_stock} ({reason})",
            entity_type="product",
            entity_id=product.id,
            user_id=g.user_id,
        )
        return jsonify({"product": product.to_dict(), "adjustment": result.to_dict()}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Stock adjustment failed")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@inventory_bp.post("/bulk-adjust")
@resolve_user
def bulk_adjust_route():
    """
    Request body:
    {"adjustments": [{"product_id": 1, "type": "add|remove|set", "adjustment": 5, "reason": "..."}]}
    """
    try:
        data = request.get_json(silent=True) or {}
        adjustments = data.get("adjustments")
        if not isinstance(adjustments, list) or not adjustments:
            raise ValidationError("La liste des ajustements est requise")
        if not all(isinstance(row, dict) for row in adjustments):
            raise ValidationError("Ajustement invalide")

        results = stock_ledger_service.bulk_adjust(adjustments, user_id=g.user_id)
        succeeded = sum(1 for r in results if r["success"])
        activity_service.log_activity(
            "STOCK_BULK_ADJUSTED",
            CATEGORY_INVENTORY,
            details=f"{succeeded}/{len(results)} ajustements appliqués",
            user_id=g.user_id,
        )
        return jsonify({
            "results": results,
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
        }), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Bulk stock adjustment failed")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@inventory_bp.get("/stock/<int:product_id>")
def get_stock_route(product_id: int):
    """Current quantity as kept by the ledger."""
    try:
        return jsonify({"product_id": product_id, "stock": stock_ledger_service.get_stock(product_id)}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to read stock of product %s", product_id)
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@inventory_bp.get("/movements")
def list_movements_route():
    """Query params: product_id, reason, start, end, limit."""
    try:
        start, end = _date_args()
        movements = stock_ledger_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            reason=request.args.get("reason") or None,
            start=start,
            end=end,
            limit=min(request.args.get("limit", 200, type=int), 1000),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@inventory_bp.get("/replenishments")
def list_replenishments_route():
    try:
        start, end = _date_args()
        rows = stock_ledger_service.list_replenishments(
            supplier_id=request.args.get("supplier_id", type=int),
            receipt_number=request.args.get("receipt_number") or None,
            start=start,
            end=end,
        )
        return jsonify({"replenishments": [r.to_dict() for r in rows]}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list replenishments")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@inventory_bp.post("/replenishments")
@resolve_user
def create_replenishment_route():
    """
    Request body:
    {"product_id": 1, "quantity": 24, "unit_cost_cents": 350, "supplier_id": 2,
     "delivery_cost_cents": 500, "receipt_number": "BL-0042", "notes": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        supplier_id = data.get("supplier_id")
        replenishment = stock_ledger_service.receive(
            product_id=require_int(data, "product_id", minimum=1),
            quantity=require_int(data, "quantity", minimum=1),
            unit_cost_cents=require_amount(data, "unit_cost_cents"),
            supplier_id=require_int(data, "supplier_id", minimum=1) if supplier_id is not None else None,
            delivery_cost_cents=require_amount(data, "delivery_cost_cents", default=0),
            receipt_number=require_str(data, "receipt_number", required=False, max_length=64),
            notes=data.get("notes"),
            user_id=g.user_id,
        )
        activity_service.log_activity(
            "STOCK_RECEIVED",
            CATEGORY_INVENTORY,
            details=f"Ravitaillement de {replenishment.quantity} unités",
            entity_type="product",
            entity_id=replenishment.product_id,
            amount_cents=replenishment.total_cost_cents,
            user_id=g.user_id,
        )
        return jsonify({"replenishment": replenishment.to_dict()}), 201

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Replenishment failed")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500
