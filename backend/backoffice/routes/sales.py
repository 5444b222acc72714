# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/backoffice/routes/sales.py
"""
Sales API routes

DESIGN:
- POST creates a completed sale (stock decremented in the same transaction)
- PUT edits notes, payment method or items
- DELETE cancels (status transition, the row is kept)
- POST /<id>/return records a partial return

Responses carry the sale plus `side_effects`, the outcome of the best-effort
steps (cash session bookkeeping, activity log) that never fail a sale.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import GENERIC_INTERNAL_MESSAGE, ServiceError
from ..extensions import db
from ..services import sales_service
from ..decorators import resolve_user
from ..time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@sales_bp.post("/")
@sales_bp.post("")
@resolve_user
def create_sale_route():
    """
    Create a sale.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 3}],
        "payment_method": "cash",
        "customer_id": 4,          (optional)
        "promo_code": "SAVE10",    (optional)
        "notes": "..."             (optional)
    }

    Header Idempotency-Key (optional): a replay returns the existing sale with 200.
    """
    try:
        data = request.get_json(silent=True) or {}
        key = (request.headers.get("Idempotency-Key") or "").strip() or None

        outcome = sales_service.create_sale(data, user_id=g.user_id, idempotency_key=key)

        return jsonify({"sale": outcome.to_dict()}), 200 if outcome.replayed else 201

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to create sale")


@sales_bp.get("/")
@sales_bp.get("")
def list_sales_route():
    """
    List sales, newest first.

    Query params: start, end (ISO dates, end inclusive), status, customer_id, limit
    """
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "Date invalide (format ISO-8601 attendu)"}), 400

    try:
        sales = sales_service.list_sales(
            start=start,
            end=end,
            status=request.args.get("status") or None,
            customer_id=request.args.get("customer_id", type=int),
            limit=min(request.args.get("limit", 200, type=int), 1000),
        )
        return jsonify({"sales": [s.to_dict(include_items=False) for s in sales]}), 200
    except Exception:
        return _internal_error("Failed to list sales")


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({
            "sale": sale.to_dict(),
            "returns": [r.to_dict() for r in sale.returns],
        }), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to load sale")


@sales_bp.put("/<int:sale_id>")
@resolve_user
def update_sale_route(sale_id: int):
    """
    Edit a sale.

    Request body (all optional): {"notes": "...", "payment_method": "card", "items": [...]}
    Items can only be edited while the sale has no returns.
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = sales_service.update_sale(sale_id, data, user_id=g.user_id)
        return jsonify({"sale": outcome.to_dict()}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to update sale")


@sales_bp.delete("/<int:sale_id>")
@resolve_user
def cancel_sale_route(sale_id: int):
    """
    Cancel a sale (within SALE_CANCEL_WINDOW_HOURS of its date).

    Optional body: {"reason": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = sales_service.cancel_sale(sale_id, user_id=g.user_id, reason=data.get("reason"))
        return jsonify({"message": "Vente annulée", "sale": outcome.to_dict()}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to cancel sale")


@sales_bp.post("/<int:sale_id>/return")
@resolve_user
def return_sale_route(sale_id: int):
    """
    Record a return.

    Request body:
    {
        "reason": "Produit défectueux",
        "items": [{"item_id": 12, "quantity": 1, "reason": "cassé"}]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = sales_service.process_return(sale_id, data, user_id=g.user_id)
        return jsonify(outcome.to_dict()), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to process return")
