# Overview: Flask API routes for the cash register session; parses input and returns JSON responses.

# backend/backoffice/routes/cash.py
"""
Cash Session API Routes

DESIGN:
- GET returns the open session (or null) and recent history
- POST dispatches on body["action"]: open | close | count
- PUT /sessions/<id> edits notes (and the float while open)
- Lifecycle: open -> closed (immutable once closed, no reopening)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import GENERIC_INTERNAL_MESSAGE, ServiceError, ValidationError
from ..extensions import db
from ..services import activity_service, cash_session_service
from ..services.activity_service import CATEGORY_CASH
from ..decorators import resolve_user
from ..validation import require_amount, require_int, require_str


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")

ACTIONS = ("open", "close", "count")


@cash_bp.get("/")
@cash_bp.get("")
def get_cash_route():
    try:
        current = cash_session_service.current_session()
        history = cash_session_service.session_history(limit=min(request.args.get("limit", 30, type=int), 200))
        return jsonify({
            "current_session": current.to_dict() if current else None,
            "sessions": [s.to_dict() for s in history],
        }), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to load cash sessions")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@cash_bp.get("/sessions/<int:session_id>")
def get_cash_session_route(session_id: int):
    try:
        session = cash_session_service.get_session(session_id)
        return jsonify({"session": session.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to load cash session %s", session_id)
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@cash_bp.post("/")
@cash_bp.post("")
@resolve_user
def cash_action_route():
    """
    Request body:
    {"action": "open",  "opening_cents": 10000, "notes": "..."}
    {"action": "close", "counted_cents": 25400, "session_id": 3, "notes": "..."}
    {"action": "count", "counted_cents": 18000, "session_id": 3}

    session_id is optional on close and count; when given it must be the open session.
    """
    try:
        data = request.get_json(silent=True) or {}
        action = data.get("action")
        if action not in ACTIONS:
            raise ValidationError(f"Action invalide (attendu: {', '.join(ACTIONS)})")

        notes = data.get("notes")
        session_id = require_int(data, "session_id", minimum=1, default=None)

        if action == "open":
            session = cash_session_service.open_session(
                require_amount(data, "opening_cents", default=0),
                user_id=g.user_id,
                notes=notes,
            )
            activity_service.log_activity(
                "CASH_OPENED",
                CATEGORY_CASH,
                details=f"Ouverture de caisse #{session.id}",
                entity_type="cash_session",
                entity_id=session.id,
                amount_cents=session.opening_cents,
                user_id=g.user_id,
            )
            return jsonify({"session": session.to_dict()}), 201

        if action == "close":
            session = cash_session_service.close_session(
                require_amount(data, "counted_cents"),
                session_id=session_id,
                user_id=g.user_id,
                notes=notes,
            )
            activity_service.log_activity(
                "CASH_CLOSED",
                CATEGORY_CASH,
                details=f"Fermeture de caisse #{session.id} (écart {session.variance_cents})",
                entity_type="cash_session",
                entity_id=session.id,
                amount_cents=session.counted_cents,
                user_id=g.user_id,
            )
            return jsonify({"session": session.to_dict()}), 200

        session = cash_session_service.count_session(
            require_amount(data, "counted_cents"),
            session_id=session_id,
            notes=notes,
        )
        return jsonify({"session": session.to_dict()}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Cash session action failed")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@cash_bp.put("/sessions/<int:session_id>")
@resolve_user
def update_cash_session_route(session_id: int):
    """
    Request body (all optional): {"notes": "...", "opening_cents": 10000}
    The opening float can only change while the session is open.
    """
    try:
        data = request.get_json(silent=True) or {}
        changes = {}
        if "notes" in data:
            changes["notes"] = require_str(data, "notes", required=False)
        if "opening_cents" in data:
            changes["opening_cents"] = require_amount(data, "opening_cents")
        if not changes:
            raise ValidationError("Aucune modification fournie")

        session = cash_session_service.update_session(session_id, **changes)
        activity_service.log_activity(
            "CASH_SESSION_UPDATED",
            CATEGORY_CASH,
            details=f"Session de caisse #{session.id} modifiée",
            entity_type="cash_session",
            entity_id=session.id,
            user_id=g.user_id,
        )
        return jsonify({"message": "Session mise à jour", "session": session.to_dict()}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update cash session %s", session_id)
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500
