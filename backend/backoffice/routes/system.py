# backend/backoffice/routes/system.py
"""
System endpoints: health check, activity log, notifications.
"""

import time

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from ..errors import GENERIC_INTERNAL_MESSAGE, ServiceError, ValidationError
from ..extensions import db
from ..services import activity_service, notification_service
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "time": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), 200 if healthy else 503


@system_bp.get("/logs")
def list_logs_route():
    """Query params: category, action, user_id, start, end, limit."""
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        e = ValidationError("Date invalide (format ISO-8601 attendu)")
        return jsonify(e.to_dict()), e.status_code

    try:
        logs = activity_service.list_activity(
            category=request.args.get("category") or None,
            action=request.args.get("action") or None,
            user_id=request.args.get("user_id", type=int),
            start=start,
            end=end,
            limit=min(request.args.get("limit", 100, type=int), 1000),
        )
        return jsonify({"logs": [entry.to_dict() for entry in logs]}), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list activity logs")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@system_bp.get("/notifications")
def list_notifications_route():
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    try:
        notifications = notification_service.list_notifications(
            unread_only=unread_only,
            limit=min(request.args.get("limit", 100, type=int), 500),
        )
        return jsonify({
            "notifications": [n.to_dict() for n in notifications],
            "unread_count": notification_service.unread_count(),
        }), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500


@system_bp.post("/notifications/<int:notification_id>/read")
def mark_notification_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(notification_id)
        return jsonify({"notification": notification.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark notification %s as read", notification_id)
        return jsonify({"error": GENERIC_INTERNAL_MESSAGE}), 500
