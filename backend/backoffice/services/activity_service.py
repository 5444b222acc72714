# Overview: Activity log sink; best-effort audit entries and their read API.

"""
Activity Log Invariants

- Entries are written AFTER the business event they describe has committed,
  in their own transaction.
- Logging never fails the caller: errors are rolled back, logged and swallowed.
- Entries are never updated or deleted by the application.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from ..extensions import db
from ..models import ActivityLog
from ..time_utils import end_of_day


logger = logging.getLogger(__name__)


CATEGORY_SALES = "SALES"
CATEGORY_CASH = "CASH"
CATEGORY_INVENTORY = "INVENTORY"
CATEGORY_PROMO = "PROMO"
CATEGORY_CATALOG = "CATALOG"


@dataclass(frozen=True)
class SideEffectResult:
    """Outcome of an auxiliary step that must never fail the primary operation."""
    name: str
    ok: bool
    error: str | None = None

    def to_dict(self) -> dict:
        data = {"name": self.name, "ok": self.ok}
        if self.error:
            data["error"] = self.error
        return data


def run_side_effect(name: str, func: Callable[[], object], *, context: str = "") -> SideEffectResult:
    try:
        func()
    except Exception as exc:
        db.session.rollback()
        logger.warning("Side effect %s failed (%s): %s", name, context, exc, exc_info=True)
        return SideEffectResult(name=name, ok=False, error=type(exc).__name__)
    return SideEffectResult(name=name, ok=True)


def log_activity(
    action: str,
    category: str,
    *,
    details: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    amount_cents: int | None = None,
    user_id: int | None = None,
) -> ActivityLog | None:
    """Fire-and-forget. Returns the entry, or None when it could not be written."""
    try:
        entry = ActivityLog(
            action=action,
            category=category,
            details=details,
            entity_type=entity_type,
            entity_id=entity_id,
            amount_cents=amount_cents,
            user_id=user_id,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        logger.warning("Could not write activity log %s for %s #%s", action, entity_type, entity_id, exc_info=True)
        return None


def list_activity(
    *,
    category: str | None = None,
    action: str | None = None,
    user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[ActivityLog]:
    q = db.session.query(ActivityLog)
    if category:
        q = q.filter(ActivityLog.category == category.upper())
    if action:
        q = q.filter(ActivityLog.action == action.upper())
    if user_id is not None:
        q = q.filter(ActivityLog.user_id == user_id)
    if start is not None:
        q = q.filter(ActivityLog.created_at >= start)
    if end is not None:
        q = q.filter(ActivityLog.created_at <= end_of_day(end))
    return q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
