from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ActivityLog, User


def record_activity(
    action: str,
    actor: User | int | None = None,
    target_type: str | None = None,
    target_id: str | int | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActivityLog | None:
    """Append an activity entry after the primary mutation has committed.

    The log is a side channel: a failing insert is rolled back and reported,
    never raised to the caller.
    """
    user_id = actor.id if isinstance(actor, User) else actor
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        metadata_json=metadata or {},
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("activity log write failed for action=%s", action, exc_info=True)
        return None
    return entry
