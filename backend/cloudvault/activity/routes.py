from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..common.errors import APIError, Forbidden
from ..common.rbac import current_context
from ..models import ActivityLog, PermissionSlug


activity_bp = Blueprint("activity", __name__, url_prefix="/activity")


def _parse_iso_datetime(value: str | None, field_name: str) -> datetime | None:
    if value in (None, ""):
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as error:
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be an ISO-8601 datetime.") from error
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_limit(value: str | None) -> int:
    try:
        limit = int(value or "50")
    except ValueError as error:
        raise APIError(400, "INVALID_PARAMETER", "limit must be an integer.") from error
    return max(1, min(limit, 200))


@activity_bp.get("")
@jwt_required()
def list_activity():
    user, context = current_context()

    user_id = user.id
    requested = request.args.get("user_id")
    if requested not in (None, ""):
        try:
            user_id = int(requested)
        except ValueError as error:
            raise APIError(400, "INVALID_PARAMETER", "user_id must be an integer.") from error
        if user_id != user.id and not context.has_permission(PermissionSlug.ACTIVITY_LOGS_VIEW_ANY.value):
            raise Forbidden("ADMIN_REQUIRED", "You cannot view other users' activity.")

    query = ActivityLog.query.filter(ActivityLog.user_id == user_id)
    action = (request.args.get("action") or "").strip()
    if action:
        query = query.filter(ActivityLog.action == action)
    since = _parse_iso_datetime(request.args.get("from"), "from")
    if since is not None:
        query = query.filter(ActivityLog.created_at >= since)

    entries = query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(_parse_limit(request.args.get("limit"))).all()
    return jsonify({"items": [entry.to_dict() for entry in entries]})
