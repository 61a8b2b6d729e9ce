from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import func

from ..access import Action, authorize
from ..common.audit import record_activity
from ..common.errors import APIError, NotFound
from ..common.rbac import current_context, permission_required
from ..config import clamp_retention_days
from ..extensions import db
from ..models import AppSettings, PermissionSlug, Role, User, UserStatus


admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _resolve_roles(payload: dict) -> list[Role]:
    role_names = payload.get("role_names") or []
    roles = Role.query.filter(Role.name.in_(role_names)).all() if role_names else []

    if not roles:
        default_role = Role.query.filter_by(name="user").one_or_none()
        if default_role is None:
            raise APIError(500, "RBAC_NOT_READY", "Default user role is missing.")
        roles = [default_role]
    return roles


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found.", {"user_id": user_id})
    return user


def _parse_quota(value) -> int | None:  # type: ignore[no-untyped-def]
    if value is None:
        return None
    try:
        quota = int(value)
    except (TypeError, ValueError) as error:
        raise APIError(400, "INVALID_QUOTA", "quota_limit_bytes must be an integer or null.") from error
    if quota <= 0:
        raise APIError(400, "INVALID_QUOTA", "quota_limit_bytes must be > 0")
    return quota


@admin_bp.get("/settings")
@jwt_required()
@permission_required(PermissionSlug.SYSTEM_CONFIG_UPDATE)
def get_settings():
    return jsonify({"settings": AppSettings.singleton().to_dict()})


@admin_bp.put("/settings")
@jwt_required()
@permission_required(PermissionSlug.SYSTEM_CONFIG_UPDATE)
def update_settings():
    user, _ = current_context()

    settings = AppSettings.singleton()
    payload = request.get_json(silent=True) or {}

    if "max_upload_size" in payload:
        value = int(payload["max_upload_size"])
        if value <= 0:
            raise APIError(400, "INVALID_SETTINGS", "max_upload_size must be > 0")
        settings.max_upload_size = value
    if "default_quota" in payload:
        settings.default_quota = _parse_quota(payload["default_quota"])
    if "trash_retention_days" in payload:
        settings.trash_retention_days = clamp_retention_days(payload["trash_retention_days"], settings.trash_retention_days)

    db.session.commit()
    record_activity("admin.settings_update", user, "settings", 1, settings.to_dict())
    return jsonify({"settings": settings.to_dict()})


@admin_bp.get("/users")
@jwt_required()
@permission_required(PermissionSlug.USERS_MANAGE)
def list_users():
    users = User.query.order_by(User.id.asc()).all()
    return jsonify({"items": [user.to_dict() for user in users]})


@admin_bp.post("/users")
@jwt_required()
@permission_required(PermissionSlug.USERS_MANAGE)
def create_user():
    actor, _ = current_context()

    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""

    if len(username) < 3:
        raise APIError(400, "INVALID_USERNAME", "Username must be at least 3 characters.")
    if len(password) < 8:
        raise APIError(400, "INVALID_PASSWORD", "Password must be at least 8 characters.")

    exists = User.query.filter(func.lower(User.username) == username.lower()).one_or_none()
    if exists is not None:
        raise APIError(409, "USER_EXISTS", "Username is already taken.")

    settings = AppSettings.singleton()
    user = User(username=username, quota_used_bytes=0, quota_limit_bytes=settings.default_quota)
    user.set_password(password)
    user.roles = _resolve_roles(payload)

    db.session.add(user)
    db.session.commit()
    record_activity("admin.user_create", actor, "user", user.id, {"username": username})

    return jsonify({"user": user.to_dict()}), 201


@admin_bp.put("/users/<int:user_id>/status")
@jwt_required()
@permission_required(PermissionSlug.USERS_DISABLE)
def update_user_status(user_id: int):
    actor, _ = current_context()

    payload = request.get_json(silent=True) or {}
    try:
        status = UserStatus((payload.get("status") or "").strip().lower())
    except ValueError as error:
        raise APIError(400, "INVALID_STATUS", "status must be active, disabled or suspended.") from error

    if actor.id == user_id and status is not UserStatus.ACTIVE:
        raise APIError(400, "INVALID_OPERATION", "You cannot disable your own account.")

    user = _get_user(user_id)
    if user.status != status.value and status is not UserStatus.ACTIVE:
        user.token_version += 1
    user.status = status.value
    db.session.commit()
    record_activity("admin.user_status", actor, "user", user.id, {"status": status.value})

    return jsonify({"user": user.to_dict()})


@admin_bp.put("/users/<int:user_id>/quota")
@jwt_required()
def override_quota(user_id: int):
    actor, context = current_context()
    user = _get_user(user_id)
    authorize(context, Action.QUOTA_OVERRIDE, user)

    payload = request.get_json(silent=True) or {}
    user.quota_limit_bytes = _parse_quota(payload.get("quota_limit_bytes"))
    db.session.commit()
    record_activity("admin.quota_override", actor, "user", user.id, {"quota_limit_bytes": user.quota_limit_bytes})

    return jsonify({"user": user.to_dict()})
