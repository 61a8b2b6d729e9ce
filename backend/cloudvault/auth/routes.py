from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify, request
from flask_jwt_extended import create_access_token, create_refresh_token, jwt_required
from sqlalchemy import func

from ..common.audit import record_activity
from ..common.errors import AccountDisabled, APIError
from ..common.rbac import current_user
from ..extensions import db
from ..models import User


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _claims(user: User) -> dict[str, Any]:
    return {
        "tv": user.token_version,
        "roles": [role.name for role in user.roles],
    }


def _token_response(user: User) -> dict[str, Any]:
    claims = _claims(user)
    return {
        "access_token": create_access_token(identity=str(user.id), additional_claims=claims),
        "refresh_token": create_refresh_token(identity=str(user.id), additional_claims=claims),
        "user": user.to_dict(),
    }


@auth_bp.post("/login")
def login():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""

    if not username or not password:
        raise APIError(400, "INVALID_CREDENTIALS", "Username and password are required.")

    user = User.query.filter(func.lower(User.username) == username.lower()).one_or_none()
    if user is None or not user.verify_password(password):
        record_activity("auth.login_failed", user, "user", user.id if user else None, {"username": username})
        raise APIError(401, "INVALID_CREDENTIALS", "Invalid username or password.")
    if not user.is_active:
        raise AccountDisabled()

    record_activity("auth.login", user, "user", user.id)
    return jsonify(_token_response(user))


@auth_bp.post("/refresh")
@jwt_required(refresh=True)
def refresh():
    user = current_user(required=True)
    assert user is not None
    return jsonify({"access_token": create_access_token(identity=str(user.id), additional_claims=_claims(user))})


@auth_bp.get("/me")
@jwt_required()
def me():
    user = current_user(required=True)
    assert user is not None
    return jsonify({"user": user.to_dict()})


@auth_bp.post("/logout-all")
@jwt_required()
def logout_all():
    user = current_user(required=True)
    assert user is not None

    user.token_version += 1
    db.session.commit()
    record_activity("auth.logout_all", user, "user", user.id)
    return jsonify({"revoked": True})
