from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from ..access.context import PermissionContext, request_permission_context
from ..extensions import db
from ..models import PermissionSlug, User
from .errors import AccountDisabled, Forbidden, TokenRevoked, Unauthenticated


def current_user(required: bool = True) -> User | None:
    identity = get_jwt_identity()
    if identity is None:
        if required:
            raise Unauthenticated()
        return None

    user = db.session.get(User, int(identity))
    if user is None:
        if required:
            raise Unauthenticated("Invalid session.")
        return None

    if get_jwt().get("tv") != user.token_version:
        raise TokenRevoked()
    if not user.is_active:
        raise AccountDisabled()
    return user


def current_context() -> tuple[User, PermissionContext]:
    user = current_user(required=True)
    assert user is not None
    return user, request_permission_context(user)


def permission_required(*slugs: PermissionSlug) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            verify_jwt_in_request()
            _, context = current_context()
            for slug in slugs:
                if context.has_permission(slug.value):
                    return func(*args, **kwargs)
            raise Forbidden("ADMIN_REQUIRED", "Insufficient permissions.")

        return wrapper

    return decorator
