from __future__ import annotations

from flask import current_app

from .config import clamp_retention_days
from .extensions import db
from .models import AppSettings, Permission, PermissionSlug, Role


DEFAULT_USER_PERMISSIONS = (
    PermissionSlug.FOLDERS_CREATE,
    PermissionSlug.SHARES_CREATE,
)


def ensure_roles_and_permissions() -> None:
    permission_map: dict[str, Permission] = {}
    for slug in PermissionSlug:
        permission = Permission.query.filter_by(slug=slug.value).one_or_none()
        if permission is None:
            permission = Permission(slug=slug.value, name=slug.value.replace("-", " ").replace(".", ": ").capitalize())
            db.session.add(permission)
            db.session.flush()
        permission_map[slug.value] = permission

    admin_role = Role.query.filter_by(name="admin").one_or_none()
    if admin_role is None:
        admin_role = Role(name="admin", description="Full access")
        db.session.add(admin_role)
    admin_role.permissions = list(permission_map.values())

    user_role = Role.query.filter_by(name="user").one_or_none()
    if user_role is None:
        user_role = Role(name="user", description="Standard workspace user")
        db.session.add(user_role)
    user_role.permissions = [permission_map[slug.value] for slug in DEFAULT_USER_PERMISSIONS]


def ensure_settings() -> AppSettings:
    settings = db.session.get(AppSettings, 1)
    if settings is None:
        settings = AppSettings(
            id=1,
            max_upload_size=current_app.config["MAX_UPLOAD_SIZE_BYTES"],
            default_quota=current_app.config["DEFAULT_QUOTA_BYTES"],
            trash_retention_days=clamp_retention_days(current_app.config["TRASH_RETENTION_DAYS"]),
        )
        db.session.add(settings)
    return settings


def bootstrap_defaults(commit: bool = False) -> None:
    ensure_roles_and_permissions()
    ensure_settings()
    if commit:
        db.session.commit()
