from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError

from .extensions import db


pwd_hasher = PasswordHasher()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: datetime | None) -> str | None:
    normalized = as_utc(value)
    return normalized.isoformat() if normalized else None


role_permissions = db.Table(
    "role_permissions",
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    db.Column("permission_id", db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class PermissionSlug(str, enum.Enum):
    FILES_VIEW_ANY = "files.view-any"
    FILES_DOWNLOAD_ANY = "files.download-any"
    FILES_UPDATE_ANY = "files.update-any"
    FILES_DELETE_ANY = "files.delete-any"
    FILES_RESTORE_ANY = "files.restore-any"
    FILES_FORCE_DELETE_ANY = "files.force-delete-any"
    FOLDERS_CREATE = "folders.create"
    FOLDERS_VIEW_ANY = "folders.view-any"
    FOLDERS_UPDATE_ANY = "folders.update-any"
    FOLDERS_DELETE_ANY = "folders.delete-any"
    FOLDERS_RESTORE_ANY = "folders.restore-any"
    FOLDERS_FORCE_DELETE_ANY = "folders.force-delete-any"
    SHARES_CREATE = "shares.create"
    SHARES_MANAGE_ANY = "shares.manage-any"
    USERS_MANAGE = "users.manage"
    USERS_DISABLE = "users.disable"
    USERS_QUOTA_OVERRIDE = "users.quota-override"
    SYSTEM_CONFIG_UPDATE = "system-config.update"
    ACTIVITY_LOGS_VIEW_ANY = "activity-logs.view-any"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    DISABLED = "disabled"
    SUSPENDED = "suspended"


class SharePermission(str, enum.Enum):
    VIEW = "view"
    EDIT = "edit"


class Permission(db.Model):
    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(64), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "slug": self.slug, "name": self.name}


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    permissions = db.relationship("Permission", secondary=role_permissions, lazy="joined")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": [permission.to_dict() for permission in self.permissions],
        }


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=UserStatus.ACTIVE.value)
    token_version = db.Column(db.Integer, nullable=False, default=1)
    quota_used_bytes = db.Column(db.BigInteger, nullable=False, default=0)
    quota_limit_bytes = db.Column(db.BigInteger, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    roles = db.relationship("Role", secondary=user_roles, lazy="joined")

    def set_password(self, password: str) -> None:
        self.password_hash = pwd_hasher.hash(password)

    def verify_password(self, password: str) -> bool:
        try:
            return pwd_hasher.verify(self.password_hash, password)
        except VerifyMismatchError:
            return False

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def is_admin(self) -> bool:
        return any(role.name == "admin" for role in self.roles)

    def has_permission(self, slug: str) -> bool:
        for role in self.roles:
            for permission in role.permissions:
                if permission.slug == slug:
                    return True
        return False

    def has_quota_for(self, size_bytes: int) -> bool:
        if self.quota_limit_bytes is None:
            return True
        return self.quota_used_bytes + size_bytes <= self.quota_limit_bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "status": self.status,
            "quota_used_bytes": self.quota_used_bytes,
            "quota_limit_bytes": self.quota_limit_bytes,
            "roles": [role.to_dict() for role in self.roles],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Folder(db.Model):
    __tablename__ = "folders"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, index=True, default=lambda: str(uuid4()))
    name = db.Column(db.String(255), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("folders.id"), nullable=True, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    deleted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    purge_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    trash_batch_id = db.Column(db.String(36), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    owner = db.relationship("User", foreign_keys=[owner_id])

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.uuid,
            "name": self.name,
            "owner_id": self.owner_id,
            "parent_id": self.parent.uuid if self.parent_id and self.parent else None,
            "deleted_at": _iso(self.deleted_at),
            "purge_at": _iso(self.purge_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @property
    def parent(self) -> Folder | None:
        if self.parent_id is None:
            return None
        return db.session.get(Folder, self.parent_id)


class File(db.Model):
    __tablename__ = "files"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid4()))
    name = db.Column(db.String(255), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    folder_id = db.Column(db.Integer, db.ForeignKey("folders.id"), nullable=True, index=True)
    size_bytes = db.Column(db.BigInteger, nullable=False, default=0)
    mime_type = db.Column(db.String(255), nullable=True)
    r2_object_key = db.Column(db.String(512), unique=True, nullable=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    deleted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    purge_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    trash_batch_id = db.Column(db.String(36), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    owner = db.relationship("User", foreign_keys=[owner_id])
    folder = db.relationship("Folder")

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "folder_id": self.folder.uuid if self.folder is not None else None,
            "size_bytes": self.size_bytes,
            "mime_type": self.mime_type,
            "deleted_at": _iso(self.deleted_at),
            "purge_at": _iso(self.purge_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Share(db.Model):
    __tablename__ = "shares"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid4()))
    file_id = db.Column(db.String(36), db.ForeignKey("files.id", ondelete="CASCADE"), nullable=True, index=True)
    folder_id = db.Column(db.Integer, db.ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True)
    shared_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    shared_with = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    token_hash = db.Column(db.String(64), unique=True, nullable=True)
    permission = db.Column(db.String(8), nullable=False, default=SharePermission.VIEW.value)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    file = db.relationship("File")
    folder = db.relationship("Folder")
    sharer = db.relationship("User", foreign_keys=[shared_by])
    recipient = db.relationship("User", foreign_keys=[shared_with])

    __table_args__ = (
        db.CheckConstraint(
            "(file_id IS NULL AND folder_id IS NOT NULL) OR (file_id IS NOT NULL AND folder_id IS NULL)",
            name="ck_share_single_target",
        ),
        db.Index("ix_shares_recipient_folder", "shared_with", "folder_id"),
    )

    @property
    def is_guest_link(self) -> bool:
        return self.shared_with is None

    def is_expired(self, now: datetime | None = None) -> bool:
        expires_at = as_utc(self.expires_at)
        return expires_at is not None and expires_at <= (now or utc_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_id": self.file_id,
            "folder_id": self.folder.uuid if self.folder is not None else None,
            "shared_by": self.shared_by,
            "shared_with": self.shared_with,
            "shared_with_username": self.recipient.username if self.recipient else None,
            "permission": self.permission,
            "guest_link": self.is_guest_link,
            "expires_at": _iso(self.expires_at),
            "created_at": _iso(self.created_at),
        }


class AppSettings(db.Model):
    __tablename__ = "app_settings"

    id = db.Column(db.Integer, primary_key=True, default=1)
    max_upload_size = db.Column(db.BigInteger, nullable=False, default=100 * 1024 * 1024)
    default_quota = db.Column(db.BigInteger, nullable=True, default=5 * 1024 * 1024 * 1024)
    trash_retention_days = db.Column(db.Integer, nullable=False, default=7)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    @classmethod
    def singleton(cls) -> "AppSettings":
        settings = db.session.get(cls, 1)
        if settings is None:
            settings = cls(id=1)
            db.session.add(settings)
            db.session.flush()
        return settings

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_upload_size": self.max_upload_size,
            "default_quota": self.default_quota,
            "trash_retention_days": self.trash_retention_days,
            "updated_at": _iso(self.updated_at),
        }


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    target_type = db.Column(db.String(32), nullable=True)
    target_id = db.Column(db.String(64), nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now, index=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "metadata": self.metadata_json or {},
            "created_at": _iso(self.created_at),
        }
