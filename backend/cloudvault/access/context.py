from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping

from flask import current_app, g, has_request_context

from ..extensions import db
from ..models import Permission, Role, Share, SharePermission, User, UserStatus, as_utc, role_permissions, user_roles, utc_now


class AccessLevel(enum.IntEnum):
    VIEW = 1
    EDIT = 2
    OWNER = 3

    @classmethod
    def from_share(cls, permission: str) -> "AccessLevel":
        if permission == SharePermission.EDIT.value:
            return cls.EDIT
        return cls.VIEW


@dataclass(frozen=True)
class ShareGrant:
    level: AccessLevel
    share_id: str
    expires_at: datetime | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        return self.expires_at is None or self.expires_at > (now or utc_now())


_EMPTY: Mapping = MappingProxyType({})


@dataclass(frozen=True)
class PermissionContext:
    """Immutable snapshot of what one user may do during one request."""

    user_id: int | None = None
    status: str | None = None
    permissions: frozenset[str] = frozenset()
    file_shares: Mapping[str, ShareGrant] = field(default_factory=lambda: _EMPTY)
    folder_shares: Mapping[int, ShareGrant] = field(default_factory=lambda: _EMPTY)
    lapsed_file_shares: frozenset[str] = frozenset()
    lapsed_folder_shares: frozenset[int] = frozenset()

    @classmethod
    def anonymous(cls) -> "PermissionContext":
        return cls()

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def has_folder_shares(self) -> bool:
        return bool(self.folder_shares) or bool(self.lapsed_folder_shares)

    def has_permission(self, slug: str) -> bool:
        return slug in self.permissions


class PermissionContextBuilder:
    def build(self, user: User | None, now: datetime | None = None) -> PermissionContext:
        if user is None:
            return PermissionContext.anonymous()

        moment = now or utc_now()
        return PermissionContext(
            user_id=user.id,
            status=user.status,
            permissions=self._load_slugs(user.id),
            **self._load_shares(user.id, moment),
        )

    def _load_slugs(self, user_id: int) -> frozenset[str]:
        rows = db.session.execute(
            db.select(Permission.slug)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .join(Role, Role.id == role_permissions.c.role_id)
            .join(user_roles, user_roles.c.role_id == Role.id)
            .where(user_roles.c.user_id == user_id)
            .distinct()
        )
        return frozenset(slug for (slug,) in rows)

    def _load_shares(self, user_id: int, now: datetime) -> dict:
        file_shares: dict[str, ShareGrant] = {}
        folder_shares: dict[int, ShareGrant] = {}
        lapsed_files: set[str] = set()
        lapsed_folders: set[int] = set()

        shares = db.session.execute(
            db.select(Share.id, Share.file_id, Share.folder_id, Share.permission, Share.expires_at).where(
                Share.shared_with == user_id
            )
        )
        for share in shares:
            if (share.file_id is None) == (share.folder_id is None):
                current_app.logger.error("share %s violates single-target invariant; ignoring", share.id)
                continue

            grant = ShareGrant(AccessLevel.from_share(share.permission), share.id, as_utc(share.expires_at))
            if share.file_id is not None:
                target, grants, lapsed = share.file_id, file_shares, lapsed_files
            else:
                target, grants, lapsed = share.folder_id, folder_shares, lapsed_folders

            if not grant.is_active(now):
                lapsed.add(target)
                continue
            existing = grants.get(target)
            if existing is None or grant.level > existing.level:
                grants[target] = grant

        return {
            "file_shares": MappingProxyType(file_shares),
            "folder_shares": MappingProxyType(folder_shares),
            "lapsed_file_shares": frozenset(lapsed_files - file_shares.keys()),
            "lapsed_folder_shares": frozenset(lapsed_folders - folder_shares.keys()),
        }


def request_permission_context(user: User | None) -> PermissionContext:
    """Build the context once per request and keep it on ``flask.g``.

    The cache is keyed by user id so a second identity in the same request
    never sees the first one's permissions.
    """
    if not has_request_context():
        return PermissionContextBuilder().build(user)

    user_id = user.id if user is not None else None
    cached = g.get("permission_context")
    if cached is not None and cached.user_id == user_id:
        return cached

    context = PermissionContextBuilder().build(user)
    g.permission_context = context
    return context
