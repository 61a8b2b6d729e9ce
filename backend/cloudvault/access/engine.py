from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union

from flask import g, has_request_context

from ..common.errors import AccountDisabled, Forbidden, Unauthenticated
from ..models import File, Folder, PermissionSlug, User
from .context import AccessLevel, PermissionContext
from .resolver import ShareResolver


Target = Union[File, Folder, User]


class Action(str, enum.Enum):
    READ = "read"
    DOWNLOAD = "download"
    LIST = "list"
    RENAME = "rename"
    MOVE = "move"
    EDIT_CONTENT = "edit_content"
    CREATE_CHILD = "create_child"
    DELETE = "delete"
    RESTORE = "restore"
    SHARE = "share"
    PURGE = "purge"
    QUOTA_OVERRIDE = "quota_override"


class DenyReason(str, enum.Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    DISABLED = "DISABLED"
    NOT_OWNER = "NOT_OWNER"
    NO_SHARE = "NO_SHARE"
    SHARE_EXPIRED = "SHARE_EXPIRED"
    INSUFFICIENT_SHARE_LEVEL = "INSUFFICIENT_SHARE_LEVEL"
    ADMIN_REQUIRED = "ADMIN_REQUIRED"
    INTEGRITY_VIOLATION = "INTEGRITY_VIOLATION"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.allowed


REQUIRED_LEVEL: dict[Action, AccessLevel] = {
    Action.READ: AccessLevel.VIEW,
    Action.DOWNLOAD: AccessLevel.VIEW,
    Action.LIST: AccessLevel.VIEW,
    Action.RENAME: AccessLevel.EDIT,
    Action.MOVE: AccessLevel.EDIT,
    Action.EDIT_CONTENT: AccessLevel.EDIT,
    Action.CREATE_CHILD: AccessLevel.EDIT,
    Action.DELETE: AccessLevel.OWNER,
    Action.RESTORE: AccessLevel.OWNER,
    Action.SHARE: AccessLevel.OWNER,
    Action.PURGE: AccessLevel.OWNER,
}

ADMIN_RESERVED = frozenset({Action.QUOTA_OVERRIDE})

_FILE_SLUGS: dict[Action, PermissionSlug] = {
    Action.READ: PermissionSlug.FILES_VIEW_ANY,
    Action.LIST: PermissionSlug.FILES_VIEW_ANY,
    Action.DOWNLOAD: PermissionSlug.FILES_DOWNLOAD_ANY,
    Action.RENAME: PermissionSlug.FILES_UPDATE_ANY,
    Action.MOVE: PermissionSlug.FILES_UPDATE_ANY,
    Action.EDIT_CONTENT: PermissionSlug.FILES_UPDATE_ANY,
    Action.DELETE: PermissionSlug.FILES_DELETE_ANY,
    Action.RESTORE: PermissionSlug.FILES_RESTORE_ANY,
    Action.PURGE: PermissionSlug.FILES_FORCE_DELETE_ANY,
    Action.SHARE: PermissionSlug.SHARES_MANAGE_ANY,
}

_FOLDER_SLUGS: dict[Action, PermissionSlug] = {
    Action.READ: PermissionSlug.FOLDERS_VIEW_ANY,
    Action.LIST: PermissionSlug.FOLDERS_VIEW_ANY,
    Action.DOWNLOAD: PermissionSlug.FOLDERS_VIEW_ANY,
    Action.RENAME: PermissionSlug.FOLDERS_UPDATE_ANY,
    Action.MOVE: PermissionSlug.FOLDERS_UPDATE_ANY,
    Action.CREATE_CHILD: PermissionSlug.FOLDERS_UPDATE_ANY,
    Action.DELETE: PermissionSlug.FOLDERS_DELETE_ANY,
    Action.RESTORE: PermissionSlug.FOLDERS_RESTORE_ANY,
    Action.PURGE: PermissionSlug.FOLDERS_FORCE_DELETE_ANY,
    Action.SHARE: PermissionSlug.SHARES_MANAGE_ANY,
}

_USER_SLUGS: dict[Action, PermissionSlug] = {
    Action.QUOTA_OVERRIDE: PermissionSlug.USERS_QUOTA_OVERRIDE,
}


def global_permission_for(action: Action, target: Target) -> PermissionSlug | None:
    if isinstance(target, File):
        return _FILE_SLUGS.get(action)
    if isinstance(target, Folder):
        return _FOLDER_SLUGS.get(action)
    return _USER_SLUGS.get(action)


def _owner_id(target: Target) -> int:
    if isinstance(target, User):
        return target.id
    return target.owner_id


def can_perform(
    context: PermissionContext,
    action: Action,
    target: Target,
    resolver: ShareResolver | None = None,
) -> Decision:
    if not context.is_authenticated:
        return Decision.deny(DenyReason.UNAUTHENTICATED)
    if not context.is_active:
        return Decision.deny(DenyReason.DISABLED)

    if _owner_id(target) == context.user_id and action not in ADMIN_RESERVED:
        return Decision.allow()

    slug = global_permission_for(action, target)
    if slug is not None and context.has_permission(slug.value):
        return Decision.allow()

    if action in ADMIN_RESERVED:
        return Decision.deny(DenyReason.ADMIN_REQUIRED)
    if isinstance(target, User):
        return Decision.deny(DenyReason.NOT_OWNER)

    resolution = (resolver or ShareResolver()).resolve_detail(context, target)
    if resolution.integrity_error:
        return Decision.deny(DenyReason.INTEGRITY_VIOLATION)
    if resolution.level is None:
        if resolution.expired:
            return Decision.deny(DenyReason.SHARE_EXPIRED)
        if REQUIRED_LEVEL[action] is AccessLevel.OWNER:
            return Decision.deny(DenyReason.NOT_OWNER)
        return Decision.deny(DenyReason.NO_SHARE)
    if resolution.level < REQUIRED_LEVEL[action]:
        return Decision.deny(DenyReason.INSUFFICIENT_SHARE_LEVEL)
    return Decision.allow()


def request_share_resolver() -> ShareResolver:
    if not has_request_context():
        return ShareResolver()
    resolver = g.get("share_resolver")
    if resolver is None:
        resolver = ShareResolver()
        g.share_resolver = resolver
    return resolver


def ensure_allowed(decision: Decision, action: Action, target: Target) -> None:
    if decision:
        return
    if decision.reason is DenyReason.UNAUTHENTICATED:
        raise Unauthenticated()
    if decision.reason is DenyReason.DISABLED:
        raise AccountDisabled()
    raise Forbidden(
        decision.reason.value,
        f"Not allowed to {action.value.replace('_', ' ')} this {type(target).__name__.lower()}.",
        {"action": action.value, "target_type": type(target).__name__.lower(), "target_id": _external_id(target)},
    )


def _external_id(target: Target) -> str:
    if isinstance(target, Folder):
        return target.uuid
    return str(target.id)


def authorize(context: PermissionContext, action: Action, target: Target) -> None:
    ensure_allowed(can_perform(context, action, target, request_share_resolver()), action, target)
