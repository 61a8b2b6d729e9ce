from .context import AccessLevel, PermissionContext, PermissionContextBuilder, ShareGrant, request_permission_context
from .engine import Action, Decision, DenyReason, authorize, can_perform, ensure_allowed
from .resolver import Resolution, ShareResolver

__all__ = [
    "AccessLevel",
    "Action",
    "Decision",
    "DenyReason",
    "PermissionContext",
    "PermissionContextBuilder",
    "Resolution",
    "ShareGrant",
    "ShareResolver",
    "authorize",
    "can_perform",
    "ensure_allowed",
    "request_permission_context",
]
