from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..common.errors import IntegrityViolation
from ..common.tree import FolderAncestry
from ..models import File, Folder, utc_now
from .context import AccessLevel, PermissionContext


@dataclass(frozen=True)
class Resolution:
    level: AccessLevel | None = None
    expired: bool = False
    integrity_error: bool = False
    source: str | None = None


class ShareResolver:
    """Finds the share that governs an item for a given context.

    A direct file share beats any folder share; otherwise the nearest folder in
    the ancestry with a share entry decides, and an expired entry there blocks
    anything further up.
    """

    def __init__(self, ancestry: FolderAncestry | None = None) -> None:
        self.ancestry = ancestry or FolderAncestry()

    def resolve(self, context: PermissionContext, item: File | Folder) -> AccessLevel | None:
        return self.resolve_detail(context, item).level

    def resolve_detail(self, context: PermissionContext, item: File | Folder, now: datetime | None = None) -> Resolution:
        moment = now or utc_now()

        if isinstance(item, File):
            grant = context.file_shares.get(item.id)
            if grant is not None:
                return self._from_grant(grant, moment, f"file:{item.id}")
            if item.id in context.lapsed_file_shares:
                return Resolution(expired=True, source=f"file:{item.id}")
            start = item.folder_id
        else:
            start = item.id

        if start is None or not context.has_folder_shares:
            return Resolution()

        try:
            chain = self.ancestry.chain(start)
        except IntegrityViolation as error:
            current_app.logger.error("share resolution failed closed for %r: %s %s", item, error.message, error.details)
            return Resolution(integrity_error=True)

        for folder_id in chain:
            grant = context.folder_shares.get(folder_id)
            if grant is not None:
                return self._from_grant(grant, moment, f"folder:{folder_id}")
            if folder_id in context.lapsed_folder_shares:
                return Resolution(expired=True, source=f"folder:{folder_id}")
        return Resolution()

    @staticmethod
    def _from_grant(grant, now: datetime, source: str) -> Resolution:
        if not grant.is_active(now):
            return Resolution(expired=True, source=source)
        return Resolution(level=grant.level, source=source)
