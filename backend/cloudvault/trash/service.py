from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable
from uuid import uuid4

from flask import current_app
from sqlalchemy import select, update

from ..access.context import PermissionContext
from ..access.engine import Action, can_perform, ensure_allowed, request_share_resolver
from ..common.audit import record_activity
from ..common.errors import APIError, IntegrityViolation, NotFound, StoreUnavailable
from ..common.object_store import ObjectStore, get_object_store
from ..common.tree import FolderAncestry, deepest_first, subtree_ids
from ..config import clamp_retention_days
from ..extensions import db
from ..models import AppSettings, File, Folder, utc_now
from .consistency import PurgeOutcome, purge_file_record, purge_folder_record


@dataclass
class BulkDeleteResult:
    deleted_files: int = 0
    deleted_folders: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"deleted_files": self.deleted_files, "deleted_folders": self.deleted_folders}


@dataclass
class SweepResult:
    purged_files: int = 0
    purged_folders: int = 0
    failed: list[str] = field(default_factory=list)

    def merge(self, other: "SweepResult") -> None:
        self.purged_files += other.purged_files
        self.purged_folders += other.purged_folders
        self.failed.extend(other.failed)

    def to_dict(self) -> dict[str, object]:
        return {"purged_files": self.purged_files, "purged_folders": self.purged_folders, "failed": list(self.failed)}


class TrashService:
    """Soft delete, restore and permanent purge of files and folder trees.

    Soft delete never touches the object store or quota. Permanent removal goes
    through :mod:`cloudvault.trash.consistency`, one file at a time, remote side
    first, and folder trees are purged deepest folder first.
    """

    def __init__(self, object_store: ObjectStore, retention_days: int = 7, chunk_size: int = 100, max_depth: int = 64) -> None:
        self.object_store = object_store
        self.retention_days = clamp_retention_days(retention_days)
        self.chunk_size = max(1, int(chunk_size))
        self.max_depth = max_depth

    @classmethod
    def from_app(cls) -> "TrashService":
        config = current_app.config
        settings = db.session.get(AppSettings, 1)
        retention = settings.trash_retention_days if settings is not None else config["TRASH_RETENTION_DAYS"]
        return cls(
            get_object_store(),
            retention_days=retention,
            chunk_size=config["PURGE_CHUNK_SIZE"],
            max_depth=config["MAX_FOLDER_DEPTH"],
        )

    # lookups

    @staticmethod
    def get_file(file_id: str) -> File:
        record = db.session.get(File, file_id)
        if record is None:
            raise NotFound("File not found.", {"file_id": file_id})
        return record

    @staticmethod
    def get_folder(folder_uuid: str) -> Folder:
        record = Folder.query.filter_by(uuid=folder_uuid).one_or_none()
        if record is None:
            raise NotFound("Folder not found.", {"folder_id": folder_uuid})
        return record

    def _check(self, context: PermissionContext, action: Action, target: File | Folder) -> None:
        ensure_allowed(can_perform(context, action, target, request_share_resolver()), action, target)

    # soft delete

    def _mark_file(self, record: File, actor_id: int | None, now: datetime, batch_id: str) -> None:
        record.deleted_at = now
        record.deleted_by = actor_id
        record.purge_at = now + timedelta(days=self.retention_days)
        record.trash_batch_id = batch_id

    def _mark_tree(self, folder: Folder, actor_id: int | None, now: datetime, batch_id: str) -> None:
        folder_ids = subtree_ids(folder.id, self.max_depth)
        values = {
            "deleted_at": now,
            "deleted_by": actor_id,
            "purge_at": now + timedelta(days=self.retention_days),
            "trash_batch_id": batch_id,
        }
        db.session.execute(
            update(Folder)
            .where(Folder.id.in_(folder_ids), Folder.deleted_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        db.session.execute(
            update(File)
            .where(File.folder_id.in_(folder_ids), File.deleted_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )

    def soft_delete_file(self, context: PermissionContext, file_id: str) -> File:
        record = self.get_file(file_id)
        if record.is_trashed:
            raise APIError(409, "ALREADY_IN_TRASH", "File is already in the trash.", {"file_id": file_id})
        self._check(context, Action.DELETE, record)

        self._mark_file(record, context.user_id, utc_now(), str(uuid4()))
        db.session.commit()
        record_activity("file.trash", context.user_id, "file", record.id)
        return record

    def soft_delete_folder(self, context: PermissionContext, folder_uuid: str) -> Folder:
        record = self.get_folder(folder_uuid)
        if record.is_trashed:
            raise APIError(409, "ALREADY_IN_TRASH", "Folder is already in the trash.", {"folder_id": folder_uuid})
        self._check(context, Action.DELETE, record)

        try:
            self._mark_tree(record, context.user_id, utc_now(), str(uuid4()))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        record_activity("folder.trash", context.user_id, "folder", record.uuid)
        return record

    def bulk_delete(
        self,
        context: PermissionContext,
        file_ids: Iterable[str] = (),
        folder_uuids: Iterable[str] = (),
    ) -> BulkDeleteResult:
        """Trash every target or none of them.

        Unknown folder UUIDs are ignored; unknown file ids are an error. Every
        target is authorized before the first row changes.
        """
        wanted_folders = list(dict.fromkeys(folder_uuids))
        folders = Folder.query.filter(Folder.uuid.in_(wanted_folders)).all() if wanted_folders else []
        files = [self.get_file(file_id) for file_id in dict.fromkeys(file_ids)]

        files = [record for record in files if not record.is_trashed]
        folders = [record for record in folders if not record.is_trashed]
        selected = {record.id for record in folders}
        ancestry = FolderAncestry(self.max_depth)
        top_folders = [record for record in folders if not selected.intersection(ancestry.chain(record.id)[1:])]

        for target in [*files, *folders]:
            self._check(context, Action.DELETE, target)

        result = BulkDeleteResult()
        now = utc_now()
        batch_id = str(uuid4())
        try:
            for record in files:
                self._mark_file(record, context.user_id, now, batch_id)
                result.deleted_files += 1
            db.session.flush()
            for record in top_folders:
                self._mark_tree(record, context.user_id, now, batch_id)
                result.deleted_folders += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        record_activity(
            "trash.bulk_delete",
            context.user_id,
            metadata={
                "files": [record.id for record in files],
                "folders": [record.uuid for record in top_folders],
            },
        )
        return result

    # restore

    def restore_file(self, context: PermissionContext, file_id: str) -> File:
        record = self.get_file(file_id)
        if not record.is_trashed:
            raise APIError(422, "NOT_IN_TRASH", "File is not in the trash.", {"file_id": file_id})
        if record.folder is not None and record.folder.is_trashed:
            raise APIError(422, "PARENT_TRASHED", "Restore the parent folder first.", {"folder_id": record.folder.uuid})
        self._check(context, Action.RESTORE, record)

        record.deleted_at = None
        record.deleted_by = None
        record.purge_at = None
        record.trash_batch_id = None
        db.session.commit()
        record_activity("file.restore", context.user_id, "file", record.id)
        return record

    def restore_folder(self, context: PermissionContext, folder_uuid: str) -> Folder:
        record = self.get_folder(folder_uuid)
        if not record.is_trashed:
            raise APIError(422, "NOT_IN_TRASH", "Folder is not in the trash.", {"folder_id": folder_uuid})
        parent = record.parent
        if parent is not None and parent.is_trashed:
            raise APIError(422, "PARENT_TRASHED", "Restore the parent folder first.", {"folder_id": parent.uuid})
        self._check(context, Action.RESTORE, record)

        cleared = {"deleted_at": None, "deleted_by": None, "purge_at": None, "trash_batch_id": None}
        batch_id = record.trash_batch_id
        try:
            if batch_id is None:
                record.deleted_at = None
                record.deleted_by = None
                record.purge_at = None
            else:
                folder_ids = subtree_ids(record.id, self.max_depth)
                db.session.execute(
                    update(Folder)
                    .where(Folder.id.in_(folder_ids), Folder.trash_batch_id == batch_id)
                    .values(**cleared)
                    .execution_options(synchronize_session="fetch")
                )
                db.session.execute(
                    update(File)
                    .where(File.folder_id.in_(folder_ids), File.trash_batch_id == batch_id)
                    .values(**cleared)
                    .execution_options(synchronize_session="fetch")
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        record_activity("folder.restore", context.user_id, "folder", record.uuid)
        return record

    # permanent delete

    def _purge_tree(self, folder_id: int) -> SweepResult:
        result = SweepResult()
        for current_id in deepest_first(folder_id, self.max_depth):
            child_file_ids = list(db.session.scalars(select(File.id).where(File.folder_id == current_id).order_by(File.id)))
            for child_id in child_file_ids:
                if purge_file_record(child_id, self.object_store) is PurgeOutcome.PURGED:
                    result.purged_files += 1
            if purge_folder_record(current_id) is PurgeOutcome.PURGED:
                result.purged_folders += 1
        return result

    def force_delete_file(self, context: PermissionContext, file_id: str) -> None:
        record = self.get_file(file_id)
        self._check(context, Action.PURGE, record)
        if not record.is_trashed:
            self._mark_file(record, context.user_id, utc_now(), str(uuid4()))
            db.session.commit()

        if purge_file_record(file_id, self.object_store) is PurgeOutcome.ABSENT:
            raise NotFound("File not found.", {"file_id": file_id})
        record_activity("file.purge", context.user_id, "file", file_id)

    def force_delete_folder(self, context: PermissionContext, folder_uuid: str) -> SweepResult:
        record = self.get_folder(folder_uuid)
        self._check(context, Action.PURGE, record)
        if not record.is_trashed:
            try:
                self._mark_tree(record, context.user_id, utc_now(), str(uuid4()))
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        result = self._purge_tree(record.id)
        if not result.purged_folders:
            raise NotFound("Folder not found.", {"folder_id": folder_uuid})
        record_activity("folder.purge", context.user_id, "folder", folder_uuid, result.to_dict())
        return result

    def empty_trash(self, context: PermissionContext) -> SweepResult:
        result = SweepResult()
        trashed_folders = (
            Folder.query.filter(Folder.owner_id == context.user_id, Folder.deleted_at.isnot(None))
            .order_by(Folder.id.asc())
            .all()
        )
        for folder in trashed_folders:
            self._check(context, Action.PURGE, folder)
        folder_ids = [folder.id for folder in trashed_folders]

        for folder_id in folder_ids:
            if db.session.get(Folder, folder_id) is None:
                continue
            try:
                result.merge(self._purge_tree(folder_id))
            except StoreUnavailable:
                result.failed.append(f"folder:{folder_id}")
            except APIError as error:
                current_app.logger.warning("empty trash: folder %s skipped: %s", folder_id, error.code)
                result.failed.append(f"folder:{folder_id}")

        trashed_files = list(
            db.session.scalars(
                select(File.id).where(File.owner_id == context.user_id, File.deleted_at.isnot(None)).order_by(File.id)
            )
        )
        for file_id in trashed_files:
            try:
                if purge_file_record(file_id, self.object_store) is PurgeOutcome.PURGED:
                    result.purged_files += 1
            except StoreUnavailable:
                result.failed.append(f"file:{file_id}")

        record_activity("trash.empty", context.user_id, metadata=result.to_dict())
        return result

    # scheduled sweep

    def purge_expired(self, now: datetime | None = None) -> SweepResult:
        """Purge everything whose retention window has passed.

        Safe to re-run and to run next to user purges: rows that are already
        gone drop out of the selection, and store failures leave rows trashed
        for the next sweep.
        """
        moment = now or utc_now()
        result = SweepResult()

        last_id = ""
        while True:
            batch = list(
                db.session.scalars(
                    select(File.id)
                    .where(File.deleted_at.isnot(None), File.purge_at <= moment, File.id > last_id)
                    .order_by(File.id)
                    .limit(self.chunk_size)
                )
            )
            if not batch:
                break
            for file_id in batch:
                try:
                    if purge_file_record(file_id, self.object_store) is PurgeOutcome.PURGED:
                        result.purged_files += 1
                except StoreUnavailable:
                    current_app.logger.warning("purge sweep: object store unavailable for file %s, will retry", file_id)
                    result.failed.append(f"file:{file_id}")
            last_id = batch[-1]

        expired_folders = list(
            db.session.scalars(
                select(Folder.id)
                .where(Folder.deleted_at.isnot(None), Folder.purge_at <= moment)
                .order_by(Folder.id)
            )
        )
        for folder_id in expired_folders:
            if db.session.get(Folder, folder_id) is None:
                continue
            try:
                result.merge(self._purge_tree(folder_id))
            except StoreUnavailable:
                current_app.logger.warning("purge sweep: object store unavailable under folder %s, will retry", folder_id)
                result.failed.append(f"folder:{folder_id}")
            except IntegrityViolation as error:
                current_app.logger.error("purge sweep: folder %s skipped: %s %s", folder_id, error.message, error.details)
                result.failed.append(f"folder:{folder_id}")
            except APIError as error:
                current_app.logger.warning("purge sweep: folder %s skipped: %s", folder_id, error.code)
                result.failed.append(f"folder:{folder_id}")

        current_app.logger.info(
            "purge sweep finished: files=%s folders=%s failed=%s",
            result.purged_files,
            result.purged_folders,
            len(result.failed),
        )
        return result

    # listing

    @staticmethod
    def list_trash(user_id: int) -> dict[str, list[dict]]:
        files = (
            File.query.filter(File.owner_id == user_id, File.deleted_at.isnot(None))
            .order_by(File.deleted_at.desc())
            .all()
        )
        folders = (
            Folder.query.filter(Folder.owner_id == user_id, Folder.deleted_at.isnot(None))
            .order_by(Folder.deleted_at.desc())
            .all()
        )
        return {"files": [item.to_dict() for item in files], "folders": [item.to_dict() for item in folders]}
