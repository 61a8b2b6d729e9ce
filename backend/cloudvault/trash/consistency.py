from __future__ import annotations

import enum

from sqlalchemy import case, delete, func, select, update

from ..common.errors import APIError
from ..common.object_store import ObjectStore
from ..extensions import db
from ..models import File, Folder, Share, User


class PurgeOutcome(str, enum.Enum):
    PURGED = "purged"
    ABSENT = "absent"


def purge_file_record(file_id: str, store: ObjectStore) -> PurgeOutcome:
    """Permanently remove one trashed file from both systems of record.

    The remote object goes first. Only when the store confirms it is gone are
    the share rows, the file row and the owner's quota updated, in a single
    commit. A :class:`StoreUnavailable` from the store leaves the row trashed
    for the next attempt. A row already removed by a concurrent purge is
    reported as ``ABSENT`` and quota is left alone.
    """
    record = db.session.get(File, file_id)
    if record is None:
        return PurgeOutcome.ABSENT
    if record.deleted_at is None:
        raise APIError(422, "NOT_IN_TRASH", "Only trashed files can be purged.", {"file_id": file_id})

    object_key = record.r2_object_key
    owner_id = record.owner_id
    size_bytes = int(record.size_bytes or 0)
    db.session.expunge(record)

    store.delete_object(object_key)

    try:
        db.session.execute(delete(Share).where(Share.file_id == file_id))
        removed = db.session.execute(
            delete(File).where(File.id == file_id).execution_options(synchronize_session=False)
        ).rowcount
        if not removed:
            db.session.rollback()
            return PurgeOutcome.ABSENT
        db.session.execute(
            update(User)
            .where(User.id == owner_id)
            .values(
                quota_used_bytes=case(
                    (User.quota_used_bytes > size_bytes, User.quota_used_bytes - size_bytes),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return PurgeOutcome.PURGED


def purge_folder_record(folder_id: int) -> PurgeOutcome:
    """Remove an emptied folder row; refuses while children still reference it."""
    record = db.session.get(Folder, folder_id)
    if record is None:
        return PurgeOutcome.ABSENT

    child_folders = db.session.scalar(select(func.count()).select_from(Folder).where(Folder.parent_id == folder_id))
    child_files = db.session.scalar(select(func.count()).select_from(File).where(File.folder_id == folder_id))
    if child_folders or child_files:
        raise APIError(409, "FOLDER_NOT_EMPTY", "Folder still has children.", {"folder_id": record.uuid})
    db.session.expunge(record)

    try:
        db.session.execute(delete(Share).where(Share.folder_id == folder_id))
        removed = db.session.execute(
            delete(Folder).where(Folder.id == folder_id).execution_options(synchronize_session=False)
        ).rowcount
        if not removed:
            db.session.rollback()
            return PurgeOutcome.ABSENT
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return PurgeOutcome.PURGED
