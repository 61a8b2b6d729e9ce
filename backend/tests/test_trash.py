from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from cloudvault.common.errors import APIError, Forbidden, NotFound, StoreUnavailable
from cloudvault.extensions import db
from cloudvault.models import File, Folder, Share, SharePermission, User, utc_now
from cloudvault.trash.consistency import PurgeOutcome, purge_file_record
from cloudvault.trash.service import TrashService


def _alice() -> User:
    return User.query.filter_by(username="alice").one()


def _service(store) -> TrashService:  # type: ignore[no-untyped-def]
    return TrashService(store, retention_days=7, chunk_size=2, max_depth=16)


def test_soft_delete_keeps_object_and_quota(ctx, factory, store):
    alice = _alice()
    document = factory.file(alice, "doc.txt", size=100)
    key = document.r2_object_key

    _service(store).soft_delete_file(factory.context(alice), document.id)

    record = db.session.get(File, document.id)
    assert record.deleted_at is not None
    assert record.purge_at is not None
    assert store.head_object(key) is True
    assert store.delete_calls == []
    assert db.session.get(User, alice.id).quota_used_bytes == 100


def test_folder_soft_delete_cascades_in_one_batch(ctx, factory, store):
    alice = _alice()
    root = factory.folder(alice, "root")
    child = factory.folder(alice, "child", root)
    nested = factory.file(alice, "nested.txt", child)
    top = factory.file(alice, "top.txt", root)

    _service(store).soft_delete_folder(factory.context(alice), root.uuid)

    batch_ids = {
        db.session.get(Folder, root.id).trash_batch_id,
        db.session.get(Folder, child.id).trash_batch_id,
        db.session.get(File, nested.id).trash_batch_id,
        db.session.get(File, top.id).trash_batch_id,
    }
    assert len(batch_ids) == 1
    assert None not in batch_ids


def test_restore_only_uncascades_same_batch(ctx, factory, store):
    alice = _alice()
    service = _service(store)
    context = factory.context(alice)
    root = factory.folder(alice, "root")
    kept = factory.file(alice, "kept.txt", root)
    separately = factory.file(alice, "separately.txt", root)

    service.soft_delete_file(context, separately.id)
    service.soft_delete_folder(context, root.uuid)
    service.restore_folder(context, root.uuid)

    assert db.session.get(Folder, root.id).deleted_at is None
    assert db.session.get(File, kept.id).deleted_at is None
    assert db.session.get(File, separately.id).deleted_at is not None


def test_restore_requires_parent_restored_first(ctx, factory, store):
    alice = _alice()
    service = _service(store)
    context = factory.context(alice)
    root = factory.folder(alice, "root")
    document = factory.file(alice, "doc.txt", root)
    service.soft_delete_folder(context, root.uuid)

    with pytest.raises(APIError) as raised:
        service.restore_file(context, document.id)
    assert raised.value.code == "PARENT_TRASHED"


def test_force_delete_removes_both_sides_exactly_once(ctx, factory, store):
    alice = _alice()
    document = factory.file(alice, "doc.txt", size=64)
    key = document.r2_object_key
    service = _service(store)
    context = factory.context(alice)

    service.force_delete_file(context, document.id)

    assert db.session.get(File, document.id) is None
    assert store.head_object(key) is False
    assert store.delete_calls == [key]
    assert db.session.get(User, alice.id).quota_used_bytes == 0

    with pytest.raises(NotFound):
        service.force_delete_file(context, document.id)
    assert store.delete_calls == [key]


def test_store_failure_leaves_item_trashed(ctx, factory, store):
    alice = _alice()
    document = factory.file(alice, "doc.txt", size=64)
    store.unavailable = True

    with pytest.raises(StoreUnavailable):
        _service(store).force_delete_file(factory.context(alice), document.id)

    record = db.session.get(File, document.id)
    assert record is not None
    assert record.deleted_at is not None
    assert db.session.get(User, alice.id).quota_used_bytes == 64


def test_repeat_purge_is_absent_without_double_quota_reclaim(ctx, factory, store):
    alice = _alice()
    first = factory.file(alice, "first.txt", size=10)
    second = factory.file(alice, "second.txt", size=20)
    service = _service(store)
    service.bulk_delete(factory.context(alice), file_ids=[first.id, second.id])

    assert purge_file_record(first.id, store) is PurgeOutcome.PURGED
    assert purge_file_record(first.id, store) is PurgeOutcome.ABSENT
    assert db.session.get(User, alice.id).quota_used_bytes == 20


def test_quota_never_goes_negative(ctx, factory, store):
    alice = _alice()
    document = factory.file(alice, "doc.txt", size=50)
    alice.quota_used_bytes = 10
    db.session.commit()

    _service(store).force_delete_file(factory.context(alice), document.id)
    assert db.session.get(User, alice.id).quota_used_bytes == 0


def test_bulk_delete_is_all_or_nothing(ctx, factory, store):
    alice = _alice()
    bob = factory.user("bob")
    mine = factory.file(alice, "mine.txt")
    theirs = factory.file(bob, "theirs.txt")
    folder = factory.folder(alice, "folder")

    with pytest.raises(Forbidden) as raised:
        _service(store).bulk_delete(factory.context(alice), file_ids=[mine.id, theirs.id], folder_uuids=[folder.uuid])

    assert raised.value.details["target_id"] == theirs.id
    assert db.session.get(File, mine.id).deleted_at is None
    assert db.session.get(Folder, folder.id).deleted_at is None
    assert db.session.get(File, theirs.id).deleted_at is None


def test_bulk_delete_shared_editor_is_rejected(ctx, factory, store):
    alice = _alice()
    bob = factory.user("bob")
    folder = factory.folder(alice, "team")
    document = factory.file(alice, "doc.txt", folder)
    factory.share(folder, alice, bob, SharePermission.EDIT)

    with pytest.raises(Forbidden) as raised:
        _service(store).bulk_delete(factory.context(bob), file_ids=[document.id])
    assert raised.value.reason == "INSUFFICIENT_SHARE_LEVEL"
    assert db.session.get(File, document.id).deleted_at is None


def test_bulk_delete_ignores_unknown_folders(ctx, factory, store):
    alice = _alice()
    document = factory.file(alice, "doc.txt")
    folder = factory.folder(alice, "folder")

    result = _service(store).bulk_delete(
        factory.context(alice),
        file_ids=[document.id],
        folder_uuids=[folder.uuid, "00000000-0000-0000-0000-000000000000"],
    )
    assert result.deleted_files == 1
    assert result.deleted_folders == 1


def test_bulk_delete_unknown_file_fails(ctx, factory, store):
    alice = _alice()
    document = factory.file(alice, "doc.txt")

    with pytest.raises(NotFound):
        _service(store).bulk_delete(factory.context(alice), file_ids=[document.id, "missing"])
    assert db.session.get(File, document.id).deleted_at is None


def test_folder_purge_is_depth_first(ctx, factory, store):
    alice = _alice()
    root = factory.folder(alice, "root")
    child = factory.folder(alice, "child", root)
    grandchild = factory.folder(alice, "grandchild", child)
    deep = factory.file(alice, "deep.txt", grandchild, size=5)
    shallow = factory.file(alice, "shallow.txt", root, size=7)
    factory.share(child, alice, factory.user("bob"), SharePermission.VIEW)

    result = _service(store).force_delete_folder(factory.context(alice), root.uuid)

    assert result.purged_files == 2
    assert result.purged_folders == 3
    assert store.delete_calls[0] == deep.r2_object_key
    assert shallow.r2_object_key in store.delete_calls
    assert db.session.scalars(select(Folder.id)).all() == []
    assert db.session.scalars(select(Share.id)).all() == []
    assert db.session.get(User, alice.id).quota_used_bytes == 0


def test_partial_folder_purge_keeps_parents(ctx, factory, store):
    alice = _alice()
    root = factory.folder(alice, "root")
    child = factory.folder(alice, "child", root)
    factory.file(alice, "doc.txt", child)
    service = _service(store)
    service.soft_delete_folder(factory.context(alice), root.uuid)

    store.unavailable = True
    with pytest.raises(StoreUnavailable):
        service.force_delete_folder(factory.context(alice), root.uuid)

    assert db.session.get(Folder, root.id) is not None
    assert db.session.get(Folder, child.id) is not None


def test_sweep_purges_only_expired_items_and_is_idempotent(ctx, factory, store):
    alice = _alice()
    service = _service(store)
    context = factory.context(alice)
    old_files = [factory.file(alice, f"old-{index}.txt", size=1) for index in range(3)]
    fresh = factory.file(alice, "fresh.txt", size=1)
    folder = factory.folder(alice, "old-folder")
    factory.file(alice, "inside.txt", folder, size=1)

    for record in old_files:
        service.soft_delete_file(context, record.id)
    service.soft_delete_folder(context, folder.uuid)
    later = utc_now() + timedelta(days=8)
    service.soft_delete_file(context, fresh.id)
    fresh_record = db.session.get(File, fresh.id)
    fresh_record.purge_at = later + timedelta(days=1)
    db.session.commit()

    result = service.purge_expired(now=later)
    assert result.purged_files == 4
    assert result.purged_folders == 1
    assert result.failed == []
    assert db.session.get(File, fresh.id) is not None

    again = service.purge_expired(now=later)
    assert again.purged_files == 0
    assert again.purged_folders == 0


def test_sweep_retries_after_store_outage(ctx, factory, store):
    alice = _alice()
    service = _service(store)
    document = factory.file(alice, "doc.txt", size=3)
    service.soft_delete_file(factory.context(alice), document.id)
    later = utc_now() + timedelta(days=8)

    store.unavailable = True
    first = service.purge_expired(now=later)
    assert first.failed == [f"file:{document.id}"]
    assert db.session.get(File, document.id) is not None

    store.unavailable = False
    second = service.purge_expired(now=later)
    assert second.purged_files == 1
    assert db.session.get(File, document.id) is None


def test_empty_trash_purges_only_own_items(ctx, factory, store):
    alice = _alice()
    bob = factory.user("bob")
    service = _service(store)
    mine = factory.file(alice, "mine.txt")
    folder = factory.folder(alice, "folder")
    factory.file(alice, "nested.txt", folder)
    theirs = factory.file(bob, "theirs.txt")
    service.soft_delete_file(factory.context(alice), mine.id)
    service.soft_delete_folder(factory.context(alice), folder.uuid)
    service.soft_delete_file(factory.context(bob), theirs.id)

    result = service.empty_trash(factory.context(alice))

    assert result.purged_files == 2
    assert result.purged_folders == 1
    assert db.session.get(File, theirs.id) is not None
    assert TrashService.list_trash(alice.id) == {"files": [], "folders": []}


def test_purge_command_reports_sweep(app, factory, store):
    with app.app_context():
        alice = _alice()
        document = factory.file(alice, "doc.txt")
        TrashService.from_app().soft_delete_file(factory.context(alice), document.id)
        record = db.session.get(File, document.id)
        record.purge_at = utc_now() - timedelta(minutes=1)
        db.session.commit()
        file_id = document.id

    result = app.test_cli_runner().invoke(args=["trash", "purge"])

    assert result.exit_code == 0, result.output
    assert "purged files=1 folders=0 failed=0" in result.output
    with app.app_context():
        assert db.session.get(File, file_id) is None


def test_bulk_delete_then_folder_restore_brings_back_everything(ctx, factory, store):
    alice = _alice()
    service = _service(store)
    context = factory.context(alice)
    photos = factory.folder(alice, "photos")
    sub = factory.folder(alice, "sub", photos)
    picture = factory.file(alice, "a.jpg", photos)

    result = service.bulk_delete(context, file_ids=[picture.id], folder_uuids=[photos.uuid, sub.uuid])
    assert result.deleted_files == 1
    assert result.deleted_folders == 1

    service.restore_folder(context, photos.uuid)

    assert db.session.get(Folder, photos.id).deleted_at is None
    assert db.session.get(Folder, sub.id).deleted_at is None
    assert db.session.get(File, picture.id).deleted_at is None


def _folder_with_late_upload(factory, service, context, alice):  # type: ignore[no-untyped-def]
    folder = factory.folder(alice, "busy")
    service.soft_delete_folder(context, folder.uuid)
    factory.file(alice, "late.txt", folder)
    return folder


def test_sweep_skips_folder_that_gained_children(ctx, factory, store):
    alice = _alice()
    service = _service(store)
    context = factory.context(alice)
    busy = _folder_with_late_upload(factory, service, context, alice)
    quiet = factory.folder(alice, "quiet")
    service.soft_delete_folder(context, quiet.uuid)

    result = service.purge_expired(now=utc_now() + timedelta(days=8))

    assert result.failed == [f"folder:{busy.id}"]
    assert result.purged_folders == 1
    assert db.session.get(Folder, busy.id) is not None
    assert db.session.get(Folder, quiet.id) is None


def test_empty_trash_continues_past_busy_folder(ctx, factory, store):
    alice = _alice()
    service = _service(store)
    context = factory.context(alice)
    busy = _folder_with_late_upload(factory, service, context, alice)
    leftover = factory.file(alice, "leftover.txt")
    service.soft_delete_file(context, leftover.id)

    result = service.empty_trash(context)

    assert result.failed == [f"folder:{busy.id}"]
    assert result.purged_files == 1
    assert db.session.get(File, leftover.id) is None
