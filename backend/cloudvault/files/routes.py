from __future__ import annotations

from pathlib import Path
from typing import Any

from flask import Blueprint, current_app, jsonify, request, send_file
from flask_jwt_extended import jwt_required
from sqlalchemy import update

from ..access import Action, PermissionContext, authorize
from ..common.audit import record_activity
from ..common.errors import APIError, Forbidden, NotFound
from ..common.object_store import get_object_store
from ..common.rbac import current_context
from ..common.storage import new_object_key, upload_size, validate_node_name
from ..common.tree import FolderAncestry
from ..extensions import db
from ..models import AppSettings, File, Folder, PermissionSlug, User
from ..trash.service import TrashService


files_bp = Blueprint("files", __name__, url_prefix="/files")


def _nullable_id(value: Any) -> str | None:
    if value in (None, "", "null"):
        return None
    return str(value)


def _get_active_folder(folder_uuid: str) -> Folder:
    folder = Folder.query.filter_by(uuid=folder_uuid).one_or_none()
    if folder is None or folder.is_trashed:
        raise NotFound("Folder not found.", {"folder_id": folder_uuid})
    return folder


def _get_active_file(file_id: str) -> File:
    record = db.session.get(File, file_id)
    if record is None or record.is_trashed:
        raise NotFound("File not found.", {"file_id": file_id})
    return record


def _assert_name_available(owner_id: int, folder_id: int | None, name: str, exclude: File | Folder | None = None) -> None:
    file_query = File.query.filter(
        File.owner_id == owner_id, File.folder_id == folder_id, File.name == name, File.deleted_at.is_(None)
    )
    folder_query = Folder.query.filter(
        Folder.owner_id == owner_id, Folder.parent_id == folder_id, Folder.name == name, Folder.deleted_at.is_(None)
    )
    if isinstance(exclude, File):
        file_query = file_query.filter(File.id != exclude.id)
    if isinstance(exclude, Folder):
        folder_query = folder_query.filter(Folder.id != exclude.id)
    if file_query.first() is not None or folder_query.first() is not None:
        raise APIError(409, "NAME_CONFLICT", "A file or folder with this name already exists.")


def _target_folder(context: PermissionContext, folder_uuid: str | None) -> Folder | None:
    if folder_uuid is None:
        return None
    folder = _get_active_folder(folder_uuid)
    authorize(context, Action.CREATE_CHILD, folder)
    return folder


@files_bp.get("/list")
@jwt_required()
def list_items():
    user, context = current_context()

    folder_uuid = _nullable_id(request.args.get("folder_id"))
    if folder_uuid is None:
        folder_id = None
        owner_id = user.id
    else:
        folder = _get_active_folder(folder_uuid)
        authorize(context, Action.LIST, folder)
        folder_id = folder.id
        owner_id = folder.owner_id

    folders = (
        Folder.query.filter(Folder.owner_id == owner_id, Folder.parent_id == folder_id, Folder.deleted_at.is_(None))
        .order_by(Folder.name.asc())
        .all()
    )
    files = (
        File.query.filter(File.owner_id == owner_id, File.folder_id == folder_id, File.deleted_at.is_(None))
        .order_by(File.name.asc())
        .all()
    )
    return jsonify({"folders": [item.to_dict() for item in folders], "files": [item.to_dict() for item in files]})


@files_bp.post("/folder")
@jwt_required()
def create_folder():
    user, context = current_context()

    payload = request.get_json(silent=True) or {}
    name = validate_node_name(payload.get("name") or "")
    parent = _target_folder(context, _nullable_id(payload.get("parent_id")))

    if parent is None and not context.has_permission(PermissionSlug.FOLDERS_CREATE.value):
        raise Forbidden("ADMIN_REQUIRED", "You cannot create folders.")
    owner_id = parent.owner_id if parent is not None else user.id
    parent_id = parent.id if parent is not None else None

    _assert_name_available(owner_id, parent_id, name)

    folder = Folder(name=name, owner_id=owner_id, parent_id=parent_id)
    db.session.add(folder)
    db.session.commit()
    record_activity("folder.create", user, "folder", folder.uuid, {"name": name})

    return jsonify({"item": folder.to_dict()}), 201


@files_bp.post("/upload")
@jwt_required()
def upload_file():
    user, context = current_context()

    file_obj = request.files.get("file")
    if file_obj is None:
        raise APIError(400, "INVALID_FILE", "Multipart field 'file' is required.")

    parent = _target_folder(context, _nullable_id(request.form.get("folder_id")))
    owner = parent.owner if parent is not None else user
    folder_id = parent.id if parent is not None else None

    file_name = validate_node_name(Path(file_obj.filename or "").name)
    _assert_name_available(owner.id, folder_id, file_name)

    file_size = upload_size(file_obj)
    if file_size <= 0:
        raise APIError(400, "INVALID_FILE", "File is empty.")

    settings = AppSettings.singleton()
    if file_size > settings.max_upload_size:
        raise APIError(413, "UPLOAD_TOO_LARGE", "File exceeds max upload size.")
    if not owner.has_quota_for(file_size):
        raise APIError(413, "QUOTA_EXCEEDED", "User quota exceeded.")

    object_key = new_object_key(owner.id, file_name)
    store = get_object_store()
    store.put_object(object_key, file_obj.stream, file_obj.mimetype)

    record = File(
        name=file_name,
        owner_id=owner.id,
        folder_id=folder_id,
        size_bytes=file_size,
        mime_type=file_obj.mimetype,
        r2_object_key=object_key,
    )
    try:
        db.session.add(record)
        db.session.execute(
            update(User)
            .where(User.id == owner.id)
            .values(quota_used_bytes=User.quota_used_bytes + file_size)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        store.delete_object(object_key)
        raise

    record_activity("file.upload", user, "file", record.id, {"name": file_name, "size_bytes": file_size})
    return jsonify({"item": record.to_dict()}), 201


@files_bp.get("/<file_id>")
@jwt_required()
def file_metadata(file_id: str):
    _, context = current_context()
    record = _get_active_file(file_id)
    authorize(context, Action.READ, record)
    return jsonify({"item": record.to_dict()})


@files_bp.get("/<file_id>/download")
@jwt_required()
def download_file(file_id: str):
    _, context = current_context()
    record = _get_active_file(file_id)
    authorize(context, Action.DOWNLOAD, record)

    body, content_type = get_object_store().get_object(record.r2_object_key)
    return send_file(
        body,
        as_attachment=True,
        download_name=record.name,
        mimetype=record.mime_type or content_type or "application/octet-stream",
    )


@files_bp.patch("/<file_id>")
@jwt_required()
def update_file(file_id: str):
    user, context = current_context()
    record = _get_active_file(file_id)
    payload = request.get_json(silent=True) or {}

    target_name = record.name
    if "name" in payload:
        authorize(context, Action.RENAME, record)
        target_name = validate_node_name(payload.get("name") or "")

    target_folder_id = record.folder_id
    if "folder_id" in payload:
        authorize(context, Action.MOVE, record)
        target = _target_folder(context, _nullable_id(payload.get("folder_id")))
        if target is not None and target.owner_id != record.owner_id:
            raise APIError(400, "INVALID_MOVE", "Cannot move items across different owners.")
        if target is None and record.owner_id != user.id:
            raise APIError(400, "INVALID_MOVE", "Only the owner can move an item to the root.")
        target_folder_id = target.id if target is not None else None

    _assert_name_available(record.owner_id, target_folder_id, target_name, exclude=record)

    record.name = target_name
    record.folder_id = target_folder_id
    db.session.commit()
    record_activity("file.update", user, "file", record.id, {"name": target_name})

    return jsonify({"item": record.to_dict()})


@files_bp.delete("/<file_id>")
@jwt_required()
def delete_file(file_id: str):
    _, context = current_context()
    record = TrashService.from_app().soft_delete_file(context, file_id)
    return jsonify({"item": record.to_dict()})


@files_bp.get("/folders/<folder_uuid>")
@jwt_required()
def folder_metadata(folder_uuid: str):
    _, context = current_context()
    folder = _get_active_folder(folder_uuid)
    authorize(context, Action.READ, folder)
    return jsonify({"item": folder.to_dict()})


@files_bp.patch("/folders/<folder_uuid>")
@jwt_required()
def update_folder(folder_uuid: str):
    user, context = current_context()
    folder = _get_active_folder(folder_uuid)
    payload = request.get_json(silent=True) or {}

    target_name = folder.name
    if "name" in payload:
        authorize(context, Action.RENAME, folder)
        target_name = validate_node_name(payload.get("name") or "")

    target_parent_id = folder.parent_id
    if "parent_id" in payload:
        authorize(context, Action.MOVE, folder)
        target = _target_folder(context, _nullable_id(payload.get("parent_id")))
        if target is not None:
            if target.owner_id != folder.owner_id:
                raise APIError(400, "INVALID_MOVE", "Cannot move items across different owners.")
            ancestry = FolderAncestry(current_app.config["MAX_FOLDER_DEPTH"])
            if ancestry.is_within(target.id, folder.id):
                raise APIError(400, "INVALID_MOVE", "Cannot move a folder into itself.")
        elif folder.owner_id != user.id:
            raise APIError(400, "INVALID_MOVE", "Only the owner can move an item to the root.")
        target_parent_id = target.id if target is not None else None

    _assert_name_available(folder.owner_id, target_parent_id, target_name, exclude=folder)

    folder.name = target_name
    folder.parent_id = target_parent_id
    db.session.commit()
    record_activity("folder.update", user, "folder", folder.uuid, {"name": target_name})

    return jsonify({"item": folder.to_dict()})


@files_bp.delete("/folders/<folder_uuid>")
@jwt_required()
def delete_folder(folder_uuid: str):
    _, context = current_context()
    folder = TrashService.from_app().soft_delete_folder(context, folder_uuid)
    return jsonify({"item": folder.to_dict()})
