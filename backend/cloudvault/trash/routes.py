from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from ..common.errors import APIError
from ..common.rbac import current_context
from .service import TrashService


trash_bp = Blueprint("trash", __name__, url_prefix="/trash")


def _id_list(payload: dict, key: str) -> list[str]:
    values = payload.get(key) or []
    if not isinstance(values, list):
        raise APIError(400, "INVALID_PARAMETER", f"{key} must be a list.")
    return [str(value) for value in values if value not in (None, "")]


@trash_bp.get("")
@jwt_required()
def list_trash():
    user, _ = current_context()
    return jsonify(TrashService.list_trash(user.id))


@trash_bp.post("/bulk-delete")
@jwt_required()
def bulk_delete():
    _, context = current_context()
    payload = request.get_json(silent=True) or {}
    result = TrashService.from_app().bulk_delete(
        context,
        file_ids=_id_list(payload, "file_ids"),
        folder_uuids=_id_list(payload, "folder_ids"),
    )
    return jsonify(result.to_dict())


@trash_bp.post("/files/<file_id>/restore")
@jwt_required()
def restore_file(file_id: str):
    _, context = current_context()
    record = TrashService.from_app().restore_file(context, file_id)
    return jsonify({"item": record.to_dict()})


@trash_bp.post("/folders/<folder_uuid>/restore")
@jwt_required()
def restore_folder(folder_uuid: str):
    _, context = current_context()
    folder = TrashService.from_app().restore_folder(context, folder_uuid)
    return jsonify({"item": folder.to_dict()})


@trash_bp.delete("/files/<file_id>")
@jwt_required()
def force_delete_file(file_id: str):
    _, context = current_context()
    TrashService.from_app().force_delete_file(context, file_id)
    return jsonify({"deleted": True})


@trash_bp.delete("/folders/<folder_uuid>")
@jwt_required()
def force_delete_folder(folder_uuid: str):
    _, context = current_context()
    result = TrashService.from_app().force_delete_folder(context, folder_uuid)
    return jsonify({"deleted": True, **result.to_dict()})


@trash_bp.delete("")
@jwt_required()
def empty_trash():
    _, context = current_context()
    result = TrashService.from_app().empty_trash(context)
    return jsonify(result.to_dict()), 207 if result.failed else 200
