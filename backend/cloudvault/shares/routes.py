from __future__ import annotations

import hashlib
import secrets
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request, send_file
from flask_jwt_extended import jwt_required
from sqlalchemy import func, or_

from ..access import Action, authorize
from ..common.audit import record_activity
from ..common.errors import APIError, Forbidden, NotFound
from ..common.object_store import get_object_store
from ..common.rbac import current_context
from ..common.tree import FolderAncestry
from ..extensions import db
from ..models import File, Folder, PermissionSlug, Share, SharePermission, User, utc_now


shares_bp = Blueprint("shares", __name__, url_prefix="/shares")
public_shares_bp = Blueprint("public_shares", __name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _parse_permission(value: str | None) -> SharePermission:
    normalized = (value or SharePermission.VIEW.value).strip().lower()
    try:
        return SharePermission(normalized)
    except ValueError as error:
        raise APIError(400, "INVALID_PERMISSION", "Permission must be 'view' or 'edit'.") from error


def _parse_expiry(value):  # type: ignore[no-untyped-def]
    if value in (None, ""):
        return None
    try:
        days = int(value)
    except (TypeError, ValueError) as error:
        raise APIError(400, "INVALID_PARAMETER", "expires_in_days must be an integer.") from error
    if days <= 0 or days > 3650:
        raise APIError(400, "INVALID_PARAMETER", "expires_in_days must be between 1 and 3650.")
    return utc_now() + timedelta(days=days)


def _resolve_target(file_id: str | None, folder_uuid: str | None) -> File | Folder:
    if bool(file_id) == bool(folder_uuid):
        raise APIError(400, "INVALID_TARGET", "Exactly one of file_id or folder_id is required.")
    if file_id:
        record = db.session.get(File, str(file_id))
        if record is None or record.is_trashed:
            raise NotFound("File not found.", {"file_id": file_id})
        return record
    folder = Folder.query.filter_by(uuid=str(folder_uuid)).one_or_none()
    if folder is None or folder.is_trashed:
        raise NotFound("Folder not found.", {"folder_id": folder_uuid})
    return folder


def _target_filter(target: File | Folder):  # type: ignore[no-untyped-def]
    if isinstance(target, File):
        return Share.file_id == target.id
    return Share.folder_id == target.id


def _target_payload(share: Share) -> dict | None:
    target = share.file if share.file_id is not None else share.folder
    return target.to_dict() if target is not None else None


@shares_bp.post("")
@jwt_required()
def create_or_update_share():
    actor, context = current_context()
    if not context.has_permission(PermissionSlug.SHARES_CREATE.value) and not context.has_permission(
        PermissionSlug.SHARES_MANAGE_ANY.value
    ):
        raise Forbidden("ADMIN_REQUIRED", "You cannot create shares.")

    payload = request.get_json(silent=True) or {}
    target = _resolve_target(payload.get("file_id"), payload.get("folder_id"))
    authorize(context, Action.SHARE, target)

    permission = _parse_permission(payload.get("permission"))
    expires_at = _parse_expiry(payload.get("expires_in_days"))
    username = (payload.get("username") or "").strip()

    raw_token: str | None = None
    created = True
    if username:
        recipient = User.query.filter(func.lower(User.username) == username.lower()).one_or_none()
        if recipient is None:
            raise NotFound("User not found.", {"username": username})
        if recipient.id == target.owner_id:
            raise APIError(400, "INVALID_SHARE", "Owner already has full access.")

        share = Share.query.filter(
            _target_filter(target), Share.shared_by == actor.id, Share.shared_with == recipient.id
        ).one_or_none()
        if share is None:
            share = Share(shared_by=actor.id, shared_with=recipient.id)
        else:
            created = False
    else:
        raw_token = secrets.token_urlsafe(32)
        share = Share(shared_by=actor.id, shared_with=None, token_hash=hash_token(raw_token))

    if isinstance(target, File):
        share.file_id = target.id
    else:
        share.folder_id = target.id
    share.permission = permission.value
    share.expires_at = expires_at

    db.session.add(share)
    db.session.commit()
    record_activity(
        "share.upsert",
        actor,
        "share",
        share.id,
        {"permission": share.permission, "guest_link": share.is_guest_link, "created": created},
    )

    body = {"share": share.to_dict(), "created": created}
    if raw_token is not None:
        body["token"] = raw_token
        body["public_url"] = f"{request.host_url.rstrip('/')}/public/shares/{raw_token}"
    return jsonify(body), 201 if created else 200


@shares_bp.get("")
@jwt_required()
def list_target_shares():
    _, context = current_context()
    target = _resolve_target(request.args.get("file_id"), request.args.get("folder_id"))
    authorize(context, Action.SHARE, target)

    shares = Share.query.filter(_target_filter(target)).order_by(Share.created_at.desc()).all()
    return jsonify({"items": [share.to_dict() for share in shares]})


@shares_bp.delete("/<share_id>")
@jwt_required()
def revoke_share(share_id: str):
    actor, context = current_context()

    share = db.session.get(Share, share_id)
    if share is None:
        raise NotFound("Share not found.", {"share_id": share_id})

    if share.shared_by != actor.id:
        target = share.file if share.file_id is not None else share.folder
        if target is None:
            raise NotFound("Shared item no longer exists.")
        authorize(context, Action.SHARE, target)

    db.session.delete(share)
    db.session.commit()
    record_activity("share.revoke", actor, "share", share_id)
    return jsonify({"deleted": True})


@shares_bp.get("/shared-with-me")
@jwt_required()
def shared_with_me():
    user, _ = current_context()
    now = utc_now()

    shares = (
        Share.query.filter(Share.shared_with == user.id, or_(Share.expires_at.is_(None), Share.expires_at > now))
        .order_by(Share.created_at.desc())
        .all()
    )
    items = []
    for share in shares:
        item = _target_payload(share)
        if item is None or item.get("deleted_at"):
            continue
        items.append({"share": share.to_dict(), "item": item})
    return jsonify({"items": items})


@shares_bp.get("/shared-by-me")
@jwt_required()
def shared_by_me():
    user, _ = current_context()
    shares = Share.query.filter(Share.shared_by == user.id).order_by(Share.created_at.desc()).all()
    return jsonify({"items": [{"share": share.to_dict(), "item": _target_payload(share)} for share in shares]})


def _validated_guest_share(token: str) -> Share:
    share = Share.query.filter(Share.token_hash == hash_token(token), Share.shared_with.is_(None)).one_or_none()
    if share is None:
        raise NotFound("Share link not found.")
    if share.is_expired():
        raise APIError(410, "SHARE_EXPIRED", "This share link has expired.")
    target = share.file if share.file_id is not None else share.folder
    if target is None or target.is_trashed:
        raise NotFound("Shared item no longer exists.")
    return share


def _within_share(share: Share, folder_id: int | None) -> bool:
    if folder_id is None or share.folder_id is None:
        return False
    return FolderAncestry(current_app.config["MAX_FOLDER_DEPTH"]).is_within(folder_id, share.folder_id)


@public_shares_bp.get("/public/shares/<string:token>")
def public_share_root(token: str):
    share = _validated_guest_share(token)
    if share.file is not None:
        return jsonify({"share": share.to_dict(), "item": share.file.to_dict()})

    root = share.folder
    folder_uuid = request.args.get("folder_id")
    current = root
    if folder_uuid:
        current = Folder.query.filter_by(uuid=folder_uuid).one_or_none()
        if current is None or current.is_trashed:
            raise NotFound("Folder not found.", {"folder_id": folder_uuid})
        if not _within_share(share, current.id):
            raise Forbidden("NO_SHARE", "Requested folder is outside this share.")

    folders = (
        Folder.query.filter(Folder.parent_id == current.id, Folder.deleted_at.is_(None)).order_by(Folder.name.asc()).all()
    )
    files = File.query.filter(File.folder_id == current.id, File.deleted_at.is_(None)).order_by(File.name.asc()).all()
    return jsonify(
        {
            "share": share.to_dict(),
            "root": root.to_dict(),
            "folder": current.to_dict(),
            "folders": [item.to_dict() for item in folders],
            "files": [item.to_dict() for item in files],
        }
    )


@public_shares_bp.get("/public/shares/<string:token>/download/<file_id>")
def public_share_download(token: str, file_id: str):
    share = _validated_guest_share(token)

    record = db.session.get(File, file_id)
    if record is None or record.is_trashed:
        raise NotFound("File not found.", {"file_id": file_id})
    if share.file_id is not None:
        if record.id != share.file_id:
            raise Forbidden("NO_SHARE", "Requested file is outside this share.")
    elif not _within_share(share, record.folder_id):
        raise Forbidden("NO_SHARE", "Requested file is outside this share.")

    body, content_type = get_object_store().get_object(record.r2_object_key)
    return send_file(
        body,
        as_attachment=True,
        download_name=record.name,
        mimetype=record.mime_type or content_type or "application/octet-stream",
    )
