from __future__ import annotations

import os
import re
from pathlib import PurePosixPath
from uuid import uuid4

from werkzeug.datastructures import FileStorage

from .errors import APIError


INVALID_NAME_PATTERN = re.compile(r"[\\/\x00]")


def validate_node_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise APIError(400, "INVALID_NAME", "Name cannot be empty.")
    if len(cleaned) > 255:
        raise APIError(400, "INVALID_NAME", "Name must be <= 255 characters.")
    if INVALID_NAME_PATTERN.search(cleaned):
        raise APIError(400, "INVALID_NAME", "Name contains invalid characters.")
    if cleaned in {".", ".."}:
        raise APIError(400, "INVALID_NAME", "Reserved name.")
    return cleaned


def new_object_key(owner_id: int, filename: str) -> str:
    ext = PurePosixPath(filename).suffix.lower()
    return f"users/{owner_id}/{uuid4().hex}{ext}"


def upload_size(file_obj: FileStorage) -> int:
    stream = file_obj.stream
    current = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(current)
    return size
