from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Any


BASE_DIR = Path(__file__).resolve().parents[2]


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    cleaned = raw.strip()
    return cleaned or default


def env_origins() -> list[str]:
    raw_origins = os.getenv("FRONTEND_ORIGINS")
    if raw_origins:
        origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
        if origins:
            return origins

    return ["http://localhost:5173", "http://127.0.0.1:5173"]


def clamp_retention_days(value: Any, default: int = 7) -> int:
    try:
        days = int(value)
    except (TypeError, ValueError):
        days = default
    return max(1, min(90, days))


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'cloudvault.db'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-jwt-secret-key-change-me-at-least-32-bytes")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=env_int("ACCESS_TOKEN_EXPIRES_MINUTES", 15))

    FRONTEND_ORIGINS = env_origins()

    DEFAULT_QUOTA_BYTES = env_int("DEFAULT_QUOTA_BYTES", 5 * 1024 * 1024 * 1024)
    MAX_UPLOAD_SIZE_BYTES = env_int("MAX_UPLOAD_SIZE_BYTES", 100 * 1024 * 1024)

    TRASH_RETENTION_DAYS = clamp_retention_days(env_int("TRASH_RETENTION_DAYS", 7))
    PURGE_CHUNK_SIZE = max(1, env_int("PURGE_CHUNK_SIZE", 100))
    PURGE_SWEEP_INTERVAL_SECONDS = max(60, env_int("PURGE_SWEEP_INTERVAL_SECONDS", 3600))
    PURGE_SCHEDULER_ENABLED = env_bool("PURGE_SCHEDULER_ENABLED", True)
    MAX_FOLDER_DEPTH = max(1, env_int("MAX_FOLDER_DEPTH", 64))

    S3_ENDPOINT_URL = env_str("S3_ENDPOINT_URL", "")
    S3_REGION = env_str("S3_REGION", "auto")
    S3_ACCESS_KEY_ID = env_str("S3_ACCESS_KEY_ID", "")
    S3_SECRET_ACCESS_KEY = env_str("S3_SECRET_ACCESS_KEY", "")
    S3_BUCKET = env_str("S3_BUCKET", "cloudvault")

    MAX_CONTENT_LENGTH = env_int("MAX_CONTENT_LENGTH", 1024 * 1024 * 1024)
