from __future__ import annotations

import enum
from typing import IO, Any, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from flask import Flask, current_app

from .errors import NotFound, StoreUnavailable


_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class DeleteOutcome(str, enum.Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


class ObjectStore(Protocol):
    def put_object(self, key: str, body: IO[bytes] | bytes, content_type: str | None = None) -> None: ...

    def get_object(self, key: str) -> tuple[IO[bytes], str | None]: ...

    def head_object(self, key: str) -> bool: ...

    def delete_object(self, key: str) -> DeleteOutcome: ...


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3ObjectStore:
    """S3-compatible object store over a boto3 client (R2, MinIO, AWS)."""

    def __init__(self, client: Any, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "S3ObjectStore":
        client = boto3.client(
            "s3",
            endpoint_url=config.get("S3_ENDPOINT_URL") or None,
            region_name=config.get("S3_REGION") or None,
            aws_access_key_id=config.get("S3_ACCESS_KEY_ID") or None,
            aws_secret_access_key=config.get("S3_SECRET_ACCESS_KEY") or None,
            config=BotoConfig(s3={"addressing_style": "path"}, retries={"max_attempts": 3, "mode": "standard"}),
        )
        return cls(client, config["S3_BUCKET"])

    def put_object(self, key: str, body: IO[bytes] | bytes, content_type: str | None = None) -> None:
        extra: dict[str, Any] = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=body, **extra)
        except (ClientError, BotoCoreError) as error:
            current_app.logger.warning("object put failed for key=%s: %s", key, error)
            raise StoreUnavailable(details={"operation": "put"}) from error

    def get_object(self, key: str) -> tuple[IO[bytes], str | None]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as error:
            if _error_code(error) in _MISSING_CODES:
                raise NotFound("Stored object is missing.") from error
            current_app.logger.warning("object get failed for key=%s: %s", key, error)
            raise StoreUnavailable(details={"operation": "get"}) from error
        except BotoCoreError as error:
            current_app.logger.warning("object get failed for key=%s: %s", key, error)
            raise StoreUnavailable(details={"operation": "get"}) from error
        return response["Body"], response.get("ContentType")

    def head_object(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as error:
            if _error_code(error) in _MISSING_CODES:
                return False
            raise StoreUnavailable(details={"operation": "head"}) from error
        except BotoCoreError as error:
            raise StoreUnavailable(details={"operation": "head"}) from error
        return True

    def delete_object(self, key: str) -> DeleteOutcome:
        if not key:
            return DeleteOutcome.NOT_FOUND
        # S3 answers 204 for absent keys too; R2 and MinIO may answer 404.
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as error:
            if _error_code(error) in _MISSING_CODES:
                return DeleteOutcome.NOT_FOUND
            current_app.logger.warning("object delete failed for key=%s: %s", key, error)
            raise StoreUnavailable(details={"operation": "delete"}) from error
        except BotoCoreError as error:
            current_app.logger.warning("object delete failed for key=%s: %s", key, error)
            raise StoreUnavailable(details={"operation": "delete"}) from error
        return DeleteOutcome.DELETED


def init_object_store(app: Flask, store: ObjectStore | None = None) -> ObjectStore:
    if store is None:
        store = S3ObjectStore.from_config(app.config)
    app.extensions["object_store"] = store
    return store


def get_object_store() -> ObjectStore:
    return current_app.extensions["object_store"]
