from __future__ import annotations

import io
from datetime import datetime
from pathlib import Path
from uuid import uuid4

import pytest

from cloudvault import create_app
from cloudvault.access import PermissionContext, PermissionContextBuilder
from cloudvault.bootstrap import bootstrap_defaults
from cloudvault.common.errors import NotFound, StoreUnavailable
from cloudvault.common.object_store import DeleteOutcome
from cloudvault.extensions import db
from cloudvault.models import File, Folder, Role, Share, SharePermission, User


MB = 1024 * 1024


class InMemoryObjectStore:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str | None] = {}
        self.delete_calls: list[str] = []
        self.unavailable = False

    def put_object(self, key, body, content_type=None):  # type: ignore[no-untyped-def]
        data = body if isinstance(body, bytes) else body.read()
        self.objects[key] = data
        self.content_types[key] = content_type

    def get_object(self, key):  # type: ignore[no-untyped-def]
        if key not in self.objects:
            raise NotFound("Stored object is missing.")
        return io.BytesIO(self.objects[key]), self.content_types.get(key)

    def head_object(self, key):  # type: ignore[no-untyped-def]
        return key in self.objects

    def delete_object(self, key):  # type: ignore[no-untyped-def]
        self.delete_calls.append(key)
        if self.unavailable:
            raise StoreUnavailable(details={"operation": "delete"})
        if self.objects.pop(key, None) is None:
            return DeleteOutcome.NOT_FOUND
        return DeleteOutcome.DELETED


class Factory:
    def __init__(self, store: InMemoryObjectStore) -> None:
        self.store = store

    def user(self, username: str, password: str = "password123", role: str = "user", quota: int | None = 10 * MB) -> User:
        user = User(username=username, quota_used_bytes=0, quota_limit_bytes=quota)
        user.set_password(password)
        user.roles.append(Role.query.filter_by(name=role).one())
        db.session.add(user)
        db.session.commit()
        return user

    def folder(self, owner: User, name: str, parent: Folder | None = None) -> Folder:
        folder = Folder(name=name, owner_id=owner.id, parent_id=parent.id if parent else None)
        db.session.add(folder)
        db.session.commit()
        return folder

    def file(self, owner: User, name: str, folder: Folder | None = None, size: int = 16) -> File:
        record = File(
            name=name,
            owner_id=owner.id,
            folder_id=folder.id if folder else None,
            size_bytes=size,
            mime_type="text/plain",
            r2_object_key=f"users/{owner.id}/{uuid4().hex}-{name}",
        )
        self.store.put_object(record.r2_object_key, b"x" * size, "text/plain")
        owner.quota_used_bytes += size
        db.session.add(record)
        db.session.commit()
        return record

    def share(
        self,
        target: File | Folder,
        sharer: User,
        recipient: User | None,
        permission: SharePermission = SharePermission.VIEW,
        expires_at: datetime | None = None,
    ) -> Share:
        share = Share(
            shared_by=sharer.id,
            shared_with=recipient.id if recipient else None,
            permission=permission.value,
            expires_at=expires_at,
        )
        if isinstance(target, File):
            share.file_id = target.id
        else:
            share.folder_id = target.id
        db.session.add(share)
        db.session.commit()
        return share

    @staticmethod
    def context(user: User) -> PermissionContext:
        return PermissionContextBuilder().build(db.session.get(User, user.id))


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def app(tmp_path: Path, store: InMemoryObjectStore):
    db_path = tmp_path / "test.db"

    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "JWT_SECRET_KEY": "test-secret-key-at-least-32-bytes-long",
            "DEFAULT_QUOTA_BYTES": 10 * MB,
            "MAX_UPLOAD_SIZE_BYTES": 8 * MB,
            "TRASH_RETENTION_DAYS": 7,
            "PURGE_SCHEDULER_ENABLED": False,
            "MAX_FOLDER_DEPTH": 16,
        },
        object_store=store,
    )

    with app.app_context():
        db.create_all()
        bootstrap_defaults(commit=True)

        alice = User(username="alice", quota_used_bytes=0, quota_limit_bytes=10 * MB)
        alice.set_password("alicepass")
        alice.roles.append(Role.query.filter_by(name="user").one())
        db.session.add(alice)
        db.session.commit()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def factory(store: InMemoryObjectStore) -> Factory:
    return Factory(store)


def login(client, username: str, password: str) -> dict[str, str]:
    response = client.post("/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.get_json()
    return {"Authorization": f"Bearer {response.get_json()['access_token']}"}
