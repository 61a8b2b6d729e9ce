from __future__ import annotations

import io
from datetime import timedelta

from conftest import login

from cloudvault.extensions import db
from cloudvault.models import Share, utc_now


def _upload(client, headers, name: str, data: bytes, folder_id: str | None = None) -> str:  # type: ignore[no-untyped-def]
    form = {"file": (io.BytesIO(data), name)}
    if folder_id is not None:
        form["folder_id"] = folder_id
    response = client.post("/files/upload", data=form, headers=headers, content_type="multipart/form-data")
    assert response.status_code == 201, response.get_json()
    return response.get_json()["item"]["id"]


def _folder(client, headers, name: str, parent_id: str | None = None) -> str:  # type: ignore[no-untyped-def]
    response = client.post("/files/folder", json={"name": name, "parent_id": parent_id}, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["item"]["id"]


def test_internal_share_read_then_write_access(client, app, factory):
    with app.app_context():
        factory.user("bob", password="bobpass123")
    alice = login(client, "alice", "alicepass")
    bob = login(client, "bob", "bobpass123")

    folder_id = _folder(client, alice, "team")
    file_id = _upload(client, alice, "plan.txt", b"plan", folder_id)

    assert client.get(f"/files/{file_id}", headers=bob).status_code == 403

    shared = client.post("/shares", json={"folder_id": folder_id, "username": "bob", "permission": "view"}, headers=alice)
    assert shared.status_code == 201
    share_id = shared.get_json()["share"]["id"]

    assert client.get(f"/files/{file_id}", headers=bob).status_code == 200
    assert client.get(f"/files/list?folder_id={folder_id}", headers=bob).status_code == 200

    rename = client.patch(f"/files/{file_id}", json={"name": "bob.txt"}, headers=bob)
    assert rename.status_code == 403
    assert rename.get_json()["error"]["details"]["reason"] == "INSUFFICIENT_SHARE_LEVEL"

    upgraded = client.post("/shares", json={"folder_id": folder_id, "username": "bob", "permission": "edit"}, headers=alice)
    assert upgraded.status_code == 200
    assert upgraded.get_json()["created"] is False
    assert upgraded.get_json()["share"]["id"] == share_id

    assert client.patch(f"/files/{file_id}", json={"name": "bob.txt"}, headers=bob).status_code == 200
    assert client.delete(f"/files/{file_id}", headers=bob).status_code == 403

    listed = client.get("/shares/shared-with-me", headers=bob).get_json()["items"]
    assert [entry["item"]["id"] for entry in listed] == [folder_id]

    assert client.delete(f"/shares/{share_id}", headers=alice).status_code == 200
    assert client.get(f"/files/{file_id}", headers=bob).status_code == 403


def test_only_owner_may_share(client, app, factory):
    with app.app_context():
        factory.user("bob", password="bobpass123")
        factory.user("carol", password="carolpass123")
    alice = login(client, "alice", "alicepass")
    bob = login(client, "bob", "bobpass123")

    folder_id = _folder(client, alice, "team")
    client.post("/shares", json={"folder_id": folder_id, "username": "bob", "permission": "edit"}, headers=alice)

    reshare = client.post("/shares", json={"folder_id": folder_id, "username": "carol"}, headers=bob)
    assert reshare.status_code == 403
    assert reshare.get_json()["error"]["details"]["reason"] == "INSUFFICIENT_SHARE_LEVEL"


def test_share_with_owner_is_rejected(client):
    alice = login(client, "alice", "alicepass")
    file_id = _upload(client, alice, "note.txt", b"note")

    response = client.post("/shares", json={"file_id": file_id, "username": "alice"}, headers=alice)
    assert response.status_code == 400


def test_external_share_link_download(client):
    alice = login(client, "alice", "alicepass")
    file_id = _upload(client, alice, "note.txt", b"public bytes")

    created = client.post("/shares", json={"file_id": file_id}, headers=alice)
    assert created.status_code == 201
    token = created.get_json()["token"]
    assert created.get_json()["share"]["guest_link"] is True

    meta = client.get(f"/public/shares/{token}")
    assert meta.status_code == 200
    assert meta.get_json()["item"]["id"] == file_id

    download = client.get(f"/public/shares/{token}/download/{file_id}")
    assert download.status_code == 200
    assert download.data == b"public bytes"

    assert client.get("/public/shares/not-a-token").status_code == 404


def test_expired_link_is_gone(client, app):
    alice = login(client, "alice", "alicepass")
    file_id = _upload(client, alice, "note.txt", b"note")
    created = client.post("/shares", json={"file_id": file_id, "expires_in_days": 1}, headers=alice).get_json()

    with app.app_context():
        share = db.session.get(Share, created["share"]["id"])
        share.expires_at = utc_now() - timedelta(minutes=1)
        db.session.commit()

    response = client.get(f"/public/shares/{created['token']}")
    assert response.status_code == 410
    assert response.get_json()["error"]["code"] == "SHARE_EXPIRED"


def test_folder_link_is_limited_to_its_subtree(client):
    alice = login(client, "alice", "alicepass")
    shared_folder = _folder(client, alice, "shared")
    nested_folder = _folder(client, alice, "nested", shared_folder)
    private_folder = _folder(client, alice, "private")
    nested_file = _upload(client, alice, "inside.txt", b"inside", nested_folder)
    private_file = _upload(client, alice, "secret.txt", b"secret", private_folder)

    token = client.post("/shares", json={"folder_id": shared_folder}, headers=alice).get_json()["token"]

    root = client.get(f"/public/shares/{token}").get_json()
    assert [item["id"] for item in root["folders"]] == [nested_folder]

    nested = client.get(f"/public/shares/{token}?folder_id={nested_folder}")
    assert nested.status_code == 200
    assert [item["id"] for item in nested.get_json()["files"]] == [nested_file]

    assert client.get(f"/public/shares/{token}/download/{nested_file}").status_code == 200

    outside = client.get(f"/public/shares/{token}/download/{private_file}")
    assert outside.status_code == 403
    assert client.get(f"/public/shares/{token}?folder_id={private_folder}").status_code == 403


def test_trashed_target_hides_link(client):
    alice = login(client, "alice", "alicepass")
    file_id = _upload(client, alice, "note.txt", b"note")
    token = client.post("/shares", json={"file_id": file_id}, headers=alice).get_json()["token"]

    assert client.delete(f"/files/{file_id}", headers=alice).status_code == 200
    assert client.get(f"/public/shares/{token}").status_code == 404
