from __future__ import annotations

from conftest import login

from cloudvault.extensions import db
from cloudvault.models import ActivityLog, User, UserStatus


def test_login_and_me(client):
    response = client.post("/auth/login", json={"username": "alice", "password": "alicepass"})
    assert response.status_code == 200

    payload = response.get_json()
    assert payload["refresh_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {payload['access_token']}"})
    assert me.status_code == 200
    assert me.get_json()["user"]["username"] == "alice"


def test_login_rejects_bad_password_and_logs_attempt(client, app):
    response = client.post("/auth/login", json={"username": "alice", "password": "wrong"})
    assert response.status_code == 401
    assert response.get_json()["error"]["code"] == "INVALID_CREDENTIALS"

    with app.app_context():
        assert ActivityLog.query.filter_by(action="auth.login_failed").count() == 1


def test_requests_without_token_are_rejected(client):
    response = client.get("/files/list")
    assert response.status_code == 401
    assert response.get_json()["error"]["code"] == "UNAUTHENTICATED"


def test_refresh_issues_new_access_token(client):
    response = client.post("/auth/login", json={"username": "alice", "password": "alicepass"})
    refresh_token = response.get_json()["refresh_token"]

    refreshed = client.post("/auth/refresh", headers={"Authorization": f"Bearer {refresh_token}"})
    assert refreshed.status_code == 200
    token = refreshed.get_json()["access_token"]
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 200


def test_logout_all_revokes_existing_tokens(client):
    headers = login(client, "alice", "alicepass")

    assert client.post("/auth/logout-all", headers=headers).status_code == 200

    stale = client.get("/auth/me", headers=headers)
    assert stale.status_code == 401
    assert stale.get_json()["error"]["code"] == "TOKEN_REVOKED"

    fresh = login(client, "alice", "alicepass")
    assert client.get("/auth/me", headers=fresh).status_code == 200


def test_disabled_user_cannot_login(client, app):
    with app.app_context():
        alice = User.query.filter_by(username="alice").one()
        alice.status = UserStatus.DISABLED.value
        db.session.commit()

    response = client.post("/auth/login", json={"username": "alice", "password": "alicepass"})
    assert response.status_code == 403
    assert response.get_json()["error"]["code"] == "ACCOUNT_DISABLED"


def test_status_change_blocks_live_session(client, app):
    headers = login(client, "alice", "alicepass")
    with app.app_context():
        alice = User.query.filter_by(username="alice").one()
        alice.status = UserStatus.SUSPENDED.value
        db.session.commit()

    response = client.get("/auth/me", headers=headers)
    assert response.status_code == 403
    assert response.get_json()["error"]["code"] == "ACCOUNT_DISABLED"
