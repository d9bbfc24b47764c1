"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth/*.

Covers:
  - the register -> approve -> login -> refresh -> logout journey
  - success and error envelopes, Cache-Control on token responses
  - validation errors listing every field, passwords never echoed
  - access gate codes: TOKEN_REQUIRED, INVALID_TOKEN, TOKEN_EXPIRED, ACCOUNT_DISABLED
  - logout-all, change-password, own session listing and closing
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import jwt

from conftest import STRONG_PASSWORD, bearer, unique_email
from core.config import get_settings

BASE = "/api/v1/auth"


def _register(client, email: str, password: str = STRONG_PASSWORD):
    return client.post(f"{BASE}/register", json={"email": email, "password": password, "name": "Alice"})


def test_end_to_end_journey(api_client):
    client, admin_token, _ = api_client
    email = unique_email("alice")

    resp = _register(client, email)
    assert resp.status_code == 201
    assert resp.headers["Cache-Control"] == "no-store"
    body = resp.json()
    assert body["success"] is True
    assert "timestamp" in body
    user = body["data"]["user"]
    assert user["is_active"] is False
    assert [r["name"] for r in user["roles"]] == ["pending"]
    assert "password_hash" not in user

    resp = client.post(f"{BASE}/login", json={"email": email, "password": STRONG_PASSWORD})
    assert resp.status_code == 401
    assert resp.json()["code"] == "ACCOUNT_DISABLED"
    assert resp.json()["success"] is False

    resp = client.patch(f"/api/v1/users/{user['id']}/approve", headers=bearer(admin_token))
    assert resp.status_code == 200
    approved = resp.json()["data"]["user"]
    assert approved["is_active"] is True
    assert [r["name"] for r in approved["roles"]] == ["client"]

    resp = client.post(f"{BASE}/login", json={"email": email, "password": STRONG_PASSWORD})
    assert resp.status_code == 200
    assert resp.headers["Cache-Control"] == "no-store"
    tokens = resp.json()["data"]["tokens"]
    assert tokens["token_type"] == "bearer"

    resp = client.post(f"{BASE}/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 200
    rotated = resp.json()["data"]["tokens"]
    assert rotated["refresh_token"] != tokens["refresh_token"]

    resp = client.post(f"{BASE}/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_REFRESH_TOKEN"

    resp = client.post(f"{BASE}/logout", json={"refresh_token": rotated["refresh_token"]})
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    # Access tokens are not revoked by logout.
    resp = client.post(f"{BASE}/verify", headers=bearer(rotated["access_token"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["valid"] is True


def test_registration_token_is_blocked_by_gate(api_client):
    client, _, _ = api_client
    tokens = _register(client, unique_email()).json()["data"]["tokens"]
    resp = client.get(f"{BASE}/me", headers=bearer(tokens["access_token"]))
    assert resp.status_code == 401
    assert resp.json()["code"] == "ACCOUNT_DISABLED"


def test_logout_always_succeeds(api_client):
    client, _, _ = api_client
    assert client.post(f"{BASE}/logout").status_code == 200
    assert client.post(f"{BASE}/logout", json={}).status_code == 200
    assert client.post(f"{BASE}/logout", json={"refresh_token": "unknown"}).status_code == 200


def test_register_validation_lists_every_field(api_client):
    client, _, _ = api_client
    resp = client.post(f"{BASE}/register", json={"name": "x"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    fields = {e["field"] for e in body["errors"]}
    assert {"email", "password", "name"} <= fields


def test_validation_error_never_echoes_passwords(api_client):
    client, _, _ = api_client
    resp = client.post(f"{BASE}/login", json={"email": "a@b.io", "password": "x" * 200})
    assert resp.status_code == 400
    errors = resp.json()["errors"]
    assert errors[0]["field"] == "password"
    assert errors[0]["value"] is None


def test_password_with_surrounding_spaces_is_kept_verbatim(api_client):
    client, admin_token, _ = api_client
    email = unique_email("spaces")
    padded = "  GoodPass1!  "
    resp = client.post(f"{BASE}/register", json={"email": f"  {email}  ", "password": padded, "name": "  Sam  "})
    assert resp.status_code == 201
    user = resp.json()["data"]["user"]
    assert user["email"] == email
    assert user["name"] == "Sam"
    client.patch(f"/api/v1/users/{user['id']}/approve", headers=bearer(admin_token))

    resp = client.post(f"{BASE}/login", json={"email": email, "password": padded})
    assert resp.status_code == 200
    resp = client.post(f"{BASE}/login", json={"email": email, "password": "GoodPass1!"})
    assert resp.json()["code"] == "INVALID_CREDENTIALS"


def test_register_weak_password(api_client):
    client, _, _ = api_client
    resp = _register(client, unique_email(), password="weak")
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "PASSWORD_WEAK"
    assert len(body["errors"]) >= 3


def test_register_invalid_and_duplicate_email(api_client):
    client, _, _ = api_client
    resp = _register(client, "not-an-email")
    assert resp.status_code == 400
    assert resp.json()["code"] == "EMAIL_INVALID"

    email = unique_email()
    assert _register(client, email).status_code == 201
    resp = _register(client, email.upper())
    assert resp.status_code == 409
    assert resp.json()["code"] == "EMAIL_ALREADY_EXISTS"


def test_login_wrong_password(api_client, make_user):
    client, _, _ = api_client
    make_user(email="wrongpw@example.com")
    resp = client.post(f"{BASE}/login", json={"email": "wrongpw@example.com", "password": "WrongPass1!"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_CREDENTIALS"
    resp = client.post(f"{BASE}/login", json={"email": "nobody@example.com", "password": "WrongPass1!"})
    assert resp.json()["code"] == "INVALID_CREDENTIALS"


def test_gate_requires_token(api_client):
    client, _, _ = api_client
    resp = client.get(f"{BASE}/me")
    assert resp.status_code == 401
    assert resp.json()["code"] == "TOKEN_REQUIRED"
    resp = client.get(f"{BASE}/me", headers={"Authorization": "Basic abc"})
    assert resp.json()["code"] == "TOKEN_REQUIRED"


def test_gate_distinguishes_expired_from_invalid(api_client):
    client, _, admin_id = api_client
    resp = client.get(f"{BASE}/me", headers=bearer("garbage"))
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_TOKEN"

    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    expired = jwt.encode(
        {"sub": str(admin_id), "user_id": admin_id, "type": "access", "iat": past, "exp": past},
        get_settings().secret_key,
        algorithm="HS256",
    )
    resp = client.get(f"{BASE}/me", headers=bearer(expired))
    assert resp.status_code == 401
    assert resp.json()["code"] == "TOKEN_EXPIRED"


def test_me_returns_profile_and_session_stats(api_client, make_user):
    client, _, _ = api_client
    user_id, tokens = make_user()
    resp = client.get(f"{BASE}/me", headers=bearer(tokens["access_token"]))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["user"]["id"] == user_id
    assert data["session_stats"]["active_sessions"] == 1


def test_logout_all_keeps_current_session(api_client, make_user):
    client, _, _ = api_client
    email = unique_email()
    _, current = make_user(email=email)
    client.post(f"{BASE}/login", json={"email": email, "password": STRONG_PASSWORD})
    client.post(f"{BASE}/login", json={"email": email, "password": STRONG_PASSWORD})

    resp = client.post(f"{BASE}/logout-all", headers=bearer(current["access_token"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["invalidated_sessions"] == 2

    sessions = client.get(f"{BASE}/sessions", headers=bearer(current["access_token"])).json()["data"]["sessions"]
    assert len(sessions) == 1
    assert sessions[0]["is_current"] is True
    assert "refresh_token" not in sessions[0]


def test_change_password(api_client, make_user):
    client, _, _ = api_client
    email = unique_email()
    _, tokens = make_user(email=email)
    headers = bearer(tokens["access_token"])

    resp = client.post(
        f"{BASE}/change-password",
        json={"current_password": "WrongPass1!", "new_password": "NewPass2@"},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_CURRENT_PASSWORD"

    resp = client.post(
        f"{BASE}/change-password",
        json={"current_password": STRONG_PASSWORD, "new_password": "NewPass2@"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert client.post(f"{BASE}/login", json={"email": email, "password": "NewPass2@"}).status_code == 200


def test_close_own_session_only(api_client, make_user):
    client, _, _ = api_client
    _, mine = make_user()
    _, theirs = make_user()
    their_sessions = client.get(f"{BASE}/sessions", headers=bearer(theirs["access_token"])).json()["data"]["sessions"]

    resp = client.delete(f"{BASE}/sessions/{their_sessions[0]['id']}", headers=bearer(mine["access_token"]))
    assert resp.status_code == 404
    assert resp.json()["code"] == "SESSION_NOT_FOUND"

    resp = client.delete(f"{BASE}/sessions/{their_sessions[0]['id']}", headers=bearer(theirs["access_token"]))
    assert resp.status_code == 200
    resp = client.post(f"{BASE}/refresh", json={"refresh_token": theirs["refresh_token"]})
    assert resp.json()["code"] == "INVALID_REFRESH_TOKEN"
