"""
tests/conftest.py -- Shared test fixtures for Turnstile unit and integration tests.

This module provides:
  - engine / stores / service: isolated in-memory SQLite per test for unit tests
  - _patch_lifespan(): wires a test engine into app.state, bypassing real startup
  - api_client: TestClient plus an admin access token for API integration tests
  - make_user: creates an approved account and signs it in through the API

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API tests because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment variables must be set before any auth/core/api import so
get_settings() picks them up: DEBUG avoids the production SECRET_KEY check
and BCRYPT_ROUNDS=4 keeps hashing fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, init_state
from auth.db import create_db_engine
from auth.models import User
from auth.roles import ADMIN_ROLE, APPROVED_ROLE, RoleStore
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.tokens import Credentials
from auth.users import UserStore
from core.config import get_settings

STRONG_PASSWORD = "GoodPass1!"
ADMIN_EMAIL = "admin@turnstile.test"
ADMIN_PASSWORD = "AdminPass1!"


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


# ---------------------------------------------------------------------------
# Unit-test fixtures -- one fresh in-memory DB per test
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def engine():
    eng = create_db_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def role_store(engine) -> RoleStore:
    store = RoleStore(engine)
    store.ensure_default_roles()
    return store


@pytest.fixture
def session_store(engine) -> SessionStore:
    return SessionStore(engine)


@pytest.fixture
def credentials(settings) -> Credentials:
    return Credentials(settings)


@pytest.fixture
def service(user_store, role_store, session_store, credentials, settings) -> AuthService:
    return AuthService(user_store, role_store, session_store, credentials, settings)


@pytest.fixture
def approved_user(service, user_store, role_store):
    """Factory: register an account and approve it the way an admin would."""

    def _make(email: str | None = None, password: str = STRONG_PASSWORD) -> User:
        result = service.register(email or unique_email(), password, "Test User")
        user_store.replace_roles(result.user.id, role_store.find_by_name(APPROVED_ROLE).id)
        user_store.update_user(result.user.id, is_active=True)
        return user_store.find_with_roles(result.user.id)

    return _make


# ---------------------------------------------------------------------------
# API integration fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(engine, settings):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine into app.state exactly like production startup,
    minus the background sweep task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, engine, settings)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory database
    per test module. The admin signs in through the login route so the
    token carries a session id like any real client's.
    """
    db_name = request.module.__name__.replace(".", "_")
    engine = create_db_engine(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    settings = get_settings()
    app.router.lifespan_context = _patch_lifespan(engine, settings)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        users = app.state.user_store
        admin = users.create_user(
            User(
                email=ADMIN_EMAIL,
                password_hash=app.state.auth_service.credentials.hash_password(ADMIN_PASSWORD),
                name="Test Admin",
                is_active=True,
            )
        )
        users.assign_role(admin.id, app.state.role_store.find_by_name(ADMIN_ROLE).id)
        resp = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        token = resp.json()["data"]["tokens"]["access_token"]
        yield client, token, admin.id

    limiter.enabled = True
    engine.dispose()


@pytest.fixture
def make_user(api_client):
    """Factory: create an approved account and sign it in.

    Returns (user_id, tokens) where tokens is the "tokens" object of the
    login response.
    """
    client, _, _ = api_client

    def _make(email: str | None = None, password: str = STRONG_PASSWORD, role: str = APPROVED_ROLE):
        email = email or unique_email()
        users = app.state.user_store
        user = users.create_user(
            User(
                email=email,
                password_hash=app.state.auth_service.credentials.hash_password(password),
                name="Api User",
                is_active=True,
            )
        )
        users.assign_role(user.id, app.state.role_store.find_by_name(role).id)
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return user.id, resp.json()["data"]["tokens"]

    return _make


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
