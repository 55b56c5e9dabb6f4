"""
tests/conftest.py -- Shared test fixtures for Tonka tests.

This module provides:
  - store: a fresh isolated UserStore per test (helpers live in tests/helpers.py)
  - _patch_lifespan(): wires a test store into app.state and boots the gateway,
    bypassing the real startup
  - web_client: TestClient (follow_redirects=False) with two users
  - api_client: TestClient plus a member JWT and an admin JWT

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers and run_in_threadpool calls in worker
threads. Plain :memory: DBs are per-connection and would present a blank
schema to each worker thread.

Environment must be set before any core/auth import: DEBUG so get_settings()
auto-generates SECRET_KEY, ALLOWED_HOSTS so TrustedHostMiddleware accepts
"testserver", and a generous LOGIN_RATE_LIMIT so many logins per module do
not trip the limiter.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from api.main import start_gateway
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import get_settings
from tests.helpers import PASSWORD, make_store


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    Boots a fresh gateway pipeline around the test store. The purge_task is a
    long-sleeping coroutine so shutdown has a real task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        start_gateway(app, get_settings(), user_store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, UserStore, dict[str, User]], None, None]:
    """Yield (client, store, users) for web gateway integration tests.

    users has "alice" (member) and "root" (admin), both with PASSWORD.
    follow_redirects=False so tests can assert on redirect locations.
    """
    user_store = make_store("web")
    users: dict[str, User] = {}
    for username, role in (("alice", "member"), ("root", "admin")):
        uid = user_store.create_user(User(username=username, role=role, hashed_password=hash_password(PASSWORD)))
        users[username] = user_store.get_by_id(uid)

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store, users

    user_store.close()


@pytest.fixture
def web(web_client) -> tuple[TestClient, UserStore, dict[str, User]]:
    """web_client with an empty cookie jar, so every test starts anonymous."""
    client, _store, _users = web_client
    client.cookies.clear()
    return web_client


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, member_token, admin_token) for api gateway integration tests."""
    user_store = make_store("api")
    member_id = user_store.create_user(User(username="bob", role="member"))
    admin_id = user_store.create_user(User(username="ops", role="admin"))
    member_token = create_access_token(user_id=member_id, username="bob", role="member", expire_seconds=3600)
    admin_token = create_access_token(user_id=admin_id, username="ops", role="admin", expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, member_token, admin_token

    user_store.close()
