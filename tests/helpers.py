"""
tests/helpers.py -- Plain helper functions shared by test modules and conftest.

Kept out of conftest.py so test modules can import them directly.
"""

from __future__ import annotations

import time
import uuid

from fastapi.testclient import TestClient
from sqlalchemy import text
from starlette.requests import Request

from auth.store import UserStore

PASSWORD = "correct-horse-battery"


def make_request(
    path: str = "/",
    query: str = "",
    headers: dict[str, str] | None = None,
    session: dict | None = None,
    method: str = "GET",
) -> Request:
    """Build a Starlette Request from a raw ASGI scope."""
    scope = {
        "type": "http",
        "method": method,
        "scheme": "http",
        "server": ("testserver", 80),
        "client": ("testclient", 50000),
        "root_path": "",
        "path": path,
        "raw_path": path.encode(),
        "query_string": query.encode(),
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()],
        "http_version": "1.1",
    }
    if session is not None:
        scope["session"] = session
    return Request(scope)


def make_store(name: str | None = None) -> UserStore:
    """Create an isolated named shared-memory store."""
    name = name or uuid.uuid4().hex
    return UserStore(db_url=f"sqlite:///file:test_auth_{name}?mode=memory&cache=shared&uri=true")


def login(client: TestClient, username: str, password: str = PASSWORD, next_url: str | None = None):
    url = "/login" if next_url is None else f"/login?next={next_url}"
    return client.post(url, data={"username": username, "password": password})


def expire_sessions(store: UserStore, user_id: int, idle_seconds: float | None = None) -> None:
    """Push every session of user_id past the idle lifetime.

    With idle_seconds, the sessions look idle for exactly that long; without
    it they look idle since the epoch (past any retention window too).
    """
    last_seen = 0 if idle_seconds is None else time.time() - idle_seconds
    with store.engine.connect() as conn:
        conn.execute(
            text("UPDATE sessions SET last_seen_at = :ts WHERE user_id = :uid"),
            {"ts": last_seen, "uid": user_id},
        )
        conn.commit()
