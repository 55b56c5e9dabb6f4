"""
tests/test_auth_redirect.py -- Integration tests for the login redirect chain.

These tests run through the real ASGI stack using the web fixture
(follow_redirects=False). We assert on redirect Location headers directly --
following the redirect would hide them.

Coverage:
  - Anonymous request to a protected page -> 302 /login?next={path}
  - Offline session (idle past the lifetime) -> 302 /login?next=...&expired=1
  - Live session passes through (200, no redirect)
  - Login, logout, bad credentials, session fixation
  - Security: next= is only followed when it is a server-local path

Why integration tests over unit tests:
  The redirect chain spans the session middleware, the authenticator stage and
  the login routes. Running through ASGI catches regressions where a stage is
  dropped from the table or the login route stops bypassing the gateway.
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import text

from core.config import get_settings
from tests.helpers import expire_sessions, login


def _location(resp):
    parts = urlsplit(resp.headers["location"])
    return parts.path, parse_qs(parts.query)


class TestAuthRedirectChain:
    """The three authenticator outcomes: anonymous, offline, online."""

    def test_anonymous_home_is_allowed(self, web) -> None:
        client, _store, _users = web
        resp = client.get("/")
        assert resp.status_code == 200
        assert "Sign in" in resp.text

    def test_anonymous_profile_redirects_to_login(self, web) -> None:
        client, _store, users = web
        resp = client.get(f"/profile/{users['alice'].id}")
        assert resp.status_code == 302
        path, query = _location(resp)
        assert path == "/login"
        assert query == {"next": [f"/profile/{users['alice'].id}"]}

    def test_login_then_pages_render(self, web) -> None:
        client, _store, users = web
        resp = login(client, "alice")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert resp.headers["cache-control"] == "no-store"

        resp = client.get("/")
        assert resp.status_code == 200
        assert "Welcome back, alice" in resp.text

        resp = client.get(f"/profile/{users['alice'].id}")
        assert resp.status_code == 200
        assert "Member since" in resp.text

    def test_offline_session_redirects_with_expired_flag(self, web) -> None:
        client, store, users = web
        login(client, "alice")
        expire_sessions(store, users["alice"].id)
        resp = client.get(f"/profile/{users['alice'].id}")
        assert resp.status_code == 302
        path, query = _location(resp)
        assert path == "/login"
        assert query == {"next": [f"/profile/{users['alice'].id}"], "expired": ["1"]}

    def test_offline_session_still_redirects_after_purge(self, web) -> None:
        """The purge keeps offline rows, so the browser is still told it expired."""
        client, store, users = web
        settings = get_settings()
        login(client, "alice")
        expire_sessions(store, users["alice"].id, idle_seconds=settings.session_lifetime_seconds + 60)
        store.purge_sessions(settings.session_retention_seconds)
        resp = client.get("/")
        assert resp.status_code == 302
        path, query = _location(resp)
        assert path == "/login"
        assert query["expired"] == ["1"]

    def test_session_cookie_does_not_outlive_retention(self, web) -> None:
        client, _store, _users = web
        resp = login(client, "alice")
        cookie = resp.headers["set-cookie"].lower()
        assert f"max-age={get_settings().session_retention_seconds}" in cookie

    def test_offline_session_redirects_even_for_public_pages(self, web) -> None:
        client, store, users = web
        login(client, "alice")
        expire_sessions(store, users["alice"].id)
        resp = client.get("/")
        assert resp.status_code == 302
        assert _location(resp)[1]["expired"] == ["1"]

    def test_login_page_reachable_with_offline_session(self, web) -> None:
        """The login route bypasses the gateway, so an offline session cannot loop."""
        client, store, users = web
        login(client, "alice")
        expire_sessions(store, users["alice"].id)
        resp = client.get("/login?next=/&expired=1")
        assert resp.status_code == 200
        assert "Your session has expired" in resp.text

    def test_login_page_skipped_when_online(self, web) -> None:
        client, _store, _users = web
        login(client, "alice")
        resp = client.get("/login")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"

    def test_request_renews_session(self, web) -> None:
        client, store, users = web
        login(client, "alice")
        with store.engine.connect() as conn:
            conn.execute(
                text("UPDATE sessions SET last_seen_at = last_seen_at - 100 WHERE user_id = :uid"),
                {"uid": users["alice"].id},
            )
            conn.commit()
            stale = conn.execute(
                text("SELECT MAX(last_seen_at) FROM sessions WHERE user_id = :uid AND revoked = 0"),
                {"uid": users["alice"].id},
            ).scalar()
        assert client.get("/").status_code == 200
        with store.engine.connect() as conn:
            renewed = conn.execute(
                text("SELECT MAX(last_seen_at) FROM sessions WHERE user_id = :uid AND revoked = 0"),
                {"uid": users["alice"].id},
            ).scalar()
        assert renewed > stale


class TestLoginLogout:
    def test_bad_credentials(self, web) -> None:
        client, _store, _users = web
        resp = login(client, "alice", password="wrong-password")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=bad_credentials"
        page = client.get(resp.headers["location"])
        assert "Invalid username or password." in page.text

    def test_unknown_error_code_not_reflected(self, web) -> None:
        client, _store, _users = web
        resp = client.get("/login?error=<script>alert(1)</script>")
        assert resp.status_code == 200
        assert "<script>alert(1)</script>" not in resp.text

    def test_logout_revokes_session(self, web) -> None:
        client, store, users = web

        def live_sessions():
            with store.engine.connect() as conn:
                return conn.execute(
                    text("SELECT COUNT(*) FROM sessions WHERE user_id = :uid AND revoked = 0"),
                    {"uid": users["alice"].id},
                ).scalar()

        before = live_sessions()
        login(client, "alice")
        assert live_sessions() == before + 1
        resp = client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert live_sessions() == before
        # Cookie is gone: the next protected request is anonymous, not expired.
        resp = client.get(f"/profile/{users['alice'].id}")
        assert "expired" not in _location(resp)[1]

    def test_login_rotates_session_id(self, web) -> None:
        client, store, users = web
        with store.engine.connect() as conn:
            conn.execute(text("DELETE FROM sessions WHERE user_id = :uid"), {"uid": users["root"].id})
            conn.commit()
        login(client, "root")
        login(client, "root")
        with store.engine.connect() as conn:
            rows = conn.execute(
                text("SELECT revoked FROM sessions WHERE user_id = :uid ORDER BY created_at"),
                {"uid": users["root"].id},
            ).fetchall()
        assert sorted(r.revoked for r in rows) == [0, 1]


class TestSafeNextValidation:
    """The next= redirect parameter cannot be used for open redirects."""

    def test_next_followed_after_login(self, web) -> None:
        client, _store, users = web
        resp = login(client, "alice", next_url=f"/profile/{users['alice'].id}")
        assert resp.headers["location"] == f"/profile/{users['alice'].id}"

    @pytest.mark.parametrize("target", ["https://attacker.example", "//attacker.example", "javascript:alert(1)"])
    def test_external_next_ignored(self, web, target) -> None:
        client, _store, _users = web
        resp = login(client, "alice", next_url=target)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"

    def test_redirect_next_is_path_only(self, web) -> None:
        """The gateway carries only the path into next=, never host or query."""
        client, store, users = web
        login(client, "alice")
        expire_sessions(store, users["alice"].id)
        resp = client.get(f"/profile/{users['alice'].id}?tab=security")
        next_url = _location(resp)[1]["next"][0]
        assert next_url == f"/profile/{users['alice'].id}"
        assert "://" not in next_url
