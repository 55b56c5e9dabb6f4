"""
tests/test_web_gateway.py -- The "web" gateway end to end: authenticator then
prevent_route_tampering.

Signed links are built with the same helper the templates use, so these tests
exercise exactly what a browser would follow.
"""

from __future__ import annotations

import re
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from api.main import select_gateway
from core.config import get_settings
from tests.helpers import expire_sessions, login
from web.templating import signed_url


def _tampered(url: str, old: str, new: str) -> str:
    path, _, query = url.partition("?")
    return path.replace(old, new) + "?" + query


class TestSignedLinks:
    def test_signed_link_accepted(self, web) -> None:
        client, _store, users = web
        login(client, "alice")
        resp = client.get(signed_url(f"/profile/{users['alice'].id}", tab="security"))
        assert resp.status_code == 200
        assert "Account active." in resp.text

    def test_home_page_links_are_signed(self, web) -> None:
        client, _store, users = web
        login(client, "alice")
        page = client.get("/").text
        link = re.search(r'href="(/profile/[^"]+)"', page).group(1).replace("&amp;", "&")
        assert "hash=" in link
        assert client.get(link).status_code == 200

    def test_tampered_path_rejected_for_live_session(self, web) -> None:
        client, _store, users = web
        login(client, "alice")
        url = signed_url(f"/profile/{users['alice'].id}", tab="overview")
        resp = client.get(_tampered(url, str(users["alice"].id), str(users["root"].id)))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "tampered_parameters"

    def test_tampered_query_rejected(self, web) -> None:
        client, _store, users = web
        login(client, "alice")
        url = signed_url(f"/profile/{users['alice'].id}", tab="overview")
        resp = client.get(url.replace("tab=overview", "tab=security"))
        assert resp.status_code == 401

    def test_expired_session_redirects_before_tamper_check(self, web) -> None:
        """Stages run in table order: the authenticator ends the request first."""
        client, store, users = web
        login(client, "alice")
        expire_sessions(store, users["alice"].id)
        url = signed_url(f"/profile/{users['alice'].id}", tab="overview")
        resp = client.get(_tampered(url, str(users["alice"].id), str(users["root"].id)))
        assert resp.status_code == 302
        assert "expired=1" in resp.headers["location"]

    def test_signed_link_with_reserved_path_characters(self, web) -> None:
        """An unroutable path still clears the tamper check, then 404s."""
        client, _store, _users = web
        url = signed_url("/files/a b?#1", tab="overview")
        assert url.startswith("/files/a%20b%3F%231?")
        assert client.get(url).status_code == 404
        resp = client.get(url.replace("a%20b", "a%20c", 1))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "tampered_parameters"

    def test_unsigned_links_are_not_checked(self, web) -> None:
        client, _store, users = web
        login(client, "alice")
        assert client.get(f"/profile/{users['alice'].id}?tab=security").status_code == 200

    def test_hash_header_checked(self, web) -> None:
        client, _store, users = web
        login(client, "alice")
        url = signed_url(f"/profile/{users['alice'].id}", tab="overview")
        digest = url.rsplit("hash=", 1)[1]
        path = f"/profile/{users['alice'].id}"
        ok = client.get(path, params={"tab": "overview"}, headers={"X-Params-Hash": digest})
        assert ok.status_code == 200
        bad = client.get(path, params={"tab": "security"}, headers={"X-Params-Hash": digest})
        assert bad.status_code == 401


class TestProfileAccess:
    def test_member_cannot_view_other_profile(self, web) -> None:
        client, _store, users = web
        login(client, "alice")
        resp = client.get(signed_url(f"/profile/{users['root'].id}", tab="overview"))
        assert resp.status_code == 403

    def test_admin_can_view_any_profile(self, web) -> None:
        client, _store, users = web
        login(client, "root")
        resp = client.get(signed_url(f"/profile/{users['alice'].id}", tab="overview"))
        assert resp.status_code == 200
        assert "alice" in resp.text

    def test_missing_profile(self, web) -> None:
        client, _store, _users = web
        login(client, "root")
        assert client.get(signed_url("/profile/99999", tab="overview")).status_code == 404


class TestOutage:
    def test_store_failure_is_503_not_redirect(self, web) -> None:
        client, store, _users = web
        login(client, "alice")
        boom = OperationalError("SELECT", {}, Exception("database is locked"))
        with patch.object(store, "get_session", side_effect=boom):
            resp = client.get("/")
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "service_unavailable"


class TestGatewaySelection:
    def test_select_gateway(self) -> None:
        settings = get_settings()
        assert select_gateway("/", settings) == "web"
        assert select_gateway("/profile/1", settings) == "web"
        assert select_gateway("/api", settings) == "api"
        assert select_gateway("/api/v1/me", settings) == "api"
        assert select_gateway("/apiary", settings) == "web"
        assert select_gateway("/login", settings) is None
        assert select_gateway("/api/v1/health", settings) is None
