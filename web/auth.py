"""
web/auth.py -- Login and logout routes (route group "auth").

Mounted at startup because the session authenticator stage declares this
group in its boot hook: offline sessions are redirected to /login, so the
login routes must exist whenever that stage is configured.

Routes:
  GET  /login   -- login form (bypasses both gateways, see api/main.py)
  POST /login   -- verify password, open a server-side session, redirect next
  POST /logout  -- revoke the session, redirect to /login

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [C2] next= is only followed when it is a server-local path.
  [M3] ?error= is mapped through a whitelist; the raw value never reaches HTML.
  [M5] Cache-Control: no-store on login responses.
  Session fixation: a successful login always opens a NEW session id and
  revokes the one the browser presented, if any.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from api.limiter import limiter, login_limit
from auth.sessions import SESSION_KEY, resolve_principal
from auth.store import UserStore
from auth.tokens import authenticate_user
from core.config import get_settings
from web.templating import templates

logger = logging.getLogger("tonka.web.auth")

router = APIRouter(tags=["Web UI"])

_settings = get_settings()

# Whitelist mapping for ?error= query params on /login [M3].
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid username or password.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]"""
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


@router.get(_settings.login_route, response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page. Users with a live session go straight to /."""
    store: UserStore = request.app.state.user_store
    principal = resolve_principal(request.session, store, _settings.session_lifetime_seconds)
    if principal is not None and principal.is_online():
        return RedirectResponse("/", status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "app_name": _settings.app_name,
            "error_msg": error_msg,
            "expired": request.query_params.get("expired") == "1",
            "next_url": _safe_next(request.query_params.get("next")),
        },
    )


@limiter.limit(login_limit)  # [H2]
@router.post(_settings.login_route, response_class=HTMLResponse)
def login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
) -> RedirectResponse:
    """Handle username/password login form submission."""
    store: UserStore = request.app.state.user_store
    user = authenticate_user(store, username, password)  # [C1]
    if user is None:
        logger.info("Failed login for %r", username)
        return RedirectResponse(f"{_settings.login_route}?error=bad_credentials", status_code=302)

    previous = request.session.get(SESSION_KEY)
    if previous:
        store.revoke_session(previous)
    session = store.create_session(user.id)
    request.session[SESSION_KEY] = session.id
    logger.info("User %s signed in", user.username)

    resp = RedirectResponse(_safe_next(request.query_params.get("next")), status_code=302)  # [C2]
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Revoke the server-side session and drop it from the cookie."""
    session_id = request.session.get(SESSION_KEY)
    if session_id:
        request.app.state.user_store.revoke_session(session_id)
    request.session.clear()
    return RedirectResponse(_settings.login_route, status_code=302)
