"""
web/routes.py -- Jinja2 template routes for the Tonka web UI (route group "web").

Every route here sits behind the "web" gateway: the session authenticator has
already run (request.state.user is set for signed-in users, absent for
anonymous ones) and signed links have had their parameter hash checked.

Routes:
  GET /                    -- home page; links to the user's profile with a signed URL
  GET /profile/{user_id}   -- profile page (sign-in required)
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from auth.models import User
from auth.store import UserStore
from core.config import get_settings
from web.templating import templates

logger = logging.getLogger("tonka.web")

_settings = get_settings()

router = APIRouter()

_PROFILE_TABS = ("overview", "security")


def _require_user(request: Request) -> Optional[RedirectResponse]:
    """Return a redirect to the login page if nobody is signed in, None if OK.

    Call at the top of protected route handlers:
        if redirect := _require_user(request):
            return redirect
    """
    if getattr(request.state, "user", None) is None:
        return RedirectResponse(f"{_settings.login_route}?next={request.url.path}", status_code=302)
    return None


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    user: Optional[User] = getattr(request.state, "user", None)
    return templates.TemplateResponse(
        request,
        "home.html",
        {"app_name": _settings.app_name, "user": user},
    )


@router.get("/profile/{user_id}", response_class=HTMLResponse)
def profile(request: Request, user_id: int, tab: str = "overview") -> HTMLResponse:
    """Show a user's profile.

    The home page links here with a signed URL, so editing user_id or tab in
    the address bar is caught by the tampering stage before this runs.
    """
    if redirect := _require_user(request):
        return redirect
    if tab not in _PROFILE_TABS:
        tab = "overview"
    store: UserStore = request.app.state.user_store
    subject = store.get_by_id(user_id)
    if subject is None:
        raise HTTPException(status_code=404, detail="User not found.")
    viewer: User = request.state.user
    if viewer.id != subject.id and viewer.role != "admin":
        raise HTTPException(status_code=403, detail="You may only view your own profile.")
    return templates.TemplateResponse(
        request,
        "profile.html",
        {"app_name": _settings.app_name, "user": viewer, "subject": subject, "tab": tab, "tabs": _PROFILE_TABS},
    )
