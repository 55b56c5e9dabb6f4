"""
auth/sessions.py -- Session principal resolution and liveness.

The browser carries only an opaque session id ("sid") inside Starlette's
signed session cookie. resolve_principal() turns that id into a Principal:
the User plus the server-side Session row. The Principal answers one question,
is_online(), and supports one mutation, authenticate(), which renews the
session's sliding expiry through the store.

Liveness rule: a principal is online when the session is not revoked, the user
is active, and the session was renewed less than lifetime_seconds ago. The
result is always a real bool -- callers compare it strictly.

Both functions here do blocking database I/O. Async callers must run them in a
thread pool.

Layer rule: no imports from api/, web/ or gateway/.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Mapping

from auth.models import Session, User

if TYPE_CHECKING:
    from auth.store import UserStore

# Key under which the session id lives in request.session.
SESSION_KEY = "sid"


class Principal:
    """The identity bound to the current web session, for one request."""

    def __init__(self, user: User, session: Session, store: UserStore, lifetime_seconds: int) -> None:
        self.user = user
        self.session = session
        self._store = store
        self._lifetime = lifetime_seconds

    def is_online(self, now: float | None = None) -> bool:
        if self.session.revoked or not self.user.is_active:
            return False
        now = time.time() if now is None else now
        return (now - self.session.last_seen_at) < self._lifetime

    def authenticate(self) -> None:
        """Renew liveness. Identity is untouched."""
        self.session.last_seen_at = self._store.touch_session(self.session.id)

    def __repr__(self) -> str:
        return f"Principal(user={self.user.username!r}, session={self.session.id[:8]}...)"


def resolve_principal(session_data: Mapping[str, Any], store: UserStore, lifetime_seconds: int) -> Principal | None:
    """Return the Principal for a request's session data, or None when anonymous.

    None covers every "nobody is signed in" case: no sid, an unknown sid, or
    a sid whose user row is gone. An expired or revoked session still
    resolves -- deciding what to do with it is the caller's job.
    """
    session_id = session_data.get(SESSION_KEY)
    if not session_id or not isinstance(session_id, str):
        return None
    session = store.get_session(session_id)
    if session is None:
        return None
    user = store.get_by_id(session.user_id)
    if user is None:
        return None
    return Principal(user, session, store, lifetime_seconds)
