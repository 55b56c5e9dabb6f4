"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store owns
persistence; auth/sessions.py owns the liveness rules built on top of these.

Layer rule: no imports from api/, web/ or gateway/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """Represents an identity that can sign in to Tonka.

    hashed_password is None for accounts that only authenticate with bearer
    tokens minted out of band (service accounts).
    """

    username: str
    role: str  # "admin", "member"
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass
class Session:
    """A server-side web session bound to one user.

    The browser only ever holds the opaque id (inside the signed session
    cookie). last_seen_at is a UNIX timestamp renewed on every authenticated
    request; a session idle longer than SESSION_LIFETIME_SECONDS is offline.
    """

    id: str
    user_id: int
    last_seen_at: float
    created_at: str | None = None
    revoked: bool = False
