"""
auth/tokens.py -- JWT trust root, bearer extraction and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (username), user_id, role, iss and exp. TrustRoot verifies
       signature, expiry (exp is mandatory), issuer, and the presence of sub,
       user_id and role. Verification never raises -- any failure is simply
       "invalid", and the gateway turns that into a 401.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether a username exists [C1].

  SECRET_KEY: sourced from core.config.get_settings(), which refuses to start
       in production without one and rejects short keys [M6].

Layer rule: no imports from api/, web/ or gateway/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt

from core.config import Settings, get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("tonka.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# Claims route handlers read unconditionally. A token missing any is invalid.
_REQUIRED_CLAIMS = ("sub", "user_id", "role")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB row -- treat as a non-match.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("tonka_timing_dummy")


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists [C1].
    Returns the User on success, None on any failure.
    """
    user = store.get_by_username(username)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, username: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT with user identity, issuer and expiry.

    Args:
        user_id:        Numeric user ID stored in the DB.
        username:       Stored as the JWT subject claim.
        role:           User role ("admin" or "member").
        expire_seconds: Token lifetime. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": username,
        "user_id": user_id,
        "role": role,
        "iss": _settings.token_issuer,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


# ---------------------------------------------------------------------------
# Trust root
# ---------------------------------------------------------------------------


class TrustRoot:
    """Verifies bearer tokens against a signing key and an expected issuer.

    Stateless: verify() is a pure function of the token and the values given
    at construction, so one instance is shared by every request.
    """

    def __init__(self, secret_key: str, issuer: str, algorithms: Sequence[str] = (_ALGORITHM,)) -> None:
        self._secret_key = secret_key
        self._issuer = issuer
        self._algorithms = list(algorithms)

    @classmethod
    def from_settings(cls, settings: Settings) -> TrustRoot:
        return cls(settings.secret_key, settings.token_issuer)

    def decode(self, token: str | None) -> dict[str, Any] | None:
        """Return the verified claims, or None if the token is absent or invalid."""
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=self._algorithms,
                issuer=self._issuer,
                options={"require_exp": True},
            )
        except JWTError as exc:
            logger.debug("Bearer token rejected: %s", exc)
            return None
        if any(claim not in claims for claim in _REQUIRED_CLAIMS):
            return None
        return claims

    def verify(self, token: str | None) -> bool:
        return self.decode(token) is not None


# ---------------------------------------------------------------------------
# Bearer extraction
# ---------------------------------------------------------------------------


def bearer_token(authorization: str | None) -> str | None:
    """Extract the credential from an Authorization header value.

    Returns None unless the header is exactly "Bearer <token>" (scheme is
    case-insensitive, as RFC 6750 allows).
    """
    if not authorization:
        return None
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    credential = credential.strip()
    return credential or None
