"""
api/limiter.py -- Shared slowapi rate limiter for Tonka.

api/main.py mounts it as middleware; route modules apply per-route limits
with @limiter.limit(). POST /login (web/auth.py) is the only limited route.

One instance for the whole process, so every route counts against the same
in-memory store. Limits are keyed by client IP.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """Return LOGIN_RATE_LIMIT. slowapi calls this on every limited request."""
    return get_settings().login_rate_limit
