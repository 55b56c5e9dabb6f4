"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Tonka happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Complex fields (middleware, public_paths)
      are parsed from JSON, e.g. MIDDLEWARE='{"web": [], "api": ["tokenizer"]}'.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Two rules live here:
        - SECRET_KEY policy: dev mode generates a key with a warning, production
          mode refuses to start without one.
        - Middleware table shape: every gateway maps to a list of stage ids and
          both "web" and "api" exist. A malformed table is a startup failure,
          never a per-request one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing,
       the session cookie and the route parameter hash all rely on it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/ or gateway/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tonka.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent.parent / 'tonka_auth.db'}"

# Gateways the HTTP layer selects between. Both must be present in the table.
REQUIRED_GATEWAYS = ("web", "api")


def _default_middleware() -> dict[str, list[str]]:
    return {
        "web": ["authenticator", "prevent_route_tampering"],
        "api": ["tokenizer"],
    }


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    app_name: str = "Tonka"
    app_version: str = "1.0.0"
    # IANA zone stored timestamps are rendered in. Storage stays UTC.
    timezone: str = "UTC"
    # BCP 47 tag for <html lang>.
    locale: str = "en"

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions (web gateway)
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie: str = "tonka_session"
    # Idle window: a session not renewed within this many seconds is offline.
    session_lifetime_seconds: int = 1800
    # Rows idle past this are purged. Also the session cookie's max-age, so a
    # browser never presents a sid whose row was purged for idleness.
    session_retention_seconds: int = 14 * 24 * 60 * 60
    session_purge_interval_seconds: int = 6 * 60 * 60
    login_route: str = "/login"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Bearer tokens (api gateway)
    # ------------------------------------------------------------------

    token_expire_seconds: int = 3600
    token_issuer: str = "tonka"

    # ------------------------------------------------------------------
    # Route parameter integrity
    # ------------------------------------------------------------------

    params_hash_field: str = "hash"
    params_hash_header: str = "X-Params-Hash"

    # ------------------------------------------------------------------
    # Gateways
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1", "*.localhost"])
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost", "http://127.0.0.1"])
    # Must match the prefix the API routers are mounted under.
    api_prefix: str = "/api"
    # Exact paths that bypass both gateways. The login route is always exempt.
    public_paths: list[str] = Field(default_factory=lambda: ["/api/v1/health"])
    middleware: dict[str, list[str]] = Field(default_factory=_default_middleware)

    # ------------------------------------------------------------------
    # JSON codec
    # ------------------------------------------------------------------

    # False keeps non-ASCII characters unescaped in JSON responses.
    json_ensure_ascii: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions and tokens will not survive restart.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_timezone(self) -> "Settings":
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"TIMEZONE {self.timezone!r} is not a known IANA zone.") from exc
        return self

    @model_validator(mode="after")
    def validate_middleware(self) -> "Settings":
        """Reject a stage table the HTTP layer cannot dispatch to.

        Stage identifiers themselves are resolved later, when the gateway
        pipeline is built -- config does not know the stage registry.
        """
        for gateway in REQUIRED_GATEWAYS:
            if gateway not in self.middleware:
                raise ValueError(f"MIDDLEWARE must define the {gateway!r} gateway.")
        if not self.api_prefix.startswith("/") or self.api_prefix.endswith("/"):
            raise ValueError("API_PREFIX must start with '/' and must not end with '/'.")
        return self

    @model_validator(mode="after")
    def validate_session_windows(self) -> "Settings":
        """An offline session must outlive its idle window, or it is purged
        before the authenticator can redirect it with expired=1."""
        if self.session_retention_seconds <= self.session_lifetime_seconds:
            raise ValueError("SESSION_RETENTION_SECONDS must be greater than SESSION_LIFETIME_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
