"""
web/templating.py -- The Jinja2 environment shared by every web route group.

Globals available in all templates:
  app_name            -- Settings.app_name
  locale              -- Settings.locale, rendered as <html lang="...">
  signed_url(path, **query)
                      -- a link the route tampering stage will accept

Filters:
  localtime           -- ISO-8601 UTC timestamp -> Settings.timezone, for display
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from fastapi.templating import Jinja2Templates

from auth.signing import sign_url
from core.config import get_settings

_settings = get_settings()


def signed_url(path: str, **query: str) -> str:
    return sign_url(path, query, _settings.secret_key, field=_settings.params_hash_field)


def localtime(value: str | None, fmt: str = "%Y-%m-%d %H:%M %Z") -> str:
    """Render a stored ISO timestamp in the configured timezone. Empty in, empty out."""
    if not value:
        return ""
    return datetime.fromisoformat(value).astimezone(ZoneInfo(_settings.timezone)).strftime(fmt)


templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.globals.update(
    app_name=_settings.app_name,
    locale=_settings.locale,
    signed_url=signed_url,
)
templates.env.filters["localtime"] = localtime
