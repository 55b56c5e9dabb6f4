"""
gateway/responses.py -- Terminal responses a stage can return.

A stage that rejects a request never builds a Response by hand; it asks the
ResponseBuilder it was handed. That keeps every rejection in the same shape
as the API's error envelope:

    {"error": {"code": "unauthorized", "message": "..."}}

AppJSONResponse is also the application's default response class, so the
JSON codec setting (json_ensure_ascii) applies to gateway rejections and route
responses alike.
"""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import urlencode

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse

from core.config import get_settings


class AppJSONResponse(JSONResponse):
    """JSONResponse honouring Settings.json_ensure_ascii."""

    def render(self, content: Any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=get_settings().json_ensure_ascii,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


def error_body(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


class ResponseBuilder:
    """Builds terminal responses for the request being gated."""

    def __init__(self, request: Request, login_route: str) -> None:
        self.request = request
        self.login_route = login_route

    def redirect(self, url: str, status_code: int = 302) -> RedirectResponse:
        return RedirectResponse(url, status_code=status_code)

    def redirect_to_login(self, expired: bool = False) -> RedirectResponse:
        """Redirect to the login route with next=<current path>.

        Only the path is carried, never the full URL, so the login page
        cannot be turned into an open redirect.
        """
        params: dict[str, str] = {"next": self.request.url.path}
        if expired:
            params["expired"] = "1"
        return self.redirect(f"{self.login_route}?{urlencode(params, safe='/')}")

    def unauthorized(
        self,
        message: str = "Authentication required.",
        code: str = "unauthorized",
        headers: dict[str, str] | None = None,
    ) -> AppJSONResponse:
        return AppJSONResponse(error_body(code, message), status_code=401, headers=headers)

    def forbidden(self, message: str = "Access denied.", code: str = "forbidden") -> AppJSONResponse:
        return AppJSONResponse(error_body(code, message), status_code=403)

    def service_unavailable(self, message: str = "A required service is unavailable.") -> AppJSONResponse:
        return AppJSONResponse(error_body("service_unavailable", message), status_code=503)
