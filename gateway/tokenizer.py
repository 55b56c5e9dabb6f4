"""
gateway/tokenizer.py -- Bearer token stage ("tokenizer").

A missing Authorization header, a malformed one, a bad signature, a wrong
issuer and an expired token all produce the same 401 -- the client learns
only that it must present a valid token. Verified claims are appended to
request.state.claims for route handlers.
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import Response

from auth.tokens import TrustRoot, bearer_token
from core.routes import routes_path
from gateway.responses import ResponseBuilder
from gateway.stage import BootContext, Next

logger = logging.getLogger("tonka.gateway.tokenizer")


class Tokenizer:
    def __init__(self, trust_root: TrustRoot, route_group: str = "api") -> None:
        self._trust_root = trust_root
        self.route_group = route_group

    async def handle(self, request: Request, response: ResponseBuilder, call_next: Next) -> Response:
        claims = self._trust_root.decode(bearer_token(request.headers.get("Authorization")))
        if claims is None:
            return response.unauthorized(
                message="A valid bearer token is required.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        request.state.claims = claims
        return await call_next()

    def boot(self, context: BootContext) -> None:
        # Resolved after all stages have booted, once route groups are known.
        context.inject(lambda: routes_path(self.route_group))
