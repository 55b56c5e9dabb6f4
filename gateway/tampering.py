"""
gateway/tampering.py -- Route parameter integrity stage ("prevent_route_tampering").

Links signed with auth.signing.sign_url() carry a digest of their path and
query string. If a request arrives with such a digest, it must still match
the parameters the request actually has; otherwise somebody edited the link
(e.g. swapped /profile/7 for /profile/8) and the request is refused with 401.

Requests without a digest are not checked: signing is opt-in per link.
The digest is read from the query field first (default "hash"), then from the
header (default "X-Params-Hash"). An empty value counts as absent.
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import Response

from auth.signing import compare_constant_time, compute_hash, request_parameters
from gateway.responses import ResponseBuilder
from gateway.stage import BootContext, Next

logger = logging.getLogger("tonka.gateway.tampering")


class PreventRouteTampering:
    def __init__(self, secret_key: str, hash_field: str = "hash", hash_header: str = "X-Params-Hash") -> None:
        self._secret_key = secret_key
        self._hash_field = hash_field
        self._hash_header = hash_header

    async def handle(self, request: Request, response: ResponseBuilder, call_next: Next) -> Response:
        supplied = request.query_params.get(self._hash_field) or request.headers.get(self._hash_header)
        if not supplied:
            return await call_next()

        # The decoded ASGI path, which is what sign_url() hashed. request.url
        # is rebuilt from it and would split on a decoded "?" or "#".
        path = request.scope["path"]
        params = request_parameters(
            path,
            request.query_params.multi_items(),
            exclude=self._hash_field,
        )
        expected = compute_hash(params, self._secret_key)
        if not compare_constant_time(expected, supplied):
            logger.warning("Parameter hash mismatch on %s %s", request.method, path)
            return response.unauthorized(message="Request parameters failed integrity check.", code="tampered_parameters")
        return await call_next()

    def boot(self, context: BootContext) -> None:
        pass
