"""
gateway/authenticator.py -- Session authentication stage ("authenticator").

Three outcomes:
  - No principal bound to the session: anonymous. The request continues;
    route handlers decide whether anonymity is acceptable.
  - Principal offline (idle too long, revoked, or user deactivated): redirect
    to the login route with expired=1. call_next() is not called.
  - Principal online: renew liveness once, expose the principal and user on
    request.state, continue.

Session store reads and the renewal write are blocking SQLAlchemy calls and
run in Starlette's thread pool. A store failure is an outage, not a denial:
it is raised as CollaboratorUnavailable and never turned into a redirect.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response

from auth.sessions import resolve_principal
from auth.store import UserStore
from gateway.exceptions import CollaboratorUnavailable, ProtocolViolation
from gateway.responses import ResponseBuilder
from gateway.stage import BootContext, Next

logger = logging.getLogger("tonka.gateway.authenticator")


class Authenticator:
    def __init__(self, store: UserStore, lifetime_seconds: int) -> None:
        self._store = store
        self._lifetime = lifetime_seconds

    async def handle(self, request: Request, response: ResponseBuilder, call_next: Next) -> Response:
        try:
            principal = await run_in_threadpool(resolve_principal, request.session, self._store, self._lifetime)
        except SQLAlchemyError as exc:
            raise CollaboratorUnavailable("session store") from exc

        if principal is None:
            return await call_next()

        online = principal.is_online()
        if not isinstance(online, bool):
            raise ProtocolViolation(f"is_online() returned {type(online).__name__}, expected bool")
        if online is False:
            logger.info("Session for %s is offline, redirecting to login", principal.user.username)
            return response.redirect_to_login(expired=True)

        try:
            await run_in_threadpool(principal.authenticate)
        except SQLAlchemyError as exc:
            raise CollaboratorUnavailable("session store") from exc

        request.state.principal = principal
        request.state.user = principal.user
        return await call_next()

    def boot(self, context: BootContext) -> None:
        # Offline sessions are redirected to the login routes, so they must exist.
        context.include("auth")
