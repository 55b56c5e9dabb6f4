"""
gateway/stage.py -- The contract every pipeline stage implements.

A stage is any object with two methods:

  async handle(request, response, call_next) -> Response
      Either await call_next() exactly once and return its result (as is or
      wrapped) to let the request through, or return a terminal response from
      the ResponseBuilder without calling call_next() to reject it. The
      pipeline enforces this: a second call_next() or a non-Response return
      raises ProtocolViolation.

  boot(context) -> None
      Runs once per process, before the first request, with no request in
      scope. Used to declare the route groups a stage depends on.

Stages are plain classes satisfying the Stage protocol. They are selected by
identifier from the registry in gateway/kernel.py, not by subclassing.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from starlette.requests import Request
from starlette.responses import Response

from core.routes import routes_path
from gateway.responses import ResponseBuilder

# "The rest of the pipeline". Awaiting it runs every later stage and, at the
# end of the chain, the application handler.
Next = Callable[[], Awaitable[Response]]


@runtime_checkable
class Stage(Protocol):
    async def handle(self, request: Request, response: ResponseBuilder, call_next: Next) -> Response: ...

    def boot(self, context: BootContext) -> None: ...


class BootContext:
    """Collects the route-group dependencies stages declare at boot.

    include() resolves the module path immediately; inject() stores a provider
    that is only called by route_modules(), after every stage has booted.
    """

    def __init__(self) -> None:
        self._modules: list[str] = []
        self._providers: list[Callable[[], str]] = []

    def include(self, group: str) -> None:
        self._modules.append(routes_path(group))

    def inject(self, provider: Callable[[], str]) -> None:
        self._providers.append(provider)

    def route_modules(self) -> list[str]:
        """Return declared route module paths, deduplicated, in declaration order."""
        modules = self._modules + [provider() for provider in self._providers]
        return list(dict.fromkeys(modules))
