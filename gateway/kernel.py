"""
gateway/kernel.py -- Stage table, stage registry and the pipeline itself.

Pattern: Chain of Responsibility built from continuations. For a gateway with
stages [A, B, C], dispatch() builds

    A.handle(request, rb, next_a)
        next_a -> B.handle(request, rb, next_b)
            next_b -> C.handle(request, rb, next_c)
                next_c -> handler(request)

by folding the stage list from the right. The first stage that returns
without calling its continuation ends the request; nothing after it runs.

Everything that can be wrong with the configuration is detected when the
Pipeline is constructed or booted, during application startup:
  - StageTable.from_mapping() rejects malformed tables.
  - Pipeline() rejects unknown stage identifiers and missing collaborators.
  - Pipeline.boot() runs each stage's boot hook exactly once.

Each gateway gets its own stage instances, even when the same identifier
appears in several gateways.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from starlette.requests import Request
from starlette.responses import Response

from auth.store import UserStore
from auth.tokens import TrustRoot
from core.config import Settings
from gateway.authenticator import Authenticator
from gateway.exceptions import ConfigurationError, ProtocolViolation
from gateway.responses import ResponseBuilder
from gateway.stage import BootContext, Next, Stage
from gateway.tampering import PreventRouteTampering
from gateway.tokenizer import Tokenizer

logger = logging.getLogger("tonka.gateway")

Handler = Callable[[Request], Awaitable[Response]]


# ---------------------------------------------------------------------------
# Stage table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageTable:
    """Immutable gateway -> ordered stage identifiers mapping."""

    gateways: Mapping[str, tuple[str, ...]]

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object]) -> StageTable:
        gateways: dict[str, tuple[str, ...]] = {}
        for name, stages in mapping.items():
            if not isinstance(name, str) or not name:
                raise ConfigurationError(f"Gateway names must be non-empty strings, got {name!r}")
            if isinstance(stages, (str, bytes)) or not isinstance(stages, (list, tuple)):
                raise ConfigurationError(f"Gateway {name!r}: stage list must be a list, got {type(stages).__name__}")
            for stage_id in stages:
                if not isinstance(stage_id, str) or not stage_id:
                    raise ConfigurationError(f"Gateway {name!r}: invalid stage identifier {stage_id!r}")
            if len(set(stages)) != len(stages):
                raise ConfigurationError(f"Gateway {name!r}: duplicate stage identifiers in {list(stages)!r}")
            gateways[name] = tuple(stages)
        return cls(MappingProxyType(gateways))

    def stages_for(self, gateway: str) -> tuple[str, ...]:
        try:
            return self.gateways[gateway]
        except KeyError:
            raise ConfigurationError(f"Unknown gateway: {gateway!r}") from None

    def __contains__(self, gateway: object) -> bool:
        return gateway in self.gateways


# ---------------------------------------------------------------------------
# Stage registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Collaborators:
    """Everything stage factories may need, passed in explicitly."""

    settings: Settings
    trust_root: TrustRoot
    store: UserStore | None = None


StageFactory = Callable[[Collaborators], Stage]


def _authenticator(c: Collaborators) -> Authenticator:
    if c.store is None:
        raise ConfigurationError("The 'authenticator' stage requires a session store")
    return Authenticator(c.store, lifetime_seconds=c.settings.session_lifetime_seconds)


def _tokenizer(c: Collaborators) -> Tokenizer:
    return Tokenizer(c.trust_root)


def _prevent_route_tampering(c: Collaborators) -> PreventRouteTampering:
    return PreventRouteTampering(
        c.settings.secret_key,
        hash_field=c.settings.params_hash_field,
        hash_header=c.settings.params_hash_header,
    )


STAGES: Mapping[str, StageFactory] = MappingProxyType(
    {
        "authenticator": _authenticator,
        "tokenizer": _tokenizer,
        "prevent_route_tampering": _prevent_route_tampering,
    }
)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class Pipeline:
    """Runs requests through the stage list of their gateway.

    Usage:
        pipeline = Pipeline(table, Collaborators(settings, trust_root, store))
        route_modules = pipeline.boot()
        response = await pipeline.dispatch("web", request, call_next)
    """

    def __init__(
        self,
        table: StageTable,
        collaborators: Collaborators,
        registry: Mapping[str, StageFactory] = STAGES,
    ) -> None:
        self.table = table
        self._login_route = collaborators.settings.login_route
        self._booted = False
        self._stages: dict[str, tuple[tuple[str, Stage], ...]] = {}
        for gateway, stage_ids in table.gateways.items():
            instances = []
            for stage_id in stage_ids:
                factory = registry.get(stage_id)
                if factory is None:
                    raise ConfigurationError(f"Gateway {gateway!r}: unknown stage {stage_id!r}")
                instances.append((stage_id, factory(collaborators)))
            self._stages[gateway] = tuple(instances)

    @property
    def booted(self) -> bool:
        return self._booted

    def boot(self) -> list[str]:
        """Run every stage's boot hook once and return the declared route modules."""
        if self._booted:
            raise ConfigurationError("Pipeline.boot() must run exactly once")
        context = BootContext()
        for gateway, stages in self._stages.items():
            for stage_id, stage in stages:
                stage.boot(context)
                logger.debug("Booted stage %s for gateway %s", stage_id, gateway)
        self._booted = True
        modules = context.route_modules()
        logger.info(
            "Gateway pipeline booted: %s",
            ", ".join(f"{g}=[{', '.join(ids)}]" for g, ids in self.table.gateways.items()),
        )
        return modules

    async def dispatch(self, gateway: str, request: Request, handler: Handler) -> Response:
        """Run request through gateway's stages; the last continuation calls handler."""
        if not self._booted:
            raise ConfigurationError("Pipeline.dispatch() called before boot()")
        stages = self._stages.get(gateway)
        if stages is None:
            raise ConfigurationError(f"Unknown gateway: {gateway!r}")

        builder = ResponseBuilder(request, self._login_route)

        async def terminal() -> Response:
            return await handler(request)

        chain: Next = terminal
        for stage_id, stage in reversed(stages):
            chain = self._link(gateway, stage_id, stage, request, builder, chain)
        return await chain()

    def _link(
        self,
        gateway: str,
        stage_id: str,
        stage: Stage,
        request: Request,
        builder: ResponseBuilder,
        downstream: Next,
    ) -> Next:
        async def invoke() -> Response:
            calls = 0

            async def call_next() -> Response:
                nonlocal calls
                calls += 1
                if calls > 1:
                    raise ProtocolViolation(f"Stage {stage_id!r} called call_next() more than once")
                return await downstream()

            result = await stage.handle(request, builder, call_next)
            if not isinstance(result, Response):
                raise ProtocolViolation(f"Stage {stage_id!r} returned {type(result).__name__}, expected a Response")
            if calls == 0:
                logger.info(
                    "%s gateway: %s rejected %s %s (%d)",
                    gateway,
                    stage_id,
                    request.method,
                    request.url.path,
                    result.status_code,
                )
            return result

        return invoke


def build_pipeline(settings: Settings, store: UserStore | None) -> Pipeline:
    """Construct the application pipeline from settings. Does not boot it."""
    table = StageTable.from_mapping(settings.middleware)
    return Pipeline(table, Collaborators(settings=settings, trust_root=TrustRoot.from_settings(settings), store=store))
