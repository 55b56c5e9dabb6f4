"""
api/main.py -- FastAPI application entry point for Tonka.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- signed session cookie; request.session
  5. log_requests          -- access log with latency
  6. gateway               -- the gatekeeping pipeline (gateway/kernel.py)

Starlette's add_middleware() (and @app.middleware, which calls it) inserts
each new middleware OUTSIDE the ones already registered, so the code below
registers them innermost-first. The gateway must sit inside SessionMiddleware
because the session authenticator reads request.session.

Lifespan builds the user/session store, constructs and boots the gateway
pipeline (which mounts the route groups its stages declare), and starts the
session purge task. Shutdown cancels the task and closes the store.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.account import router as account_router
from auth.store import UserStore
from core.config import Settings, get_settings
from core.routes import load_router, routes_path
from gateway.exceptions import CollaboratorUnavailable
from gateway.kernel import Pipeline, build_pipeline
from gateway.responses import AppJSONResponse, ResponseBuilder

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tonka.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Gateway startup
# ---------------------------------------------------------------------------


def mount_route_group(app: FastAPI, module_path: str) -> None:
    """Include a route module's router unless it is already mounted."""
    if module_path in app.state.route_modules:
        return
    app.include_router(load_router(module_path))
    app.state.route_modules.add(module_path)
    logger.info("Mounted route group %s", module_path)


def start_gateway(app: FastAPI, settings: Settings, store: UserStore | None) -> Pipeline:
    """Build and boot the gateway pipeline, then mount the route groups it declared.

    Raises gateway.exceptions.ConfigurationError on a bad stage table, which
    aborts application startup.
    """
    pipeline = build_pipeline(settings, store)
    for module_path in pipeline.boot():
        mount_route_group(app, module_path)
    app.state.pipeline = pipeline
    return pipeline


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete revoked sessions and sessions past the retention window on a fixed interval.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_settings.session_purge_interval_seconds)
        try:
            removed = await run_in_threadpool(app.state.user_store.purge_sessions, _settings.session_retention_seconds)
        except SQLAlchemyError:
            logger.exception("Session purge failed")
            continue
        if removed:
            logger.info("Purged %d expired session(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Store first -- the session authenticator stage is built around it.
      2. Gateway second -- boot hooks run here, before the first request.
      3. Purge task last -- references app.state.user_store.
    """
    logger.info("%s %s starting up", _settings.app_name, _settings.app_version)
    app.state.user_store = UserStore()
    start_gateway(app, _settings, app.state.user_store)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("%s shutdown complete", _settings.app_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title=f"{_settings.app_name} API",
    version=_settings.app_version,
    lifespan=lifespan,
    default_response_class=AppJSONResponse,
    # The schema lives under the API prefix so the tokenizer protects it.
    openapi_url=f"{_settings.api_prefix}/v1/openapi.json",
    docs_url=None,
    redoc_url=None,
)

app.state.route_modules = set()
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Gateway middleware
#
# Selects the gateway from the path: everything under API_PREFIX goes through
# "api", everything else through "web". The login route and PUBLIC_PATHS skip
# both -- an expired session must still be able to reach the login form.
# ---------------------------------------------------------------------------


def select_gateway(path: str, settings: Settings) -> str | None:
    """Return the gateway name for a path, or None if the path is public."""
    if path == settings.login_route or path in settings.public_paths:
        return None
    if path == settings.api_prefix or path.startswith(settings.api_prefix + "/"):
        return "api"
    return "web"


@app.middleware("http")
async def gateway(request: Request, call_next):
    name = select_gateway(request.url.path, _settings)
    if name is None:
        return await call_next(request)
    pipeline: Pipeline = request.app.state.pipeline
    try:
        return await pipeline.dispatch(name, request, call_next)
    except CollaboratorUnavailable as exc:
        # Store outages are 503, never 401 or a login redirect.
        logger.exception("%s gateway: %s on %s %s", name, exc, request.method, request.url.path)
        return ResponseBuilder(request, _settings.login_route).service_unavailable()


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Outer middleware (registered after the gateway so they wrap it)
# ---------------------------------------------------------------------------

app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie=_settings.session_cookie,
    same_site="lax",
    https_only=_settings.secure_cookies,
    max_age=_settings.session_retention_seconds,
)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", _settings.params_hash_header],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# ---------------------------------------------------------------------------
# Router registration
#
# The account router is always mounted. Route groups that gateway stages
# declare at boot (e.g. "auth" for the session authenticator) are mounted in
# start_gateway(). The web UI router is mounted by asgi.py.
# ---------------------------------------------------------------------------

app.include_router(account_router, prefix=f"{_settings.api_prefix}/v1", tags=["Account"])
app.state.route_modules.add(routes_path("api"))


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> AppJSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = AppJSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> AppJSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return AppJSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> AppJSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return AppJSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return AppJSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> AppJSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return AppJSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Listed in PUBLIC_PATHS, so neither gateway runs for it. No rate limit --
# load balancers and monitoring must not be throttled.
# ---------------------------------------------------------------------------


@app.get(f"{_settings.api_prefix}/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and per-component status."""
    components = {"app": "ok"}
    try:
        request.app.state.user_store.has_users()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    return HealthResponse(version=_settings.app_version, components=components)
