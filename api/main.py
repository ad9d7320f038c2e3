"""
api/main.py -- FastAPI application entry point for AuthBridge.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency
  2. migrate_sessions      -- dual session context + migration decision + handoff
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds the legacy store, the hosted provider clients and the
migration engine on app.state at startup and releases them on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.migration import router as migration_router
from auth.store import LegacyUserStore
from core.config import get_settings
from frontend.handoff import HandoffBridge
from frontend.signin import HostedSignInClient
from identity.client import HostedIdentityClient
from identity.session import HostedSessionVerifier, set_hosted_session_cookie
from migration.context import build_dual_session_context
from migration.engine import MigrationEngine
from migration.models import DualSessionContext, OutcomeKind

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authbridge.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the migration engine holds references to the
    store and the identity client, so both exist before it is built.
    """
    settings = get_settings()
    logger.info("AuthBridge starting up")
    app.state.user_store = LegacyUserStore(settings.database_url)
    app.state.identity = HostedIdentityClient()
    app.state.hosted_sessions = HostedSessionVerifier(
        settings.hosted_session_key,
        settings.hosted_session_algorithms,
    )
    app.state.migration_engine = MigrationEngine(app.state.user_store, app.state.identity)
    app.state.handoff = HandoffBridge(
        HostedSignInClient(settings.hosted_frontend_api_url, timeout_seconds=settings.http_timeout_seconds)
    )
    if not settings.hosted_secret_key or not settings.hosted_frontend_api_url:
        logger.warning("Hosted provider not fully configured -- migrations will report errors")
    if not app.state.hosted_sessions.enabled:
        logger.warning("HOSTED_SESSION_KEY not set -- hosted sessions will never validate")

    yield

    app.state.identity.close()
    app.state.user_store.close()
    logger.info("AuthBridge shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthBridge API",
    description="Lazy, per-request migration of legacy email/password users to a hosted identity provider.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each registration wraps everything registered before it, so the last one is
# outermost: SlowAPI wraps CORS wraps TrustedHost. The @app.middleware("http")
# functions below are registered afterwards and therefore wrap all three.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Migration middleware
#
# Runs the decision engine once per request before any route sees it. The
# engine's adapters are synchronous, so decide() runs in the threadpool. A
# completed handoff replaces the hosted half of the context for this request
# and sets the hosted session cookie for the next one.
# ---------------------------------------------------------------------------

_MIGRATION_EXEMPT = ("/api/v1/health", "/static/")


@app.middleware("http")
async def migrate_sessions(request: Request, call_next):
    if request.url.path.startswith(_MIGRATION_EXEMPT):
        return await call_next(request)

    state = request.app.state
    context = build_dual_session_context(request, state.hosted_sessions)
    outcome = await run_in_threadpool(state.migration_engine.decide, context)

    handed_off = None
    if outcome.kind is OutcomeKind.PROVISION_AND_HANDOFF:
        handed_off = await state.handoff.complete(outcome.token)
        if handed_off is not None:
            context = DualSessionContext(legacy_session=context.legacy_session, hosted_session=handed_off)
    elif outcome.kind is OutcomeKind.ERROR:
        logger.warning("Migration error on %s: %s", request.url.path, outcome.reason)

    request.state.session_context = context
    request.state.migration = outcome
    response = await call_next(request)
    if handed_off is not None and handed_off.token:
        set_hosted_session_cookie(response, handed_off.token)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Registered last, so it is outermost and sees the outcome the migration
# middleware stored on request.state.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    outcome = getattr(request.state, "migration", None)
    logger.info(
        "%s %s -> %d in %.1fms (client=%s migration=%s)",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request.client.host if request.client else "-",
        outcome.kind.value if outcome is not None else "-",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(migration_router, prefix="/api/v1", tags=["Migration"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler answers with the ErrorResponse envelope built by _error().
# The provisioning endpoint's own replies are plain JSONResponses and never
# pass through here.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After. Login and provisioning are the limited routes."""
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "-")
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured errors for HTTPException, including routing 404/405."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. Details go to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable. Exempt from the
# migration middleware and from rate limits.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and component status."""
    components = {"app": "ok"}
    try:
        request.app.state.user_store.has_users()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: legacy store unavailable")
        components["database"] = "error"
    settings = get_settings()
    components["hosted_provider"] = "configured" if settings.hosted_secret_key else "unconfigured"
    return HealthResponse(version=_VERSION, components=components)
