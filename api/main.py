"""
api/main.py -- FastAPI application entry point for Pulse.

Run with:      uvicorn api.main:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every collaborator once (stores, verifier, resolver, access
guard, de-duplicator, services), hangs them on app.state, and closes the
stores on shutdown. Route handlers only ever read app.state.

Errors:
  Services raise core.errors exceptions. One handler maps them to responses
  through the _STATUS_BY_KIND / _STATUS_BY_CODE tables below; no handler
  looks at message text.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from access.guard import AuthorizationGuard
from access.membership import MembershipIndex
from access.visibility import TaskVisibilityPolicy
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.tasks import router as tasks_router
from api.routes.v1.teams import router as teams_router
from auth.resolver import IdentityResolver
from auth.store import UserStore
from auth.verifier import ClaimsVerifier, RevocationList, verifier_from_settings
from cache.dedup import CreationDeduplicator
from cache.store import CreationStore, InMemoryCreationStore, SQLiteCreationStore
from core.config import Settings, get_settings
from core.errors import AccessControlError, ErrorKind, FailureKind, UnauthenticatedError
from teams.service import TeamService
from teams.store import TeamStore
from teams.tasks import TaskService

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pulse.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_creation_store(settings: Settings) -> tuple[CreationStore, Callable[[], float]]:
    """The de-duplication store and the clock its records are stamped with."""
    if settings.dedup_backend == "sqlite":
        return SQLiteCreationStore(settings.dedup_sqlite_path), time.time
    return InMemoryCreationStore(), time.monotonic


def configure_state(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    team_store: TeamStore,
    verifier: ClaimsVerifier,
    revocations: RevocationList,
    deduplicator: CreationDeduplicator,
) -> None:
    """Assemble the object graph on app.state. Shared by lifespan and tests."""
    membership = MembershipIndex(team_store)
    visibility = TaskVisibilityPolicy(membership)
    guard = AuthorizationGuard(team_store, membership, visibility)

    app.state.user_store = user_store
    app.state.team_store = team_store
    app.state.revocations = revocations
    app.state.resolver = IdentityResolver(verifier, user_store, settings.placeholder_email_domain)
    app.state.guard = guard
    app.state.team_service = TeamService(team_store, user_store, membership, guard, deduplicator)
    app.state.task_service = TaskService(team_store, guard, visibility)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("Pulse API starting up (identity_provider=%s)", settings.identity_provider)

    user_store = UserStore(settings.database_url)
    team_store = TeamStore(settings.database_url)
    revocations = RevocationList()
    creation_store, clock = build_creation_store(settings)
    deduplicator = CreationDeduplicator(
        creation_store,
        clock=clock,
        suppression_seconds=settings.dedup_suppression_seconds,
        eviction_seconds=settings.dedup_eviction_seconds,
    )
    configure_state(
        app,
        settings,
        user_store,
        team_store,
        verifier_from_settings(settings, revocations),
        revocations,
        deduplicator,
    )
    logger.info("Stores initialized (dedup_backend=%s)", settings.dedup_backend)

    yield

    user_store.close()
    team_store.close()
    if isinstance(creation_store, SQLiteCreationStore):
        creation_store.close()
    logger.info("Pulse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Pulse API",
    description="Teams and tasks with per-team access control. Identity is delegated to an external provider.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; latency is wall-clock time around call_next.
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
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(teams_router, prefix="/api/v1", tags=["Teams"])
app.include_router(tasks_router, prefix="/api/v1", tags=["Tasks"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.VALIDATION: 400,
}

# Codes whose status is finer than their kind's.
_STATUS_BY_CODE: dict[str, int] = {
    "identity_conflict": 409,
    "already_member": 409,
}

_RETRY_AFTER_SECONDS = 5


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def _challenge(exc: UnauthenticatedError) -> str:
    if exc.reason is FailureKind.MISSING_CREDENTIAL:
        return "Bearer"
    if exc.reason.requires_reauthentication:
        return 'Bearer error="invalid_token", error_description="reauthenticate"'
    return 'Bearer error="invalid_token"'


@app.exception_handler(AccessControlError)
async def access_control_error_handler(request: Request, exc: AccessControlError) -> JSONResponse:
    """Map a structured failure to its status code via the lookup tables.

    401 responses carry WWW-Authenticate (RFC 6750). A missing credential
    gets the bare challenge and a bad one adds error="invalid_token". An
    expired or revoked token also gets error_description="reauthenticate",
    telling the client a fresh token will succeed where a malformed or
    forged one never will. 503 responses carry Retry-After.
    """
    status_code = _STATUS_BY_CODE.get(exc.code, _STATUS_BY_KIND[exc.kind])
    response = _error_response(status_code, exc.code, exc.message)
    if isinstance(exc, UnauthenticatedError):
        response.headers["WWW-Authenticate"] = _challenge(exc)
    elif exc.kind is ErrorKind.UPSTREAM_UNAVAILABLE:
        response.headers["Retry-After"] = str(_RETRY_AFTER_SECONDS)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured envelope for routing-level errors (unknown path, bad method)."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No auth and no rate limit -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a database round-trip check."""
    database = "ok" if request.app.state.team_store.ping() else "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=_VERSION, components={"app": "ok", "database": database})
