"""
api/main.py -- FastAPI application entry point for hearthgate.

Run with:  uvicorn asgi:app --reload
           python main.py --port 8000

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency, client
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. refresh_auth          -- resolves the token cookies once per request,
                              reissues a stale access token, clears dead cookies
  5. SlowAPIMiddleware     -- slowapi's middleware; the login limit itself is
                              checked by @limiter.limit inside the endpoint

Lifespan handles startup (signing key, database, migrations, auth services,
system account) and shutdown (engine dispose). Any startup failure -- a
corrupt key file, a failed migration, invalid settings -- aborts startup.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.account import router as account_router
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.access import ANONYMOUS, AuthResolution
from auth.bootstrap import bootstrap_admin
from auth.dependencies import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    delete_token_cookies,
    get_identity,
    set_token_cookie,
)
from auth.errors import (
    AuthError,
    DuplicateUsername,
    InvalidCredentials,
    InvalidCurrentPassword,
    InvalidOrExpiredInvite,
    InvalidSession,
    MalformedToken,
    NoInvitesRemaining,
    PasswordMismatch,
    StoreUnavailable,
    Unauthorized,
    UserNotFound,
)
from auth.keys import load_or_create_key_pair
from auth.models import Identity
from auth.schema import AUTH_MIGRATIONS
from auth.services import build_auth_services
from core.config import get_settings
from core.db import check_database, create_db_engine, run_migrations

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("hearthgate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Signing key first -- a corrupt key file must stop startup before
         anything touches the database.
      2. Engine and migrations -- the schema must be current before any
         store runs a query.
      3. Services, then the system account -- bootstrap uses the stores.
    """
    settings = get_settings()
    logger.info("hearthgate starting up")
    key_pair = load_or_create_key_pair(settings.private_key_path)
    engine = create_db_engine(settings.db_url)
    version = run_migrations(engine, AUTH_MIGRATIONS)
    logger.info("Database schema at version %d", version)
    services = build_auth_services(engine, key_pair, settings)
    bootstrap_admin(services, settings)
    app.state.auth = services
    logger.info("Auth initialized")

    yield

    # Shutdown
    engine.dispose()
    logger.info("hearthgate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="hearthgate API",
    description="Invite-only accounts, sessions, role grants and RS256 token authentication.",
    version=__version__,
    lifespan=lifespan,
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware both push onto the front of the stack,
# so the LAST registration is the outermost layer. Registered innermost-first:
# SlowAPI, refresh_auth, CORS, TrustedHost, then log_requests. refresh_auth
# sits inside TrustedHost so a rejected Host never touches the session store.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

# ---------------------------------------------------------------------------
# Auth refresh middleware
#
# Resolves the refresh/access cookie pair once and parks the AuthResolution on
# request.state.auth for auth.dependencies to read. Afterwards it persists a
# reissued access token or clears dead cookies -- unless the route already
# wrote those cookies itself (login, logout, registration).
# ---------------------------------------------------------------------------


def _cookies_written(response) -> set[str]:
    return {header.split("=", 1)[0].strip() for header in response.headers.getlist("set-cookie")}


@app.middleware("http")
async def refresh_auth(request: Request, call_next):
    resolution: AuthResolution = ANONYMOUS
    services = getattr(request.app.state, "auth", None)
    if services is not None:
        try:
            resolution = await run_in_threadpool(
                services.access.resolve,
                request.cookies.get(REFRESH_COOKIE),
                request.cookies.get(ACCESS_COOKIE),
            )
        except StoreUnavailable:
            logger.exception("Auth store unavailable while resolving %s", request.url.path)
            return _error_response(503, "store_unavailable", "The service is temporarily unavailable.")
    request.state.auth = resolution

    response = await call_next(request)

    written = _cookies_written(response)
    if resolution.clear_cookies and not written & {REFRESH_COOKIE, ACCESS_COOKIE}:
        delete_token_cookies(response)
    elif resolution.new_access_token and ACCESS_COOKIE not in written:
        set_token_cookie(response, ACCESS_COOKIE, resolution.new_access_token, _settings.access_token_expire_seconds)
    return response


# ---------------------------------------------------------------------------
# Origin and Host checks, outside refresh_auth
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler. Registered last, so it is
# the outermost layer and its latency includes auth resolution.
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
app.include_router(account_router, prefix="/api/v1", tags=["Account"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(identity: Identity = Depends(get_identity)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="hearthgate API")


@app.get("/redoc", include_in_schema=False)
async def redoc(identity: Identity = Depends(get_identity)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="hearthgate API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


# Checked in order; subclasses before their parents. Messages for credential
# and token failures are fixed strings so the response never says which
# check failed.
_AUTH_ERROR_MAP: list[tuple[type[AuthError], int, str, str | None]] = [
    (InvalidCredentials, 401, "bad_credentials", "Invalid username or password."),
    (InvalidSession, 401, "unauthorized", "Authentication required."),
    (MalformedToken, 401, "unauthorized", "Authentication required."),
    (InvalidCurrentPassword, 400, "invalid_current_password", "The current password is incorrect."),
    (PasswordMismatch, 400, "password_mismatch", "The new passwords do not match."),
    (DuplicateUsername, 409, "username_taken", None),
    (UserNotFound, 404, "not_found", "User not found."),
    (InvalidOrExpiredInvite, 404, "invalid_invite", "Invalid or expired invite code."),
    (NoInvitesRemaining, 403, "no_invites_remaining", "You have no invites remaining."),
    (Unauthorized, 403, "forbidden", None),
    (StoreUnavailable, 503, "store_unavailable", "The service is temporarily unavailable."),
]


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map domain errors to HTTP. A None message means str(exc) is safe to show."""
    for error_type, status_code, code, message in _AUTH_ERROR_MAP:
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.error("%s on %s %s: %s", code, request.method, request.url.path, exc)
            return _error_response(status_code, code, message or str(exc))
    logger.exception("Unmapped auth error on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    slowapi stores this on the exception as exc.retry_after (int seconds).
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", detail=str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail. When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit and no auth --
# load balancers and monitoring must not be throttled or challenged.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and per-component status."""
    services = getattr(request.app.state, "auth", None)
    db_ok = services is not None and check_database(services.engine)
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=__version__,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
