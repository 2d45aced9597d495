"""
api/main.py -- FastAPI application entry point for the Daily Summarizer auth API.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- credentials allowed for the dashboard origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter
  3. SessionMiddleware  -- signed cookie authlib uses for OAuth state
  4. attach_session     -- loads the server-held session into request.state
  5. log_requests       -- one access log line per request

Lifespan builds every service from one Settings object and stores it on
app.state; routes read services from there and never construct their own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.sso import router as sso_router
from api.routes.users import router as users_router
from auth.dependencies import attach_session_user
from auth.errors import AuthServiceError
from auth.mailer import build_mailer
from auth.oauth import build_oauth
from auth.service import AccountService
from auth.sessions import SessionStore
from auth.sso import SsoProvisioningService
from auth.store import UserStore
from core.config import Settings, get_settings

APP_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("summarizer.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, settings: Settings, user_store: UserStore, mailer=None) -> None:
    """Build the services from settings and attach them to app.state.

    Shared by lifespan and the test fixtures so both wire identically.
    """
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.session_store = SessionStore(user_store.engine, settings.session_ttl_seconds)
    app.state.accounts = AccountService(user_store, settings, mailer=mailer)
    app.state.sso = SsoProvisioningService(user_store, settings)
    app.state.oauth = build_oauth(settings)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


PURGE_INTERVAL_SECONDS = 6 * 60 * 60


async def _purge_once(app: FastAPI) -> int:
    """Run one purge off the event loop. A store failure is logged, not raised."""
    try:
        removed = await run_in_threadpool(app.state.session_store.purge_expired)
    except SQLAlchemyError:
        logger.exception("Session purge failed; retrying next cycle")
        return 0
    if removed:
        logger.info("Purged %d expired sessions", removed)
    return removed


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired sessions every 6 hours.

    Expired sessions are already rejected on read; this only keeps the table
    from growing. CancelledError from task.cancel() during shutdown propagates
    out of asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(PURGE_INTERVAL_SECONDS)
        await _purge_once(app)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store, build services, start the purge task; undo on shutdown."""
    logger.info("Daily Summarizer auth API starting up")
    settings = get_settings()
    user_store = UserStore(settings.database_url)
    mailer = build_mailer(settings)
    init_state(app, settings, user_store, mailer=mailer)
    logger.info(
        "Auth initialized (email_verification=%s, sso=%s)",
        mailer is not None,
        settings.sso_configured,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.user_store.close()
    logger.info("Daily Summarizer auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Daily Summarizer Auth API",
    description="Accounts, sessions and administration for the Daily Summarizer dashboard.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the last one registered is
# the outermost. @app.middleware("http") functions are registered the same
# way. Registration below runs innermost-first.
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


@app.middleware("http")
async def attach_session(request: Request, call_next):
    """Resolve the session cookie once per request.

    Every request gets request.state.user (SessionUser or None) before any
    route or guard runs. A database failure here degrades to anonymous rather
    than failing public routes.
    """
    try:
        await run_in_threadpool(attach_session_user, request)
    except SQLAlchemyError:
        logger.exception("Session lookup failed; treating request as anonymous")
        request.state.session_id = None
        request.state.user = None
    return await call_next(request)


# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback. It is unrelated to the
# account session, which lives server-side under its own cookie.
app.add_middleware(
    SessionMiddleware,
    secret_key=get_settings().secret_key,
    session_cookie="summarizer_oauth_state",
    same_site="lax",
    https_only=get_settings().secure_cookies,
)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(users_router, prefix="/api/auth", tags=["Users"])
app.include_router(sso_router, prefix="/api/auth", tags=["SSO"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthServiceError)
async def auth_service_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    """Map a service-layer failure to its status code and error code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(exclude_none=True),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
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
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for HTTP exceptions, including router 404s.

    Guards raise HTTPException with a dict detail; use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
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
# Defined directly in main.py so it is reachable regardless of router
# registration. No rate limit -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a database reachability check."""
    try:
        database = "ok" if request.app.state.user_store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=APP_VERSION, components={"app": "ok", "database": database})
