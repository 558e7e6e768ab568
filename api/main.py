"""
api/main.py -- FastAPI application entry point for the Eventara auth service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- signed cookie session; holds the OAuth state value

Lifespan handles startup (stores, mailer, services, purge task) and shutdown
(cancel purge task, close DB connections) symmetrically. Every service lives
on app.state so tests can swap the lifespan and wire their own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from api.errors import error_response
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.oauth import router as oauth_router
from api.routes.v1.password_reset import router as password_reset_router
from api.routes.v1.reactivation import router as reactivation_router
from auth.admin import AccountAdminService
from auth.codes import CodePurpose, OneTimeCodeFlow
from auth.dependencies import get_current_account
from auth.inactivation import InactivationSweep
from auth.linking import OAuthLinker
from auth.mailer import Mailer, build_mailer
from auth.models import Account
from auth.oauth import oauth as oauth_client
from auth.service import AuthService
from auth.sessions import SessionManager
from auth.store import AccountStore
from cache.store import KeyedCache
from core.config import Settings, get_settings

VERSION = "0.3.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("eventara.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def attach_services(
    state,
    store: AccountStore,
    cache: KeyedCache,
    mailer: Mailer,
    settings: Settings,
    clock: Optional[Callable[[], datetime]] = None,
) -> None:
    """Build every service over the given stores and hang it on app.state.

    clock is injected into every time-dependent service; None means real UTC.
    """
    timed = {"clock": clock} if clock is not None else {}

    state.settings = settings
    state.store = store
    state.cache = cache
    state.mailer = mailer
    state.sessions = SessionManager(store, settings, **timed)
    state.auth_service = AuthService(store, state.sessions, settings, **timed)
    state.reset_flow = OneTimeCodeFlow(
        CodePurpose.RESET,
        store,
        cache,
        mailer,
        ttl_minutes=settings.code_ttl_minutes,
        max_sends_per_day=settings.code_max_sends_per_day,
        **timed,
    )
    state.reactivation_flow = OneTimeCodeFlow(
        CodePurpose.REACTIVATE,
        store,
        cache,
        mailer,
        ttl_minutes=settings.code_ttl_minutes,
        max_sends_per_day=settings.code_max_sends_per_day,
        **timed,
    )
    state.linker = OAuthLinker(store, state.auth_service, default_role=settings.default_role, **timed)
    state.admin_service = AccountAdminService(store, state.sessions)
    state.sweep = InactivationSweep(store, threshold_months=settings.inactivity_threshold_months, **timed)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired codes, counters and sessions every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(60 * 60)
        codes = app.state.cache.purge_expired()
        sessions = app.state.store.purge_expired_sessions(datetime.now(timezone.utc))
        logger.info("Purged %d expired cache entries and %d expired sessions", codes, sessions)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Account store first -- seeds the default roles.
      2. Code cache and mailer -- the code flows depend on both.
      3. Services -- wired over the stores.
      4. Purge task last -- references the cache and store.
    """
    logger.info("Eventara auth API starting up")
    store = AccountStore(db_url=_settings.database_url)
    cache = KeyedCache(_settings.cache_path)
    mailer = build_mailer(_settings)
    logger.info("Mail backend: %s", _settings.mail_backend)

    attach_services(app.state, store, cache, mailer, _settings)
    app.state.oauth = oauth_client
    logger.info("Google OAuth %s", "enabled" if _settings.google_enabled else "disabled")

    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    cache.close()
    store.close()
    logger.info("Eventara auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Eventara Auth API",
    description="Login, registration, one-time codes, Google sign-in and account lifecycle.",
    version=VERSION,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the LAST call becomes the
# outermost layer. SessionMiddleware is registered first so it sits closest
# to the routes; TrustedHost is registered last so it runs first.
# ---------------------------------------------------------------------------

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback (CSRF protection for
# the authorization code flow).
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    same_site="lax",
    https_only=_settings.secure_cookies,
)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

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
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(password_reset_router, prefix="/api/v1", tags=["Password Reset"])
app.include_router(reactivation_router, prefix="/api/v1", tags=["Reactivation"])
app.include_router(oauth_router, prefix="/api/v1", tags=["OAuth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(account: Account = Depends(get_current_account)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Eventara Auth API")


@app.get("/redoc", include_in_schema=False)
async def redoc(account: Account = Depends(get_current_account)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Eventara Auth API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a per-IP rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly, without await;
    Starlette runs it in the threadpool when @limiter.limit raises in a route.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with per-field messages.

    Input values are not echoed back: a failing body may contain a password.
    """
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        field = loc[-1] if loc else "body"
        message = err.get("msg", "Invalid value.").removeprefix("Value error, ")
        errors.setdefault(field, []).append(message)
    return error_response(422, "validation_error", "Request validation failed.", errors=errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict (as raised by auth.dependencies),
    use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
        ).model_dump(exclude_none=True),
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
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness and a database connectivity check."""
    database = "ok"
    try:
        request.app.state.store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: database ping failed")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
