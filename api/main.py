"""
api/main.py -- FastAPI application entry point for Whiskey Canon.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests            -- method, path, status, latency, client
  2. CORSMiddleware          -- credentials-enabled CORS for FRONTEND_URL
  3. ServerSessionMiddleware -- signed `sid` cookie -> request.state.session
  4. CSRFMiddleware          -- double-submit check on state-changing methods
  5. IdentityMiddleware      -- session -> request.state.principal

Rate limiting and RBAC are per-route FastAPI dependencies, not middleware.

Lifespan handles startup (stores, mailer, auth service, purge task) and
shutdown (cancel purge task, close the engine) symmetrically.

The CSRF guard and rate limiter are built at import time and attached to
app.state so middleware can find them before lifespan runs; tests replace
app.state.rate_limiter with a fresh instance per test.
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
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import FixedWindowRateLimiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.contact import router as contact_router
from api.routes.v1.users import router as users_router
from auth.csrf import CsrfGuard, CSRFMiddleware
from auth.dependencies import IdentityMiddleware
from auth.errors import AuthError, ThrottledError
from auth.service import AuthService
from auth.sessions import ServerSessionMiddleware, SessionStore
from auth.store import AccountStore
from core.config import get_settings
from core.mailer import Mailer

API_VERSION = "1.0.0"
PURGE_INTERVAL_SECONDS = 15 * 60

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("whiskeycanon.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_once(app: FastAPI) -> None:
    """Drop expired sessions and resend cooldowns.

    Rate-limit windows need no pass here: the limiter's storage expires them.
    """
    removed = await asyncio.to_thread(app.state.session_store.purge_expired)
    if removed:
        logger.info("Purged %d expired sessions", removed)
    app.state.auth_service.cooldown.purge_expired()


async def _purge_loop(app: FastAPI, interval: float = PURGE_INTERVAL_SECONDS) -> None:
    """Run _purge_once() every `interval` seconds until cancelled.

    A failed pass is logged and the loop keeps going. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep and unwinds
    the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await _purge_once(app)
        except Exception:
            logger.exception("Purge pass failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Account store first -- owns the Engine.
      2. Session store second -- shares the Engine.
      3. Auth service third -- composes store and mailer.
      4. Purge task last -- references all of the above.
    """
    logger.info("Whiskey Canon API starting up")
    app.state.account_store = AccountStore()
    app.state.session_store = SessionStore(app.state.account_store.engine, settings.session_max_age_seconds)
    app.state.mailer = Mailer(settings)
    if not app.state.mailer.enabled:
        logger.warning("RESEND_API_KEY not set -- verification and reset emails will not be delivered")
    app.state.auth_service = AuthService(app.state.account_store, app.state.mailer)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.account_store.close()
    logger.info("Whiskey Canon API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Whiskey Canon API",
    description="Identity, sessions and access control for the Whiskey Canon collection tracker.",
    version=API_VERSION,
    lifespan=lifespan,
)

app.state.csrf_guard = CsrfGuard(
    settings.secret_key,
    secure=settings.secure_cookies,
    samesite=settings.cookie_samesite,
    cookie_name=settings.csrf_cookie_name,
    header_name=settings.csrf_header_name,
)
app.state.rate_limiter = FixedWindowRateLimiter()

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the LAST one registered is
# the OUTERMOST. Register innermost first: Identity -> CSRF -> Session -> CORS.
# ---------------------------------------------------------------------------

app.add_middleware(IdentityMiddleware)
app.add_middleware(CSRFMiddleware)
app.add_middleware(
    ServerSessionMiddleware,
    secret_key=settings.secret_key,
    cookie_name=settings.session_cookie_name,
    max_age=settings.session_max_age_seconds,
    secure=settings.secure_cookies,
    samesite=settings.cookie_samesite,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", settings.csrf_header_name],
    max_age=3600,
)


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
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(contact_router, prefix="/api/v1", tags=["Contact"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map every AuthError subclass to its status, code and extra fields."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.code, request.method, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(**exc.to_detail())).model_dump(exclude_none=True),
        headers=exc.headers or None,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return the 429 throttled envelope when a rate class is exhausted.

    rate_limit() leaves the X-RateLimit-* headers on request.state; Retry-After
    is the seconds left in the current window.
    """
    headers = dict(getattr(request.state, "rate_limit_headers", {}))
    retry_after = int(headers.get("X-RateLimit-Reset", 60))
    return await auth_error_handler(request, ThrottledError(retry_after=retry_after, headers=headers))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one readable message per failing field."""
    errors = [
        f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'body'}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                errors=errors,
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 routes, 405)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        request.app.state.account_store.ping()
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
