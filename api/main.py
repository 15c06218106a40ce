"""
api/main.py -- FastAPI application entry point for the FitCoach API.

Serves account registration, login, password reset, token refresh, coach
invitations, admin role management and onboarding progress for the web and
mobile clients.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- request id + one log line per request
  2. SlowAPIMiddleware     -- default limits; per-route limits live on the routes
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan opens the UserStore (one SQLAlchemy engine for the process) and the
Mailer on startup and disposes the engine on shutdown.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.invites import router as invites_router
from api.routes.v1.onboarding import router as onboarding_router
from auth.store import UserStore
from core.config import get_settings
from core.mailer import Mailer

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("fitcoach.api")

_settings = get_settings()

# Accept caller-supplied request ids only when they look like an id.
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

# Diagnostic hints for common PostgreSQL SQLSTATE codes (development only).
_PG_HINTS = {
    "23505": "Unique constraint violation: a row with this value already exists.",
    "23503": "Foreign key violation: a referenced row does not exist.",
    "23502": "Not-null violation: a required column was left empty.",
    "42703": "Undefined column: the schema may be out of date.",
    "42P01": "Undefined table: run the schema setup or check DATABASE_URL.",
}


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open shared resources on startup and release them on shutdown.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("FitCoach API starting up (environment=%s)", settings.environment)
    app.state.user_store = UserStore(settings.database_url)
    app.state.mailer = Mailer(settings)
    if not app.state.mailer.configured:
        logger.warning("SMTP_HOST not set -- reset and invitation emails will not be delivered")

    yield

    app.state.user_store.close()
    logger.info("FitCoach API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="FitCoach API",
    description="Accounts, sessions, coach invitations and onboarding for FitCoach.",
    version=API_VERSION,
    lifespan=lifespan,
    # Interactive docs are a development convenience only.
    docs_url="/docs" if _settings.is_development else None,
    redoc_url="/redoc" if _settings.is_development else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST one registered is the
# outermost. log_requests (the decorator below) is registered last of all.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_host_list,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID", "Retry-After"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request gets an id: the caller's X-Request-ID when it is well formed,
# otherwise a fresh uuid4. The id is echoed on the response and included in
# the log line so client reports can be matched to server logs.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    incoming = request.headers.get("X-Request-ID", "")
    request_id = incoming if _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex
    request.state.request_id = request_id

    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "%s %s %d %.1fms %s rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
        request_id,
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(invites_router, prefix="/api/v1", tags=["Invitations"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
app.include_router(onboarding_router, prefix="/api/v1", tags=["Onboarding"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
        headers=headers,
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After is the length of the limit's window in seconds. Kept sync:
    SlowAPIMiddleware calls it directly without awaiting.
    """
    limit = getattr(exc, "limit", None)
    try:
        retry_after = int(limit.limit.get_expiry())
    except AttributeError:
        retry_after = 60
    logger.warning("Rate limit hit on %s %s: %s", request.method, request.url.path, exc.detail)
    return _error(
        429,
        "rate_limited",
        "Too many requests, please try again later.",
        detail=str(exc.detail),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 naming the first invalid field."""
    errors = exc.errors()
    message = "Request validation failed."
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return _error(400, "validation_error", message, detail=str(errors) if get_settings().is_development else None)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code", "message"} (a
    dict). When detail is already structured it becomes the error field
    directly; plain-string details (404 from routing, 405) get a generic code.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return _error(
            exc.status_code,
            exc.detail.get("code", f"http_{exc.status_code}"),
            exc.detail.get("message", ""),
            detail=exc.detail.get("detail"),
            headers=headers,
        )
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=headers)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Map database failures to 409 (constraint) or 500 (anything else).

    Outside development the response carries no driver text. In development
    detail holds the driver message plus a hint for known PostgreSQL codes.
    """
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    detail = None
    if get_settings().is_development:
        detail = str(orig or exc)
        hint = _PG_HINTS.get(sqlstate or "")
        if hint:
            detail = f"{detail} (hint: {hint})"

    if isinstance(exc, IntegrityError):
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, orig or exc)
        return _error(409, "conflict", "The request conflicts with existing data.", detail=detail)

    logger.exception("Database error on %s %s", request.method, request.url.path)
    return _error(500, "database_error", "A database error occurred.", detail=detail)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log. The client sees exception text only when
    ENVIRONMENT=development.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(
        500,
        "internal_error",
        "An unexpected error occurred.",
        detail=str(exc) if get_settings().is_development else None,
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness and database reachability."""
    db_ok = request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "unhealthy",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "unavailable"},
    )
