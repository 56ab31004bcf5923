"""
api/main.py -- FastAPI application entry point for Hobby Tracker.

Exposes the authentication and circle-sharing core over HTTP.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. log_requests          -- method, path, status, latency, client

Lifespan builds the stores, the credential service, the OAuth provider
registry and the state-nonce ledger on startup, and disposes of the database
engines on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.circles import router as circles_router
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.providers import build_registry
from auth.service import CredentialAuthService
from auth.state import StateLedger
from auth.store import UserStore
from circles.store import CircleStore
from core.config import get_settings
from core.errors import AppError, ErrorCategory

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("hobbytracker.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Tests replace this with a lifespan that points the stores at
    in-memory databases (tests/conftest.py).
    """
    settings = get_settings()
    logger.info("Hobby Tracker API starting up")

    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    app.state.circle_store = CircleStore(settings.database_url)
    app.state.auth_service = CredentialAuthService(
        app.state.user_store,
        settings.secret_key,
        timedelta(seconds=settings.token_expire_seconds),
    )
    app.state.oauth_providers = build_registry(settings)
    app.state.state_ledger = StateLedger()
    logger.info("Auth initialized (%d OAuth providers)", len(app.state.oauth_providers.describe()))

    yield

    app.state.circle_store.close()
    app.state.user_store.close()
    logger.info("Hobby Tracker API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Hobby Tracker API",
    description="Accounts, OAuth sign-in and circle-based sharing for Hobby Tracker.",
    version=VERSION,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each newly added middleware around the ones added before
# it, so registration runs innermost first: log_requests, SlowAPI, CORS,
# TrustedHost. A request therefore meets TrustedHost first.
# ---------------------------------------------------------------------------

_settings = get_settings()


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


app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(circles_router, prefix="/api/v1", tags=["Circles"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(identity: Identity = Depends(get_current_identity)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Hobby Tracker API")


@app.get("/redoc", include_in_schema=False)
async def redoc(identity: Identity = Depends(get_current_identity)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Hobby Tracker API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a core error. The category decides the status.

    exc.detail (provider status codes, storage context) goes to the log only.
    """
    if exc.category in (ErrorCategory.UPSTREAM, ErrorCategory.INTERNAL):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc.__cause__)
    elif exc.detail:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.http_status,
        content=ErrorResponse.from_app_error(exc).model_dump(),
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
    """Return 400 with structured error when request body or query params fail validation.

    Only field locations and messages are echoed; pydantic's `input` values
    may contain passwords.
    """
    problems = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=problems,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict (get_current_identity raises one),
    use it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return JSONResponse(
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
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
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
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    database = "ok" if request.app.state.user_store.ping() else "unavailable"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=VERSION,
        components={"database": database},
    )
