"""
api/routes/v1/auth.py -- Registration, login and OAuth federation endpoints.

Routes:
  POST /api/v1/auth/register              -- create account; 201 + session
  POST /api/v1/auth/login                 -- password login; 200 + session
  GET  /api/v1/auth/providers             -- list enabled OAuth providers (public)
  GET  /api/v1/auth/me                    -- current identity (requires auth)
  GET  /api/v1/auth/{provider}            -- 307 to the provider consent screen
  GET  /api/v1/auth/{provider}/callback   -- finish OAuth login; 200 + session

/providers and /me are registered before /{provider} so the path parameter
does not swallow them.

Security:
  [H2] register and login are rate-limited per client IP (settings).
  [C1] Login failures are generic; timing equalization lives in the service.
  [M5] Cache-Control: no-store on every response that carries a token.
  CSRF: the redirect sets a signed, single-use state nonce in the httpOnly
  `oauth_state` cookie. The callback verifies it against the query state
  before any call to the provider, and clears the cookie on every outcome.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter, login_limit, register_limit
from api.models import AuthResponse, ErrorResponse, LoginRequest, MeResponse, OAuthProviderInfo, RegisterRequest
from auth.dependencies import get_current_identity
from auth.models import AuthResult, Identity
from auth.oauth import ProviderRegistry, handle_callback
from auth.service import CredentialAuthService
from auth.state import issue_state, verify_state
from core.errors import AppError, ErrorKind

logger = logging.getLogger("hobbytracker.api")

STATE_COOKIE = "oauth_state"
STATE_COOKIE_PATH = "/api/v1/auth"

# Auth policy:
# - POST /api/v1/auth/register:            public, rate-limited
# - POST /api/v1/auth/login:               public, rate-limited
# - GET  /api/v1/auth/providers:           public -- login page renders buttons from it
# - GET  /api/v1/auth/me:                  requires auth (get_current_identity)
# - GET  /api/v1/auth/{provider}:          public -- starts the OAuth flow
# - GET  /api/v1/auth/{provider}/callback: public -- guarded by the state nonce
router = APIRouter()


def _session_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse.from_result(result).model_dump(by_alias=True),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Credential endpoints
# ---------------------------------------------------------------------------


@limiter.limit(register_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a password account and return a session for it.

    Validation errors are specific (400); a taken email is 409.
    """
    service: CredentialAuthService = request.app.state.auth_service
    result = service.register(body.email, body.password, body.name)
    return _session_response(result, status_code=201)


@limiter.limit(login_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, OAuth-only account and wrong password all return the same
    401 "invalid credentials" body.
    """
    service: CredentialAuthService = request.app.state.auth_service
    try:
        result = service.login(body.email, body.password)
    except AppError as exc:
        if exc.kind is ErrorKind.INVALID_CREDENTIALS:
            logger.info("Failed login attempt from %s", request.client.host if request.client else "unknown")
        raise
    return _session_response(result)


# ---------------------------------------------------------------------------
# Session introspection
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when none are configured."""
    registry: ProviderRegistry = request.app.state.oauth_providers
    return [OAuthProviderInfo(**p) for p in registry.describe()]


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return the profile of the currently authenticated user."""
    service: CredentialAuthService = request.app.state.auth_service
    user = service.store.get_by_id(identity.user_id)
    return MeResponse(user_id=user.id, email=user.email, name=user.name, oauth_provider=user.oauth_provider)


# ---------------------------------------------------------------------------
# OAuth federation
# ---------------------------------------------------------------------------


@router.get("/auth/{provider}", status_code=307)
async def oauth_login(request: Request, provider: str) -> RedirectResponse:
    """Redirect to the provider's consent screen with a fresh state nonce."""
    registry: ProviderRegistry = request.app.state.oauth_providers
    oauth_provider = registry.get(provider)
    settings = request.app.state.settings

    state = issue_state(oauth_provider.name, settings.secret_key, settings.oauth_state_ttl_seconds)
    resp = RedirectResponse(url=oauth_provider.auth_url(state), status_code=307)
    resp.set_cookie(
        STATE_COOKIE,
        state,
        max_age=settings.oauth_state_ttl_seconds,
        path=STATE_COOKIE_PATH,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
    )
    return resp


@router.get("/auth/{provider}/callback", response_model=AuthResponse)
def oauth_callback(request: Request, provider: str, code: str = "", state: str = "") -> JSONResponse:
    """Complete the authorization-code flow and return a session.

    Order of checks: state nonce (400 invalid state), provider, code (400),
    then the provider round trip (500 on upstream failure).
    """
    settings = request.app.state.settings
    try:
        verify_state(
            state,
            request.cookies.get(STATE_COOKIE),
            provider,
            settings.secret_key,
            request.app.state.state_ledger,
        )
        registry: ProviderRegistry = request.app.state.oauth_providers
        result = handle_callback(
            registry.get(provider),
            code,
            request.app.state.auth_service,
            require_verified_email=settings.oauth_require_verified_email,
        )
    except AppError as exc:
        logger.warning("OAuth callback for %s rejected: %s", provider, exc)
        resp = JSONResponse(status_code=exc.http_status, content=ErrorResponse.from_app_error(exc).model_dump())
    else:
        resp = _session_response(result)

    resp.delete_cookie(STATE_COOKIE, path=STATE_COOKIE_PATH, httponly=True, samesite="lax")
    return resp
