"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_current_identity() is the per-request auth gate for protected routes:
  1. Read the Authorization header.
  2. Require exactly "Bearer <token>" (two space-separated parts).
  3. Validate the token with the session secret from app.state.
  4. Inject the verified user id and email into request.state for
     downstream handlers and return them as an Identity.

A missing header, a malformed header and an invalid, expired or tampered
token all produce the same 401 body, so a caller learns nothing about which
check failed.

No database lookup happens here; the token alone is the session.

Layer rule: may import from fastapi (part of the DI system) and core/.
No imports from api/ or circles/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Identity
from auth.tokens import validate_token
from core.errors import AppError, ErrorKind


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": ErrorKind.INVALID_TOKEN.code, "message": ErrorKind.INVALID_TOKEN.message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def try_get_identity(request: Request) -> Identity | None:
    """Return the verified Identity, or None if the request is unauthenticated.

    Never raises -- callers that need a hard 401 should use get_current_identity().
    """
    parts = request.headers.get("Authorization", "").split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    try:
        claims = validate_token(parts[1], request.app.state.settings.secret_key)
    except AppError:
        return None
    return Identity(user_id=claims.user_id, email=claims.email)


def get_current_identity(request: Request) -> Identity:
    """Require a valid bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise _unauthorized()
    request.state.user_id = identity.user_id
    request.state.email = identity.email
    request.state.identity = identity
    return identity
