"""
auth/tokens.py -- Session tokens and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the user id (sub), email and
       expiry. Generation and validation are decoupled: generate_token()
       encodes whatever duration it is given (a non-positive duration yields a
       token that is already expired), validate_token() enforces expiry.

       validate_token() pins the algorithm list to HS256 so a token whose
       header names another algorithm (RS256, HS512, "none") is rejected
       before signature checks -- the algorithm-confusion defence. Every
       failure raises the same AppError(INVALID_TOKEN); callers cannot tell a
       bad signature from an expired or malformed token.

  Passwords: bcrypt directly (no passlib wrapper). Per-hash random salt from
       bcrypt.gensalt(). _DUMMY_HASH enables timing equalization in the login
       path so response time does not reveal whether an email exists [C1].

The signing secret is passed in explicitly by the caller (the service holds
it); this module reads no configuration.

Layer rule: no imports from api/ or circles/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import Claims
from core.errors import AppError, ErrorKind

logger = logging.getLogger("hobbytracker.auth")

ALGORITHM = "HS256"

# bcrypt only looks at the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Callers validate length first; bcrypt rejects inputs over 72 bytes.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Malformed hashes and over-long inputs count as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("hobbytracker_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt comparison against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def generate_token(user_id: str, email: str, secret: str, duration: timedelta) -> str:
    """Encode a signed session token expiring at now + duration.

    Always succeeds when signing succeeds, even for duration <= 0.
    exp is whole seconds: rounded up for a positive duration so a sub-second
    token is still valid when it reaches validate_token(), rounded down
    otherwise so a non-positive duration is expired on arrival.
    """
    expire = (datetime.now(timezone.utc) + duration).timestamp()
    payload = {
        "sub": user_id,
        "email": email,
        "exp": math.ceil(expire) if duration > timedelta(0) else math.floor(expire),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def validate_token(token: str, secret: str) -> Claims:
    """Verify a session token and return its claims.

    Raises AppError(INVALID_TOKEN) on any failure: malformed input, wrong
    algorithm, bad signature, wrong secret, missing claims or expiry.
    """
    if not isinstance(token, str) or not token:
        raise AppError(ErrorKind.INVALID_TOKEN)
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise AppError(ErrorKind.INVALID_TOKEN) from exc

    user_id = payload.get("sub")
    email = payload.get("email")
    exp = payload.get("exp")
    if not isinstance(user_id, str) or not user_id or not isinstance(email, str):
        raise AppError(ErrorKind.INVALID_TOKEN)
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        raise AppError(ErrorKind.INVALID_TOKEN)

    # jose accepts exp == now; a token is only valid strictly before its expiry.
    now = datetime.now(timezone.utc).timestamp()
    if exp <= now:
        raise AppError(ErrorKind.INVALID_TOKEN)

    return Claims(
        user_id=user_id,
        email=email,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )
