"""
auth/state.py -- CSRF state nonces for the OAuth redirect round trip.

The state value is a short-lived HS256 token signed with the application
secret. It carries a random nonce (authlib generate_token), the provider name
and an expiry. The route sets it as the httpOnly `oauth_state` cookie and
passes the same string to the provider; the callback must present both.

verify_state() accepts a callback only when:
  - the query state and the cookie state are both present and identical
    (constant-time comparison),
  - the signature is valid and the nonce has not expired,
  - it was issued for the provider handling the callback,
  - the nonce has not been used before (StateLedger).

Any failure raises AppError(INVALID_STATE). The route calls this before any
network call to the provider.

StateLedger remembers consumed nonces until they expire. It is per process;
across processes the expiry bounds the replay window.

Layer rule: no imports from api/ or circles/.
"""

from __future__ import annotations

import hmac
import threading
import time
from datetime import datetime, timedelta, timezone

from authlib.common.security import generate_token
from jose import JWTError, jwt

from auth.tokens import ALGORITHM
from core.errors import AppError, ErrorKind

_PURPOSE = "oauth_state"
_NONCE_LENGTH = 32


class StateLedger:
    """Set of consumed nonces, each kept until its own expiry."""

    def __init__(self) -> None:
        self._consumed: dict[str, float] = {}
        self._lock = threading.Lock()

    def consume(self, nonce: str, expires_at: float) -> bool:
        """Mark a nonce as used. Returns False if it was already used."""
        now = time.time()
        with self._lock:
            self._consumed = {n: exp for n, exp in self._consumed.items() if exp > now}
            if nonce in self._consumed:
                return False
            self._consumed[nonce] = expires_at
            return True

    def __len__(self) -> int:
        return len(self._consumed)


def issue_state(provider: str, secret: str, ttl_seconds: int) -> str:
    """Create a signed, expiring state value bound to one provider."""
    expire = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
    payload = {
        "purpose": _PURPOSE,
        "nonce": generate_token(_NONCE_LENGTH),
        "provider": provider,
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def verify_state(
    query_state: str | None,
    cookie_state: str | None,
    provider: str,
    secret: str,
    ledger: StateLedger,
) -> None:
    """Raise AppError(INVALID_STATE) unless the callback state is genuine and fresh."""
    if not query_state or not cookie_state:
        raise AppError(ErrorKind.INVALID_STATE, "missing state")
    if not hmac.compare_digest(query_state.encode("utf-8"), cookie_state.encode("utf-8")):
        raise AppError(ErrorKind.INVALID_STATE, "state mismatch")
    try:
        payload = jwt.decode(query_state, secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise AppError(ErrorKind.INVALID_STATE, "state signature or expiry") from exc

    if payload.get("purpose") != _PURPOSE or payload.get("provider") != provider:
        raise AppError(ErrorKind.INVALID_STATE, "state issued for another purpose")
    nonce = payload.get("nonce")
    exp = payload.get("exp")
    if not isinstance(nonce, str) or not isinstance(exp, (int, float)) or exp <= time.time():
        raise AppError(ErrorKind.INVALID_STATE, "state expired")
    if not ledger.consume(nonce, float(exp)):
        raise AppError(ErrorKind.INVALID_STATE, "state already used")
