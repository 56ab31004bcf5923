"""
auth/service.py -- Credential registration and password login.

CredentialAuthService owns the user directory, the signing secret and the
session duration. The OAuth callback flow (auth/oauth.py) reuses its store
and issue() so every login path mints tokens the same way.

Error policy:
  Registration errors are specific (email required, invalid email, password
  too short, email already exists) so users can fix their input.

  Login errors are deliberately generic. Unknown email, OAuth-only account
  and wrong password all raise the same AppError(INVALID_CREDENTIALS), and
  bcrypt runs in every branch so response time does not reveal whether the
  email exists [C1].

  While checking for an existing email during registration, USER_NOT_FOUND is
  the success path. Any other directory failure propagates unchanged.

Layer rule: no imports from api/ or circles/.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta

from auth.models import AuthResult, User
from auth.store import UserStore
from auth.tokens import MAX_PASSWORD_BYTES, burn_password_check, generate_token, hash_password, verify_password
from core.errors import AppError, ErrorKind

logger = logging.getLogger("hobbytracker.auth")

# Both password bounds count UTF-8 bytes.
MIN_PASSWORD_BYTES = 8

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")


class CredentialAuthService:
    """Register and log in users with email + password.

    Usage:
        service = CredentialAuthService(UserStore(url), secret, timedelta(hours=1))
        result = service.register("a@b.com", "password1", "A")
        again = service.login("a@b.com", "password1")
    """

    def __init__(self, store: UserStore, secret: str, token_duration: timedelta) -> None:
        self.store = store
        self._secret = secret
        self.token_duration = token_duration

    def register(self, email: str, password: str, name: str) -> AuthResult:
        """Create a password account and return a session for it."""
        if not email:
            raise AppError(ErrorKind.EMAIL_REQUIRED)
        if not password:
            raise AppError(ErrorKind.PASSWORD_REQUIRED)
        if not name:
            raise AppError(ErrorKind.NAME_REQUIRED)
        if not EMAIL_PATTERN.fullmatch(email):
            raise AppError(ErrorKind.INVALID_EMAIL)
        password_bytes = len(password.encode("utf-8"))
        if password_bytes < MIN_PASSWORD_BYTES:
            raise AppError(ErrorKind.PASSWORD_TOO_SHORT)
        if password_bytes > MAX_PASSWORD_BYTES:
            raise AppError(ErrorKind.PASSWORD_TOO_LONG)

        try:
            self.store.get_by_email(email)
        except AppError as exc:
            if exc.kind is not ErrorKind.USER_NOT_FOUND:
                raise
        else:
            raise AppError(ErrorKind.EMAIL_ALREADY_EXISTS)

        # A concurrent registration can still win between the lookup and the
        # insert; create_user() maps the unique violation to the same error.
        user = self.store.create_user(User(email=email, name=name, password_hash=hash_password(password)))
        logger.info("Registered user %s", user.id)
        return self.issue(user)

    def login(self, email: str, password: str) -> AuthResult:
        """Verify email + password and return a fresh session."""
        if not email:
            raise AppError(ErrorKind.EMAIL_REQUIRED)
        if not password:
            raise AppError(ErrorKind.PASSWORD_REQUIRED)

        try:
            user = self.store.get_by_email(email)
        except AppError as exc:
            if exc.kind is not ErrorKind.USER_NOT_FOUND:
                raise
            # Equalize timing -- do NOT return before running bcrypt [C1]
            burn_password_check(password)
            raise AppError(ErrorKind.INVALID_CREDENTIALS) from None

        if user.password_hash is None:
            burn_password_check(password)
            raise AppError(ErrorKind.INVALID_CREDENTIALS)
        if not verify_password(password, user.password_hash):
            raise AppError(ErrorKind.INVALID_CREDENTIALS)

        return self.issue(user)

    def issue(self, user: User) -> AuthResult:
        """Mint a session token for an already-authenticated user."""
        token = generate_token(user.id, user.email, self._secret, self.token_duration)
        return AuthResult(token=token, user_id=user.id, email=user.email, name=user.name)
