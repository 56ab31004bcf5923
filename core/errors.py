"""
core/errors.py -- Closed error taxonomy shared by auth/, circles/ and api/.

Every failure the core reports is an AppError tagged with an ErrorKind. Each
kind belongs to exactly one ErrorCategory, and the category alone decides the
HTTP status at the API boundary. Callers branch on `exc.kind` or
`exc.category`, never on message text.

`message` is the user-facing text for the kind. `detail` carries internal
context (provider status codes, the failing operation) for logs only; the API
layer never renders it. Underlying causes are chained with `raise ... from exc`.

Layer rule: core/ is the kernel. No imports from api/, auth/ or circles/.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    UPSTREAM = "upstream"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.AUTHENTICATION: 401,
    ErrorCategory.PERMISSION: 403,
    ErrorCategory.UPSTREAM: 500,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.INTERNAL: 500,
}


class ErrorKind(Enum):
    """(code, category, message) for every failure the core can report."""

    # Registration / login input
    EMAIL_REQUIRED = ("email_required", ErrorCategory.VALIDATION, "email is required")
    PASSWORD_REQUIRED = ("password_required", ErrorCategory.VALIDATION, "password is required")
    NAME_REQUIRED = ("name_required", ErrorCategory.VALIDATION, "name is required")
    INVALID_EMAIL = ("invalid_email", ErrorCategory.VALIDATION, "invalid email format")
    PASSWORD_TOO_SHORT = ("password_too_short", ErrorCategory.VALIDATION, "password must be at least 8 bytes")
    PASSWORD_TOO_LONG = ("password_too_long", ErrorCategory.VALIDATION, "password must be at most 72 bytes")
    EMAIL_ALREADY_EXISTS = ("email_already_exists", ErrorCategory.CONFLICT, "email already exists")

    # Authentication
    INVALID_CREDENTIALS = ("invalid_credentials", ErrorCategory.AUTHENTICATION, "invalid credentials")
    INVALID_TOKEN = ("unauthorized", ErrorCategory.AUTHENTICATION, "invalid token")

    # OAuth
    INVALID_STATE = ("invalid_state", ErrorCategory.VALIDATION, "invalid state parameter")
    CODE_REQUIRED = ("code_required", ErrorCategory.VALIDATION, "authorization code is required")
    UNKNOWN_PROVIDER = ("unknown_provider", ErrorCategory.NOT_FOUND, "unknown OAuth provider")
    TOKEN_EXCHANGE = (
        "token_exchange_failed",
        ErrorCategory.UPSTREAM,
        "failed to exchange authorization code for token",
    )
    USER_INFO = ("user_info_failed", ErrorCategory.UPSTREAM, "failed to fetch user information")
    NO_EMAIL = ("no_email", ErrorCategory.UPSTREAM, "no email found for user")
    UNVERIFIED_EMAIL = (
        "unverified_email",
        ErrorCategory.AUTHENTICATION,
        "provider email is not verified",
    )

    # Records
    USER_NOT_FOUND = ("user_not_found", ErrorCategory.NOT_FOUND, "user not found")
    CIRCLE_NOT_FOUND = ("circle_not_found", ErrorCategory.NOT_FOUND, "circle not found")
    CIRCLE_NAME_REQUIRED = ("circle_name_required", ErrorCategory.VALIDATION, "circle name is required")
    MEMBER_ALREADY_EXISTS = ("member_already_exists", ErrorCategory.CONFLICT, "user is already a member of this circle")
    MEMBER_NOT_FOUND = ("member_not_found", ErrorCategory.NOT_FOUND, "member not found in circle")
    INVALID_ACCESS_LEVEL = ("invalid_access_level", ErrorCategory.VALIDATION, "access level cannot be assigned")
    ACCESS_DENIED = ("forbidden", ErrorCategory.PERMISSION, "insufficient circle access")

    # Infrastructure
    STORAGE = ("storage_error", ErrorCategory.INTERNAL, "storage operation failed")

    def __init__(self, code: str, category: ErrorCategory, message: str) -> None:
        self.code = code
        self.category = category
        self.message = message


class AppError(Exception):
    """The single exception type raised by the auth and circle core."""

    def __init__(self, kind: ErrorKind, detail: str | None = None) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.message}: {detail}" if detail else kind.message)

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category

    @property
    def code(self) -> str:
        return self.kind.code

    @property
    def message(self) -> str:
        return self.kind.message

    @property
    def http_status(self) -> int:
        return self.kind.category.http_status
