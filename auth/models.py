"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work.

Layer rule: no imports from api/ or circles/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """An account in the user directory, keyed by its unique email.

    password_hash is None for OAuth-only users (they have no local password).
    oauth_provider / oauth_subject are None until the first successful OAuth
    login links a provider identity; after that the link is never replaced by
    a different provider.
    """

    email: str
    name: str
    id: str | None = None
    password_hash: str | None = None  # None = OAuth-only user
    oauth_provider: str | None = None  # "google", "github"
    oauth_subject: str | None = None  # provider's stable user ID
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_linked(self) -> bool:
        return bool(self.oauth_provider and self.oauth_subject)


@dataclass(frozen=True)
class Claims:
    """Decoded session token payload. Never persisted."""

    user_id: str
    email: str
    expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """What a successful register, login or OAuth callback hands back."""

    token: str
    user_id: str
    email: str
    name: str


@dataclass(frozen=True)
class Identity:
    """Verified caller identity injected into request state by get_current_identity()."""

    user_id: str
    email: str
