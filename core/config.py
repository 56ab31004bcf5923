"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Hobby Tracker happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, github_client_id -> GITHUB_CLIENT_ID).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a signing key with a warning, production
      mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Session tokens
       and OAuth state nonces are both HS256-signed with it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  Provider secrets live only here and in the provider config objects built
  from it. They are never logged.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or circles/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("hobbytracker.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'hobbytracker.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    allowed_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    token_expire_seconds: int = 3600
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # OAuth
    #
    # A provider is enabled only when both its client ID and secret are set.
    # Redirect URLs must match what is registered with the provider exactly.
    # ------------------------------------------------------------------

    oauth_state_ttl_seconds: int = 300
    oauth_http_timeout_seconds: float = 10.0
    # Refuse to link a provider identity to an existing account unless the
    # provider reports the email as verified. Off by default; see DESIGN.md.
    oauth_require_verified_email: bool = False

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_url: str = "http://localhost:8080/api/v1/auth/google/callback"

    github_client_id: str = ""
    github_client_secret: str = ""
    github_redirect_url: str = "http://localhost:8080/api/v1/auth/github/callback"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
