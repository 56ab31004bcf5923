"""
auth/providers.py -- Concrete OAuth providers and the registry factory.

Supported providers:
  google -- userinfo v2 returns id, email, verified_email and name in one call.
  github -- /user returns the numeric id, login and name; email is only set
            when the user made it public, otherwise /user/emails is queried
            and the address chosen by select_email().

Adding a provider: subclass OAuthProvider with its endpoints, scopes and a
parse_user_info(), then register it in build_registry().

Layer rule: no imports from api/ or circles/. Import from core/ is allowed.
"""

from __future__ import annotations

from requests.adapters import BaseAdapter

from auth.oauth import OAuthConfig, OAuthIdentity, OAuthProvider, ProviderRegistry
from core.config import Settings


class GoogleProvider(OAuthProvider):
    name = "google"
    label = "Google"
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    default_token_url = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
    default_userinfo_url = "https://www.googleapis.com/oauth2/v2/userinfo"
    scopes = ("email", "profile")

    def parse_user_info(self, payload: dict) -> OAuthIdentity:
        subject = payload["id"]
        if not subject:
            raise ValueError("empty id")
        verified = payload.get("verified_email")
        return OAuthIdentity(
            subject=str(subject),
            email=payload.get("email") or "",
            name=payload.get("name") or "",
            email_verified=verified if isinstance(verified, bool) else None,
        )


class GitHubProvider(OAuthProvider):
    name = "github"
    label = "GitHub"
    authorize_url = "https://github.com/login/oauth/authorize"
    default_token_url = "https://github.com/login/oauth/access_token"  # noqa: S105 -- URL, not a password
    default_userinfo_url = "https://api.github.com/user"
    default_emails_url = "https://api.github.com/user/emails"
    scopes = ("user:email",)

    def parse_user_info(self, payload: dict) -> OAuthIdentity:
        subject = payload["id"]
        if isinstance(subject, bool) or not isinstance(subject, (int, str)) or subject == "":
            raise ValueError("id must be a number")
        # GitHub does not say whether the public profile email is verified.
        return OAuthIdentity(
            subject=str(subject),
            email=payload.get("email") or "",
            name=payload.get("name") or payload.get("login") or "",
        )


def build_registry(settings: Settings, transport: BaseAdapter | None = None) -> ProviderRegistry:
    """Register every provider that has both a client ID and secret configured."""
    registry = ProviderRegistry()
    timeout = settings.oauth_http_timeout_seconds

    if settings.google_client_id and settings.google_client_secret:
        registry.register(
            GoogleProvider(
                OAuthConfig(
                    client_id=settings.google_client_id,
                    client_secret=settings.google_client_secret,
                    redirect_url=settings.google_redirect_url,
                ),
                transport=transport,
                timeout=timeout,
            )
        )

    if settings.github_client_id and settings.github_client_secret:
        registry.register(
            GitHubProvider(
                OAuthConfig(
                    client_id=settings.github_client_id,
                    client_secret=settings.github_client_secret,
                    redirect_url=settings.github_redirect_url,
                ),
                transport=transport,
                timeout=timeout,
            )
        )

    return registry
