"""
auth/oauth.py -- Provider-agnostic OAuth2 authorization-code federation.

Pieces:
  OAuthConfig      -- client credentials and endpoint URLs for one provider.
  OAuthProvider    -- base class driving authlib's requests OAuth2Session for
                      the authorization URL, the code exchange (form-encoded
                      POST, client_secret_post) and the user-info fetch
                      (bearer GET, plus the secondary emails endpoint when the
                      primary call has no usable email). Subclasses in
                      auth/providers.py only describe their endpoints, scopes
                      and how to read their user-info payload.
  ProviderRegistry -- provider lookup by name; the route layer never branches
                      on provider names.
  handle_callback  -- the callback flow: code -> access token -> identity ->
                      find-or-create user -> session token.

Callback flow stages (logged on failure, no automatic retry -- authorization
codes are single-use, the caller restarts from the authorization URL):

  AwaitingRedirect -> CallbackReceived -> StateVerified -> TokenExchanged
      -> UserInfoFetched -> UserResolved{created|linked|existing} -> SessionIssued

State verification (auth/state.py) is the caller's job and happens before
handle_callback() is invoked, so a forged callback never reaches the network.

Security notes:
  Every outbound call has a timeout (10 s by default). Transport errors,
  timeouts, non-2xx responses and malformed JSON are wrapped as
  TOKEN_EXCHANGE / USER_INFO, as are OAuth error responses from authlib. The
  wrapped detail holds the endpoint host and the status or OAuth error code
  only -- never the client secret, the authorization code or the provider
  access token.

  Linking by email: an existing account whose email matches the provider
  email is linked to the provider identity when it has no link yet. With
  require_verified_email=True the link additionally requires the provider to
  report the email as verified. See DESIGN.md (open question on account
  linking).

Layer rule: no imports from api/ or circles/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session
from requests.adapters import BaseAdapter

from auth.models import AuthResult, User
from core.errors import AppError, ErrorKind

if TYPE_CHECKING:
    from auth.service import CredentialAuthService
    from auth.store import UserStore

logger = logging.getLogger("hobbytracker.auth.oauth")

DEFAULT_TIMEOUT_SECONDS = 10.0

# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OAuthConfig:
    """Client registration for one provider.

    token_url / userinfo_url / emails_url default to the provider's production
    endpoints when left empty; tests point them at fakes.
    """

    client_id: str
    client_secret: str
    redirect_url: str
    token_url: str = ""
    userinfo_url: str = ""
    emails_url: str | None = None


@dataclass(frozen=True)
class OAuthIdentity:
    """Normalized identity from any provider.

    email_verified is None when the provider does not say.
    """

    subject: str
    email: str
    name: str
    email_verified: bool | None = None


class CallbackStage(str, Enum):
    AWAITING_REDIRECT = "awaiting_redirect"
    CALLBACK_RECEIVED = "callback_received"
    STATE_VERIFIED = "state_verified"
    TOKEN_EXCHANGED = "token_exchanged"
    USER_INFO_FETCHED = "user_info_fetched"
    USER_RESOLVED = "user_resolved"
    SESSION_ISSUED = "session_issued"


class Resolution(str, Enum):
    CREATED = "created"
    LINKED = "linked"
    EXISTING = "existing"


# ---------------------------------------------------------------------------
# Email selection
# ---------------------------------------------------------------------------


def select_email(entries: list[dict]) -> str:
    """Pick the account email from a provider's email listing.

    Preference: primary and verified, then the first verified, then the first
    entry with any address. Raises AppError(NO_EMAIL) if nothing qualifies.
    """
    candidates = [e for e in entries if isinstance(e, dict) and e.get("email")]
    for entry in candidates:
        if entry.get("primary") and entry.get("verified"):
            return entry["email"]
    for entry in candidates:
        if entry.get("verified"):
            return entry["email"]
    if candidates:
        return candidates[0]["email"]
    raise AppError(ErrorKind.NO_EMAIL)


# ---------------------------------------------------------------------------
# Provider base class
# ---------------------------------------------------------------------------


def _raise_for_status(resp: requests.Response) -> requests.Response:
    """Token-response compliance hook: non-2xx answers never reach the parser."""
    resp.raise_for_status()
    return resp


class OAuthProvider:
    """One OAuth2 identity provider. Subclasses set the class attributes.

    Every operation builds its own authlib OAuth2Session, so instances hold
    no per-login state and are safe to share between request threads.
    `transport` is an optional requests adapter mounted on those sessions
    (tests pass a scripted one; production leaves it None).
    """

    name: str = ""
    label: str = ""
    authorize_url: str = ""
    default_token_url: str = ""
    default_userinfo_url: str = ""
    default_emails_url: str | None = None
    scopes: tuple[str, ...] = ()
    token_endpoint_auth_method: str = "client_secret_post"

    def __init__(
        self,
        config: OAuthConfig,
        transport: BaseAdapter | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.config = replace(
            config,
            token_url=config.token_url or self.default_token_url,
            userinfo_url=config.userinfo_url or self.default_userinfo_url,
            emails_url=config.emails_url or self.default_emails_url,
        )
        self._transport = transport
        self.timeout = timeout

    # -- hooks ---------------------------------------------------------

    def parse_user_info(self, payload: dict) -> OAuthIdentity:
        """Map the primary user-info payload onto OAuthIdentity.

        email may be left empty; fetch_user_info() then asks the emails
        endpoint.
        """
        raise NotImplementedError

    # -- operations ----------------------------------------------------

    def auth_url(self, state: str) -> str:
        """Consent-screen URL carrying client id, redirect URL, scopes and state."""
        with self._client() as client:
            url, _ = client.create_authorization_url(self.authorize_url, state=state)
        return url

    def exchange_code(self, code: str) -> str:
        """Trade an authorization code for a provider access token."""
        if not code:
            raise AppError(ErrorKind.CODE_REQUIRED)
        with self._client() as client, self._upstream(ErrorKind.TOKEN_EXCHANGE, self.config.token_url):
            client.register_compliance_hook("access_token_response", _raise_for_status)
            token = client.fetch_token(self.config.token_url, code=code, timeout=self.timeout)

        access_token = token.get("access_token") if isinstance(token, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise AppError(ErrorKind.TOKEN_EXCHANGE, f"{self.name}: no access_token in response")
        return access_token

    def fetch_user_info(self, access_token: str) -> OAuthIdentity:
        """Fetch and normalize the signed-in user's identity."""
        with self._client(token={"access_token": access_token, "token_type": "bearer"}) as client:
            payload = self._get_json(client, self.config.userinfo_url)
            if not isinstance(payload, dict):
                raise AppError(ErrorKind.USER_INFO, f"{self.name}: user info is not an object")
            try:
                identity = self.parse_user_info(payload)
            except (KeyError, TypeError, ValueError) as exc:
                raise AppError(ErrorKind.USER_INFO, f"{self.name}: malformed user info") from exc

            if identity.email:
                return identity
            if not self.config.emails_url:
                raise AppError(ErrorKind.NO_EMAIL, f"{self.name}: user info has no email")
            entries = self._get_json(client, self.config.emails_url)

        if not isinstance(entries, list):
            raise AppError(ErrorKind.USER_INFO, f"{self.name}: email listing is not a list")
        email = select_email(entries)
        verified = any(isinstance(e, dict) and e.get("email") == email and e.get("verified") for e in entries)
        return replace(identity, email=email, email_verified=verified)

    # -- transport -----------------------------------------------------

    def _client(self, token: dict | None = None) -> OAuth2Session:
        # max_redirects=3 replaces the requests default of 30; provider
        # endpoints are fixed.
        client = OAuth2Session(
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            scope=" ".join(self.scopes),
            redirect_uri=self.config.redirect_url,
            token_endpoint_auth_method=self.token_endpoint_auth_method,
            token=token,
        )
        client.max_redirects = 3
        if self._transport is not None:
            client.mount("https://", self._transport)
            client.mount("http://", self._transport)
        return client

    def _get_json(self, client: OAuth2Session, url: str) -> Any:
        with self._upstream(ErrorKind.USER_INFO, url):
            resp = client.get(url, headers={"Accept": "application/json"}, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()

    @contextmanager
    def _upstream(self, failure: ErrorKind, url: str) -> Iterator[None]:
        """Translate transport and protocol failures into AppError(failure).

        The detail names the endpoint host and, where known, the status code
        or the OAuth error code; never the secret, the code or the token.
        """
        host = urlparse(url).netloc or url
        try:
            yield
        except requests.Timeout as exc:
            raise AppError(failure, f"{self.name}: request to {host} timed out") from exc
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else "unknown"
            raise AppError(failure, f"{self.name}: {host} returned status {status}") from exc
        except requests.JSONDecodeError as exc:
            raise AppError(failure, f"{self.name}: {host} returned malformed JSON") from exc
        except requests.RequestException as exc:
            raise AppError(failure, f"{self.name}: request to {host} failed ({type(exc).__name__})") from exc
        except AuthlibBaseError as exc:
            raise AppError(failure, f"{self.name}: {host} rejected the request (error={exc.error})") from exc


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ProviderRegistry:
    """Enabled providers keyed by name."""

    def __init__(self, providers: list[OAuthProvider] | None = None) -> None:
        self._providers: dict[str, OAuthProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: OAuthProvider) -> None:
        self._providers[provider.name] = provider
        logger.info("%s OAuth provider registered", provider.label or provider.name)

    def get(self, name: str) -> OAuthProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise AppError(ErrorKind.UNKNOWN_PROVIDER, repr(name)) from None

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def describe(self) -> list[dict]:
        """Return [{"name", "label"}] for every registered provider."""
        return [{"name": p.name, "label": p.label} for p in self._providers.values()]


# ---------------------------------------------------------------------------
# Callback flow
# ---------------------------------------------------------------------------


def resolve_user(
    store: UserStore,
    provider_name: str,
    identity: OAuthIdentity,
    require_verified_email: bool = False,
) -> tuple[User, Resolution]:
    """Find or create the local user for a provider identity.

    - No user with this email: create one with no password and the link set.
    - User exists without a link: backfill the link.
    - User exists with a link (any provider): use it unchanged.
    """
    try:
        user = store.get_by_email(identity.email)
    except AppError as exc:
        if exc.kind is not ErrorKind.USER_NOT_FOUND:
            raise
        new_user = User(
            email=identity.email,
            name=identity.name or identity.email.split("@")[0],
            oauth_provider=provider_name,
            oauth_subject=identity.subject,
        )
        try:
            return store.create_user(new_user), Resolution.CREATED
        except AppError as create_exc:
            if create_exc.kind is not ErrorKind.EMAIL_ALREADY_EXISTS:
                raise
            # Lost a race with a concurrent registration for the same email.
            user = store.get_by_email(identity.email)

    if user.is_linked:
        if user.oauth_provider != provider_name:
            logger.warning(
                "User %s is linked to %s; leaving link unchanged on %s login",
                user.id,
                user.oauth_provider,
                provider_name,
            )
        return user, Resolution.EXISTING

    if require_verified_email and identity.email_verified is not True:
        raise AppError(ErrorKind.UNVERIFIED_EMAIL, f"{provider_name}: refusing to link unverified email")

    linked = store.link_oauth(user.id, provider_name, identity.subject)
    if linked.oauth_provider == provider_name and linked.oauth_subject == identity.subject:
        return linked, Resolution.LINKED
    return linked, Resolution.EXISTING


def handle_callback(
    provider: OAuthProvider,
    code: str,
    auth_service: CredentialAuthService,
    require_verified_email: bool = False,
) -> AuthResult:
    """Complete an authorization-code login and return a session.

    The caller has already verified the state parameter. Any failure is
    terminal for this attempt.
    """
    if not code:
        raise AppError(ErrorKind.CODE_REQUIRED)

    stage = CallbackStage.STATE_VERIFIED
    try:
        access_token = provider.exchange_code(code)
        stage = CallbackStage.TOKEN_EXCHANGED
        identity = provider.fetch_user_info(access_token)
        stage = CallbackStage.USER_INFO_FETCHED
        user, resolution = resolve_user(auth_service.store, provider.name, identity, require_verified_email)
        stage = CallbackStage.USER_RESOLVED
        result = auth_service.issue(user)
    except AppError as exc:
        logger.warning("OAuth callback via %s failed after %s: %s", provider.name, stage.value, exc)
        raise

    logger.info("OAuth login via %s: user %s %s", provider.name, result.user_id, resolution.value)
    return result
