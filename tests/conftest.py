"""
tests/conftest.py -- Shared test fixtures for Hobby Tracker.

This module provides:
  - user_store / circle_store: isolated in-memory stores for unit tests
  - auth_service: CredentialAuthService over user_store with a fixed secret
  - make_response: builds `requests` responses for provider calls
  - transport: ProviderTransport, a scripted requests adapter standing in
    for provider endpoints
  - api: module-scoped TestClient harness running the real app with a
    patched lifespan (in-memory stores, Google + GitHub configured)
  - oauth_transport: fresh ProviderTransport wired into the API's providers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any project import: DEBUG lets
get_settings() auto-generate SECRET_KEY, the rate limits are raised so the
suite never trips them, and ALLOWED_HOSTS admits the TestClient host.
"""

from __future__ import annotations

import json
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from unittest.mock import MagicMock

# CRITICAL: Set these before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "testserver"]')

import pytest
import requests
from fastapi.testclient import TestClient
from requests.adapters import BaseAdapter

from api.main import app
from auth.providers import build_registry
from auth.service import CredentialAuthService
from auth.state import StateLedger
from auth.store import UserStore
from circles.store import CircleStore
from core.config import Settings

TEST_SECRET = "test-secret-key-for-hobbytracker-0123456789"


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _test_settings() -> Settings:
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        google_client_id="google-client-id",
        google_client_secret="google-client-secret",
        github_client_id="github-client-id",
        github_client_secret="github-client-secret",
    )


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def secret() -> str:
    return TEST_SECRET


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(_memory_url("users"))
    yield store
    store.close()


@pytest.fixture
def circle_store() -> Generator[CircleStore, None, None]:
    store = CircleStore(_memory_url("circles"))
    yield store
    store.close()


@pytest.fixture
def auth_service(user_store: UserStore) -> CredentialAuthService:
    return CredentialAuthService(user_store, TEST_SECRET, timedelta(hours=1))


@pytest.fixture
def make_response() -> Callable[..., requests.Response]:
    """Return a factory for requests.Response objects with a JSON body.

    make_response(payload)             -> 200 whose .json() returns payload
    make_response(status_code=500)     -> non-2xx
    make_response(malformed=True)      -> body that is not JSON
    """

    def _make(payload: Any = None, status_code: int = 200, malformed: bool = False) -> requests.Response:
        resp = requests.Response()
        resp.status_code = status_code
        resp.headers["Content-Type"] = "text/html" if malformed else "application/json"
        resp.encoding = "utf-8"
        resp._content = b"<html>not json</html>" if malformed else json.dumps(payload).encode()
        return resp

    return _make


class ProviderTransport(BaseAdapter):
    """requests transport adapter that answers provider calls from MagicMocks.

    Mounted on the providers' OAuth2Sessions in place of the network. Script
    `post` / `get` like a session: their return value (a make_response()
    result) is the response, their side_effect may raise requests errors.
    Each mock is called as (url, request=PreparedRequest, **send_kwargs).
    """

    def __init__(self) -> None:
        super().__init__()
        self.post = MagicMock(return_value=None)
        self.get = MagicMock(return_value=None)

    def send(self, request, **kwargs) -> requests.Response:
        handler = self.post if request.method == "POST" else self.get
        resp = handler(request.url, request=request, **kwargs)
        if resp is None:
            raise requests.ConnectionError(f"no scripted response for {request.method} {request.url}")
        resp.request = request
        resp.url = request.url
        return resp

    def close(self) -> None:
        pass


@pytest.fixture
def transport() -> ProviderTransport:
    return ProviderTransport()


# ---------------------------------------------------------------------------
# API harness
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    settings: Settings
    user_store: UserStore
    circle_store: CircleStore

    def register(self, email: str, password: str = "password123", name: str = "Test User") -> dict:
        """Register through the API and return the session body."""
        resp = self.client.post("/api/v1/auth/register", json={"email": email, "password": password, "name": name})
        assert resp.status_code == 201, resp.text
        return resp.json()

    @staticmethod
    def bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(settings: Settings, user_store: UserStore, circle_store: CircleStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs. Providers get an unscripted ProviderTransport so nothing
    can reach the network; oauth_transport swaps in a fresh one per test.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.circle_store = circle_store
        app.state.auth_service = CredentialAuthService(
            user_store, settings.secret_key, timedelta(seconds=settings.token_expire_seconds)
        )
        app.state.oauth_providers = build_registry(settings, transport=ProviderTransport())
        app.state.state_ledger = StateLedger()
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for API integration tests.

    One TestClient per test module for speed; each module gets its own
    databases so modules never see each other's users.
    """
    settings = _test_settings()
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store = UserStore(_memory_url(f"api_users_{suffix}"))
    circle_store = CircleStore(_memory_url(f"api_circles_{suffix}"))

    app.router.lifespan_context = _patch_lifespan(settings, user_store, circle_store)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, settings=settings, user_store=user_store, circle_store=circle_store)

    circle_store.close()
    user_store.close()


@pytest.fixture
def oauth_transport(api: ApiHarness) -> ProviderTransport:
    """Install a fresh scripted transport behind the API's OAuth providers."""
    transport = ProviderTransport()
    app.state.oauth_providers = build_registry(api.settings, transport=transport)
    api.client.cookies.clear()
    return transport
