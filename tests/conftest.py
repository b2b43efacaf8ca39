"""
tests/conftest.py -- Shared test fixtures for LearnDeck.

This module provides:
  - FakeNotifier: records verification emails instead of sending them
  - FrozenClock: injectable clock for expiry tests
  - engine / service: an AuthService over an isolated in-memory DB
  - client: TestClient wired to that service through a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each test gets its own uniquely named DB, so auth state (refresh
rows, verification tokens) never leaks between tests.

Environment must be set before any auth/core import so get_settings()
auto-generates secrets in dev mode and the app accepts the TestClient host.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("CLIENT_URL", "http://client.test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient

from api.main import app, build_auth_service
from auth.schema import make_engine
from auth.service import AuthService
from core.config import get_settings

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeNotifier:
    """Notifier that records calls. Set succeed=False or error to simulate failures."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.succeed = True
        self.error: Exception | None = None

    def send_verification(self, recipient_email: str, display_name: str, verification_url: str) -> bool:
        if self.error is not None:
            raise self.error
        self.sent.append((recipient_email, display_name, verification_url))
        return self.succeed

    @property
    def last_token(self) -> str:
        """Token value from the most recent verification URL."""
        _email, _name, url = self.sent[-1]
        return parse_qs(urlparse(url).query)["token"][0]


class FrozenClock:
    """Callable clock for stores; advance() moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


# ---------------------------------------------------------------------------
# Store / service fixtures
# ---------------------------------------------------------------------------


def _memory_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def engine():
    eng = make_engine(_memory_url())
    yield eng
    eng.dispose()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def service(engine, notifier) -> AuthService:
    return build_auth_service(get_settings(), engine=engine, notifier=notifier)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def verified_user(service: AuthService, notifier: FakeNotifier):
    """Factory: register and verify a local user through the real workflow. Returns the id."""

    def _make(email: str = "bob@example.com", password: str = "s3cret!") -> int:
        credential = service.register("Bob Builder", email, password, password)
        service.verify_email(notifier.last_token)
        return credential.id

    return _make


# ---------------------------------------------------------------------------
# TestClient
# ---------------------------------------------------------------------------


class FakeOAuthAdapter:
    """Stands in for OAuthFederationAdapter; resolve() returns a preset profile."""

    def __init__(self) -> None:
        self.enabled = {"google", "github"}
        self.profile = None
        self.error: Exception | None = None

    def is_enabled(self, provider: str) -> bool:
        return provider in self.enabled

    async def authorize_redirect(self, request, provider: str, redirect_uri: str):
        return RedirectResponse(f"https://idp.test/{provider}/authorize?redirect_uri={redirect_uri}", status_code=302)

    async def resolve(self, request, provider: str):
        if self.error is not None:
            raise self.error
        return self.profile


def _patch_lifespan(service: AuthService, oauth_adapter: FakeOAuthAdapter):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine (a real asyncio.Task is
    required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.oauth = oauth_adapter
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def oauth_adapter() -> FakeOAuthAdapter:
    return FakeOAuthAdapter()


@pytest.fixture
def client(service: AuthService, oauth_adapter: FakeOAuthAdapter) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated stores and no network.

    follow_redirects=False so OAuth tests can assert on Location headers.
    """
    app.router.lifespan_context = _patch_lifespan(service, oauth_adapter)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c
