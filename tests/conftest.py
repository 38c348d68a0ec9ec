"""
tests/conftest.py -- Shared test fixtures for AuthGate tests.

This module provides:
  - FakeIdentityProvider: scripted IdentityProvider that records its calls
  - _patch_lifespan(): wires a fresh limiter and the fake provider into
    app.state, bypassing the real GoTrue client
  - gateway_client: TestClient for API integration tests
  - fake_provider: a standalone fake for gateway unit tests

Every client in the test session shares the same rate limiter, and requests
without a forwarding header all count against the "unknown" bucket. The
autouse fixture resets counters and provider scripts before each test, and
tests that exercise limits also send their own X-Forwarded-For.

DEBUG and ALLOWED_HOSTS must be set before any api/auth/core import:
get_settings() is cached on first call, production mode refuses to start
without IDENTITY_PROVIDER_URL, and TrustedHostMiddleware would reject the
TestClient's "testserver" Host header.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Optional

# CRITICAL: set before any api/auth/core import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost")

import pytest
from fastapi.testclient import TestClient

from api.gateway import AuthGateway
from api.main import app
from auth.limiter import RateLimiter
from auth.models import (
    LoginSucceeded,
    OAuthStarted,
    ProviderSession,
    ProviderUser,
    RegistrationProfile,
    RegistrationSucceeded,
    ResetRequested,
)
from core.config import get_settings

# ---------------------------------------------------------------------------
# Fake identity provider
# ---------------------------------------------------------------------------


def make_user(**overrides) -> ProviderUser:
    fields = {
        "id": "user-123",
        "email": "alice@example.com",
        "first_name": "Alice",
        "last_name": "Liddell",
        "email_confirmed_at": "2024-01-01T00:00:00+00:00",
        "created_at": "2024-01-01T00:00:00+00:00",
    }
    fields.update(overrides)
    return ProviderUser(**fields)


def make_session() -> ProviderSession:
    return ProviderSession(access_token="access-abc", refresh_token="refresh-xyz", expires_at=1_900_000_000)


class FakeIdentityProvider:
    """IdentityProvider double. Set *_result or error, then inspect calls."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.calls: list[tuple] = []
        self.login_result = LoginSucceeded(user=make_user(), session=make_session())
        self.register_result = RegistrationSucceeded(
            user=make_user(id="user-new", email="bob@example.com", email_confirmed_at=None),
            needs_verification=True,
            message="Registration successful! Please check your email to verify your account.",
        )
        self.oauth_result = OAuthStarted(url="https://idp.example.com/auth/v1/authorize?provider=google")
        self.reset_result = ResetRequested()
        self.error: Optional[Exception] = None

    def _answer(self, result):
        if self.error is not None:
            raise self.error
        return result

    async def authenticate(self, email: str, password: str):
        self.calls.append(("authenticate", email))
        return self._answer(self.login_result)

    async def register(self, profile: RegistrationProfile):
        self.calls.append(("register", profile.email))
        return self._answer(self.register_result)

    async def begin_oauth(self, provider_id: str, redirect_to: Optional[str] = None):
        self.calls.append(("begin_oauth", provider_id, redirect_to))
        return self._answer(self.oauth_result)

    async def send_reset(self, email: str, redirect_to: Optional[str] = None):
        self.calls.append(("send_reset", email, redirect_to))
        return self._answer(self.reset_result)

    async def aclose(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Lifespan patch
# ---------------------------------------------------------------------------


def _patch_lifespan(provider: FakeIdentityProvider):
    """Return an async context manager that replaces the real lifespan.

    The limiter is built from the same settings as production so route tests
    see the real presets (5/minute auth, 10/minute reset).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.limiter = RateLimiter.from_settings(get_settings())
        app.state.identity_provider = provider
        app.state.gateway = AuthGateway(app.state.limiter, provider)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def gateway_client() -> Generator[tuple[TestClient, FakeIdentityProvider], None, None]:
    """Yield (client, provider) for API integration tests.

    The TestClient uses the real FastAPI app and middleware stack with a
    patched lifespan, so tests hit the real routes and gateway while the
    identity provider answers from its script.
    """
    provider = FakeIdentityProvider()
    app.router.lifespan_context = _patch_lifespan(provider)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, provider


@pytest.fixture
def fake_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture(autouse=True)
def _reset_gateway_state() -> Generator[None, None, None]:
    limiter = getattr(app.state, "limiter", None)
    if limiter is not None:
        asyncio.run(limiter.reset())
    provider = getattr(app.state, "identity_provider", None)
    if isinstance(provider, FakeIdentityProvider):
        provider.reset()
    yield
