"""
tests/test_gateway.py -- Unit tests for api/gateway.py (the auth orchestrator).

The gateway is driven directly with asyncio.run() against the scripted fake
identity provider, without the HTTP layer.

Covers:
  - Stage order: rate limit before validation before the provider call
  - Login non-disclosure (401 "Invalid credentials") and the 403 for an
    accepted login without a session
  - Registration error-code mapping, including unknown codes -> 500
  - OAuth: failure -> 400, missing URL -> 500
  - Reset-password answers the same 200 for every provider outcome
  - Unexpected exceptions become a generic 500
  - Every log record for a request carries that request's correlation id
"""

from __future__ import annotations

import asyncio
import json
import logging
import time

import httpx
import pytest

from api.gateway import INVALID_CREDENTIALS_MESSAGE, RESET_MESSAGE, AuthGateway
from auth.limiter import RateLimitPreset, RateLimiter
from auth.models import (
    Action,
    LoginRejected,
    LoginUnverified,
    OAuthFailed,
    OAuthStarted,
    ProviderUser,
    RegistrationFailed,
    RequestContext,
    ResetFailed,
)

LOGIN_BODY = json.dumps({"email": "alice@example.com", "password": "Secret123!"}).encode()
REGISTER_BODY = json.dumps(
    {
        "email": "bob@example.com",
        "password": "Str0ng!Pass",
        "firstName": "Bob",
        "lastName": "Builder",
        "acceptTerms": True,
    }
).encode()
OAUTH_BODY = json.dumps({"provider": "google"}).encode()
RESET_BODY = json.dumps({"email": "carol@example.com"}).encode()


def _ctx(action: Action, client: str = "192.0.2.10", correlation_id: str = "corr-test-1") -> RequestContext:
    return RequestContext(correlation_id=correlation_id, client_identifier=client, action=action)


@pytest.fixture
def gateway(fake_provider) -> AuthGateway:
    preset = RateLimitPreset(limit=3, window_seconds=60)
    return AuthGateway(RateLimiter({action: preset for action in Action}), fake_provider)


class TestPipelineOrder:
    def test_rate_limit_checked_before_validation(self, gateway, fake_provider):
        ctx = _ctx(Action.LOGIN)
        for _ in range(3):
            assert asyncio.run(gateway.login(ctx, b"not json")).status_code == 422

        resp = asyncio.run(gateway.login(ctx, b"not json"))

        assert resp.status_code == 429
        assert resp.body["error"]["kind"] == "RATE_LIMITED"
        assert fake_provider.calls == []

    def test_invalid_payload_never_reaches_provider(self, gateway, fake_provider):
        resp = asyncio.run(gateway.login(_ctx(Action.LOGIN), b'{"email": "bad"}'))
        assert resp.status_code == 422
        assert resp.body["error"]["kind"] == "VALIDATION"
        fields = [issue["field"] for issue in resp.body["error"]["details"]["issues"]]
        assert fields == ["email", "password"]
        assert fake_provider.calls == []

    def test_rate_limited_response_carries_retry_after(self, gateway):
        ctx = _ctx(Action.RESET_PASSWORD)
        for _ in range(3):
            asyncio.run(gateway.reset_password(ctx, RESET_BODY))

        resp = asyncio.run(gateway.reset_password(ctx, RESET_BODY))

        retry_after = resp.body["error"]["details"]["retryAfter"]
        assert resp.status_code == 429
        assert retry_after >= 1
        assert resp.headers["Retry-After"] == str(retry_after)
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_success_carries_rate_limit_headers(self, gateway):
        before = time.time()
        resp = asyncio.run(gateway.login(_ctx(Action.LOGIN), LOGIN_BODY))
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Remaining"] == "2"
        reset_at = int(resp.headers["X-RateLimit-Reset"])
        assert before < reset_at <= before + 61, f"window end out of range: {reset_at}"

    def test_deeply_nested_body_is_validation_error(self, gateway, fake_provider):
        body = b"[" * 200_000 + b"]" * 200_000
        resp = asyncio.run(gateway.login(_ctx(Action.LOGIN), body))
        assert resp.status_code == 422
        assert resp.body["error"]["kind"] == "VALIDATION"
        assert fake_provider.calls == []

    @pytest.mark.parametrize("accept_terms", ["yes", 1, "true"])
    def test_non_boolean_terms_never_reach_provider(self, gateway, fake_provider, accept_terms):
        payload = json.loads(REGISTER_BODY)
        payload["acceptTerms"] = accept_terms
        resp = asyncio.run(gateway.register(_ctx(Action.REGISTER), json.dumps(payload).encode()))
        assert resp.status_code == 422
        issues = resp.body["error"]["details"]["issues"]
        assert issues == [{"field": "acceptTerms", "message": "You must accept the terms of service"}]
        assert fake_provider.calls == []

    def test_provider_called_exactly_once(self, gateway, fake_provider):
        asyncio.run(gateway.login(_ctx(Action.LOGIN), LOGIN_BODY))
        assert fake_provider.calls == [("authenticate", "alice@example.com")]


class TestLogin:
    def test_success(self, gateway):
        resp = asyncio.run(gateway.login(_ctx(Action.LOGIN), LOGIN_BODY))
        assert resp.status_code == 200
        assert resp.body["user"]["id"] == "user-123"
        assert resp.body["user"]["emailVerified"] is True
        assert resp.body["user"]["lastLoginAt"]
        assert resp.body["session"]["accessToken"] == "access-abc"
        assert resp.body["correlationId"] == "corr-test-1"

    @pytest.mark.parametrize("provider_message", ["Invalid login credentials", "User not found", "Wrong password"])
    def test_every_auth_failure_is_invalid_credentials(self, gateway, fake_provider, provider_message):
        fake_provider.login_result = LoginRejected(provider_message)
        resp = asyncio.run(gateway.login(_ctx(Action.LOGIN), LOGIN_BODY))
        assert resp.status_code == 401
        assert resp.body["error"] == {"kind": "UNAUTHORIZED", "message": INVALID_CREDENTIALS_MESSAGE, "details": None}

    def test_accepted_without_session_is_forbidden(self, gateway, fake_provider):
        fake_provider.login_result = LoginUnverified(ProviderUser(id="user-9", email="alice@example.com"))
        resp = asyncio.run(gateway.login(_ctx(Action.LOGIN), LOGIN_BODY))
        assert resp.status_code == 403
        assert resp.body["error"]["kind"] == "FORBIDDEN"

    def test_transport_error_is_internal(self, gateway, fake_provider):
        fake_provider.error = httpx.ConnectError("connection refused to idp.internal:9999")
        resp = asyncio.run(gateway.login(_ctx(Action.LOGIN), LOGIN_BODY))
        assert resp.status_code == 500
        assert resp.body["error"]["kind"] == "INTERNAL"
        assert "idp.internal" not in json.dumps(resp.body), "exception detail leaked to the client"

    def test_unrecognized_result_is_internal(self, gateway, fake_provider):
        fake_provider.login_result = OAuthStarted(url="https://wrong.example.com")
        resp = asyncio.run(gateway.login(_ctx(Action.LOGIN), LOGIN_BODY))
        assert resp.status_code == 500


class TestRegister:
    def test_success_is_created(self, gateway):
        resp = asyncio.run(gateway.register(_ctx(Action.REGISTER), REGISTER_BODY))
        assert resp.status_code == 201
        assert resp.body["needsVerification"] is True
        assert resp.body["session"] is None
        assert resp.body["user"]["email"] == "bob@example.com"

    @pytest.mark.parametrize(
        "error_code,status,kind",
        [
            ("USER_ALREADY_EXISTS", 409, "CONFLICT"),
            ("ACCOUNT_EXISTS", 409, "CONFLICT"),
            ("WEAK_PASSWORD", 400, "BAD_REQUEST"),
            ("INVALID_PASSWORD", 400, "BAD_REQUEST"),
            ("REGISTRATION_FAILED", 400, "BAD_REQUEST"),
            ("NO_USER_DATA", 500, "INTERNAL"),
            ("SOMETHING_NEW", 500, "INTERNAL"),
        ],
    )
    def test_error_code_mapping(self, gateway, fake_provider, error_code, status, kind):
        fake_provider.register_result = RegistrationFailed(error_code, "provider said no")
        resp = asyncio.run(gateway.register(_ctx(Action.REGISTER), REGISTER_BODY))
        assert resp.status_code == status, f"{error_code} -> {resp.status_code}"
        assert resp.body["error"]["kind"] == kind

    def test_unknown_code_message_is_generic(self, gateway, fake_provider):
        fake_provider.register_result = RegistrationFailed("DB_CONSTRAINT_users_email_key", "duplicate key value")
        resp = asyncio.run(gateway.register(_ctx(Action.REGISTER), REGISTER_BODY))
        assert "duplicate key" not in resp.body["error"]["message"]


class TestOAuth:
    def test_success(self, gateway):
        resp = asyncio.run(gateway.begin_oauth(_ctx(Action.OAUTH_INITIATE), OAUTH_BODY))
        assert resp.status_code == 200
        assert resp.body["provider"] == "google"
        assert resp.body["authUrl"].startswith("https://idp.example.com/")

    def test_provider_failure_is_bad_request(self, gateway, fake_provider):
        fake_provider.oauth_result = OAuthFailed("provider is not enabled")
        resp = asyncio.run(gateway.begin_oauth(_ctx(Action.OAUTH_INITIATE), OAUTH_BODY))
        assert resp.status_code == 400
        assert resp.body["error"]["details"] == {"provider": "google", "code": "OAUTH_INITIATION_FAILED"}

    def test_success_without_url_is_internal(self, gateway, fake_provider):
        fake_provider.oauth_result = OAuthStarted(url=None)
        resp = asyncio.run(gateway.begin_oauth(_ctx(Action.OAUTH_INITIATE), OAUTH_BODY))
        assert resp.status_code == 500
        assert resp.body["error"]["message"] == "Failed to generate OAuth URL"


class TestResetPassword:
    @staticmethod
    def _stable(body: dict) -> dict:
        return {k: v for k, v in body.items() if k not in ("email", "timestamp", "correlationId")}

    def test_same_answer_for_every_provider_outcome(self, gateway, fake_provider):
        ok = asyncio.run(gateway.reset_password(_ctx(Action.RESET_PASSWORD, client="192.0.2.21"), RESET_BODY))

        fake_provider.reset_result = ResetFailed("User not found")
        failed = asyncio.run(gateway.reset_password(_ctx(Action.RESET_PASSWORD, client="192.0.2.22"), RESET_BODY))

        fake_provider.error = httpx.ReadTimeout("timed out")
        raised = asyncio.run(gateway.reset_password(_ctx(Action.RESET_PASSWORD, client="192.0.2.23"), RESET_BODY))

        assert ok.status_code == failed.status_code == raised.status_code == 200
        assert self._stable(ok.body) == self._stable(failed.body) == self._stable(raised.body)
        assert ok.body["message"] == RESET_MESSAGE

    def test_provider_error_is_logged(self, gateway, fake_provider, caplog):
        caplog.set_level(logging.INFO)
        fake_provider.error = httpx.ReadTimeout("timed out")
        asyncio.run(gateway.reset_password(_ctx(Action.RESET_PASSWORD), RESET_BODY))
        assert any(r.levelno == logging.ERROR and r.exc_info for r in caplog.records)


class TestLogCorrelation:
    def test_every_record_carries_the_correlation_id(self, gateway, fake_provider, caplog):
        caplog.set_level(logging.DEBUG, logger="authgate")
        fake_provider.login_result = LoginRejected("Invalid login credentials")

        resp = asyncio.run(gateway.login(_ctx(Action.LOGIN, correlation_id="corr-abc-123"), LOGIN_BODY))

        records = [r for r in caplog.records if r.name.startswith("authgate.api")]
        assert records, "expected at least one gateway log record"
        assert {getattr(r, "correlation_id", None) for r in records} == {"corr-abc-123"}
        assert resp.body["correlationId"] == "corr-abc-123"

    def test_password_never_logged(self, gateway, caplog):
        caplog.set_level(logging.DEBUG, logger="authgate")
        asyncio.run(gateway.login(_ctx(Action.LOGIN), LOGIN_BODY))
        assert "Secret123!" not in caplog.text
