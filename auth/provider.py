"""
auth/provider.py -- Identity provider interface and the GoTrue HTTP client.

The gateway never verifies credentials, hashes passwords or mints tokens. It
delegates all of that to an external identity provider through the
IdentityProvider protocol below and only shapes the result.

GoTrueIdentityProvider speaks the GoTrue REST API (the auth server behind
Supabase Auth):
  POST /token?grant_type=password  -- password login
  POST /signup                     -- registration
  GET  /authorize?provider=...     -- OAuth entry point (URL is built, not fetched)
  POST /recover                    -- password reset email

Error mapping rules:
  - 4xx answers the provider uses to say "no" are turned into the *Failed /
    *Rejected result variants.
  - Transport failures (timeouts, connection errors) and 5xx answers raise
    httpx.HTTPError. The gateway reports those as internal errors; no call is
    retried here.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, Protocol

import httpx

from auth.models import (
    LoginRejected,
    LoginResult,
    LoginSucceeded,
    LoginUnverified,
    OAuthFailed,
    OAuthResult,
    OAuthStarted,
    ProviderSession,
    ProviderUser,
    RegistrationFailed,
    RegistrationProfile,
    RegistrationResult,
    RegistrationSucceeded,
    ResetFailed,
    ResetRequested,
    ResetResult,
)
from core.config import Settings

logger = logging.getLogger("authgate.auth.provider")


class IdentityProvider(Protocol):
    """External system of record for credentials, sessions and OAuth redirects."""

    async def authenticate(self, email: str, password: str) -> LoginResult: ...

    async def register(self, profile: RegistrationProfile) -> RegistrationResult: ...

    async def begin_oauth(self, provider_id: str, redirect_to: Optional[str] = None) -> OAuthResult: ...

    async def send_reset(self, email: str, redirect_to: Optional[str] = None) -> ResetResult: ...


# ---------------------------------------------------------------------------
# GoTrue response parsing
# ---------------------------------------------------------------------------

# GoTrue error_code values (and legacy message fragments) mapped to the
# registration codes the gateway understands.
_SIGNUP_ERROR_CODES = {
    "user_already_exists": "USER_ALREADY_EXISTS",
    "email_exists": "USER_ALREADY_EXISTS",
    "weak_password": "INVALID_PASSWORD",
}


def _error_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_code(body: dict[str, Any]) -> str:
    # Older GoTrue releases put the HTTP status in "code"; only strings are codes.
    for key in ("error_code", "code", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _error_message(body: dict[str, Any], default: str) -> str:
    for key in ("msg", "error_description", "message"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return default


def _parse_user(data: dict[str, Any]) -> ProviderUser:
    metadata = data.get("user_metadata") or {}
    return ProviderUser(
        id=str(data["id"]),
        email=data.get("email") or "",
        first_name=metadata.get("first_name"),
        last_name=metadata.get("last_name"),
        role=metadata.get("role") or "user",
        email_confirmed_at=data.get("email_confirmed_at") or data.get("confirmed_at"),
        created_at=data.get("created_at"),
    )


def _parse_session(data: dict[str, Any]) -> Optional[ProviderSession]:
    """Return the session carried by a token/signup response, or None.

    GoTrue sends expires_at (epoch seconds) on current releases and only
    expires_in on older ones.
    """
    access_token = data.get("access_token")
    if not access_token:
        return None
    expires_at = data.get("expires_at")
    if expires_at is None:
        expires_at = int(time.time()) + int(data.get("expires_in") or 0)
    return ProviderSession(
        access_token=access_token,
        refresh_token=data.get("refresh_token") or "",
        expires_at=int(expires_at),
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GoTrueIdentityProvider:
    """Async IdentityProvider backed by a GoTrue server.

    One instance (and one httpx.AsyncClient connection pool) is created in the
    API lifespan and closed on shutdown via aclose().
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        enabled_oauth_providers: Optional[list[str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._base_url = base_url.rstrip("/")
        self._enabled_oauth = set(enabled_oauth_providers or [])
        # follow_redirects stays off: GoTrue answers these endpoints directly.
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> GoTrueIdentityProvider:
        return cls(
            base_url=settings.identity_provider_url,
            api_key=settings.identity_provider_api_key,
            enabled_oauth_providers=settings.enabled_oauth_providers,
            timeout=settings.identity_provider_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def authenticate(self, email: str, password: str) -> LoginResult:
        resp = await self._client.post(
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if resp.status_code >= 500:
            resp.raise_for_status()
        if resp.status_code >= 400:
            body = _error_body(resp)
            message = _error_message(body, "Invalid login credentials")
            # GoTrue checks the password before the confirmation state, so this
            # answer means the credentials were right but the account is inactive.
            if _error_code(body) == "email_not_confirmed" or "not confirmed" in message.lower():
                return LoginUnverified()
            return LoginRejected(message)

        data = resp.json()
        user = _parse_user(data["user"]) if data.get("user") else None
        session = _parse_session(data)
        if user is None or session is None:
            return LoginUnverified(user)
        return LoginSucceeded(user=user, session=session)

    async def register(self, profile: RegistrationProfile) -> RegistrationResult:
        payload = {
            "email": profile.email,
            "password": profile.password,
            "data": {
                "first_name": profile.first_name,
                "last_name": profile.last_name,
                "full_name": f"{profile.first_name} {profile.last_name}",
                "accept_terms": profile.accept_terms,
                "accept_marketing": profile.accept_marketing,
                "referral_code": profile.referral_code,
                "registration_source": "api",
            },
        }
        resp = await self._client.post("/signup", json=payload)
        if resp.status_code >= 500:
            resp.raise_for_status()
        if resp.status_code >= 400:
            body = _error_body(resp)
            message = _error_message(body, "Registration failed")
            code = _SIGNUP_ERROR_CODES.get(_error_code(body))
            if code is None and "already registered" in message.lower():
                code = "USER_ALREADY_EXISTS"
            if code is None and message.lower().startswith("password"):
                code = "INVALID_PASSWORD"
            if code == "USER_ALREADY_EXISTS":
                return RegistrationFailed(code, "An account with this email already exists")
            if code == "INVALID_PASSWORD":
                return RegistrationFailed(code, "Password does not meet requirements")
            logger.warning("GoTrue signup rejected (status=%d, message=%s)", resp.status_code, message)
            return RegistrationFailed("REGISTRATION_FAILED", "Registration failed. Please try again.")

        data = resp.json()
        # With autoconfirm on, signup returns a token response wrapping the
        # user; otherwise the body is the bare user object.
        user_data = data.get("user") if isinstance(data.get("user"), dict) else data
        if not user_data.get("id"):
            return RegistrationFailed("NO_USER_DATA", "Registration failed unexpectedly")

        user = _parse_user(user_data)
        user.first_name = user.first_name or profile.first_name
        user.last_name = user.last_name or profile.last_name
        needs_verification = not user.email_verified
        return RegistrationSucceeded(
            user=user,
            needs_verification=needs_verification,
            session=_parse_session(data),
            message=(
                "Registration successful! Please check your email to verify your account."
                if needs_verification
                else "Registration successful! You can now sign in."
            ),
        )

    async def begin_oauth(self, provider_id: str, redirect_to: Optional[str] = None) -> OAuthResult:
        if provider_id not in self._enabled_oauth:
            return OAuthFailed(f"OAuth provider {provider_id!r} is not enabled")
        if not self._base_url:
            return OAuthStarted(url=None)
        params = {"provider": provider_id}
        if redirect_to:
            params["redirect_to"] = redirect_to
        url = httpx.URL(f"{self._base_url}/authorize", params=params)
        return OAuthStarted(url=str(url))

    async def send_reset(self, email: str, redirect_to: Optional[str] = None) -> ResetResult:
        params = {"redirect_to": redirect_to} if redirect_to else None
        resp = await self._client.post("/recover", params=params, json={"email": email})
        if resp.status_code >= 500:
            resp.raise_for_status()
        if resp.status_code >= 400:
            return ResetFailed(_error_message(_error_body(resp), "Password reset request failed"))
        return ResetRequested()
