"""
api/gateway.py -- The auth gateway: one pipeline per credential-bearing flow.

Every flow is the same strict linear pipeline with fail-fast short-circuits:

    RATE_CHECK --blocked--> 429
        |
    VALIDATE --invalid--> 422
        |
    PROVIDER_CALL (exactly one) --> mapped error kind or success

The limiter runs before the body is even decoded, so a throttled client never
reaches the validator or the identity provider. Nothing is retried: a
transient provider failure becomes a 500 and retrying is the caller's call.

Flow policy that must be preserved:
  [NDL] Login failures always answer 401 "Invalid credentials", whatever the
        provider said. Distinguishing unknown email from wrong password would
        let an attacker enumerate accounts.
  [ACT] Login accepted without a session answers 403, not 401 or 200. The
        credentials were right but the account is not usable yet.
  [RST] Reset-password answers the same 200 body whether or not the account
        exists and whether or not the provider failed. Provider errors are
        logged, never surfaced.
  [URL] OAuth "success" without a redirect URL is a provider contract
        violation and answers 500, never 200.

Any exception escaping a stage is turned into a generic 500 here. No fault
leaks past the responder.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable

from pydantic import BaseModel

from api import responder
from api.models import (
    ErrorKind,
    LoginRequest,
    LoginResponse,
    OAuthRequest,
    OAuthResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    ResetPasswordResponse,
    SessionInfo,
    UserSummary,
)
from api.responder import GatewayResponse
from api.validation import Invalid, validate_body
from auth.limiter import RateLimitDecision, RateLimiter
from auth.models import (
    Action,
    LoginRejected,
    LoginSucceeded,
    LoginUnverified,
    OAuthFailed,
    OAuthStarted,
    RegistrationFailed,
    RegistrationProfile,
    RegistrationSucceeded,
    RequestContext,
    ResetFailed,
    ResetRequested,
)
from auth.provider import IdentityProvider

logger = logging.getLogger("authgate.api.gateway")

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"
VERIFY_EMAIL_MESSAGE = "Please verify your email before signing in"
RESET_MESSAGE = "If an account with this email exists, you will receive a password reset link shortly."

# Registration error codes the provider may report, and how they surface.
# Anything not listed here is an internal error.
REGISTRATION_ERROR_KINDS: dict[str, ErrorKind] = {
    "USER_ALREADY_EXISTS": ErrorKind.CONFLICT,
    "ACCOUNT_EXISTS": ErrorKind.CONFLICT,
    "WEAK_PASSWORD": ErrorKind.BAD_REQUEST,
    "INVALID_PASSWORD": ErrorKind.BAD_REQUEST,
    "REGISTRATION_FAILED": ErrorKind.BAD_REQUEST,
}

_RATE_LIMIT_MESSAGES = {
    Action.LOGIN: "Too many login attempts",
    Action.REGISTER: "Too many registration attempts",
    Action.OAUTH_INITIATE: "Too many OAuth attempts. Please wait before trying again.",
    Action.RESET_PASSWORD: "Too many password reset requests. Please wait before trying again.",
}

_VALIDATION_MESSAGES = {
    Action.LOGIN: "Invalid login request",
    Action.REGISTER: "Invalid registration request",
    Action.OAUTH_INITIATE: "Invalid OAuth request",
    Action.RESET_PASSWORD: "Please provide a valid email address",
}

_INTERNAL_MESSAGES = {
    Action.LOGIN: "Login failed due to server error",
    Action.REGISTER: "Registration failed due to server error",
    Action.OAUTH_INITIATE: "OAuth sign-in failed due to server error",
    Action.RESET_PASSWORD: "Password reset request failed due to server error",
}

Flow = Callable[[RequestContext, BaseModel], Awaitable[GatewayResponse]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    # X-RateLimit-Reset is the epoch second at which the current window ends.
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(math.ceil(decision.reset_at)),
    }


class AuthGateway:
    """Runs the four auth flows against a shared limiter and identity provider.

    Usage:
        gateway = AuthGateway(RateLimiter.from_settings(settings), provider)
        response = await gateway.login(ctx, await request.body())
    """

    def __init__(self, limiter: RateLimiter, provider: IdentityProvider) -> None:
        self.limiter = limiter
        self.provider = provider

    # ------------------------------------------------------------------
    # Public flows
    # ------------------------------------------------------------------

    async def login(self, ctx: RequestContext, body: bytes) -> GatewayResponse:
        return await self._run(ctx, body, LoginRequest, self._login)

    async def register(self, ctx: RequestContext, body: bytes) -> GatewayResponse:
        return await self._run(ctx, body, RegisterRequest, self._register)

    async def begin_oauth(self, ctx: RequestContext, body: bytes) -> GatewayResponse:
        return await self._run(ctx, body, OAuthRequest, self._begin_oauth)

    async def reset_password(self, ctx: RequestContext, body: bytes) -> GatewayResponse:
        return await self._run(ctx, body, ResetPasswordRequest, self._reset_password)

    # ------------------------------------------------------------------
    # Shared pipeline
    # ------------------------------------------------------------------

    async def _run(self, ctx: RequestContext, body: bytes, schema: type[BaseModel], flow: Flow) -> GatewayResponse:
        headers: dict[str, str] = {}
        try:
            decision = await self.limiter.check_action(ctx.action, ctx.client_identifier)
            headers.update(rate_limit_headers(decision))
            if not decision.allowed:
                response = responder.rate_limited(ctx, decision, _RATE_LIMIT_MESSAGES[ctx.action])
            else:
                outcome = validate_body(schema, body)
                if isinstance(outcome, Invalid):
                    response = responder.validation_failed(ctx, outcome, _VALIDATION_MESSAGES[ctx.action])
                else:
                    response = await flow(ctx, outcome.payload)
        except Exception as exc:
            response = responder.internal(
                ctx,
                _INTERNAL_MESSAGES[ctx.action],
                f"Unexpected error during {ctx.action.value}",
                exc=exc,
            )
        response.headers.update(headers)
        return response

    def _log_attempt(self, ctx: RequestContext, message: str, *args: object) -> None:
        logger.info(message, *args, extra={"correlation_id": ctx.correlation_id})

    # ------------------------------------------------------------------
    # Flow bodies -- called only with a validated payload
    # ------------------------------------------------------------------

    async def _login(self, ctx: RequestContext, payload: LoginRequest) -> GatewayResponse:
        self._log_attempt(ctx, "Login attempt (email=%s, remember_me=%s)", payload.email, payload.remember_me)
        result = await self.provider.authenticate(payload.email, payload.password)

        if isinstance(result, LoginRejected):
            # [NDL] provider reason is logged only
            return responder.unauthorized(
                ctx, INVALID_CREDENTIALS_MESSAGE, "Login failed", email=payload.email, reason=result.message
            )
        if isinstance(result, LoginUnverified):
            # [ACT]
            return responder.forbidden(
                ctx,
                VERIFY_EMAIL_MESSAGE,
                "Login accepted but no session issued",
                email=payload.email,
                user_id=result.user.id if result.user else None,
            )
        if isinstance(result, LoginSucceeded):
            body = LoginResponse(
                user=UserSummary.from_provider(result.user, last_login_at=_now_iso()),
                session=SessionInfo.from_provider(result.session),
            )
            return responder.success(ctx, 200, body, "Login successful", email=payload.email, user_id=result.user.id)
        return self._unexpected(ctx, result)

    async def _register(self, ctx: RequestContext, payload: RegisterRequest) -> GatewayResponse:
        self._log_attempt(ctx, "Registration attempt (email=%s, referral_code=%s)", payload.email, payload.referral_code)
        profile = RegistrationProfile(
            email=payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            accept_terms=payload.accept_terms,
            accept_marketing=payload.accept_marketing,
            referral_code=payload.referral_code,
        )
        result = await self.provider.register(profile)

        if isinstance(result, RegistrationFailed):
            kind = REGISTRATION_ERROR_KINDS.get(result.error_code)
            if kind is ErrorKind.CONFLICT:
                return responder.conflict(
                    ctx, result.message, "Registration failed", email=payload.email, error_code=result.error_code
                )
            if kind is ErrorKind.BAD_REQUEST:
                return responder.bad_request(
                    ctx, result.message, "Registration failed", email=payload.email, error_code=result.error_code
                )
            return responder.internal(
                ctx,
                _INTERNAL_MESSAGES[ctx.action],
                "Registration failed with unrecognized error code",
                email=payload.email,
                error_code=result.error_code,
                reason=result.message,
            )
        if isinstance(result, RegistrationSucceeded):
            body = RegisterResponse(
                message=result.message,
                user=UserSummary.from_provider(result.user),
                needs_verification=result.needs_verification,
                session=SessionInfo.from_provider(result.session) if result.session else None,
            )
            return responder.success(
                ctx,
                201,
                body,
                "Registration completed",
                email=payload.email,
                user_id=result.user.id,
                needs_verification=result.needs_verification,
            )
        return self._unexpected(ctx, result)

    async def _begin_oauth(self, ctx: RequestContext, payload: OAuthRequest) -> GatewayResponse:
        provider_id = payload.provider.value
        self._log_attempt(
            ctx, "OAuth sign-in attempt (provider=%s, has_redirect_to=%s)", provider_id, payload.redirect_to is not None
        )
        result = await self.provider.begin_oauth(provider_id, payload.redirect_to)

        if isinstance(result, OAuthFailed):
            return responder.bad_request(
                ctx,
                f"Failed to initiate {provider_id} sign-in. Please try again.",
                "OAuth initiation failed",
                details={"provider": provider_id, "code": "OAUTH_INITIATION_FAILED"},
                provider=provider_id,
                reason=result.message,
            )
        if isinstance(result, OAuthStarted):
            if not result.url:
                # [URL]
                return responder.internal(
                    ctx, "Failed to generate OAuth URL", "OAuth provider returned no URL", provider=provider_id
                )
            body = OAuthResponse(
                provider=provider_id,
                auth_url=result.url,
                message=f"Redirect to {provider_id} for authentication",
            )
            return responder.success(ctx, 200, body, "OAuth URL generated", provider=provider_id)
        return self._unexpected(ctx, result)

    async def _reset_password(self, ctx: RequestContext, payload: ResetPasswordRequest) -> GatewayResponse:
        self._log_attempt(
            ctx, "Password reset request (email=%s, has_redirect_to=%s)", payload.email, payload.redirect_to is not None
        )
        # [RST] every provider outcome, including an exception, ends in the same 200
        try:
            result = await self.provider.send_reset(payload.email, payload.redirect_to)
        except Exception:
            logger.exception(
                "Password reset provider call raised (email=%s)",
                payload.email,
                extra={"correlation_id": ctx.correlation_id},
            )
        else:
            if isinstance(result, ResetFailed):
                logger.warning(
                    "Password reset request failed (email=%s, reason=%s)",
                    payload.email,
                    result.message,
                    extra={"correlation_id": ctx.correlation_id},
                )
            elif not isinstance(result, ResetRequested):
                logger.error(
                    "Unexpected provider result %s",
                    type(result).__name__,
                    extra={"correlation_id": ctx.correlation_id},
                )

        body = ResetPasswordResponse(message=RESET_MESSAGE, email=payload.email, timestamp=_now_iso())
        return responder.success(ctx, 200, body, "Password reset email sent (or would be sent)", email=payload.email)

    def _unexpected(self, ctx: RequestContext, result: object) -> GatewayResponse:
        return responder.internal(
            ctx,
            _INTERNAL_MESSAGES[ctx.action],
            "Identity provider returned an unexpected result",
            result_type=type(result).__name__,
        )
