"""
auth/models.py -- Domain dataclasses for the authentication gateway.

Pattern: Data class (pure data container, near-zero logic). The gateway and
the identity provider client exchange these; the API layer maps them to
pydantic wire models.

Provider results are modelled as one small dataclass per outcome rather than
a single object with optional error fields. The gateway matches on the type,
so an outcome it does not recognise is a contract violation (HTTP 500), never
a silent success.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

# Client identifier used when no forwarding header names the caller. All such
# requests share one rate-limit bucket per action.
UNKNOWN_CLIENT = "unknown"


class Action(str, Enum):
    """The four credential-bearing flows. Also the unit of rate-limit scoping."""

    LOGIN = "login"
    REGISTER = "register"
    OAUTH_INITIATE = "oauth_initiate"
    RESET_PASSWORD = "reset_password"


@dataclass(frozen=True)
class RequestContext:
    """Per-request identity for logging and rate limiting. Never persisted."""

    correlation_id: str
    client_identifier: str
    action: Action


@dataclass(frozen=True)
class RateLimitKey:
    action: Action
    client_identifier: str


# ---------------------------------------------------------------------------
# Identity provider entities
# ---------------------------------------------------------------------------


@dataclass
class ProviderUser:
    """A user record as reported by the identity provider."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str = "user"
    email_confirmed_at: Optional[str] = None  # ISO 8601, None until verified
    created_at: Optional[str] = None

    @property
    def email_verified(self) -> bool:
        return self.email_confirmed_at is not None


@dataclass
class ProviderSession:
    """Tokens issued by the provider. expires_at is epoch seconds."""

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_at: int

    def expires_at_iso(self) -> str:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc).isoformat()


@dataclass
class RegistrationProfile:
    """Validated registration input handed to IdentityProvider.register()."""

    email: str
    password: str = field(repr=False)
    first_name: str
    last_name: str
    accept_terms: bool
    accept_marketing: bool = False
    referral_code: Optional[str] = None


# ---------------------------------------------------------------------------
# Provider results -- login
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoginSucceeded:
    user: ProviderUser
    session: ProviderSession


@dataclass(frozen=True)
class LoginUnverified:
    """Credentials were accepted but no session was issued (email not confirmed)."""

    user: Optional[ProviderUser] = None


@dataclass(frozen=True)
class LoginRejected:
    message: str


LoginResult = Union[LoginSucceeded, LoginUnverified, LoginRejected]


# ---------------------------------------------------------------------------
# Provider results -- registration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistrationSucceeded:
    user: ProviderUser
    needs_verification: bool
    message: str
    session: Optional[ProviderSession] = None


@dataclass(frozen=True)
class RegistrationFailed:
    """error_code is machine-readable, e.g. USER_ALREADY_EXISTS or INVALID_PASSWORD."""

    error_code: str
    message: str


RegistrationResult = Union[RegistrationSucceeded, RegistrationFailed]


# ---------------------------------------------------------------------------
# Provider results -- OAuth initiation and password reset
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OAuthStarted:
    # None is a provider contract violation; the gateway reports it as a 500.
    url: Optional[str]


@dataclass(frozen=True)
class OAuthFailed:
    message: str


OAuthResult = Union[OAuthStarted, OAuthFailed]


@dataclass(frozen=True)
class ResetRequested:
    pass


@dataclass(frozen=True)
class ResetFailed:
    message: str


ResetResult = Union[ResetRequested, ResetFailed]
