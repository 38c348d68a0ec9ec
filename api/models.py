"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
domain representation. The gateway maps between the two.

Wire fields are camelCase (rememberMe, authUrl, correlationId). Models declare
snake_case attributes and derive the aliases with to_camel; request models
also accept the snake_case names (populate_by_name).

Request models double as the validation schemas for each flow. Validation
errors are reported with the camelCase field names callers sent.
"""

import re
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator
from pydantic.alias_generators import to_camel

from auth.models import ProviderSession, ProviderUser

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
NAME_PATTERN = r"^[a-zA-Z\s\-'\.]+$"
REFERRAL_CODE_PATTERN = r"^[A-Z0-9]{6,12}$"
REDIRECT_URL_PATTERN = r"^https?://\S+$"

EMAIL_MAX_LENGTH = 254
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
URL_MAX_LENGTH = 2048

# Readable messages for pattern mismatches, keyed by wire field name. The
# default pydantic message quotes the regex.
PATTERN_MESSAGES = {
    "email": "Invalid email address format",
    "firstName": "Invalid characters in first name",
    "lastName": "Invalid characters in last name",
    "referralCode": "Invalid referral code format",
    "redirectTo": "Invalid URL format",
}

# (regex, message) pairs checked in order; the first unmet rule is reported.
_PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"\d"), "Password must contain at least one number"),
    (re.compile(r"[^a-zA-Z0-9]"), "Password must contain at least one special character"),
)

# Field-specific messages keyed by (wire field name, pydantic error type).
# Each request model carries the subset that applies to it in error_messages;
# anything not listed falls back to pydantic's own wording.
_EMAIL_MESSAGES = {
    ("email", "missing"): "Email is required",
    ("email", "string_type"): "Email must be a string",
    ("email", "string_too_long"): "Email address is too long",
}
_REDIRECT_MESSAGES = {
    ("redirectTo", "string_type"): "Redirect URL must be a string",
    ("redirectTo", "string_too_long"): "URL is too long",
}
_NAME_MESSAGES = {
    ("firstName", "missing"): "First name is required",
    ("firstName", "string_type"): "First name must be a string",
    ("firstName", "string_too_short"): f"First name must be at least {NAME_MIN_LENGTH} characters",
    ("firstName", "string_too_long"): "First name is too long",
    ("lastName", "missing"): "Last name is required",
    ("lastName", "string_type"): "Last name must be a string",
    ("lastName", "string_too_short"): f"Last name must be at least {NAME_MIN_LENGTH} characters",
    ("lastName", "string_too_long"): "Last name is too long",
}


def _normalize_email(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class OAuthProviderEnum(str, Enum):
    google = "google"
    github = "github"
    azure = "azure"


class ErrorKind(str, Enum):
    """Closed error taxonomy. Every failure response carries exactly one kind."""

    VALIDATION = "VALIDATION"
    RATE_LIMITED = "RATE_LIMITED"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    BAD_REQUEST = "BAD_REQUEST"
    INTERNAL = "INTERNAL"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # (wire field, pydantic error type) -> message; read by api/validation.py
    error_messages: ClassVar[dict[tuple[str, str], str]] = {}


class LoginRequest(_RequestModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(max_length=EMAIL_MAX_LENGTH, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=255)
    remember_me: StrictBool = False

    error_messages = {
        **_EMAIL_MESSAGES,
        ("password", "missing"): "Password is required",
        ("password", "string_too_short"): "Password is required",
        ("password", "string_too_long"): "Password is too long",
        ("password", "string_type"): "Password must be a string",
        ("rememberMe", "bool_type"): "Remember me must be true or false",
    }

    normalize_email = field_validator("email", mode="before")(_normalize_email)


class RegisterRequest(_RequestModel):
    """Request body for POST /api/v1/auth/register.

    Field order is the order violations are reported in. Booleans are strict:
    consent must arrive as JSON true, not "yes" or 1.
    """

    email: str = Field(max_length=EMAIL_MAX_LENGTH, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    first_name: str = Field(min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH, pattern=NAME_PATTERN)
    last_name: str = Field(min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH, pattern=NAME_PATTERN)
    accept_terms: StrictBool
    accept_marketing: StrictBool = False
    referral_code: Optional[str] = Field(default=None, pattern=REFERRAL_CODE_PATTERN)

    error_messages = {
        **_EMAIL_MESSAGES,
        **_NAME_MESSAGES,
        ("password", "missing"): "Password is required",
        ("password", "string_type"): "Password must be a string",
        ("password", "string_too_short"): f"Password must be at least {PASSWORD_MIN_LENGTH} characters long",
        ("password", "string_too_long"): "Password is too long",
        ("acceptTerms", "missing"): "You must accept the terms of service",
        ("acceptTerms", "bool_type"): "You must accept the terms of service",
        ("acceptMarketing", "bool_type"): "Marketing consent must be true or false",
        ("referralCode", "string_type"): "Invalid referral code format",
    }

    normalize_email = field_validator("email", mode="before")(_normalize_email)
    strip_text_fields = field_validator("first_name", "last_name", "referral_code", mode="before")(_strip)

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, value: str) -> str:
        for pattern, message in _PASSWORD_RULES:
            if not pattern.search(value):
                raise ValueError(message)
        return value

    @field_validator("accept_terms")
    @classmethod
    def check_terms_accepted(cls, value: bool) -> bool:
        if value is not True:
            raise ValueError("You must accept the terms of service")
        return value


class OAuthRequest(_RequestModel):
    """Request body for POST /api/v1/auth/oauth."""

    provider: OAuthProviderEnum
    redirect_to: Optional[str] = Field(default=None, max_length=URL_MAX_LENGTH, pattern=REDIRECT_URL_PATTERN)

    error_messages = {
        **_REDIRECT_MESSAGES,
        ("provider", "missing"): "OAuth provider is required",
        ("provider", "enum"): "Unsupported OAuth provider",
    }


class ResetPasswordRequest(_RequestModel):
    """Request body for POST /api/v1/auth/reset-password."""

    email: str = Field(max_length=EMAIL_MAX_LENGTH, pattern=EMAIL_PATTERN)
    redirect_to: Optional[str] = Field(default=None, max_length=URL_MAX_LENGTH, pattern=REDIRECT_URL_PATTERN)

    error_messages = {**_EMAIL_MESSAGES, **_REDIRECT_MESSAGES}

    normalize_email = field_validator("email", mode="before")(_normalize_email)


# Static descriptor for GET /api/v1/auth/register, derived from the
# constraints above so the two cannot drift apart.
REGISTRATION_REQUIREMENTS: dict = {
    "message": "Registration endpoint ready",
    "requirements": {
        "email": {"required": True, "format": "Valid email address", "maxLength": EMAIL_MAX_LENGTH},
        "password": {
            "required": True,
            "minLength": PASSWORD_MIN_LENGTH,
            "maxLength": PASSWORD_MAX_LENGTH,
            "requirements": [
                f"At least {PASSWORD_MIN_LENGTH} characters",
                "At least one uppercase letter",
                "At least one lowercase letter",
                "At least one number",
                "At least one special character",
            ],
        },
        "firstName": {"required": True, "minLength": NAME_MIN_LENGTH, "maxLength": NAME_MAX_LENGTH},
        "lastName": {"required": True, "minLength": NAME_MIN_LENGTH, "maxLength": NAME_MAX_LENGTH},
        "acceptTerms": {"required": True, "value": True},
        "acceptMarketing": {"required": False, "default": False},
        "referralCode": {"required": False, "format": "6-12 uppercase alphanumeric characters"},
    },
    "endpoints": {
        "register": "/api/v1/auth/register",
        "login": "/api/v1/auth/login",
        "oauth": "/api/v1/auth/oauth",
    },
}


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class _ResponseModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class UserSummary(_ResponseModel):
    """Public view of a user. Never carries a password or provider secrets."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str = "user"
    email_verified: bool = False
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_provider(cls, user: ProviderUser, last_login_at: Optional[str] = None) -> "UserSummary":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            email_verified=user.email_verified,
            created_at=user.created_at,
            last_login_at=last_login_at,
        )


class SessionInfo(_ResponseModel):
    access_token: str
    refresh_token: str
    expires_at: str  # ISO 8601

    @classmethod
    def from_provider(cls, session: ProviderSession) -> "SessionInfo":
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at_iso(),
        )


class LoginResponse(_ResponseModel):
    """Response body for a successful POST /api/v1/auth/login."""

    user: UserSummary
    session: SessionInfo


class RegisterResponse(_ResponseModel):
    """Response body for a successful POST /api/v1/auth/register.

    session is null when the provider requires email verification first.
    """

    message: str
    user: UserSummary
    needs_verification: bool
    session: Optional[SessionInfo] = None


class OAuthResponse(_ResponseModel):
    provider: str
    auth_url: str
    message: str


class ResetPasswordResponse(_ResponseModel):
    message: str
    email: str
    timestamp: str


class ErrorDetail(_ResponseModel):
    """Machine-readable error payload."""

    kind: ErrorKind
    message: str
    details: Optional[dict[str, Any]] = None


class ErrorResponse(_ResponseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    error: ErrorDetail
    correlation_id: str


class HealthResponse(_ResponseModel):
    """Response for GET /api/v1/health."""

    status: str = "ok"
    version: str
