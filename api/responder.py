"""
api/responder.py -- Error taxonomy and response shaping for the auth gateway.

Every outcome of every flow leaves the gateway through exactly one function
in this module. Each function builds the wire body, picks the status code and
writes exactly one log record:

    kind           status  log level
    RATE_LIMITED   429     WARNING  (+ Retry-After header)
    VALIDATION     422     WARNING
    UNAUTHORIZED   401     WARNING
    FORBIDDEN      403     WARNING
    CONFLICT       409     WARNING
    BAD_REQUEST    400     WARNING
    INTERNAL       500     ERROR    (traceback attached when there is one)
    success        2xx     INFO

Log records carry correlation_id, action and client as `extra` attributes,
plus the flow's identifying fields (email, provider, user id) rendered into
the message. Callers never pass passwords here.

INTERNAL responses always carry a generic message. Detail goes to the log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel

from api.models import ErrorDetail, ErrorKind, ErrorResponse
from api.validation import Invalid
from auth.limiter import RateLimitDecision
from auth.models import RequestContext

logger = logging.getLogger("authgate.api.responder")

STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.INTERNAL: 500,
}


@dataclass
class GatewayResponse:
    """Transport-neutral response: status, JSON body, extra headers."""

    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


def _format_fields(fields: dict[str, Any]) -> str:
    shown = ", ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
    return f" ({shown})" if shown else ""


def _log(level: int, ctx: RequestContext, message: str, fields: dict[str, Any], exc_info: Any = None) -> None:
    logger.log(
        level,
        "%s%s",
        message,
        _format_fields(fields),
        exc_info=exc_info,
        extra={
            "correlation_id": ctx.correlation_id,
            "action": ctx.action.value,
            "client": ctx.client_identifier,
        },
    )


def error_envelope(correlation_id: str, kind: ErrorKind, message: str, details: Optional[dict] = None) -> dict:
    """Serialize the error envelope. Shared with the framework-level exception handlers."""
    return ErrorResponse(
        error=ErrorDetail(kind=kind, message=message, details=details),
        correlation_id=correlation_id,
    ).model_dump(mode="json", by_alias=True)


def _error(
    ctx: RequestContext,
    kind: ErrorKind,
    message: str,
    log_message: str,
    details: Optional[dict] = None,
    fields: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
    exc_info: Any = None,
) -> GatewayResponse:
    level = logging.ERROR if kind is ErrorKind.INTERNAL else logging.WARNING
    _log(level, ctx, log_message, {"kind": kind.value, **(fields or {})}, exc_info=exc_info)
    return GatewayResponse(
        status_code=STATUS_CODES[kind],
        body=error_envelope(ctx.correlation_id, kind, message, details),
        headers=dict(headers or {}),
    )


# ---------------------------------------------------------------------------
# One mapping per failure kind
# ---------------------------------------------------------------------------


def rate_limited(ctx: RequestContext, decision: RateLimitDecision, message: str) -> GatewayResponse:
    return _error(
        ctx,
        ErrorKind.RATE_LIMITED,
        message,
        "Rate limit exceeded",
        details={"retryAfter": decision.retry_after},
        fields={"limit": decision.limit, "retry_after": decision.retry_after},
        headers={"Retry-After": str(decision.retry_after)},
    )


def validation_failed(ctx: RequestContext, outcome: Invalid, message: str) -> GatewayResponse:
    issues = [{"field": i.field, "message": i.message} for i in outcome.issues]
    return _error(
        ctx,
        ErrorKind.VALIDATION,
        message,
        "Request validation failed",
        details={"issues": issues},
        fields={"fields": ",".join(i.field for i in outcome.issues)},
    )


def unauthorized(ctx: RequestContext, message: str, log_message: str, **fields: Any) -> GatewayResponse:
    return _error(ctx, ErrorKind.UNAUTHORIZED, message, log_message, fields=fields)


def forbidden(ctx: RequestContext, message: str, log_message: str, **fields: Any) -> GatewayResponse:
    return _error(ctx, ErrorKind.FORBIDDEN, message, log_message, fields=fields)


def conflict(ctx: RequestContext, message: str, log_message: str, **fields: Any) -> GatewayResponse:
    return _error(ctx, ErrorKind.CONFLICT, message, log_message, fields=fields)


def bad_request(
    ctx: RequestContext,
    message: str,
    log_message: str,
    details: Optional[dict] = None,
    **fields: Any,
) -> GatewayResponse:
    return _error(ctx, ErrorKind.BAD_REQUEST, message, log_message, details=details, fields=fields)


def internal(
    ctx: RequestContext,
    message: str,
    log_message: str,
    exc: Optional[BaseException] = None,
    **fields: Any,
) -> GatewayResponse:
    return _error(ctx, ErrorKind.INTERNAL, message, log_message, fields=fields, exc_info=exc)


def success(
    ctx: RequestContext,
    status_code: int,
    payload: BaseModel,
    log_message: str,
    **fields: Any,
) -> GatewayResponse:
    _log(logging.INFO, ctx, log_message, fields)
    body = payload.model_dump(mode="json", by_alias=True)
    body["correlationId"] = ctx.correlation_id
    return GatewayResponse(status_code=status_code, body=body)
