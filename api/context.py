"""
api/context.py -- Request correlation and client identification.

correlation_middleware runs for every request. It reuses an inbound
X-Request-ID when it is a plain token (so a fronting proxy's id survives into
our logs), otherwise generates a UUID4. The id is stored on request.state and
echoed in the X-Request-ID response header.

client_identifier() derives the rate-limit identity from forwarding headers:
the first non-empty X-Forwarded-For entry, then X-Real-IP, then
CF-Connecting-IP, else the shared "unknown" sentinel. The socket peer is not
used: behind a proxy it is the proxy, and every client would share one bucket.
"""

from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.datastructures import Headers

from auth.models import UNKNOWN_CLIENT, Action, RequestContext

CORRELATION_HEADER = "X-Request-ID"

# Letters, digits, dot, underscore, dash; at most 128 characters.
_SAFE_REQUEST_ID = re.compile(r"[A-Za-z0-9._\-]{1,128}")


def new_correlation_id(inbound: str = "") -> str:
    if inbound and _SAFE_REQUEST_ID.fullmatch(inbound):
        return inbound
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """Return the id assigned by correlation_middleware, assigning one if it did not run."""
    correlation_id = getattr(request.state, "correlation_id", None)
    if correlation_id is None:
        correlation_id = new_correlation_id(request.headers.get(CORRELATION_HEADER, ""))
        request.state.correlation_id = correlation_id
    return correlation_id


def client_identifier(headers: Headers) -> str:
    for part in headers.get("x-forwarded-for", "").split(","):
        if part.strip():
            return part.strip()
    for name in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(name, "").strip()
        if value:
            return value
    return UNKNOWN_CLIENT


def request_context(request: Request, action: Action) -> RequestContext:
    return RequestContext(
        correlation_id=get_correlation_id(request),
        client_identifier=client_identifier(request.headers),
        action=action,
    )


async def correlation_middleware(request: Request, call_next):
    correlation_id = get_correlation_id(request)
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response
