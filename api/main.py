"""
api/main.py -- FastAPI application entry point for AuthGate.

AuthGate sits between untrusted clients and an external identity provider
and mediates the four credential-bearing flows (login, registration, OAuth
initiation, password reset).

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. correlation           -- assigns the request correlation id
  2. log_requests          -- one access log line per request
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins

Lifespan builds the shared rate limiter, the identity provider client and
the gateway on startup, and closes the provider's HTTP pool on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.context import CORRELATION_HEADER, client_identifier, correlation_middleware, get_correlation_id
from api.gateway import AuthGateway
from api.models import ErrorKind, HealthResponse
from api.responder import STATUS_CODES, error_envelope
from api.routes.v1.auth import router as auth_router
from auth.limiter import RateLimiter
from auth.provider import GoTrueIdentityProvider
from core.config import get_settings
from core.logs import configure_logging

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_settings = get_settings()
configure_logging(_settings.log_level)
logger = logging.getLogger("authgate.api")

# Framework errors mapped onto the closed error taxonomy. Unlisted 4xx codes
# (404, 405, 413, ...) are reported as BAD_REQUEST with their real status.
_KIND_BY_STATUS = {status: kind for kind, status in STATUS_CODES.items()}
_KIND_BY_STATUS[400] = ErrorKind.BAD_REQUEST


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The limiter must exist before the gateway, which receives it.
    """
    logger.info("AuthGate API starting up")
    settings = get_settings()
    app.state.limiter = RateLimiter.from_settings(settings)
    logger.info(
        "Rate limiter initialized (auth=%s, reset=%s, storage=%s)",
        settings.auth_rate_limit,
        settings.reset_rate_limit,
        settings.rate_limit_storage_uri.split("://", 1)[0],
    )
    app.state.identity_provider = GoTrueIdentityProvider.from_settings(settings)
    app.state.gateway = AuthGateway(app.state.limiter, app.state.identity_provider)
    logger.info("Identity provider client initialized (oauth=%s)", ",".join(settings.enabled_oauth_providers))

    yield

    await app.state.identity_provider.aclose()
    logger.info("AuthGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGate API",
    description="Authentication gateway: rate limiting, validation and response shaping in front of an identity provider.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each add_middleware() / @app.middleware call wraps everything registered
# before it, so the LAST registration is the outermost layer. Registered here
# innermost-first: CORS -> TrustedHost -> log_requests -> correlation.
#
# correlation is outermost so that responses produced by TrustedHost (400 for
# an unexpected Host) and CORS (preflight answers) still carry X-Request-ID
# and get an access log line. Those two responses keep Starlette's own bodies
# (plain text "Invalid host header", empty preflight 200); they are not
# gateway outcomes and do not use the error envelope.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origin_list,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", CORRELATION_HEADER],
    expose_headers=[CORRELATION_HEADER, "Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_host_list,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        client_identifier(request.headers),
        extra={"correlation_id": get_correlation_id(request)},
    )
    return response


app.middleware("http")(correlation_middleware)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# The gateway shapes every auth outcome itself. These handlers cover what
# happens outside it (unknown routes, wrong methods, bugs in this module) and
# return the same envelope so clients parse errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    correlation_id = get_correlation_id(request)
    kind = _KIND_BY_STATUS.get(exc.status_code, ErrorKind.BAD_REQUEST if exc.status_code < 500 else ErrorKind.INTERNAL)
    logger.warning(
        "HTTP %d on %s %s",
        exc.status_code,
        request.method,
        request.url.path,
        extra={"correlation_id": correlation_id},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(correlation_id, kind, str(exc.detail)),
        headers={**(exc.headers or {}), CORRELATION_HEADER: correlation_id},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Query/path validation failures on routes outside the gateway."""
    correlation_id = get_correlation_id(request)
    issues = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    logger.warning(
        "Request validation failed on %s %s",
        request.method,
        request.url.path,
        extra={"correlation_id": correlation_id},
    )
    return JSONResponse(
        status_code=STATUS_CODES[ErrorKind.VALIDATION],
        content=error_envelope(correlation_id, ErrorKind.VALIDATION, "Invalid request", {"issues": issues}),
        headers={CORRELATION_HEADER: correlation_id},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
    """
    correlation_id = get_correlation_id(request)
    logger.exception(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        extra={"correlation_id": correlation_id},
    )
    return JSONResponse(
        status_code=500,
        content=error_envelope(correlation_id, ErrorKind.INTERNAL, "An unexpected error occurred."),
        headers={CORRELATION_HEADER: correlation_id},
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
