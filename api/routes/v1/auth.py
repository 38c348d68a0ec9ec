"""
api/routes/v1/auth.py -- Authentication gateway REST endpoints.

Routes:
  POST /api/v1/auth/login           -- password login via the identity provider
  POST /api/v1/auth/register        -- create an account
  GET  /api/v1/auth/register        -- static registration requirements
  POST /api/v1/auth/oauth           -- start an OAuth sign-in, returns the provider URL
  GET  /api/v1/auth/oauth           -- static OAuth provider catalog
  POST /api/v1/auth/reset-password  -- request a password reset email

All routes are public: they are how a caller obtains credentials.

POST handlers take the raw Request instead of a pydantic body parameter. A
body parameter would make FastAPI validate before the handler runs, and the
gateway must rate limit first. AuthGateway does limiter -> validator ->
provider and hands back a GatewayResponse; these handlers only translate it
to JSON.

Security:
  [M5] Cache-Control: no-store on every credential-bearing response.
  GET catalogs carry the correlation id only in the X-Request-ID header so
  their bodies stay byte-identical across calls.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.context import request_context
from api.gateway import AuthGateway
from api.models import REGISTRATION_REQUIREMENTS
from api.responder import GatewayResponse
from auth.models import Action
from auth.oauth import get_provider_catalog

router = APIRouter()


def _gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def _to_json(result: GatewayResponse) -> JSONResponse:
    resp = JSONResponse(status_code=result.status_code, content=result.body, headers=result.headers)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Credential-bearing flows
# ---------------------------------------------------------------------------


@router.post("/auth/login")
async def login(request: Request) -> JSONResponse:
    """Authenticate with email and password.

    200 {user, session} | 401 | 403 | 422 | 429 | 500. Wrong email and wrong
    password both answer 401 "Invalid credentials".
    """
    ctx = request_context(request, Action.LOGIN)
    result = await _gateway(request).login(ctx, await request.body())
    return _to_json(result)


@router.post("/auth/register", status_code=201)
async def register(request: Request) -> JSONResponse:
    """Create an account. 201 | 400 | 409 | 422 | 429 | 500."""
    ctx = request_context(request, Action.REGISTER)
    result = await _gateway(request).register(ctx, await request.body())
    return _to_json(result)


@router.post("/auth/oauth")
async def begin_oauth(request: Request) -> JSONResponse:
    """Return the provider authorization URL. 200 | 400 | 422 | 429 | 500."""
    ctx = request_context(request, Action.OAUTH_INITIATE)
    result = await _gateway(request).begin_oauth(ctx, await request.body())
    return _to_json(result)


@router.post("/auth/reset-password")
async def reset_password(request: Request) -> JSONResponse:
    """Request a password reset email.

    Always 200 with the same message unless the input is malformed (422) or
    the caller is throttled (429). Whether the account exists is never revealed.
    """
    ctx = request_context(request, Action.RESET_PASSWORD)
    result = await _gateway(request).reset_password(ctx, await request.body())
    return _to_json(result)


# ---------------------------------------------------------------------------
# Static, side-effect-free descriptors
# ---------------------------------------------------------------------------


@router.get("/auth/register")
async def registration_requirements() -> dict:
    """Field requirements for the registration form."""
    return REGISTRATION_REQUIREMENTS


@router.get("/auth/oauth")
async def oauth_providers() -> dict:
    """OAuth providers the login page may offer. Public, no rate limit."""
    return get_provider_catalog()
