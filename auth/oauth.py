"""
auth/oauth.py -- OAuth provider catalog.

GET /api/v1/auth/oauth returns this catalog so the login page can decide
which provider buttons to render. It is built purely from configuration:
no rate limiting, no validation, no provider call, and the same bytes for
every request.

Every supported provider is listed; `enabled` reflects OAUTH_PROVIDERS. The
identity provider itself must also have the provider configured, otherwise
POST /auth/oauth answers 400.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from typing import Optional

from core.config import SUPPORTED_OAUTH_PROVIDERS, Settings, get_settings

_PROVIDER_METADATA: dict[str, dict[str, str]] = {
    "google": {"name": "Google", "icon": "/icons/google.svg"},
    "github": {"name": "GitHub", "icon": "/icons/github.svg"},
    "azure": {"name": "Microsoft", "icon": "/icons/microsoft.svg"},
}


def get_provider_catalog(settings: Optional[Settings] = None) -> dict:
    """Return {"available": [{"id", "name", "icon", "enabled"}, ...]} in a fixed order."""
    cfg = settings or get_settings()
    enabled = set(cfg.enabled_oauth_providers)
    return {
        "available": [
            {
                "id": provider_id,
                "name": _PROVIDER_METADATA[provider_id]["name"],
                "icon": _PROVIDER_METADATA[provider_id]["icon"],
                "enabled": provider_id in enabled,
            }
            for provider_id in SUPPORTED_OAUTH_PROVIDERS
        ],
    }
