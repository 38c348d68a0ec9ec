"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. identity_provider_url -> IDENTITY_PROVIDER_URL). Type coercion and
      validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode tolerates a missing identity
      provider URL with a warning; production mode refuses to start without one.

List-valued settings (hosts, origins, OAuth providers) are plain comma-separated
strings with a parsing property next to them. pydantic-settings would otherwise
expect JSON arrays in the environment.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache

from limits import parse as parse_rate_limit
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

# OAuth provider ids the gateway knows how to describe and validate. Which of
# them are actually offered is decided by Settings.oauth_providers.
SUPPORTED_OAUTH_PROVIDERS: tuple[str, ...] = ("google", "github", "azure")


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Identity provider (GoTrue / Supabase Auth compatible REST API)
    # ------------------------------------------------------------------

    # Base URL including the auth prefix, e.g. https://xyz.supabase.co/auth/v1
    identity_provider_url: str = ""
    identity_provider_api_key: str = ""
    identity_provider_timeout: float = 10.0

    # ------------------------------------------------------------------
    # Rate limiting -- limits library notation ("5/minute", "10 per hour")
    # ------------------------------------------------------------------

    # Shared by login, registration and OAuth initiation: credential guessing
    # is the common threat.
    auth_rate_limit: str = "5/minute"
    # Looser so repeated "forgot password" taps from a real user do not lock
    # them out.
    reset_rate_limit: str = "10/minute"
    # Must be an async limits backend: async+memory://, async+redis://host:6379
    rate_limit_storage_uri: str = "async+memory://"

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    oauth_providers: str = "google,github"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    allowed_hosts: str = "localhost,127.0.0.1,*.localhost"
    cors_origins: str = "http://localhost,http://localhost:3000,http://127.0.0.1"

    @property
    def enabled_oauth_providers(self) -> list[str]:
        return _split_csv(self.oauth_providers.lower())

    @property
    def allowed_host_list(self) -> list[str]:
        return _split_csv(self.allowed_hosts)

    @property
    def cors_origin_list(self) -> list[str]:
        return _split_csv(self.cors_origins)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Reject configurations that would fail at request time.

        Dev mode (DEBUG=true): a missing IDENTITY_PROVIDER_URL only warns.
            Every provider call will fail and surface as a 500, which is
            acceptable while working on the gateway itself.

        Production mode: a missing IDENTITY_PROVIDER_URL is a startup error.

        Both modes: rate limit expressions must parse, the limiter storage
            must be an async backend, and OAuth provider ids must be known.
        """
        if not self.identity_provider_url:
            if self.debug:
                logger.warning("IDENTITY_PROVIDER_URL is not set. Provider calls will fail.")
            else:
                raise ValueError(
                    "IDENTITY_PROVIDER_URL is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        for name in ("auth_rate_limit", "reset_rate_limit"):
            expression = getattr(self, name)
            try:
                parse_rate_limit(expression)
            except ValueError as exc:
                raise ValueError(f"{name.upper()} is not a valid rate limit: {expression!r}") from exc
        if not self.rate_limit_storage_uri.startswith("async+"):
            raise ValueError(
                f"RATE_LIMIT_STORAGE_URI must name an async backend (async+memory://, async+redis://...): "
                f"{self.rate_limit_storage_uri!r}"
            )
        unknown = [p for p in self.enabled_oauth_providers if p not in SUPPORTED_OAUTH_PROVIDERS]
        if unknown:
            raise ValueError(f"Unsupported OAuth providers in OAUTH_PROVIDERS: {', '.join(unknown)}")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
