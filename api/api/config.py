"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlatformEnv(str, Enum):
    """Deployment environment label."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class APISettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``API_`` (e.g. ``API_HOST=0.0.0.0``) or through a ``.env`` file in the
    working directory.  Orchestration settings (database, providers,
    webhook secrets) live in :class:`headshot_engine.config.EngineSettings`.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    platform_env: PlatformEnv = PlatformEnv.DEV

    # Externally reachable base URL; provider callbacks are derived from it.
    public_base_url: str = "http://localhost:8000"

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:3000"]

    # Whether CORS responses include credentials (cookies, auth headers).
    cors_allow_credentials: bool = True

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled.

        Browsers silently reject ``Access-Control-Allow-Origin: *`` when
        ``Access-Control-Allow-Credentials: true`` is present.  Fail fast
        at startup instead.
        """
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    # Structured JSON logging.
    structured_logging: bool = False

    # Run the stale generation sweeper inside the API process.
    sweeper_enabled: bool = True

    def webhook_url(self, route: str) -> str:
        """Return the public callback URL for a webhook route."""
        return f"{self.public_base_url.rstrip('/')}/api/v1/webhooks/{route}"


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()
