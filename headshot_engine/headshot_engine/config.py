"""Engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Self

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from headshot_engine.models.tiers import Tier, TierPolicy

logger = logging.getLogger(__name__)


class ProviderId(str, Enum):
    """Identifiers of the external compute providers that run generations."""

    REPLICATE = "replicate"
    RUNPOD = "runpod"


class EngineSettings(BaseSettings):
    """Orchestration settings loaded from environment variables with HEADSHOT_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="HEADSHOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///.headshot/state.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Provider selection
    preferred_provider: ProviderId = ProviderId.RUNPOD
    fallback_provider: ProviderId | None = ProviderId.REPLICATE
    max_preferred_jobs: int | None = Field(default=5, ge=1)
    load_balancing: bool = True

    # Replicate
    replicate_api_url: str = "https://api.replicate.com/v1"
    replicate_api_token: SecretStr | None = None
    replicate_model_version: str = "39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"

    # RunPod
    runpod_api_url: str = "https://api.runpod.ai/v2"
    runpod_api_key: SecretStr | None = None
    runpod_endpoint_id: str = ""

    provider_timeout_seconds: float = 30.0

    # Webhook authentication.  An unset secret disables verification for
    # that route, which is only tolerated outside staging/production.
    replicate_webhook_secret: SecretStr | None = None
    runpod_webhook_token: SecretStr | None = None
    polar_webhook_secret: SecretStr | None = None

    # Payments
    polar_one_time_product_id: str = "polar_one_time_pack_id"
    one_time_pack_credits: int = 100

    # Tier limits (None means unlimited)
    free_generation_limit: int | None = 3
    pro_generation_limit: int | None = 100
    enterprise_generation_limit: int | None = 1000

    # Stale generation sweeping
    stale_generation_max_age_minutes: int = 60
    sweep_interval_seconds: int = 300

    @field_validator(
        "replicate_api_token",
        "runpod_api_key",
        "replicate_webhook_secret",
        "runpod_webhook_token",
        "polar_webhook_secret",
        mode="before",
    )
    @classmethod
    def _empty_secret_is_unset(cls, v: str | SecretStr | None) -> SecretStr | None:
        if v is None or v == "":
            return None
        if isinstance(v, SecretStr):
            return v if v.get_secret_value() else None
        return SecretStr(v)

    @field_validator("fallback_provider", mode="before")
    @classmethod
    def _empty_fallback_is_unset(cls, v: object) -> object:
        if v == "" or (isinstance(v, str) and v.lower() == "none"):
            return None
        return v

    @field_validator("max_preferred_jobs", mode="before")
    @classmethod
    def _unset_cap(cls, v: object) -> object:
        """Empty, ``none`` and 0 all mean the preferred provider is uncapped."""
        if v in ("", 0, "0") or (isinstance(v, str) and v.lower() == "none"):
            return None
        return v

    @model_validator(mode="after")
    def _validate_fallback_differs(self) -> Self:
        """A fallback identical to the preferred provider is a misconfiguration."""
        if self.fallback_provider is not None and self.fallback_provider == self.preferred_provider:
            raise ValueError(
                "fallback_provider must differ from preferred_provider; unset it to disable failover."
            )
        return self

    def missing_webhook_secrets(self) -> list[str]:
        """Return the names of webhook secrets that are not configured."""
        missing: list[str] = []
        if self.replicate_webhook_secret is None:
            missing.append("replicate_webhook_secret")
        if self.runpod_webhook_token is None:
            missing.append("runpod_webhook_token")
        if self.polar_webhook_secret is None:
            missing.append("polar_webhook_secret")
        return missing

    def tier_policies(self) -> dict[Tier, TierPolicy]:
        """Return the tier policy table built from the configured limits."""
        from headshot_engine.models.tiers import build_tier_policies

        return build_tier_policies(
            free_limit=self.free_generation_limit,
            one_time_credits=self.one_time_pack_credits,
            pro_limit=self.pro_generation_limit,
            enterprise_limit=self.enterprise_generation_limit,
        )


def load_engine_settings(**overrides: object) -> EngineSettings:
    """Load settings from environment, with optional overrides for testing."""
    settings = EngineSettings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info(
            "Loaded engine settings preferred=%s fallback=%s",
            settings.preferred_provider.value,
            settings.fallback_provider.value if settings.fallback_provider else None,
        )

    return settings
