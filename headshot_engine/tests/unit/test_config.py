"""Unit tests for engine settings."""

from __future__ import annotations

import pytest
from headshot_engine.config import EngineSettings, ProviderId, load_engine_settings
from headshot_engine.errors import ProviderSubmissionError, QuotaExceededError, UsageCheckError
from headshot_engine.models.tiers import Tier
from headshot_engine.selector import SelectorConfig
from pydantic import ValidationError


class TestEngineSettings:
    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("HEADSHOT_PREFERRED_PROVIDER", raising=False)
        monkeypatch.delenv("HEADSHOT_FALLBACK_PROVIDER", raising=False)
        settings = EngineSettings(_env_file=None)
        assert settings.preferred_provider is ProviderId.RUNPOD
        assert settings.fallback_provider is ProviderId.REPLICATE
        assert settings.max_preferred_jobs == 5
        assert settings.load_balancing is True

    def test_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("HEADSHOT_PREFERRED_PROVIDER", "replicate")
        monkeypatch.setenv("HEADSHOT_FALLBACK_PROVIDER", "runpod")
        monkeypatch.setenv("HEADSHOT_MAX_PREFERRED_JOBS", "2")
        settings = EngineSettings(_env_file=None)
        assert settings.preferred_provider is ProviderId.REPLICATE
        assert settings.fallback_provider is ProviderId.RUNPOD
        assert settings.max_preferred_jobs == 2

    def test_fallback_can_be_disabled(self) -> None:
        assert load_engine_settings(fallback_provider="none").fallback_provider is None
        assert load_engine_settings(fallback_provider="").fallback_provider is None

    def test_identical_fallback_rejected(self) -> None:
        with pytest.raises(ValidationError):
            load_engine_settings(preferred_provider="runpod", fallback_provider="runpod")

    def test_negative_cap_rejected(self) -> None:
        with pytest.raises(ValidationError):
            load_engine_settings(max_preferred_jobs=-1)

    @pytest.mark.parametrize("raw", ["", "none", "0", 0, None])
    def test_preferred_cap_can_be_disabled(self, raw) -> None:
        settings = load_engine_settings(max_preferred_jobs=raw)
        assert settings.max_preferred_jobs is None
        assert SelectorConfig.from_settings(settings).max_preferred_jobs is None

    def test_uncapped_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("HEADSHOT_MAX_PREFERRED_JOBS", "none")
        assert EngineSettings(_env_file=None).max_preferred_jobs is None

    def test_empty_secrets_are_unset(self) -> None:
        settings = load_engine_settings(
            replicate_webhook_secret="",
            runpod_webhook_token="tok",
            polar_webhook_secret="",
        )
        assert settings.missing_webhook_secrets() == ["replicate_webhook_secret", "polar_webhook_secret"]

    def test_selector_config_from_settings(self) -> None:
        settings = load_engine_settings(
            preferred_provider="replicate",
            fallback_provider="runpod",
            max_preferred_jobs=3,
            load_balancing=False,
        )
        config = SelectorConfig.from_settings(settings)
        assert config.preferred is ProviderId.REPLICATE
        assert config.fallback is ProviderId.RUNPOD
        assert config.max_preferred_jobs == 3
        assert config.load_balancing is False

    def test_tier_policies_follow_configured_limits(self) -> None:
        settings = EngineSettings(
            _env_file=None,
            free_generation_limit=5,
            pro_generation_limit=None,
            one_time_pack_credits=40,
        )

        policies = settings.tier_policies()

        assert policies[Tier.FREE].limit == 5
        assert policies[Tier.PRO].limit is None
        assert policies[Tier.ONE_TIME].limit == 40
        assert policies[Tier.ENTERPRISE].limit == 1000


class TestErrors:
    def test_to_dict(self) -> None:
        err = QuotaExceededError("limit reached", remaining=0)
        assert err.to_dict() == {"code": "quota_exceeded", "message": "limit reached", "remaining": 0}
        assert err.http_status == 429
        assert not err.retryable

    def test_retryable_classes(self) -> None:
        assert UsageCheckError("x").retryable
        assert ProviderSubmissionError("x").retryable
