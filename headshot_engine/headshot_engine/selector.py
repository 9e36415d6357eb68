"""Provider selection with load balancing and a per-provider job cap.

The :class:`ProviderSelector` picks which provider the next generation is
submitted to.  It reads active-job counts from an :class:`ActiveJobCounter`
so the counting backend can be swapped without touching selection logic.

:class:`InMemoryJobCounter` is the process-local default.  Its counts are
best-effort: they reset on restart and are not shared between instances.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from typing import Protocol

from pydantic import BaseModel, Field, field_validator, model_validator

from headshot_engine.config import EngineSettings, ProviderId

logger = logging.getLogger(__name__)


class ActiveJobCounter(Protocol):
    """Protocol for tracking in-flight provider submissions."""

    def increment(self, provider: ProviderId) -> int:
        """Record one more active job and return the new count."""
        ...

    def decrement(self, provider: ProviderId) -> int:
        """Record one fewer active job (never below zero) and return the new count."""
        ...

    def count(self, provider: ProviderId) -> int:
        """Return the current active job count."""
        ...


class InMemoryJobCounter:
    """Thread-safe process-local active-job counter."""

    def __init__(self, providers: Iterable[ProviderId] = tuple(ProviderId)) -> None:
        self._lock = threading.Lock()
        self._counts: dict[ProviderId, int] = {provider: 0 for provider in providers}

    def increment(self, provider: ProviderId) -> int:
        with self._lock:
            self._counts[provider] = self._counts.get(provider, 0) + 1
            return self._counts[provider]

    def decrement(self, provider: ProviderId) -> int:
        with self._lock:
            self._counts[provider] = max(0, self._counts.get(provider, 0) - 1)
            return self._counts[provider]

    def count(self, provider: ProviderId) -> int:
        with self._lock:
            return self._counts.get(provider, 0)


class SelectorConfig(BaseModel):
    """Selection policy.

    Attributes
    ----------
    preferred:
        Provider used whenever it has capacity and is not busier than the fallback.
    fallback:
        Secondary provider; ``None`` disables failover.
    max_preferred_jobs:
        Active jobs at which the preferred provider is considered saturated;
        ``None`` (or 0) means no cap.
    load_balancing:
        When ``False`` the preferred provider is always returned.
    """

    preferred: ProviderId = ProviderId.RUNPOD
    fallback: ProviderId | None = ProviderId.REPLICATE
    max_preferred_jobs: int | None = Field(default=5, ge=1)
    load_balancing: bool = True

    @field_validator("max_preferred_jobs", mode="before")
    @classmethod
    def _zero_cap_is_unset(cls, v: object) -> object:
        return None if v == 0 else v

    @model_validator(mode="after")
    def _fallback_differs(self) -> SelectorConfig:
        if self.fallback is not None and self.fallback == self.preferred:
            raise ValueError("fallback must differ from preferred")
        return self

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> SelectorConfig:
        return cls(
            preferred=settings.preferred_provider,
            fallback=settings.fallback_provider,
            max_preferred_jobs=settings.max_preferred_jobs,
            load_balancing=settings.load_balancing,
        )


class ProviderSelector:
    """Chooses a provider for each submission and tracks in-flight jobs.

    Parameters
    ----------
    config:
        The selection policy.
    counter:
        Active-job counter; defaults to a fresh :class:`InMemoryJobCounter`.
    """

    def __init__(self, config: SelectorConfig | None = None, counter: ActiveJobCounter | None = None) -> None:
        self._config = config or SelectorConfig()
        self._counter: ActiveJobCounter = counter or InMemoryJobCounter()

    @property
    def config(self) -> SelectorConfig:
        return self._config

    def select(self) -> ProviderId:
        """Pick the provider for the next submission.

        With load balancing on, a saturated preferred provider yields the
        fallback; otherwise the less busy provider wins, ties going to the
        preferred one.
        """
        preferred = self._config.preferred
        fallback = self._config.fallback
        if not self._config.load_balancing or fallback is None:
            return preferred

        preferred_jobs = self._counter.count(preferred)
        cap = self._config.max_preferred_jobs
        if cap is not None and preferred_jobs >= cap:
            logger.debug(
                "Preferred provider %s saturated (%d jobs); selecting %s",
                preferred.value,
                preferred_jobs,
                fallback.value,
            )
            return fallback

        fallback_jobs = self._counter.count(fallback)
        return preferred if preferred_jobs <= fallback_jobs else fallback

    def fallback_for(self, provider: ProviderId) -> ProviderId | None:
        """Return the alternative to *provider*, or ``None`` when failover is off."""
        if self._config.fallback is None:
            return None
        if provider == self._config.preferred:
            return self._config.fallback
        if provider == self._config.fallback:
            return self._config.preferred
        return None

    def record_start(self, provider: ProviderId) -> None:
        self._counter.increment(provider)

    def record_end(self, provider: ProviderId) -> None:
        self._counter.decrement(provider)

    def stats(self) -> dict[str, int]:
        """Active jobs per provider plus the total."""
        counts = {provider.value: self._counter.count(provider) for provider in ProviderId}
        counts["total"] = sum(counts.values())
        return counts
