"""Unit tests for provider selection and active-job counting."""

from __future__ import annotations

import threading

import pytest
from headshot_engine.config import ProviderId
from headshot_engine.selector import InMemoryJobCounter, ProviderSelector, SelectorConfig
from pydantic import ValidationError

RUNPOD = ProviderId.RUNPOD
REPLICATE = ProviderId.REPLICATE


def _selector(**overrides) -> ProviderSelector:
    config = SelectorConfig(**{"preferred": RUNPOD, "fallback": REPLICATE, "max_preferred_jobs": 5, **overrides})
    return ProviderSelector(config)


class TestInMemoryJobCounter:
    """Counts are floored at zero and safe across threads."""

    def test_increment_and_decrement(self) -> None:
        counter = InMemoryJobCounter()
        assert counter.increment(RUNPOD) == 1
        assert counter.increment(RUNPOD) == 2
        assert counter.decrement(RUNPOD) == 1
        assert counter.count(RUNPOD) == 1
        assert counter.count(REPLICATE) == 0

    def test_decrement_never_goes_negative(self) -> None:
        counter = InMemoryJobCounter()
        assert counter.decrement(REPLICATE) == 0
        assert counter.decrement(REPLICATE) == 0
        assert counter.count(REPLICATE) == 0

    def test_concurrent_increments(self) -> None:
        counter = InMemoryJobCounter()

        def bump() -> None:
            for _ in range(1000):
                counter.increment(RUNPOD)

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert counter.count(RUNPOD) == 8000


class TestSelect:
    """Selection policy."""

    def test_idle_prefers_preferred(self) -> None:
        assert _selector().select() == RUNPOD

    def test_load_balancing_disabled_always_preferred(self) -> None:
        selector = _selector(load_balancing=False)
        for _ in range(10):
            selector.record_start(RUNPOD)
        assert selector.select() == RUNPOD

    def test_no_fallback_always_preferred(self) -> None:
        selector = _selector(fallback=None)
        for _ in range(10):
            selector.record_start(RUNPOD)
        assert selector.select() == RUNPOD

    def test_saturated_preferred_selects_fallback(self) -> None:
        selector = _selector(max_preferred_jobs=2)
        selector.record_start(RUNPOD)
        selector.record_start(RUNPOD)
        for _ in range(5):
            selector.record_start(REPLICATE)
        assert selector.select() == REPLICATE

    def test_fewer_active_jobs_wins(self) -> None:
        selector = _selector()
        selector.record_start(RUNPOD)
        selector.record_start(RUNPOD)
        selector.record_start(REPLICATE)
        assert selector.select() == REPLICATE

    def test_tie_goes_to_preferred(self) -> None:
        selector = _selector()
        selector.record_start(RUNPOD)
        selector.record_start(REPLICATE)
        assert selector.select() == RUNPOD

    def test_record_end_frees_capacity(self) -> None:
        selector = _selector(max_preferred_jobs=1)
        selector.record_start(RUNPOD)
        assert selector.select() == REPLICATE
        selector.record_end(RUNPOD)
        assert selector.select() == RUNPOD

    def test_unset_cap_never_saturates(self) -> None:
        selector = _selector(max_preferred_jobs=None)
        for _ in range(20):
            selector.record_start(RUNPOD)
            selector.record_start(REPLICATE)
        assert selector.select() == RUNPOD

    def test_unset_cap_still_balances_load(self) -> None:
        selector = _selector(max_preferred_jobs=None)
        selector.record_start(RUNPOD)
        assert selector.select() == REPLICATE

    def test_zero_cap_means_no_cap(self) -> None:
        selector = _selector(max_preferred_jobs=0)
        assert selector.config.max_preferred_jobs is None
        assert selector.select() == RUNPOD


class TestConfig:
    """Configuration validation and failover targets."""

    def test_fallback_must_differ(self) -> None:
        with pytest.raises(ValidationError):
            SelectorConfig(preferred=RUNPOD, fallback=RUNPOD)

    def test_fallback_for(self) -> None:
        selector = _selector()
        assert selector.fallback_for(RUNPOD) == REPLICATE
        assert selector.fallback_for(REPLICATE) == RUNPOD
        assert _selector(fallback=None).fallback_for(RUNPOD) is None


class TestStats:
    def test_stats_include_total(self) -> None:
        selector = _selector()
        selector.record_start(RUNPOD)
        selector.record_start(REPLICATE)
        selector.record_start(REPLICATE)
        assert selector.stats() == {"replicate": 2, "runpod": 1, "total": 3}
