"""Unit tests for the stale generation sweeper."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from headshot_engine.config import ProviderId
from headshot_engine.models.generation import GenerationStatus, StatusUpdate
from headshot_engine.state.database import session_scope
from headshot_engine.state.repository import GenerationRepository
from headshot_engine.sweeper import StaleGenerationSweeper
from headshot_engine.webhooks import WebhookGateway
from sqlalchemy.exc import IntegrityError, OperationalError


class PollingAdapter:
    """Adapter stub whose status reads come from a dict."""

    def __init__(self, provider_id: ProviderId, statuses: dict[str, StatusUpdate]) -> None:
        self.provider_id = provider_id
        self._statuses = statuses
        self.polled: list[str] = []

    async def submit(self, request):  # pragma: no cover - not used by the sweeper
        raise AssertionError("submit should not be called")

    async def fetch_status(self, external_job_id: str) -> StatusUpdate | None:
        self.polled.append(external_job_id)
        return self._statuses.get(external_job_id)

    async def close(self) -> None:
        return None


def _future_clock() -> datetime:
    return datetime.now(UTC) + timedelta(hours=2)


async def _row(factory, provider: str | None = None, job_id: str | None = None) -> str:
    async with session_scope(factory) as session:
        repo = GenerationRepository(session)
        row = await repo.create(user_id="u1", upload_id="up1", model="sdxl")
        if provider and job_id:
            await repo.mark_submitted(row.id, provider, job_id)
        return row.id


async def _status(factory, generation_id: str):
    async with session_scope(factory) as session:
        return await GenerationRepository(session).get(generation_id)


def _sweeper(session_factory, statuses: dict[str, StatusUpdate] | None = None, clock=_future_clock, **kwargs):
    adapter = PollingAdapter(ProviderId.RUNPOD, statuses or {})
    gateway = WebhookGateway(session_factory, {})
    sweeper = StaleGenerationSweeper(
        session_factory,
        gateway,
        {ProviderId.RUNPOD: adapter},
        max_age_minutes=60,
        clock=clock,
        **kwargs,
    )
    return sweeper, adapter


class TestSweep:
    @pytest.mark.asyncio
    async def test_expires_stale_rows(self, session_factory) -> None:
        queued = await _row(session_factory)
        processing = await _row(session_factory, "runpod", "rp-1")
        sweeper, adapter = _sweeper(session_factory)

        report = await sweeper.sweep()

        assert report.examined == 2
        assert report.expired == 2
        assert adapter.polled == ["rp-1"]
        for generation_id in (queued, processing):
            row = await _status(session_factory, generation_id)
            assert row.status == GenerationStatus.FAILED.value
            assert row.error_message == "Timed out after 60 minutes without a provider result"

    @pytest.mark.asyncio
    async def test_reconciles_from_provider(self, session_factory) -> None:
        gen_id = await _row(session_factory, "runpod", "rp-1")
        done = StatusUpdate(
            external_job_id="rp-1",
            status=GenerationStatus.COMPLETED,
            result_url="https://cdn.example.com/done.png",
        )
        sweeper, _ = _sweeper(session_factory, {"rp-1": done})

        report = await sweeper.sweep()

        assert report.reconciled == 1
        assert report.expired == 0
        row = await _status(session_factory, gen_id)
        assert row.status == GenerationStatus.COMPLETED.value
        assert row.result_url == "https://cdn.example.com/done.png"

    @pytest.mark.asyncio
    async def test_non_terminal_poll_still_expires(self, session_factory) -> None:
        gen_id = await _row(session_factory, "runpod", "rp-1")
        running = StatusUpdate(external_job_id="rp-1", status=GenerationStatus.PROCESSING)
        sweeper, _ = _sweeper(session_factory, {"rp-1": running})

        report = await sweeper.sweep()

        assert report.expired == 1
        assert (await _status(session_factory, gen_id)).status == GenerationStatus.FAILED.value

    @pytest.mark.asyncio
    async def test_fresh_rows_are_left_alone(self, session_factory) -> None:
        fresh = await _row(session_factory)
        sweeper, _ = _sweeper(session_factory, clock=lambda: datetime.now(UTC))

        report = await sweeper.sweep()

        assert report.examined == 0
        assert (await _status(session_factory, fresh)).status == GenerationStatus.QUEUED.value

    @pytest.mark.asyncio
    async def test_explicit_max_age(self, session_factory) -> None:
        await _row(session_factory)
        sweeper, _ = _sweeper(session_factory, clock=lambda: datetime.now(UTC) + timedelta(minutes=10))

        assert (await sweeper.sweep()).examined == 0
        report = await sweeper.sweep(max_age=timedelta(minutes=5))
        assert report.expired == 1


class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory) -> None:
        sweeper, _ = _sweeper(session_factory, interval_seconds=3600)
        await sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0)
        await sweeper.stop()
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_database_outage_keeps_loop_running(self, session_factory, caplog) -> None:
        sweeper, _ = _sweeper(session_factory, interval_seconds=0)
        sweeper.sweep = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("db down")))

        with caplog.at_level(logging.ERROR, logger="headshot_engine.sweeper"):
            await sweeper.start()
            for _ in range(10):
                await asyncio.sleep(0)
            await sweeper.stop()

        assert sweeper.sweep.await_count >= 2
        assert any("database error" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged_critical_and_stops_loop(self, session_factory, caplog) -> None:
        sweeper, _ = _sweeper(session_factory, interval_seconds=3600)
        sweeper.sweep = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))

        with caplog.at_level(logging.ERROR, logger="headshot_engine.sweeper"):
            await sweeper.start()
            for _ in range(10):
                await asyncio.sleep(0)

        critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
        assert len(critical) == 1
        assert "unexpected error" in critical[0].getMessage()
        assert critical[0].exc_info is not None
        assert sweeper.sweep.await_count == 1

        with pytest.raises(IntegrityError):
            await sweeper.stop()
