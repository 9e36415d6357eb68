"""Stale generation sweeper.

Generations whose provider never calls back would otherwise sit in
``queued`` or ``processing`` forever.  The sweeper finds non-terminal rows
that have not been updated for ``max_age`` and, for each one:

1. asks the provider adapter for the job's current state and applies a
   terminal result through the webhook gateway when one is available;
2. otherwise marks the generation ``failed`` with a timeout message.

It runs as an ``asyncio`` background task in the API process and as the
one-shot ``headshot sweep`` command.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from headshot_engine.config import ProviderId
from headshot_engine.models.generation import GenerationStatus
from headshot_engine.providers.base import ProviderAdapter
from headshot_engine.state.database import session_scope
from headshot_engine.state.repository import GenerationRepository
from headshot_engine.webhooks.gateway import WebhookGateway
from headshot_engine.webhooks.results import WebhookOutcome

logger = logging.getLogger(__name__)


class SweepReport(BaseModel):
    """Counts from one sweep pass."""

    examined: int = 0
    reconciled: int = 0
    expired: int = 0
    skipped: int = 0


class StaleGenerationSweeper:
    """Reconciles or expires generations stuck in a non-terminal state.

    Parameters
    ----------
    session_factory:
        Factory for the sessions used per generation.
    gateway:
        Applies statuses obtained by polling with the same rules as webhooks.
    adapters:
        Provider adapters used to poll job status.
    max_age_minutes:
        Age of the last update after which a generation is considered stale.
    interval_seconds:
        Pause between passes when running in the background.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: WebhookGateway,
        adapters: Mapping[ProviderId, ProviderAdapter],
        *,
        max_age_minutes: int = 60,
        interval_seconds: int = 300,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._adapters = dict(adapters)
        self._max_age = timedelta(minutes=max_age_minutes)
        self._interval = interval_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def sweep(self, max_age: timedelta | None = None, limit: int = 100) -> SweepReport:
        """Run one pass over stale generations."""
        age = max_age if max_age is not None else self._max_age
        cutoff = self._clock() - age
        report = SweepReport()

        async with session_scope(self._session_factory) as session:
            rows = await GenerationRepository(session).list_stale(cutoff, limit=limit)
            stale = [(row.id, GenerationStatus(row.status), row.provider, row.provider_job_id) for row in rows]

        for generation_id, status, provider, provider_job_id in stale:
            report.examined += 1
            if provider and provider_job_id and await self._reconcile(ProviderId(provider), provider_job_id):
                report.reconciled += 1
                continue

            minutes = int(age.total_seconds() // 60)
            async with session_scope(self._session_factory) as session:
                expired = await GenerationRepository(session).transition(
                    generation_id,
                    expected=status,
                    target=GenerationStatus.FAILED,
                    error_message=f"Timed out after {minutes} minutes without a provider result",
                )
            if expired:
                logger.warning("Expired stale generation %s (was %s)", generation_id, status.value)
                report.expired += 1
            else:
                report.skipped += 1

        if report.examined:
            logger.info(
                "Sweep finished: examined=%d reconciled=%d expired=%d skipped=%d",
                report.examined,
                report.reconciled,
                report.expired,
                report.skipped,
            )
        return report

    async def _reconcile(self, provider: ProviderId, provider_job_id: str) -> bool:
        """Poll the provider and apply a terminal status if it has one."""
        adapter = self._adapters.get(provider)
        if adapter is None:
            return False
        update = await adapter.fetch_status(provider_job_id)
        if update is None or not update.status.terminal:
            return False
        response = await self._gateway.apply_update(provider, update)
        return response.outcome is WebhookOutcome.APPLIED

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the sweeper background task."""
        if self._running:
            logger.warning("StaleGenerationSweeper already running; ignoring start()")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("StaleGenerationSweeper started (interval=%ds)", self._interval)

    async def stop(self) -> None:
        """Stop the sweeper gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("StaleGenerationSweeper stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except (OperationalError, InterfaceError) as exc:
                logger.error("StaleGenerationSweeper database error: %s", exc, exc_info=True)
            except Exception as exc:
                logger.critical("StaleGenerationSweeper unexpected error: %s", exc, exc_info=True)
                raise
            await asyncio.sleep(self._interval)
