"""Repository classes providing access to the generation store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).

Counters and balances are only ever changed with a single conditional
``UPDATE ... RETURNING`` so concurrent writers cannot overshoot a limit or
drive a balance below zero.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from headshot_engine.models.generation import GenerationStatus
from headshot_engine.models.usage import CreditStats, LedgerEntryType
from headshot_engine.state.tables import (
    CreditBalanceTable,
    CreditsLedgerTable,
    GenerationTable,
    ProcessedWebhookEventTable,
    ProfileTable,
    UsagePeriodTable,
)

logger = logging.getLogger(__name__)

_NON_TERMINAL = (GenerationStatus.QUEUED.value, GenerationStatus.PROCESSING.value)


def _dialect_name(session: AsyncSession) -> str:
    bind = session.get_bind()
    return str(getattr(getattr(bind, "dialect", None), "name", ""))


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to update when a conflict occurs.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    stmt: Any
    if "postgresql" in _dialect_name(session):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={col: getattr(stmt.excluded, col) for col in update_columns},
    )
    return await session.execute(stmt)


async def _dialect_upsert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to insert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names for conflict detection.

    Returns
    -------
    The execution result from ``session.execute()``.  Its ``rowcount`` is
    zero when the row already existed.
    """
    stmt: Any
    if "postgresql" in _dialect_name(session):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# GenerationRepository
# ---------------------------------------------------------------------------


class GenerationRepository:
    """CRUD and compare-and-set transitions for generation rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        user_id: str,
        upload_id: str,
        model: str,
        style: str = "",
        personal_info: dict[str, Any] | None = None,
        generation_id: str | None = None,
    ) -> GenerationTable:
        """Insert a new generation in the ``queued`` state."""
        now = datetime.now(UTC)
        row = GenerationTable(
            id=generation_id or str(uuid.uuid4()),
            user_id=user_id,
            upload_id=upload_id,
            model=model,
            style=style,
            personal_info=personal_info or {},
            status=GenerationStatus.QUEUED.value,
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        logger.debug("Created generation %s for user %s", row.id, user_id)
        return row

    async def get(self, generation_id: str) -> GenerationTable | None:
        """Fetch a generation, bypassing any stale identity-map copy."""
        stmt = (
            select(GenerationTable)
            .where(GenerationTable.id == generation_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_provider_job(self, provider: str, provider_job_id: str) -> GenerationTable | None:
        """Equality lookup on the indexed ``(provider, provider_job_id)`` pair."""
        stmt = (
            select(GenerationTable)
            .where(
                GenerationTable.provider == provider,
                GenerationTable.provider_job_id == provider_job_id,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[GenerationTable]:
        stmt = (
            select(GenerationTable)
            .where(GenerationTable.user_id == user_id)
            .order_by(GenerationTable.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_stale(self, older_than: datetime, limit: int = 100) -> list[GenerationTable]:
        """Return non-terminal generations not updated since *older_than*."""
        stmt = (
            select(GenerationTable)
            .where(
                GenerationTable.status.in_(_NON_TERMINAL),
                GenerationTable.updated_at < older_than,
            )
            .order_by(GenerationTable.updated_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def transition(
        self,
        generation_id: str,
        *,
        expected: GenerationStatus,
        target: GenerationStatus,
        result_url: str | None = None,
        error_message: str | None = None,
        provider: str | None = None,
        provider_job_id: str | None = None,
    ) -> bool:
        """Move a generation from *expected* to *target* atomically.

        The update only matches while the row is still in *expected*, so a
        concurrent writer that got there first makes this a no-op.

        Returns
        -------
        bool
            ``True`` if this call performed the transition.
        """
        now = datetime.now(UTC)
        values: dict[str, Any] = {"status": target.value, "updated_at": now}
        if target is GenerationStatus.COMPLETED:
            values["completed_at"] = now
            values["result_url"] = result_url
        if error_message is not None:
            values["error_message"] = error_message
        if provider is not None:
            values["provider"] = provider
        if provider_job_id is not None:
            values["provider_job_id"] = provider_job_id

        stmt = (
            update(GenerationTable)
            .where(
                GenerationTable.id == generation_id,
                GenerationTable.status == expected.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        applied = (result.rowcount or 0) == 1
        if applied:
            logger.info(
                "Generation %s transitioned %s -> %s",
                generation_id,
                expected.value,
                target.value,
            )
        return applied

    async def mark_submitted(self, generation_id: str, provider: str, provider_job_id: str) -> bool:
        """Record a provider's acceptance: ``queued -> processing``."""
        return await self.transition(
            generation_id,
            expected=GenerationStatus.QUEUED,
            target=GenerationStatus.PROCESSING,
            provider=provider,
            provider_job_id=provider_job_id,
        )

    async def mark_failed(
        self,
        generation_id: str,
        error_message: str,
        *,
        expected: GenerationStatus = GenerationStatus.QUEUED,
        provider: str | None = None,
    ) -> bool:
        return await self.transition(
            generation_id,
            expected=expected,
            target=GenerationStatus.FAILED,
            error_message=error_message,
            provider=provider,
        )

    async def count_by_status(self) -> dict[str, int]:
        stmt = select(GenerationTable.status, func.count()).group_by(GenerationTable.status)
        result = await self._session.execute(stmt)
        return {status: int(count) for status, count in result.all()}


# ---------------------------------------------------------------------------
# UsageRepository
# ---------------------------------------------------------------------------


class UsageRepository:
    """Per-period generation counters."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def ensure_period(self, user_id: str, period_start: date, period_end: date) -> None:
        """Create the usage row for the window if it does not exist yet."""
        now = datetime.now(UTC)
        await _dialect_upsert_nothing(
            self._session,
            UsagePeriodTable,
            {
                "user_id": user_id,
                "period_start": period_start,
                "period_end": period_end,
                "generations_used": 0,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["user_id", "period_start", "period_end"],
        )

    async def try_increment(
        self,
        user_id: str,
        period_start: date,
        period_end: date,
        limit: int | None,
    ) -> int | None:
        """Consume one generation if the window still has room.

        Returns
        -------
        int | None
            The new ``generations_used`` value, or ``None`` when the limit was
            already reached (or the window row does not exist).
        """
        stmt = update(UsagePeriodTable).where(
            UsagePeriodTable.user_id == user_id,
            UsagePeriodTable.period_start == period_start,
            UsagePeriodTable.period_end == period_end,
        )
        if limit is not None:
            stmt = stmt.where(UsagePeriodTable.generations_used < limit)
        stmt = (
            stmt.values(
                generations_used=UsagePeriodTable.generations_used + 1,
                updated_at=datetime.now(UTC),
            )
            .returning(UsagePeriodTable.generations_used)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_used(self, user_id: str, period_start: date, period_end: date) -> int:
        stmt = select(UsagePeriodTable.generations_used).where(
            UsagePeriodTable.user_id == user_id,
            UsagePeriodTable.period_start == period_start,
            UsagePeriodTable.period_end == period_end,
        )
        result = await self._session.execute(stmt)
        used = result.scalar_one_or_none()
        return int(used) if used is not None else 0


# ---------------------------------------------------------------------------
# CreditsRepository
# ---------------------------------------------------------------------------


class CreditsRepository:
    """Credit balances and the append-only credits ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_balance(self, user_id: str) -> int:
        stmt = select(CreditBalanceTable.balance).where(CreditBalanceTable.user_id == user_id)
        result = await self._session.execute(stmt)
        balance = result.scalar_one_or_none()
        return int(balance) if balance is not None else 0

    async def try_adjust(self, user_id: str, delta: int) -> int | None:
        """Apply *delta* to the balance unless it would go negative.

        Returns
        -------
        int | None
            The new balance, or ``None`` if the user lacks the credits.
        """
        now = datetime.now(UTC)
        await _dialect_upsert_nothing(
            self._session,
            CreditBalanceTable,
            {"user_id": user_id, "balance": 0, "updated_at": now},
            index_elements=["user_id"],
        )
        stmt = update(CreditBalanceTable).where(CreditBalanceTable.user_id == user_id)
        if delta < 0:
            stmt = stmt.where(CreditBalanceTable.balance >= -delta)
        stmt = (
            stmt.values(balance=CreditBalanceTable.balance + delta, updated_at=now)
            .returning(CreditBalanceTable.balance)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def append_entry(
        self,
        *,
        user_id: str,
        entry_type: LedgerEntryType,
        delta: int,
        balance_after: int,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> CreditsLedgerTable:
        row = CreditsLedgerTable(
            user_id=user_id,
            entry_type=entry_type.value,
            delta=delta,
            balance_after=balance_after,
            description=description,
            metadata_json=metadata,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def history(self, user_id: str, limit: int = 50) -> list[CreditsLedgerTable]:
        stmt = (
            select(CreditsLedgerTable)
            .where(CreditsLedgerTable.user_id == user_id)
            .order_by(CreditsLedgerTable.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def stats(self, user_id: str) -> CreditStats:
        """Aggregate purchases, usage and transaction count for *user_id*."""
        stmt = (
            select(
                CreditsLedgerTable.entry_type,
                func.coalesce(func.sum(CreditsLedgerTable.delta), 0),
                func.count(),
            )
            .where(CreditsLedgerTable.user_id == user_id)
            .group_by(CreditsLedgerTable.entry_type)
        )
        result = await self._session.execute(stmt)
        purchased = used = count = 0
        for entry_type, total, n in result.all():
            count += int(n)
            if entry_type == LedgerEntryType.PURCHASE.value:
                purchased += int(total)
            elif entry_type == LedgerEntryType.USAGE.value:
                used += abs(int(total))
        return CreditStats(
            total_purchased=purchased,
            total_used=used,
            current_balance=await self.get_balance(user_id),
            transaction_count=count,
        )


# ---------------------------------------------------------------------------
# ProfileRepository
# ---------------------------------------------------------------------------


class ProfileRepository:
    """Subscription tier per user."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> ProfileTable | None:
        stmt = (
            select(ProfileTable)
            .where(ProfileTable.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tier(self, user_id: str) -> str | None:
        stmt = select(ProfileTable.tier).where(ProfileTable.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, user_id: str, tier: str, subscription_id: str | None = None) -> None:
        """Create the profile or overwrite its tier and subscription."""
        now = datetime.now(UTC)
        await _dialect_upsert(
            self._session,
            ProfileTable,
            {
                "user_id": user_id,
                "tier": tier,
                "subscription_id": subscription_id,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["user_id"],
            update_columns=["tier", "subscription_id", "updated_at"],
        )
        logger.info("Profile %s set to tier %s", user_id, tier)


# ---------------------------------------------------------------------------
# WebhookEventRepository
# ---------------------------------------------------------------------------


class WebhookEventRepository:
    """Deduplication keys for webhook events with side effects."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_once(self, provider: str, event_key: str, event_type: str) -> bool:
        """Record an event key.

        Returns
        -------
        bool
            ``True`` the first time a key is seen, ``False`` on redelivery.
        """
        result = await _dialect_upsert_nothing(
            self._session,
            ProcessedWebhookEventTable,
            {
                "provider": provider,
                "event_key": event_key,
                "event_type": event_type,
                "received_at": datetime.now(UTC),
            },
            index_elements=["provider", "event_key"],
        )
        return (result.rowcount or 0) == 1
