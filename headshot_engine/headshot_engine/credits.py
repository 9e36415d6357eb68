"""Credits ledger service.

Every change to a user's credit balance goes through :meth:`CreditsLedger.append`,
which adjusts the cached balance with a conditional update and writes exactly
one ledger row in the same transaction.  A debit that would take the balance
below zero fails instead.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from headshot_engine.models.usage import CreditStats, LedgerEntry, LedgerEntryType, LedgerResult
from headshot_engine.state.repository import CreditsRepository

logger = logging.getLogger(__name__)

DEFAULT_USAGE_DESCRIPTION = "AI headshot generation"


class CreditsLedger:
    """Credit balance and ledger operations within the caller's transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._repo = CreditsRepository(session)

    async def append(
        self,
        user_id: str,
        delta: int,
        entry_type: LedgerEntryType,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Apply *delta* to the user's balance and record it.

        Parameters
        ----------
        user_id:
            Owner of the balance.
        delta:
            Signed credit change.  Negative values are debits.
        entry_type:
            Ledger classification of the movement.
        description:
            Human readable reason shown in the user's history.
        metadata:
            Optional structured context (checkout id, amount, ...).

        Returns
        -------
        LedgerResult
            ``success=False`` with ``error="insufficient_credits"`` when a
            debit exceeds the balance; the balance is left unchanged.
        """
        new_balance = await self._repo.try_adjust(user_id, delta)
        if new_balance is None:
            current = await self._repo.get_balance(user_id)
            logger.info(
                "Credit debit refused for user %s: delta=%d balance=%d",
                user_id,
                delta,
                current,
            )
            return LedgerResult(success=False, balance=current, error="insufficient_credits")

        await self._repo.append_entry(
            user_id=user_id,
            entry_type=entry_type,
            delta=delta,
            balance_after=new_balance,
            description=description,
            metadata=metadata,
        )
        logger.info(
            "Credits %s for user %s: delta=%d balance=%d",
            entry_type.value,
            user_id,
            delta,
            new_balance,
        )
        return LedgerResult(success=True, balance=new_balance)

    async def consume_one(self, user_id: str, description: str = DEFAULT_USAGE_DESCRIPTION) -> LedgerResult:
        return await self.append(user_id, -1, LedgerEntryType.USAGE, description)

    async def grant(
        self,
        user_id: str,
        amount: int,
        description: str,
        *,
        entry_type: LedgerEntryType = LedgerEntryType.PURCHASE,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerResult:
        if amount <= 0:
            raise ValueError(f"Credit grant must be positive, got {amount}")
        return await self.append(user_id, amount, entry_type, description, metadata)

    async def balance(self, user_id: str) -> int:
        return await self._repo.get_balance(user_id)

    async def history(self, user_id: str, limit: int = 50) -> list[LedgerEntry]:
        """Return the most recent ledger entries, newest first."""
        rows = await self._repo.history(user_id, limit=limit)
        return [
            LedgerEntry(
                id=row.id,
                user_id=row.user_id,
                entry_type=LedgerEntryType(row.entry_type),
                delta=row.delta,
                balance_after=row.balance_after,
                description=row.description,
                metadata=row.metadata_json or {},
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def stats(self, user_id: str) -> CreditStats:
        return await self._repo.stats(user_id)
