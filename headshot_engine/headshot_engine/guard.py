"""Usage and credits guard.

Admission control for generations.  :meth:`UsageGuard.reserve` is a single
check-and-consume step: for quota tiers it is one conditional increment of
the current period's counter, for credit tiers one conditional decrement of
the balance.  Concurrent reservations therefore cannot admit more
generations than the limit allows.

Usage is consumed on attempt.  A reservation is never returned, even if the
provider submission that follows it fails.

Infrastructure failures deny admission (fail-closed) with
``reason=system_error`` so callers can tell them apart from a genuine limit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from headshot_engine.credits import CreditsLedger
from headshot_engine.models.tiers import (
    DEFAULT_TIER_POLICIES,
    Accounting,
    Tier,
    TierPolicy,
    format_usage_message,
    next_reset_date,
    period_window,
    recommended_upgrade,
    should_show_upgrade_prompt,
)
from headshot_engine.models.usage import DenialReason, ReserveResult, UsageSnapshot
from headshot_engine.state.repository import UsageRepository

logger = logging.getLogger(__name__)

SYSTEM_ERROR_MESSAGE = "Unable to verify generation limits right now. Please try again shortly."


def _quota_denial_message(tier: Tier, limit: int, reset_date: date | None) -> str:
    base = f"Generation limit reached for {tier.value} plan. You have 0 generations remaining."
    if reset_date is not None:
        return f"{base} Your allowance resets on {reset_date.isoformat()}."
    upgrade = recommended_upgrade(tier)
    if upgrade is not None:
        return f"{base} Upgrade to {upgrade.value} to continue."
    return f"{base} You've used all {limit} generations."


def _credit_denial_message(tier: Tier) -> str:
    upgrade = recommended_upgrade(tier)
    target = upgrade.value if upgrade is not None else "a larger plan"
    return f"No credits remaining on your {tier.value} pack. Upgrade to {target} or purchase another pack to continue."


class UsageGuard:
    """Check-and-reserve admission against a user's tier allowance.

    Parameters
    ----------
    session:
        Active session; the reservation is part of the caller's transaction.
    policies:
        Tier policy table (limits, reset policy, accounting).
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        session: AsyncSession,
        policies: Mapping[Tier, TierPolicy] = DEFAULT_TIER_POLICIES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._policies = policies
        self._clock = clock or (lambda: datetime.now(UTC))
        self._usage = UsageRepository(session)
        self._credits = CreditsLedger(session)

    def policy_for(self, tier: Tier) -> TierPolicy:
        return self._policies[tier]

    async def reserve(self, user_id: str, tier: Tier) -> ReserveResult:
        """Atomically consume one generation from *user_id*'s allowance.

        Returns
        -------
        ReserveResult
            ``allowed=True`` with the remaining allowance, or
            ``allowed=False`` with a reason and a user-facing message.
            Never raises for database failures.
        """
        policy = self.policy_for(tier)
        try:
            if policy.accounting is Accounting.CREDITS:
                return await self._reserve_credit(user_id, policy)
            return await self._reserve_quota(user_id, policy)
        except SQLAlchemyError:
            logger.exception("Usage check failed for user %s; denying admission", user_id)
            await self._session.rollback()
            return ReserveResult(
                allowed=False,
                remaining=0,
                message=SYSTEM_ERROR_MESSAGE,
                reason=DenialReason.SYSTEM_ERROR,
                tier=tier,
                limit=policy.limit,
            )

    async def _reserve_quota(self, user_id: str, policy: TierPolicy) -> ReserveResult:
        now = self._clock()
        start, end = period_window(policy.reset, now)
        reset_date = next_reset_date(policy.reset, now)

        await self._usage.ensure_period(user_id, start, end)
        used = await self._usage.try_increment(user_id, start, end, policy.limit)

        if used is None:
            current = await self._usage.get_used(user_id, start, end)
            message = _quota_denial_message(policy.tier, policy.limit or 0, reset_date)
            logger.warning(
                "Quota exceeded for user %s: tier=%s used=%d limit=%s. Upgrade your plan or wait for reset.",
                user_id,
                policy.tier.value,
                current,
                policy.limit,
            )
            return ReserveResult(
                allowed=False,
                remaining=0,
                message=message,
                reason=DenialReason.QUOTA_EXCEEDED,
                tier=policy.tier,
                used=current,
                limit=policy.limit,
                reset_date=reset_date,
            )

        remaining = None if policy.limit is None else max(0, policy.limit - used)
        logger.debug(
            "Reserved generation for user %s: tier=%s used=%d remaining=%s",
            user_id,
            policy.tier.value,
            used,
            remaining,
        )
        return ReserveResult(
            allowed=True,
            remaining=remaining,
            message=format_usage_message(policy.limit, remaining or 0, reset_date)
            if policy.limit is not None
            else "",
            tier=policy.tier,
            used=used,
            limit=policy.limit,
            reset_date=reset_date,
        )

    async def _reserve_credit(self, user_id: str, policy: TierPolicy) -> ReserveResult:
        result = await self._credits.consume_one(user_id)
        if not result.success:
            logger.warning(
                "Insufficient credits for user %s on tier %s. Upgrade your plan or purchase credits.",
                user_id,
                policy.tier.value,
            )
            return ReserveResult(
                allowed=False,
                remaining=0,
                message=_credit_denial_message(policy.tier),
                reason=DenialReason.INSUFFICIENT_CREDITS,
                tier=policy.tier,
                limit=policy.limit,
            )
        return ReserveResult(
            allowed=True,
            remaining=result.balance,
            message=f"{result.balance} credits remaining.",
            tier=policy.tier,
            limit=policy.limit,
        )

    async def snapshot(self, user_id: str, tier: Tier) -> UsageSnapshot:
        """Return the user's current allowance without consuming anything."""
        policy = self.policy_for(tier)
        now = self._clock()

        if policy.accounting is Accounting.CREDITS:
            stats = await self._credits.stats(user_id)
            balance = stats.current_balance
            return UsageSnapshot(
                tier=tier,
                used=stats.total_used,
                limit=stats.total_used + balance,
                remaining=balance,
                credits=balance,
                message=format_usage_message(stats.total_used + balance, balance, None),
                show_upgrade=should_show_upgrade_prompt(tier, balance),
                recommended_tier=recommended_upgrade(tier),
            )

        start, end = period_window(policy.reset, now)
        reset_date = next_reset_date(policy.reset, now)
        used = await self._usage.get_used(user_id, start, end)
        remaining = None if policy.limit is None else max(0, policy.limit - used)
        return UsageSnapshot(
            tier=tier,
            used=used,
            limit=policy.limit,
            remaining=remaining,
            reset_date=reset_date,
            message=format_usage_message(policy.limit, remaining or 0, reset_date),
            show_upgrade=remaining is not None and should_show_upgrade_prompt(tier, remaining),
            recommended_tier=recommended_upgrade(tier),
        )
