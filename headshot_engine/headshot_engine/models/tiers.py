"""Subscription tiers and the usage policy attached to each one.

A tier's policy decides three things: how many generations it allows, when
that allowance resets, and whether admission is counted against a
per-period quota or paid for out of a credit balance.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Tier(str, Enum):
    """Subscription tier of a user."""

    FREE = "free"
    ONE_TIME = "one_time"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class ResetPolicy(str, Enum):
    """When a tier's usage allowance starts over."""

    MONTHLY = "monthly"
    LIFETIME = "lifetime"


class Accounting(str, Enum):
    """How a generation is paid for."""

    QUOTA = "quota"
    CREDITS = "credits"


class TierPolicy(BaseModel):
    """Usage rules for a single tier."""

    model_config = ConfigDict(frozen=True)

    tier: Tier
    limit: int | None = Field(
        default=None,
        ge=0,
        description="Generations allowed per period; None means unlimited.",
    )
    reset: ResetPolicy
    accounting: Accounting = Accounting.QUOTA
    description: str = ""

    @property
    def unlimited(self) -> bool:
        return self.limit is None


# Lifetime tiers share one fixed window so the usage row never rolls over.
LIFETIME_PERIOD_START = date(2024, 1, 1)
LIFETIME_PERIOD_END = date(2099, 12, 31)

_UPGRADE_PATH: dict[Tier, Tier | None] = {
    Tier.FREE: Tier.PRO,
    Tier.ONE_TIME: Tier.PRO,
    Tier.PRO: Tier.ENTERPRISE,
    Tier.ENTERPRISE: None,
}


def build_tier_policies(
    *,
    free_limit: int | None = 3,
    one_time_credits: int = 100,
    pro_limit: int | None = 100,
    enterprise_limit: int | None = 1000,
) -> dict[Tier, TierPolicy]:
    """Build the tier policy table from configured limits."""
    return {
        Tier.FREE: TierPolicy(
            tier=Tier.FREE,
            limit=free_limit,
            reset=ResetPolicy.LIFETIME,
            description=f"{free_limit} generations (lifetime)",
        ),
        Tier.ONE_TIME: TierPolicy(
            tier=Tier.ONE_TIME,
            limit=one_time_credits,
            reset=ResetPolicy.LIFETIME,
            accounting=Accounting.CREDITS,
            description=f"{one_time_credits} generations (one-time)",
        ),
        Tier.PRO: TierPolicy(
            tier=Tier.PRO,
            limit=pro_limit,
            reset=ResetPolicy.MONTHLY,
            description=f"{pro_limit} generations per month",
        ),
        Tier.ENTERPRISE: TierPolicy(
            tier=Tier.ENTERPRISE,
            limit=enterprise_limit,
            reset=ResetPolicy.MONTHLY,
            description=f"{enterprise_limit} generations per month",
        ),
    }


DEFAULT_TIER_POLICIES: dict[Tier, TierPolicy] = build_tier_policies()


def _today(now: datetime | None) -> date:
    return (now or datetime.now(UTC)).astimezone(UTC).date()


def period_window(reset: ResetPolicy, now: datetime | None = None) -> tuple[date, date]:
    """Return the inclusive ``(start, end)`` dates of the current usage period.

    Monthly periods cover the calendar month containing *now* (UTC).
    Lifetime periods use a fixed sentinel window.
    """
    if reset is ResetPolicy.LIFETIME:
        return LIFETIME_PERIOD_START, LIFETIME_PERIOD_END

    today = _today(now)
    start = today.replace(day=1)
    end = next_month_start(today) - timedelta(days=1)
    return start, end


def next_month_start(day: date) -> date:
    """Return the first day of the month following *day*."""
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def next_reset_date(reset: ResetPolicy, now: datetime | None = None) -> date | None:
    """Return the date the allowance resets, or ``None`` for lifetime tiers."""
    if reset is ResetPolicy.LIFETIME:
        return None
    return next_month_start(_today(now))


def recommended_upgrade(tier: Tier) -> Tier | None:
    """Return the tier a user should upgrade to, or ``None`` at the top tier."""
    return _UPGRADE_PATH.get(tier, Tier.PRO)


def format_usage_message(limit: int | None, remaining: int, reset_date: date | None) -> str:
    """Render a human readable usage summary.

    Exhausted monthly allowances point at the reset date; exhausted lifetime
    allowances point at an upgrade.
    """
    if limit is None:
        return "Unlimited generations available."
    if remaining <= 0:
        if reset_date is not None:
            return (
                f"You've used all {limit} generations for this month. "
                f"Resets on {reset_date.isoformat()}."
            )
        return f"You've used all {limit} generations. Upgrade to continue."
    if reset_date is not None:
        return f"{remaining} of {limit} generations remaining this month."
    return f"{remaining} of {limit} generations remaining."


def should_show_upgrade_prompt(tier: Tier, remaining: int) -> bool:
    """Whether the user should be nudged towards a higher tier."""
    if remaining <= 0:
        return recommended_upgrade(tier) is not None
    if tier is Tier.FREE and remaining <= 1:
        return True
    if tier is Tier.ONE_TIME and remaining <= 10:
        return True
    return False
