"""Usage and credit accounting models."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from headshot_engine.models.tiers import Tier


class DenialReason(str, Enum):
    """Why the usage guard refused a reservation."""

    QUOTA_EXCEEDED = "quota_exceeded"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    SYSTEM_ERROR = "system_error"


class ReserveResult(BaseModel):
    """Outcome of a check-and-reserve against a user's allowance."""

    allowed: bool
    remaining: int | None = Field(default=0, ge=0, description="Generations left; None means unlimited.")
    message: str = ""
    reason: DenialReason | None = None
    tier: Tier
    used: int = 0
    limit: int | None = None
    reset_date: date | None = None


class UsageSnapshot(BaseModel):
    """Read-only view of a user's current allowance."""

    tier: Tier
    used: int
    limit: int | None
    remaining: int | None
    reset_date: date | None = None
    credits: int | None = None
    message: str = ""
    show_upgrade: bool = False
    recommended_tier: Tier | None = None


class LedgerEntryType(str, Enum):
    """Kind of credit movement recorded in the ledger."""

    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"
    BONUS = "bonus"


class LedgerEntry(BaseModel):
    """One append-only ledger row."""

    id: int
    user_id: str
    entry_type: LedgerEntryType
    delta: int
    balance_after: int
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class LedgerResult(BaseModel):
    """Outcome of appending to the credits ledger."""

    success: bool
    balance: int
    error: str | None = None


class CreditStats(BaseModel):
    """Aggregate credit figures for a user."""

    total_purchased: int = 0
    total_used: int = 0
    current_balance: int = 0
    transaction_count: int = 0
