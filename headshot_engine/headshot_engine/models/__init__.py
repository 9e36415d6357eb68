"""Domain models for the headshot orchestration engine."""

from headshot_engine.models.generation import (
    Generation,
    GenerationStatus,
    JobRequest,
    PersonalInfo,
    StatusUpdate,
    SubmissionResult,
)
from headshot_engine.models.tiers import Accounting, ResetPolicy, Tier, TierPolicy
from headshot_engine.models.usage import (
    CreditStats,
    DenialReason,
    LedgerEntry,
    LedgerEntryType,
    LedgerResult,
    ReserveResult,
    UsageSnapshot,
)

__all__ = [
    "Accounting",
    "CreditStats",
    "DenialReason",
    "Generation",
    "GenerationStatus",
    "JobRequest",
    "LedgerEntry",
    "LedgerEntryType",
    "LedgerResult",
    "PersonalInfo",
    "ReserveResult",
    "ResetPolicy",
    "StatusUpdate",
    "SubmissionResult",
    "Tier",
    "TierPolicy",
    "UsageSnapshot",
]
