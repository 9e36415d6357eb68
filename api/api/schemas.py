"""Shared Pydantic response models for API endpoints.

These schemas ensure that endpoint responses are validated and documented
in the OpenAPI schema.  Routers import from here to avoid duplication.
"""

from __future__ import annotations

from datetime import date, datetime

from headshot_engine.models.generation import Generation
from headshot_engine.models.tiers import Tier
from headshot_engine.models.usage import LedgerEntry
from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorBody(BaseModel):
    """Machine-readable error carried by every failed response."""

    code: str
    message: str
    remaining: int | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody


# ---------------------------------------------------------------------------
# Generations
# ---------------------------------------------------------------------------


class CreateGenerationResponse(BaseModel):
    """Successful ``POST /generations`` response."""

    success: bool = True
    provider: str
    generation: Generation


class GenerationResponse(BaseModel):
    """Read-only generation view used by polling clients."""

    id: str
    user_id: str
    status: str
    provider: str | None = None
    result_url: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_generation(cls, generation: Generation) -> GenerationResponse:
        return cls(
            id=generation.id,
            user_id=generation.user_id,
            status=generation.status.value,
            provider=generation.provider.value if generation.provider else None,
            result_url=generation.result_url,
            error_message=generation.error_message,
            created_at=generation.created_at,
            updated_at=generation.updated_at,
            completed_at=generation.completed_at,
        )


class ProviderStatsResponse(BaseModel):
    """Active provider jobs and the selection policy in force."""

    active_jobs: dict[str, int]
    preferred: str
    fallback: str | None = None
    max_preferred_jobs: int | None = None
    load_balancing: bool


# ---------------------------------------------------------------------------
# Usage and credits
# ---------------------------------------------------------------------------


class UsageResponse(BaseModel):
    """Current allowance for one user."""

    user_id: str
    tier: Tier
    used: int
    limit: int | None = None
    remaining: int | None = None
    reset_date: date | None = None
    credits: int | None = None
    message: str = ""
    show_upgrade: bool = False
    recommended_tier: Tier | None = None


class CreditHistoryResponse(BaseModel):
    """Credit balance, aggregates and recent ledger entries."""

    user_id: str
    balance: int
    total_purchased: int = 0
    total_used: int = 0
    transaction_count: int = 0
    entries: list[LedgerEntry] = Field(default_factory=list)

