"""Usage and credit endpoints.

Read-only views of a user's allowance; nothing here consumes usage.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query
from headshot_engine.credits import CreditsLedger
from headshot_engine.errors import ProfileNotFoundError
from headshot_engine.guard import UsageGuard
from headshot_engine.models.tiers import Tier
from headshot_engine.state.repository import ProfileRepository

from api.dependencies import PoliciesDep, SessionDep
from api.schemas import CreditHistoryResponse, UsageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/{user_id}", response_model=UsageResponse)
async def get_usage(user_id: str, session: SessionDep, policies: PoliciesDep) -> UsageResponse:
    """Return used, limit, remaining and reset date for *user_id*."""
    raw_tier = await ProfileRepository(session).get_tier(user_id)
    if raw_tier is None:
        raise ProfileNotFoundError("User profile not found")

    snapshot = await UsageGuard(session, policies).snapshot(user_id, Tier(raw_tier))
    return UsageResponse(user_id=user_id, **snapshot.model_dump())


@router.get("/{user_id}/credits", response_model=CreditHistoryResponse)
async def get_credits(
    user_id: str,
    session: SessionDep,
    limit: int = Query(default=50, ge=1, le=500, description="Number of ledger entries to return"),
) -> CreditHistoryResponse:
    """Return the credit balance and most recent ledger entries."""
    ledger = CreditsLedger(session)
    stats = await ledger.stats(user_id)
    entries = await ledger.history(user_id, limit=limit)
    return CreditHistoryResponse(
        user_id=user_id,
        balance=stats.current_balance,
        total_purchased=stats.total_purchased,
        total_used=stats.total_used,
        transaction_count=stats.transaction_count,
        entries=entries,
    )
