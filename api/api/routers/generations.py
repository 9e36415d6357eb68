"""Generation endpoints: create, poll, and provider load."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException
from headshot_engine.orchestrator import to_generation
from headshot_engine.state.repository import GenerationRepository

from api.dependencies import OrchestratorDep, SessionDep
from api.middleware.prometheus import GENERATIONS_TOTAL
from api.schemas import CreateGenerationResponse, ErrorResponse, GenerationResponse, ProviderStatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["generations"])

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in (400, 402, 404, 429, 502, 503)
}


@router.post("/generations", response_model=CreateGenerationResponse, responses=_ERROR_RESPONSES)
async def create_generation(
    orchestrator: OrchestratorDep,
    body: Annotated[dict[str, Any], Body()],
) -> CreateGenerationResponse:
    """Admit, persist and submit one headshot generation.

    The body is validated by the orchestrator so that malformed input is
    reported with the same error envelope as every other failure.
    """
    result = await orchestrator.create_generation(body)

    if not result.success or result.generation is None or result.provider is None:
        error = result.error
        GENERATIONS_TOTAL.labels(
            provider=result.attempts[-1].value if result.attempts else "none",
            outcome=error.code if error is not None else "unknown",
        ).inc()
        if error is None:
            raise HTTPException(status_code=500, detail="Generation failed")
        raise error

    GENERATIONS_TOTAL.labels(provider=result.provider.value, outcome="submitted").inc()
    return CreateGenerationResponse(provider=result.provider.value, generation=result.generation)


@router.get("/generations/{generation_id}", response_model=GenerationResponse)
async def get_generation(generation_id: str, session: SessionDep) -> GenerationResponse:
    """Return the current state of a generation."""
    row = await GenerationRepository(session).get(generation_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Generation {generation_id} not found")
    return GenerationResponse.from_generation(to_generation(row))


@router.get("/providers/stats", response_model=ProviderStatsResponse)
async def provider_stats(orchestrator: OrchestratorDep) -> ProviderStatsResponse:
    """Active jobs per provider plus the selection policy."""
    config = orchestrator.selector.config
    return ProviderStatsResponse(
        active_jobs=orchestrator.stats(),
        preferred=config.preferred.value,
        fallback=config.fallback.value if config.fallback else None,
        max_preferred_jobs=config.max_preferred_jobs,
        load_balancing=config.load_balancing,
    )
