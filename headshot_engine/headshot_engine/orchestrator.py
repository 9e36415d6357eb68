"""Generation orchestrator: admission, persistence and provider failover.

:meth:`GenerationOrchestrator.create_generation` runs in three stages so a
database session is never held open across a provider network call:

1. **Admit** (one transaction): validate input, resolve the user's tier,
   reserve usage, insert a single ``queued`` generation row, commit.
   A denial stops here with no row and no provider call.
2. **Submit** (no session): select a provider and submit, bracketing the
   call with ``record_start`` / ``record_end``.  On failure, retry exactly
   once against the configured fallback.
3. **Record** (one transaction): mark the row ``processing`` with the
   accepting provider and its job id, or ``failed`` with the aggregated
   error text of every attempt.

Usage reserved in stage 1 is not returned if stage 2 fails.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from headshot_engine.config import ProviderId
from headshot_engine.errors import (
    HeadshotError,
    InsufficientCreditsError,
    PayloadValidationError,
    PersistenceError,
    ProfileNotFoundError,
    ProviderSubmissionError,
    QuotaExceededError,
    UsageCheckError,
)
from headshot_engine.guard import UsageGuard
from headshot_engine.models.generation import Generation, GenerationStatus, JobRequest, PersonalInfo, SubmissionResult
from headshot_engine.models.tiers import DEFAULT_TIER_POLICIES, Tier, TierPolicy
from headshot_engine.models.usage import DenialReason, ReserveResult
from headshot_engine.providers.base import ProviderAdapter
from headshot_engine.selector import ProviderSelector
from headshot_engine.state.database import session_scope
from headshot_engine.state.repository import GenerationRepository, ProfileRepository
from headshot_engine.state.tables import GenerationTable

logger = logging.getLogger(__name__)


class CreateGenerationParams(BaseModel):
    """Input to :meth:`GenerationOrchestrator.create_generation`."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    # Lengths match the generations table columns.
    user_id: str = Field(..., min_length=1, max_length=128, alias="userId")
    upload_id: str = Field(..., min_length=1, max_length=128, alias="uploadId")
    model: str = Field(..., min_length=1, max_length=128)
    style: str = Field(default="", max_length=128)
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo, alias="personalInfo")
    upload_url: str = Field(..., min_length=1, alias="uploadUrl")
    webhook_url: str | None = Field(default=None, alias="webhookUrl")

    @field_validator("upload_url")
    @classmethod
    def _require_http_url(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("uploadUrl must be an http(s) URL")
        return v


class CreateGenerationResult(BaseModel):
    """Outcome of a generation request."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    generation: Generation | None = None
    provider: ProviderId | None = None
    error: HeadshotError | None = None
    attempts: list[ProviderId] = Field(default_factory=list)

    @classmethod
    def failed(
        cls,
        error: HeadshotError,
        generation: Generation | None = None,
        attempts: list[ProviderId] | None = None,
    ) -> CreateGenerationResult:
        return cls(success=False, error=error, generation=generation, attempts=attempts or [])


def to_generation(row: GenerationTable) -> Generation:
    """Convert an ORM row into the read model."""
    return Generation(
        id=row.id,
        user_id=row.user_id,
        upload_id=row.upload_id,
        model=row.model,
        style=row.style,
        personal_info=row.personal_info or {},
        provider=ProviderId(row.provider) if row.provider else None,
        provider_job_id=row.provider_job_id,
        status=GenerationStatus(row.status),
        result_url=row.result_url,
        error_message=row.error_message,
        created_at=row.created_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
    )


def _denial_error(reservation: ReserveResult) -> HeadshotError:
    if reservation.reason is DenialReason.INSUFFICIENT_CREDITS:
        return InsufficientCreditsError(reservation.message, remaining=0)
    if reservation.reason is DenialReason.SYSTEM_ERROR:
        return UsageCheckError(reservation.message)
    return QuotaExceededError(reservation.message, remaining=reservation.remaining or 0)


class GenerationOrchestrator:
    """Public entry point for creating generations.

    Parameters
    ----------
    session_factory:
        Factory for the short-lived sessions used in the admit and record stages.
    selector:
        Provider selector shared by every request in the process.
    adapters:
        One adapter per provider id.
    policies:
        Tier policy table passed to the usage guard.
    webhook_urls:
        Callback URL per provider used when the request does not carry one.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        selector: ProviderSelector,
        adapters: Mapping[ProviderId, ProviderAdapter],
        *,
        policies: Mapping[Tier, TierPolicy] = DEFAULT_TIER_POLICIES,
        webhook_urls: Mapping[ProviderId, str] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._selector = selector
        self._adapters = dict(adapters)
        self._policies = policies
        self._webhook_urls = dict(webhook_urls or {})

    @property
    def selector(self) -> ProviderSelector:
        return self._selector

    def stats(self) -> dict[str, int]:
        """Active jobs per provider plus the total."""
        return self._selector.stats()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_generation(self, params: CreateGenerationParams | Mapping[str, Any]) -> CreateGenerationResult:
        """Admit, persist and submit one generation.

        Never raises for expected failures; the returned result carries a
        typed :class:`~headshot_engine.errors.HeadshotError` instead.
        """
        try:
            request = (
                params if isinstance(params, CreateGenerationParams) else CreateGenerationParams.model_validate(params)
            )
        except ValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
            return CreateGenerationResult.failed(
                PayloadValidationError(f"Missing or invalid fields: {', '.join(fields)}")
            )

        try:
            admitted = await self._admit(request)
        except SQLAlchemyError:
            logger.exception("Admission failed for user %s", request.user_id)
            return CreateGenerationResult.failed(UsageCheckError("Unable to verify generation limits right now."))
        if isinstance(admitted, HeadshotError):
            return CreateGenerationResult.failed(admitted)

        generation_id = admitted
        job = JobRequest(
            upload_url=request.upload_url,
            style=request.style,
            model=request.model,
            personal_info=request.personal_info,
            webhook_url=request.webhook_url,
        )

        primary = self._selector.select()
        attempts: list[ProviderId] = [primary]
        errors: list[str] = []

        result = await self._submit(primary, job)
        accepted_by: ProviderId | None = primary if result.success else None
        if not result.success:
            errors.append(f"{primary.value}: {result.error}")
            fallback = self._selector.fallback_for(primary)
            if fallback is not None and fallback in self._adapters:
                logger.info(
                    "Primary provider %s failed for generation %s, trying fallback %s",
                    primary.value,
                    generation_id,
                    fallback.value,
                )
                attempts.append(fallback)
                result = await self._submit(fallback, job)
                if result.success:
                    accepted_by = fallback
                else:
                    errors.append(f"{fallback.value}: {result.error}")

        try:
            return await self._record(generation_id, attempts, accepted_by, result, errors)
        except SQLAlchemyError:
            logger.exception("Failed to record submission outcome for generation %s", generation_id)
            return CreateGenerationResult.failed(
                PersistenceError("Generation was submitted but its status could not be saved."),
                attempts=attempts,
            )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _admit(self, request: CreateGenerationParams) -> str | HeadshotError:
        """Stage 1: tier lookup, usage reservation and row creation."""
        async with session_scope(self._session_factory) as session:
            raw_tier = await ProfileRepository(session).get_tier(request.user_id)
            if raw_tier is None:
                logger.warning("Generation requested for unknown user %s", request.user_id)
                return ProfileNotFoundError("User profile not found")
            tier = Tier(raw_tier)

            reservation = await UsageGuard(session, self._policies).reserve(request.user_id, tier)
            if not reservation.allowed:
                logger.info(
                    "Generation denied for user %s: reason=%s",
                    request.user_id,
                    reservation.reason.value if reservation.reason else None,
                )
                return _denial_error(reservation)

            row = await GenerationRepository(session).create(
                user_id=request.user_id,
                upload_id=request.upload_id,
                model=request.model,
                style=request.style,
                personal_info=request.personal_info.model_dump(by_alias=True, exclude_none=True),
            )
            logger.info(
                "Admitted generation %s for user %s (tier=%s remaining=%s)",
                row.id,
                request.user_id,
                tier.value,
                reservation.remaining,
            )
            return row.id

    async def _submit(self, provider: ProviderId, job: JobRequest) -> SubmissionResult:
        """Stage 2: one bracketed provider submission."""
        adapter = self._adapters.get(provider)
        if adapter is None:
            return SubmissionResult.rejected(f"No adapter registered for {provider.value}", "not_configured")

        if job.webhook_url is None and provider in self._webhook_urls:
            job = job.model_copy(update={"webhook_url": self._webhook_urls[provider]})

        self._selector.record_start(provider)
        try:
            return await adapter.submit(job)
        except Exception as exc:
            # A raising adapter counts as a failed attempt.
            logger.exception("Adapter %s raised during submit", provider.value)
            return SubmissionResult.rejected(f"{type(exc).__name__}: {exc}", "adapter_error")
        finally:
            self._selector.record_end(provider)

    async def _record(
        self,
        generation_id: str,
        attempts: list[ProviderId],
        accepted_by: ProviderId | None,
        result: SubmissionResult,
        errors: list[str],
    ) -> CreateGenerationResult:
        """Stage 3: persist the submission outcome on the single row."""
        async with session_scope(self._session_factory) as session:
            repo = GenerationRepository(session)
            if accepted_by is not None and result.external_job_id:
                if not await repo.mark_submitted(generation_id, accepted_by.value, result.external_job_id):
                    logger.warning(
                        "Generation %s left queued before %s accepted job %s",
                        generation_id,
                        accepted_by.value,
                        result.external_job_id,
                    )
                row = await repo.get(generation_id)
                generation = to_generation(row) if row is not None else None
                logger.info(
                    "Generation %s submitted to %s as job %s",
                    generation_id,
                    accepted_by.value,
                    result.external_job_id,
                )
                return CreateGenerationResult(
                    success=True,
                    generation=generation,
                    provider=accepted_by,
                    attempts=attempts,
                )

            message = "; ".join(errors) or "Generation failed"
            await repo.mark_failed(generation_id, message, provider=attempts[-1].value)
            row = await repo.get(generation_id)
            logger.warning("Generation %s failed on every provider: %s", generation_id, message)
            return CreateGenerationResult.failed(
                ProviderSubmissionError(f"All providers failed: {message}"),
                generation=to_generation(row) if row is not None else None,
                attempts=attempts,
            )
