"""Webhook gateway: authenticated, idempotent status reconciliation.

Processing order for every delivery:

1. Verify the raw bytes with the route's :class:`WebhookVerifier`.  A
   failure answers 401 and touches nothing.
2. Decode JSON and validate it against the provider's payload model.
   Malformed input answers 400.
3. Normalise the provider status.  Unknown tokens are logged and
   acknowledged without a write.
4. Look the generation up by ``(provider, provider_job_id)``.  No match
   answers 404 so the provider redelivers; this covers a webhook that
   arrives before the submission result has been committed.
5. Classify the transition against the stored status and apply it with a
   compare-and-set update.  A lost race re-reads and reclassifies once.

Redelivering the same status is a no-op that still answers 200.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from headshot_engine.config import ProviderId
from headshot_engine.models.generation import GenerationStatus, StatusUpdate
from headshot_engine.state.database import session_scope
from headshot_engine.state.repository import GenerationRepository
from headshot_engine.state_machine import TransitionOutcome, classify_transition, log_ignored_transition
from headshot_engine.webhooks.auth import WebhookVerifier
from headshot_engine.webhooks.payloads import PolarEvent, parse_provider_payload
from headshot_engine.webhooks.payments import PAYMENT_PROVIDER, PaymentEventService
from headshot_engine.webhooks.results import WebhookOutcome, WebhookResponse, invalid, ok, unauthorized

logger = logging.getLogger(__name__)

_CAS_ATTEMPTS = 2


class WebhookGateway:
    """Entry point for provider and payment webhooks.

    Parameters
    ----------
    session_factory:
        Factory for the short-lived session each delivery is applied in.
    verifiers:
        Verifier per route name (``replicate``, ``runpod``, ``polar``).
    payments:
        Handler for payment events; payment deliveries answer 404 without it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        verifiers: Mapping[str, WebhookVerifier],
        payments: PaymentEventService | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._verifiers = dict(verifiers)
        self._payments = payments

    async def handle(
        self,
        route: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
    ) -> WebhookResponse:
        """Authenticate, parse and apply a single delivery."""
        verifier = self._verifiers.get(route)
        if verifier is None:
            return WebhookResponse(status_code=404, outcome=WebhookOutcome.NOT_FOUND, detail="Unknown webhook route")

        if not verifier.verify(raw_body, headers, query_params):
            logger.warning("Webhook authentication failed for %s", route)
            return unauthorized()

        try:
            data = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Webhook body for %s is not valid JSON", route)
            return invalid("Invalid JSON payload")

        if route == PAYMENT_PROVIDER:
            return await self._handle_payment(data)

        provider = ProviderId(route)
        try:
            payload = parse_provider_payload(provider, data)
        except ValidationError as exc:
            logger.warning("Rejected %s webhook payload: %d validation errors", route, exc.error_count())
            return invalid("Invalid webhook payload: missing or malformed id/status")

        update = payload.to_update()
        if update is None:
            logger.info(
                "Ignoring %s webhook for job %s with unknown status %r",
                route,
                payload.id,
                payload.status,
            )
            return ok(WebhookOutcome.IGNORED, detail=f"unknown status {payload.status}")

        return await self.apply_update(provider, update)

    async def _handle_payment(self, data: object) -> WebhookResponse:
        if self._payments is None:
            return WebhookResponse(status_code=404, outcome=WebhookOutcome.NOT_FOUND, detail="Payments not enabled")
        try:
            event = PolarEvent.model_validate(data)
        except ValidationError:
            logger.warning("Rejected payment webhook payload: missing type or data")
            return invalid("Invalid webhook payload: missing type or data")
        return await self._payments.handle(event)

    async def apply_update(self, provider: ProviderId, update: StatusUpdate) -> WebhookResponse:
        """Apply a normalised status to the matching generation.

        Also used by the stale sweeper for statuses obtained by polling.
        """
        for _ in range(_CAS_ATTEMPTS):
            async with session_scope(self._session_factory) as session:
                repo = GenerationRepository(session)
                row = await repo.get_by_provider_job(provider.value, update.external_job_id)
                if row is None:
                    logger.info(
                        "No generation for %s job %s yet; asking provider to redeliver",
                        provider.value,
                        update.external_job_id,
                    )
                    return WebhookResponse(
                        status_code=404,
                        outcome=WebhookOutcome.NOT_FOUND,
                        detail="Generation not found",
                    )

                current = GenerationStatus(row.status)
                outcome = classify_transition(current, update.status)
                if outcome is not TransitionOutcome.APPLY:
                    log_ignored_transition(row.id, current, update.status, outcome)
                    return ok(_OUTCOME_MAP[outcome], generation_id=row.id)

                applied = await repo.transition(
                    row.id,
                    expected=current,
                    target=update.status,
                    result_url=update.result_url,
                    error_message=update.error_message,
                )
                if applied:
                    return ok(WebhookOutcome.APPLIED, detail=update.status.value, generation_id=row.id)

            logger.info("Concurrent update on generation %s; re-reading", row.id)

        return WebhookResponse(
            status_code=409,
            outcome=WebhookOutcome.CONFLICT,
            detail="Concurrent update, retry",
        )


_OUTCOME_MAP: dict[TransitionOutcome, WebhookOutcome] = {
    TransitionOutcome.NOOP: WebhookOutcome.DUPLICATE,
    TransitionOutcome.STALE: WebhookOutcome.STALE,
    TransitionOutcome.REJECTED: WebhookOutcome.REJECTED,
}
