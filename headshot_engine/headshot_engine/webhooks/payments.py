"""Payment provider (Polar) event handling.

Subscription events move a user between tiers and are applied on every
delivery, so the latest update for a subscription wins.  A completed
checkout for the one-time pack credits the ledger; it is keyed on its type
and checkout id and recorded in the same transaction as the grant, so a
redelivered checkout is acknowledged without granting twice.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from headshot_engine.credits import CreditsLedger
from headshot_engine.models.tiers import Tier
from headshot_engine.models.usage import LedgerEntryType
from headshot_engine.state.database import session_scope
from headshot_engine.state.repository import ProfileRepository, WebhookEventRepository
from headshot_engine.webhooks.payloads import PolarEvent
from headshot_engine.webhooks.results import WebhookOutcome, WebhookResponse, invalid, ok

logger = logging.getLogger(__name__)

PAYMENT_PROVIDER = "polar"
ONE_TIME_PACK_DESCRIPTION = "One-time pack purchase"


class PaymentEventService:
    """Applies payment events to profiles and the credits ledger.

    Parameters
    ----------
    session_factory:
        Factory for the session each event is applied in.
    one_time_product_id:
        Product id of the one-time credit pack.
    default_pack_credits:
        Credits granted when the checkout metadata does not specify any.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        one_time_product_id: str = "polar_one_time_pack_id",
        default_pack_credits: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._one_time_product_id = one_time_product_id
        self._default_pack_credits = default_pack_credits

    async def handle(self, event: PolarEvent) -> WebhookResponse:
        """Apply *event* once and return the HTTP outcome."""
        logger.info("Processing payment event %s", event.type)

        async with session_scope(self._session_factory) as session:
            if event.type in ("subscription.created", "subscription.updated"):
                return await self._on_subscription_changed(session, event)
            if event.type == "checkout.completed":
                return await self._on_checkout_completed(session, event)
            if event.type in ("subscription.cancelled", "subscription.ended"):
                return await self._on_subscription_ended(session, event)

        if event.type in ("payment.succeeded", "payment.failed"):
            logger.info("Payment event %s for %s", event.type, event.data.get("id"))
            return ok(WebhookOutcome.IGNORED, detail=event.type)

        logger.info("Unhandled payment event type: %s", event.type)
        return ok(WebhookOutcome.IGNORED, detail="unhandled event type")

    async def _first_delivery(self, session: AsyncSession, event: PolarEvent) -> bool:
        first = await WebhookEventRepository(session).record_once(PAYMENT_PROVIDER, event.event_key, event.type)
        if not first:
            logger.info("Duplicate payment event %s ignored", event.event_key)
        return first

    async def _on_subscription_changed(self, session: AsyncSession, event: PolarEvent) -> WebhookResponse:
        user_id = event.metadata.get("userId")
        raw_tier = event.metadata.get("tier")
        if not user_id or not raw_tier:
            logger.warning("Subscription event %s is missing userId or tier metadata", event.type)
            return invalid("Missing metadata")
        try:
            tier = Tier(raw_tier)
        except ValueError:
            logger.warning("Subscription event %s carries unknown tier %r", event.type, raw_tier)
            return invalid(f"Unknown tier: {raw_tier}")

        subscription_id = event.data.get("id")
        await ProfileRepository(session).upsert(
            str(user_id), tier.value, str(subscription_id) if subscription_id is not None else None
        )
        logger.info("Subscription updated for user %s: tier=%s", user_id, tier.value)
        return ok(WebhookOutcome.APPLIED, detail=f"tier={tier.value}")

    async def _on_checkout_completed(self, session: AsyncSession, event: PolarEvent) -> WebhookResponse:
        user_id = event.metadata.get("userId")
        if not user_id:
            logger.warning("Checkout event is missing userId metadata")
            return invalid("Missing userId")

        product_id = event.data.get("product_id")
        if product_id != self._one_time_product_id:
            logger.info("Checkout for product %s needs no credit grant", product_id)
            return ok(WebhookOutcome.IGNORED, detail="product without credit grant")

        credits = self._pack_credits(event.metadata.get("credits"))
        if credits is None:
            return invalid("Invalid credits metadata")

        if not await self._first_delivery(session, event):
            return ok(WebhookOutcome.DUPLICATE)

        metadata: dict[str, Any] = {
            "checkout_id": event.data.get("id"),
            "product_id": product_id,
            "amount": event.data.get("amount"),
            "currency": event.data.get("currency"),
        }
        result = await CreditsLedger(session).grant(
            str(user_id),
            credits,
            ONE_TIME_PACK_DESCRIPTION,
            entry_type=LedgerEntryType.PURCHASE,
            metadata=metadata,
        )

        profiles = ProfileRepository(session)
        current = await profiles.get(str(user_id))
        if current is None or current.tier == Tier.FREE.value:
            await profiles.upsert(str(user_id), Tier.ONE_TIME.value, current.subscription_id if current else None)

        logger.info("Added %d credits to user %s via one-time pack", credits, user_id)
        return ok(WebhookOutcome.APPLIED, detail=f"balance={result.balance}")

    async def _on_subscription_ended(self, session: AsyncSession, event: PolarEvent) -> WebhookResponse:
        user_id = event.metadata.get("userId")
        if not user_id:
            logger.warning("Subscription event %s is missing userId metadata", event.type)
            return invalid("Missing userId")

        await ProfileRepository(session).upsert(str(user_id), Tier.FREE.value, None)
        logger.info("Subscription ended, user %s downgraded to free", user_id)
        return ok(WebhookOutcome.APPLIED, detail="tier=free")

    def _pack_credits(self, raw: object) -> int | None:
        if raw is None or raw == "":
            return self._default_pack_credits
        try:
            credits = int(raw)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            logger.warning("Checkout credits metadata is not an integer: %r", raw)
            return None
        return credits if credits > 0 else None
