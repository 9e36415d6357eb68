"""Unit tests for payment event handling."""

from __future__ import annotations

import pytest
from headshot_engine.credits import CreditsLedger
from headshot_engine.state.database import session_scope
from headshot_engine.state.repository import ProfileRepository
from headshot_engine.webhooks.payloads import PolarEvent
from headshot_engine.webhooks.payments import PaymentEventService
from headshot_engine.webhooks.results import WebhookOutcome

_PACK = "prod_pack"


@pytest.fixture
def payments(session_factory) -> PaymentEventService:
    return PaymentEventService(session_factory, one_time_product_id=_PACK, default_pack_credits=100)


def _checkout(checkout_id: str = "co_1", **metadata) -> PolarEvent:
    return PolarEvent(
        type="checkout.completed",
        data={
            "id": checkout_id,
            "product_id": _PACK,
            "amount": 1900,
            "currency": "usd",
            "metadata": {"userId": "buyer", **metadata},
        },
    )


async def _tier(factory, user_id: str) -> str | None:
    async with session_scope(factory) as session:
        return await ProfileRepository(session).get_tier(user_id)


async def _balance(factory, user_id: str) -> int:
    async with session_scope(factory) as session:
        return await CreditsLedger(session).balance(user_id)


class TestCheckout:
    """One-time pack purchases."""

    @pytest.mark.asyncio
    async def test_grants_credits_and_upgrades_free_user(self, payments, session_factory, seed_profile) -> None:
        await seed_profile("buyer", "free")

        response = await payments.handle(_checkout())

        assert response.status_code == 200
        assert response.outcome is WebhookOutcome.APPLIED
        assert await _balance(session_factory, "buyer") == 100
        assert await _tier(session_factory, "buyer") == "one_time"

        async with session_scope(session_factory) as session:
            history = await CreditsLedger(session).history("buyer")
        assert history[0].description == "One-time pack purchase"
        assert history[0].metadata["checkout_id"] == "co_1"
        assert history[0].metadata["currency"] == "usd"

    @pytest.mark.asyncio
    async def test_redelivery_grants_once(self, payments, session_factory) -> None:
        first = await payments.handle(_checkout())
        second = await payments.handle(_checkout())

        assert first.outcome is WebhookOutcome.APPLIED
        assert second.status_code == 200
        assert second.outcome is WebhookOutcome.DUPLICATE
        assert await _balance(session_factory, "buyer") == 100

    @pytest.mark.asyncio
    async def test_metadata_credits_override_default(self, payments, session_factory) -> None:
        await payments.handle(_checkout(credits="25"))
        assert await _balance(session_factory, "buyer") == 25

    @pytest.mark.asyncio
    async def test_pro_user_keeps_tier(self, payments, session_factory, seed_profile) -> None:
        await seed_profile("buyer", "pro")
        await payments.handle(_checkout())
        assert await _tier(session_factory, "buyer") == "pro"

    @pytest.mark.asyncio
    async def test_other_product_is_ignored(self, payments, session_factory) -> None:
        event = _checkout()
        event.data["product_id"] = "prod_subscription"
        response = await payments.handle(event)
        assert response.outcome is WebhookOutcome.IGNORED
        assert await _balance(session_factory, "buyer") == 0

    @pytest.mark.asyncio
    async def test_missing_user_is_400(self, payments) -> None:
        event = PolarEvent(type="checkout.completed", data={"id": "co_9", "product_id": _PACK})
        response = await payments.handle(event)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_credits_is_400(self, payments) -> None:
        response = await payments.handle(_checkout(credits="lots"))
        assert response.status_code == 400


class TestSubscriptions:
    """Tier changes driven by subscription lifecycle events."""

    @pytest.mark.asyncio
    async def test_created_sets_tier(self, payments, session_factory) -> None:
        event = PolarEvent(
            type="subscription.created",
            data={"id": "sub_1", "metadata": {"userId": "subscriber", "tier": "pro"}},
        )
        response = await payments.handle(event)
        assert response.outcome is WebhookOutcome.APPLIED
        assert await _tier(session_factory, "subscriber") == "pro"

    @pytest.mark.asyncio
    async def test_consecutive_updates_to_one_subscription_apply(self, payments, session_factory) -> None:
        for tier in ("pro", "enterprise"):
            event = PolarEvent(
                type="subscription.updated",
                data={"id": "sub_1", "metadata": {"userId": "subscriber", "tier": tier}},
            )
            response = await payments.handle(event)
            assert response.outcome is WebhookOutcome.APPLIED

        assert await _tier(session_factory, "subscriber") == "enterprise"

    @pytest.mark.asyncio
    async def test_reactivation_after_cancel_applies(self, payments, session_factory) -> None:
        subscribed = PolarEvent(
            type="subscription.updated",
            data={"id": "sub_1", "metadata": {"userId": "subscriber", "tier": "pro"}},
        )
        cancelled = PolarEvent(
            type="subscription.cancelled",
            data={"id": "sub_1", "metadata": {"userId": "subscriber"}},
        )

        await payments.handle(subscribed)
        await payments.handle(cancelled)
        response = await payments.handle(subscribed)

        assert response.outcome is WebhookOutcome.APPLIED
        assert await _tier(session_factory, "subscriber") == "pro"

    @pytest.mark.asyncio
    async def test_missing_metadata_is_400(self, payments) -> None:
        event = PolarEvent(type="subscription.updated", data={"id": "sub_1", "metadata": {"userId": "x"}})
        response = await payments.handle(event)
        assert response.status_code == 400
        assert response.detail == "Missing metadata"

    @pytest.mark.asyncio
    async def test_unknown_tier_is_400(self, payments) -> None:
        event = PolarEvent(
            type="subscription.updated",
            data={"id": "sub_1", "metadata": {"userId": "x", "tier": "platinum"}},
        )
        assert (await payments.handle(event)).status_code == 400

    @pytest.mark.asyncio
    async def test_cancelled_downgrades_to_free(self, payments, session_factory, seed_profile) -> None:
        await seed_profile("subscriber", "enterprise")
        event = PolarEvent(
            type="subscription.cancelled",
            data={"id": "sub_1", "metadata": {"userId": "subscriber"}},
        )
        response = await payments.handle(event)
        assert response.outcome is WebhookOutcome.APPLIED
        assert await _tier(session_factory, "subscriber") == "free"

    @pytest.mark.asyncio
    async def test_payment_events_are_acknowledged(self, payments) -> None:
        response = await payments.handle(PolarEvent(type="payment.succeeded", data={"id": "pay_1"}))
        assert response.status_code == 200
        assert response.outcome is WebhookOutcome.IGNORED

    @pytest.mark.asyncio
    async def test_unknown_event_is_acknowledged(self, payments) -> None:
        response = await payments.handle(PolarEvent(type="customer.created", data={}))
        assert response.outcome is WebhookOutcome.IGNORED
