"""Tests for api/api/routers/usage.py"""

from __future__ import annotations

import pytest
from headshot_engine.credits import CreditsLedger
from headshot_engine.guard import UsageGuard
from headshot_engine.models.tiers import Tier
from headshot_engine.state.database import session_scope


class TestGetUsage:
    """GET /api/v1/usage/{user_id}."""

    @pytest.mark.asyncio
    async def test_reports_quota_consumption(self, client, seed_profile, session_factory) -> None:
        await seed_profile("user-1", "free")
        async with session_scope(session_factory) as session:
            assert (await UsageGuard(session).reserve("user-1", Tier.FREE)).allowed

        resp = await client.get("/api/v1/usage/user-1")

        assert resp.status_code == 200
        data = resp.json()
        assert data["user_id"] == "user-1"
        assert data["tier"] == "free"
        assert data["used"] == 1
        assert data["limit"] == 3
        assert data["remaining"] == 2

    @pytest.mark.asyncio
    async def test_reading_usage_consumes_nothing(self, client, seed_profile) -> None:
        await seed_profile("user-1", "free")

        first = await client.get("/api/v1/usage/user-1")
        second = await client.get("/api/v1/usage/user-1")

        assert first.json()["remaining"] == 3
        assert second.json()["remaining"] == 3

    @pytest.mark.asyncio
    async def test_credit_tier_reports_balance(self, client, seed_profile, session_factory) -> None:
        await seed_profile("buyer", "one_time")
        async with session_scope(session_factory) as session:
            await CreditsLedger(session).grant("buyer", 5, "One-time pack purchase")

        resp = await client.get("/api/v1/usage/buyer")

        assert resp.status_code == 200
        data = resp.json()
        assert data["tier"] == "one_time"
        assert data["credits"] == 5
        assert data["remaining"] == 5

    @pytest.mark.asyncio
    async def test_unknown_user_returns_404(self, client) -> None:
        resp = await client.get("/api/v1/usage/nobody")

        assert resp.status_code == 404
        assert resp.json() == {
            "success": False,
            "error": {"code": "profile_not_found", "message": "User profile not found"},
        }


class TestGetCredits:
    """GET /api/v1/usage/{user_id}/credits."""

    @pytest.mark.asyncio
    async def test_returns_history_newest_first(self, client, session_factory) -> None:
        async with session_scope(session_factory) as session:
            ledger = CreditsLedger(session)
            await ledger.grant("buyer", 10, "One-time pack purchase")
            await ledger.consume_one("buyer")

        resp = await client.get("/api/v1/usage/buyer/credits")

        assert resp.status_code == 200
        data = resp.json()
        assert data["balance"] == 9
        assert data["total_purchased"] == 10
        assert data["total_used"] == 1
        assert data["transaction_count"] == 2
        assert [entry["delta"] for entry in data["entries"]] == [-1, 10]

    @pytest.mark.asyncio
    async def test_limit_is_validated(self, client) -> None:
        resp = await client.get("/api/v1/usage/buyer/credits", params={"limit": 0})
        assert resp.status_code == 422
