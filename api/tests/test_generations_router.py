"""Tests for api/api/routers/generations.py

Covers:
- POST /api/v1/generations happy path through the preferred provider
- Failover to the fallback provider and total provider failure
- Admission errors: unknown user, quota exhausted, invalid body
- GET /api/v1/generations/{id} polling
- GET /api/v1/providers/stats
"""

from __future__ import annotations

import pytest


class TestCreateGeneration:
    """POST /api/v1/generations."""

    @pytest.mark.asyncio
    async def test_submits_to_preferred_provider(self, client, seed_profile, provider_backend, generation_body) -> None:
        await seed_profile("user-1", "pro")

        resp = await client.post("/api/v1/generations", json=generation_body)

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["provider"] == "runpod"
        assert data["generation"]["status"] == "processing"
        assert data["generation"]["provider_job_id"] == "runpod-job-1"
        assert data["generation"]["user_id"] == "user-1"

        [submission] = provider_backend.submissions("runpod")
        assert submission["webhook"] == "https://app.example.com/api/v1/webhooks/runpod"
        assert submission["input"]["image_url"] == generation_body["uploadUrl"]
        assert provider_backend.requests[0].headers["Authorization"] == "Bearer rp-test-key"
        assert provider_backend.submissions("replicate") == []

    @pytest.mark.asyncio
    async def test_falls_back_when_preferred_rejects(
        self, client, seed_profile, provider_backend, generation_body
    ) -> None:
        await seed_profile("user-1", "pro")
        provider_backend.failing.add("runpod")

        resp = await client.post("/api/v1/generations", json=generation_body)

        assert resp.status_code == 200
        data = resp.json()
        assert data["provider"] == "replicate"
        assert data["generation"]["provider"] == "replicate"
        assert data["generation"]["status"] == "processing"

        [submission] = provider_backend.submissions("replicate")
        assert submission["webhook"] == "https://app.example.com/api/v1/webhooks/replicate"

    @pytest.mark.asyncio
    async def test_all_providers_failing_returns_502(
        self, client, seed_profile, provider_backend, generation_body
    ) -> None:
        await seed_profile("user-1", "pro")
        provider_backend.failing.update({"runpod", "replicate"})

        resp = await client.post("/api/v1/generations", json=generation_body)

        assert resp.status_code == 502
        data = resp.json()
        assert data["success"] is False
        assert data["error"]["code"] == "provider_submission_failed"
        assert "runpod" in data["error"]["message"]
        assert "replicate" in data["error"]["message"]

    @pytest.mark.asyncio
    async def test_unknown_user_returns_404(self, client, provider_backend, generation_body) -> None:
        resp = await client.post("/api/v1/generations", json=generation_body)

        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "profile_not_found"
        assert provider_backend.requests == []

    @pytest.mark.asyncio
    async def test_quota_exhausted_returns_429(self, client, seed_profile, provider_backend, generation_body) -> None:
        await seed_profile("user-1", "free")
        for _ in range(3):
            ok = await client.post("/api/v1/generations", json=generation_body)
            assert ok.status_code == 200

        resp = await client.post("/api/v1/generations", json=generation_body)

        assert resp.status_code == 429
        error = resp.json()["error"]
        assert error["code"] == "quota_exceeded"
        assert error["remaining"] == 0
        assert "Generation limit reached" in error["message"]
        assert len(provider_backend.submissions("runpod")) == 3

    @pytest.mark.asyncio
    async def test_credit_user_without_credits_returns_402(self, client, seed_profile, generation_body) -> None:
        await seed_profile("user-1", "one_time")

        resp = await client.post("/api/v1/generations", json=generation_body)

        assert resp.status_code == 402
        assert resp.json()["error"]["code"] == "insufficient_credits"

    @pytest.mark.asyncio
    async def test_missing_fields_return_400(self, client, seed_profile, provider_backend) -> None:
        await seed_profile("user-1", "pro")

        resp = await client.post("/api/v1/generations", json={"userId": "user-1", "model": "sdxl"})

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert "uploadId" in error["message"]
        assert provider_backend.requests == []


class TestGetGeneration:
    """GET /api/v1/generations/{id}."""

    @pytest.mark.asyncio
    async def test_returns_current_state(self, client, seed_profile, generation_body) -> None:
        await seed_profile("user-1", "pro")
        created = (await client.post("/api/v1/generations", json=generation_body)).json()
        generation_id = created["generation"]["id"]

        resp = await client.get(f"/api/v1/generations/{generation_id}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == generation_id
        assert data["status"] == "processing"
        assert data["provider"] == "runpod"
        assert data["result_url"] is None

    @pytest.mark.asyncio
    async def test_unknown_generation_returns_404(self, client) -> None:
        resp = await client.get("/api/v1/generations/does-not-exist")
        assert resp.status_code == 404


class TestProviderStats:
    """GET /api/v1/providers/stats."""

    @pytest.mark.asyncio
    async def test_reports_policy_and_idle_counts(self, client) -> None:
        resp = await client.get("/api/v1/providers/stats")

        assert resp.status_code == 200
        data = resp.json()
        assert data["active_jobs"] == {"replicate": 0, "runpod": 0, "total": 0}
        assert data["preferred"] == "runpod"
        assert data["fallback"] == "replicate"
        assert data["max_preferred_jobs"] == 5
        assert data["load_balancing"] is True

    @pytest.mark.asyncio
    async def test_counts_return_to_zero_after_submission(self, client, seed_profile, generation_body) -> None:
        await seed_profile("user-1", "pro")
        await client.post("/api/v1/generations", json=generation_body)

        resp = await client.get("/api/v1/providers/stats")

        assert resp.json()["active_jobs"]["total"] == 0
