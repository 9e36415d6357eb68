"""Shared fixtures for headshot orchestrator API tests.

Provides an in-memory SQLite database, a fake provider backend served
through ``httpx.MockTransport``, and an async httpx client bound to the
FastAPI app with services wired exactly as the lifespan wires them.
"""

from __future__ import annotations

import itertools
import json
from datetime import UTC

import httpx
import pytest
import pytest_asyncio
from headshot_engine.config import EngineSettings
from headshot_engine.state.database import session_scope
from headshot_engine.state.repository import ProfileRepository
from headshot_engine.state.sqlite_adapter import create_local_tables, get_local_engine
from headshot_engine.state.tables import Base
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.types import TypeDecorator

from api.config import APISettings
from api.dependencies import dispose_services, get_db_session, get_engine_settings, get_settings, init_services
from api.main import create_app

REPLICATE_WEBHOOK_SECRET = "whsec-replicate-test"
RUNPOD_WEBHOOK_TOKEN = "runpod-hook-token"
POLAR_WEBHOOK_SECRET = "whsec-polar-test"
PACK_PRODUCT_ID = "prod_pack"


def _patch_columns_for_sqlite() -> None:
    """Swap ``JSONB`` for ``JSON`` and keep SQLite datetimes UTC-aware."""

    class _UTCAwareDateTime(TypeDecorator):
        impl = DateTime
        cache_ok = True

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()
            elif isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


_patch_columns_for_sqlite()


# ---------------------------------------------------------------------------
# Fake provider backend
# ---------------------------------------------------------------------------


class ProviderBackend:
    """In-process stand-in for the Replicate and RunPod HTTP APIs.

    Routes on the request host.  Providers listed in ``failing`` answer
    ``503``; everything else accepts the job with a sequential id.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.failing: set[str] = set()
        self._ids = itertools.count(1)

    def _provider(self, request: httpx.Request) -> str:
        return "replicate" if "replicate" in request.url.host else "runpod"

    def submissions(self, provider: str) -> list[dict]:
        return [
            json.loads(request.content)
            for request in self.requests
            if request.method == "POST" and self._provider(request) == provider
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        provider = self._provider(request)
        if provider in self.failing:
            return httpx.Response(503, text=f"{provider} unavailable")
        if request.method == "POST":
            job_id = f"{provider}-job-{next(self._ids)}"
            status = "starting" if provider == "replicate" else "IN_QUEUE"
            return httpx.Response(200, json={"id": job_id, "status": status})
        job_id = request.url.path.rsplit("/", 1)[-1]
        status = "processing" if provider == "replicate" else "IN_PROGRESS"
        return httpx.Response(200, json={"id": job_id, "status": status})


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine_settings() -> EngineSettings:
    """Settings with both providers and every webhook secret configured."""
    return EngineSettings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        replicate_api_token="r8-test-token",
        runpod_api_key="rp-test-key",
        runpod_endpoint_id="ep-test",
        replicate_webhook_secret=REPLICATE_WEBHOOK_SECRET,
        runpod_webhook_token=RUNPOD_WEBHOOK_TOKEN,
        polar_webhook_secret=POLAR_WEBHOOK_SECRET,
        polar_one_time_product_id=PACK_PRODUCT_ID,
    )


@pytest.fixture()
def api_settings() -> APISettings:
    return APISettings(_env_file=None, public_base_url="https://app.example.com", sweeper_enabled=False)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def session_factory():
    engine = get_local_engine(":memory:")
    await create_local_tables(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture()
def seed_profile(session_factory):
    """Return a coroutine function that upserts a profile row."""

    async def _seed(user_id: str, tier: str) -> None:
        async with session_scope(session_factory) as session:
            await ProfileRepository(session).upsert(user_id, tier)

    return _seed


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture()
def provider_backend() -> ProviderBackend:
    return ProviderBackend()


@pytest_asyncio.fixture()
async def app(engine_settings, api_settings, session_factory, provider_backend):
    """Create the FastAPI app with services bound to the test database.

    ``ASGITransport`` does not run the lifespan, so services are wired
    here with the same :func:`init_services` call the lifespan makes.
    """
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider_backend.handle))
    init_services(engine_settings, api_settings, session_factory, http_client=http_client)

    application = create_app()

    async def _override_session():
        async with session_scope(session_factory) as session:
            yield session

    application.dependency_overrides[get_db_session] = _override_session
    application.dependency_overrides[get_settings] = lambda: api_settings
    application.dependency_overrides[get_engine_settings] = lambda: engine_settings

    yield application

    await dispose_services()


@pytest_asyncio.fixture()
async def client(app) -> AsyncClient:
    """Yield an async httpx client bound to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def generation_body() -> dict:
    """Return a valid ``POST /generations`` body."""
    return {
        "userId": "user-1",
        "uploadId": "upload-1",
        "model": "sdxl",
        "style": "corporate",
        "personalInfo": {"gender": "woman", "hairColor": "black"},
        "uploadUrl": "https://uploads.example.com/user-1/selfie.jpg",
    }
