"""FastAPI dependency injection for settings, database sessions and orchestration services."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import httpx
from fastapi import Depends
from headshot_engine.config import EngineSettings, ProviderId, load_engine_settings
from headshot_engine.models.tiers import Tier, TierPolicy
from headshot_engine.orchestrator import GenerationOrchestrator
from headshot_engine.providers import ProviderAdapter, build_adapters
from headshot_engine.selector import ProviderSelector, SelectorConfig
from headshot_engine.state.database import get_engine
from headshot_engine.sweeper import StaleGenerationSweeper
from headshot_engine.webhooks import PaymentEventService, WebhookGateway, build_verifiers
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from api.config import APISettings, load_api_settings
from api.middleware.prometheus import GaugedJobCounter

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None
_engine_settings_cache: EngineSettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


def get_engine_settings() -> EngineSettings:
    """Return the cached :class:`EngineSettings` singleton."""
    global _engine_settings_cache  # noqa: PLW0603
    if _engine_settings_cache is None:
        _engine_settings_cache = load_engine_settings()
    return _engine_settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]
EngineSettingsDep = Annotated[EngineSettings, Depends(get_engine_settings)]


def get_tier_policies(settings: EngineSettingsDep) -> dict[Tier, TierPolicy]:
    return settings.tier_policies()


PoliciesDep = Annotated[dict[Tier, TierPolicy], Depends(get_tier_policies)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: EngineSettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory."""
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` that commits on clean exit and rolls back on exception."""
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Orchestration services
# ---------------------------------------------------------------------------

_http_client: httpx.AsyncClient | None = None
_adapters: dict[ProviderId, ProviderAdapter] = {}
_selector: ProviderSelector | None = None
_orchestrator: GenerationOrchestrator | None = None
_gateway: WebhookGateway | None = None
_sweeper: StaleGenerationSweeper | None = None


def init_services(
    settings: EngineSettings,
    api_settings: APISettings,
    session_factory: async_sessionmaker[AsyncSession],
    http_client: httpx.AsyncClient | None = None,
) -> GenerationOrchestrator:
    """Build the selector, adapters, orchestrator, gateway and sweeper.

    All provider adapters share one pooled ``httpx.AsyncClient``; pass
    *http_client* to supply it (closed by :func:`dispose_services`).
    """
    global _http_client, _adapters, _selector, _orchestrator, _gateway, _sweeper  # noqa: PLW0603

    _http_client = http_client or httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
    _adapters = build_adapters(settings, _http_client)
    _selector = ProviderSelector(SelectorConfig.from_settings(settings), GaugedJobCounter())

    _orchestrator = GenerationOrchestrator(
        session_factory,
        _selector,
        _adapters,
        policies=settings.tier_policies(),
        webhook_urls={provider: api_settings.webhook_url(provider.value) for provider in ProviderId},
    )

    payments = PaymentEventService(
        session_factory,
        one_time_product_id=settings.polar_one_time_product_id,
        default_pack_credits=settings.one_time_pack_credits,
    )
    _gateway = WebhookGateway(session_factory, build_verifiers(settings), payments)

    _sweeper = StaleGenerationSweeper(
        session_factory,
        _gateway,
        _adapters,
        max_age_minutes=settings.stale_generation_max_age_minutes,
        interval_seconds=settings.sweep_interval_seconds,
    )
    return _orchestrator


async def dispose_services() -> None:
    """Stop the sweeper and close provider connections."""
    global _http_client, _adapters, _selector, _orchestrator, _gateway, _sweeper  # noqa: PLW0603
    if _sweeper is not None:
        await _sweeper.stop()
    for adapter in _adapters.values():
        await adapter.close()
    if _http_client is not None:
        await _http_client.aclose()
    _http_client = None
    _adapters = {}
    _selector = None
    _orchestrator = None
    _gateway = None
    _sweeper = None


def get_orchestrator() -> GenerationOrchestrator:
    """Return the cached :class:`GenerationOrchestrator` singleton."""
    if _orchestrator is None:
        raise RuntimeError(
            "Orchestrator has not been initialised. Ensure init_services() is called during application startup."
        )
    return _orchestrator


def get_gateway() -> WebhookGateway:
    """Return the cached :class:`WebhookGateway` singleton."""
    if _gateway is None:
        raise RuntimeError(
            "Webhook gateway has not been initialised. Ensure init_services() is called during application startup."
        )
    return _gateway


def get_sweeper() -> StaleGenerationSweeper:
    if _sweeper is None:
        raise RuntimeError(
            "Sweeper has not been initialised. Ensure init_services() is called during application startup."
        )
    return _sweeper


OrchestratorDep = Annotated[GenerationOrchestrator, Depends(get_orchestrator)]
GatewayDep = Annotated[WebhookGateway, Depends(get_gateway)]
