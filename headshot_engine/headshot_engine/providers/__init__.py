"""Provider adapters for external image-generation compute."""

from __future__ import annotations

import httpx

from headshot_engine.config import EngineSettings, ProviderId
from headshot_engine.providers.base import HttpProviderAdapter, ProviderAdapter
from headshot_engine.providers.replicate import ReplicateAdapter
from headshot_engine.providers.runpod import RunPodAdapter


def build_adapters(
    settings: EngineSettings,
    http_client: httpx.AsyncClient | None = None,
) -> dict[ProviderId, ProviderAdapter]:
    """Construct one adapter per known provider from *settings*."""
    return {
        ProviderId.REPLICATE: ReplicateAdapter.from_settings(settings, http_client),
        ProviderId.RUNPOD: RunPodAdapter.from_settings(settings, http_client),
    }


__all__ = [
    "HttpProviderAdapter",
    "ProviderAdapter",
    "ReplicateAdapter",
    "RunPodAdapter",
    "build_adapters",
]
