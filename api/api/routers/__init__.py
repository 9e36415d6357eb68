"""API router modules for the headshot orchestrator."""

from __future__ import annotations

from api.routers import generations, health, metrics, usage, webhooks

__all__ = [
    "generations",
    "health",
    "metrics",
    "usage",
    "webhooks",
]
