"""Middleware components for the headshot API."""

from __future__ import annotations

from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.prometheus import GaugedJobCounter, PrometheusMiddleware

__all__ = [
    "GaugedJobCounter",
    "PrometheusMiddleware",
    "RequestLoggingMiddleware",
]
