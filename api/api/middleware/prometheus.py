"""Prometheus metrics middleware and orchestration metrics.

Exposes standard RED metrics (Rate, Errors, Duration) as Prometheus
counters and histograms, plus counters for generation requests and webhook
deliveries and a gauge of in-flight provider submissions.

Path normalisation collapses path parameters (e.g. ``/generations/<uuid>``
-> ``/generations/{id}``) to prevent unbounded label cardinality.
"""

from __future__ import annotations

import logging
import re
import time

from headshot_engine.config import ProviderId
from headshot_engine.selector import InMemoryJobCounter
from headshot_engine.webhooks import WEBHOOK_ROUTES
from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

HTTP_REQUESTS_TOTAL = Counter(
    "headshot_http_requests_total",
    "Total HTTP requests by method, path, and status code",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "headshot_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

GENERATIONS_TOTAL = Counter(
    "headshot_generations_total",
    "Generation requests by accepting provider and outcome",
    ["provider", "outcome"],
)

WEBHOOK_DELIVERIES_TOTAL = Counter(
    "headshot_webhook_deliveries_total",
    "Webhook deliveries by route and outcome",
    ["route", "outcome"],
)

ACTIVE_PROVIDER_JOBS = Gauge(
    "headshot_active_provider_jobs",
    "Provider submissions currently in flight",
    ["provider"],
)


class GaugedJobCounter(InMemoryJobCounter):
    """In-process active job counter mirrored into :data:`ACTIVE_PROVIDER_JOBS`."""

    def increment(self, provider: ProviderId) -> int:
        value = super().increment(provider)
        ACTIVE_PROVIDER_JOBS.labels(provider=provider.value).set(value)
        return value

    def decrement(self, provider: ProviderId) -> int:
        value = super().decrement(provider)
        ACTIVE_PROVIDER_JOBS.labels(provider=provider.value).set(value)
        return value


# ---------------------------------------------------------------------------
# Path normalisation: collapse UUIDs, hex IDs, and numeric segments
# ---------------------------------------------------------------------------

_PATH_PARAM_PATTERNS = [
    # UUIDs (8-4-4-4-12 hex format)
    (re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"), "/{id}"),
    # Long hex strings
    (re.compile(r"/[0-9a-f]{12,64}"), "/{id}"),
    # Pure numeric segments
    (re.compile(r"/\d+"), "/{id}"),
]

# User ids are opaque, so anything after /usage/ is collapsed.
_USAGE_PATH = re.compile(r"^(/api/v1/usage)/[^/]+")
_WEBHOOK_PATH = re.compile(r"^/api/v1/webhooks/([^/]+)$")

# Label for requests that matched no route.
UNMATCHED_PATH = "/unmatched"


def _normalise_path(path: str) -> str:
    """Collapse path parameters to prevent cardinality explosion."""
    webhook = _WEBHOOK_PATH.match(path)
    if webhook is not None and webhook.group(1) not in WEBHOOK_ROUTES:
        return "/api/v1/webhooks/unknown"
    path = _USAGE_PATH.sub(r"\1/{user_id}", path)
    for pattern, replacement in _PATH_PARAM_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


# Paths excluded from metrics recording.
_SKIP_PATHS: frozenset[str] = frozenset({"/metrics", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record HTTP request rate, error rate, and latency as Prometheus metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in _SKIP_PATHS:
            return await call_next(request)

        method = request.method

        start = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start

        # The router records the matched endpoint in the shared scope.
        if "endpoint" in request.scope:
            normalised = _normalise_path(path)
        else:
            normalised = UNMATCHED_PATH

        HTTP_REQUESTS_TOTAL.labels(
            method=method,
            path=normalised,
            status_code=str(response.status_code),
        ).inc()

        HTTP_REQUEST_DURATION.labels(
            method=method,
            path=normalised,
        ).observe(duration)

        return response
