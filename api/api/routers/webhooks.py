"""Webhook receivers for compute providers and the payment provider.

The raw request body is read before anything else so signatures are
checked over the exact bytes that were sent.  A non-2xx answer asks the
sender to redeliver.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from headshot_engine.errors import WebhookAuthError
from headshot_engine.webhooks import WEBHOOK_ROUTES

from api.dependencies import GatewayDep
from api.middleware.prometheus import WEBHOOK_DELIVERIES_TOTAL

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{route}")
async def receive_webhook(route: str, request: Request, gateway: GatewayDep) -> JSONResponse:
    """Authenticate and apply one webhook delivery.

    Routes: ``replicate``, ``runpod`` (generation status) and ``polar``
    (subscriptions and credit purchases).
    """
    raw_body = await request.body()
    response = await gateway.handle(route, raw_body, request.headers, request.query_params)

    metric_route = route if route in WEBHOOK_ROUTES else "unknown"
    WEBHOOK_DELIVERIES_TOTAL.labels(route=metric_route, outcome=response.outcome.value).inc()

    if response.status_code == 401:
        raise WebhookAuthError(response.detail or "Invalid webhook signature")

    return JSONResponse(status_code=response.status_code, content=response.body())
