"""Webhook authentication, payload normalisation and state reconciliation."""

from headshot_engine.webhooks.auth import (
    WEBHOOK_ROUTES,
    BearerTokenVerifier,
    HmacSignatureVerifier,
    UnauthenticatedVerifier,
    WebhookVerifier,
    build_verifiers,
)
from headshot_engine.webhooks.gateway import WebhookGateway
from headshot_engine.webhooks.payments import PaymentEventService
from headshot_engine.webhooks.results import WebhookOutcome, WebhookResponse

__all__ = [
    "WEBHOOK_ROUTES",
    "BearerTokenVerifier",
    "HmacSignatureVerifier",
    "PaymentEventService",
    "UnauthenticatedVerifier",
    "WebhookGateway",
    "WebhookOutcome",
    "WebhookResponse",
    "WebhookVerifier",
    "build_verifiers",
]
