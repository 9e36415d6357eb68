"""Webhook handling outcomes shared by the gateway and payment service."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    REJECTED = "rejected"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    INVALID = "invalid"


class WebhookResponse(BaseModel):
    """What the HTTP layer should answer for a webhook delivery.

    Any non-2xx ``status_code`` asks the provider to redeliver.
    """

    status_code: int
    outcome: WebhookOutcome
    detail: str = ""
    generation_id: str | None = None

    def body(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "success": 200 <= self.status_code < 300,
            "outcome": self.outcome.value,
        }
        if self.detail:
            payload["detail"] = self.detail
        if self.generation_id is not None:
            payload["generation_id"] = self.generation_id
        return payload


def ok(outcome: WebhookOutcome, detail: str = "", generation_id: str | None = None) -> WebhookResponse:
    return WebhookResponse(status_code=200, outcome=outcome, detail=detail, generation_id=generation_id)


def unauthorized() -> WebhookResponse:
    return WebhookResponse(status_code=401, outcome=WebhookOutcome.UNAUTHORIZED, detail="Invalid webhook signature")


def invalid(detail: str) -> WebhookResponse:
    return WebhookResponse(status_code=400, outcome=WebhookOutcome.INVALID, detail=detail)
