"""Strict per-provider payload models and status normalisation.

Each provider reports job state in its own vocabulary.  This module is the
only place those vocabularies are known: raw payloads are parsed into a
provider-specific model and converted into a provider-neutral
:class:`~headshot_engine.models.generation.StatusUpdate`.  A status token
missing from the lookup table normalises to ``None``.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from headshot_engine.config import ProviderId
from headshot_engine.models.generation import GenerationStatus, StatusUpdate

logger = logging.getLogger(__name__)

REPLICATE_STATUS_MAP: dict[str, GenerationStatus] = {
    "starting": GenerationStatus.PROCESSING,
    "processing": GenerationStatus.PROCESSING,
    "succeeded": GenerationStatus.COMPLETED,
    "failed": GenerationStatus.FAILED,
    "canceled": GenerationStatus.FAILED,
}

RUNPOD_STATUS_MAP: dict[str, GenerationStatus] = {
    "IN_QUEUE": GenerationStatus.QUEUED,
    "IN_PROGRESS": GenerationStatus.PROCESSING,
    "COMPLETED": GenerationStatus.COMPLETED,
    "FAILED": GenerationStatus.FAILED,
    "CANCELLED": GenerationStatus.FAILED,
    "TIMED_OUT": GenerationStatus.FAILED,
}


def _first_output(output: Any) -> str | None:
    """Return the first URL from a string or list output."""
    if isinstance(output, str):
        return output or None
    if isinstance(output, list):
        for item in output:
            if isinstance(item, str) and item:
                return item
    return None


def _error_text(error: Any) -> str | None:
    if error is None or error == "":
        return None
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return str(error)


# ---------------------------------------------------------------------------
# Replicate
# ---------------------------------------------------------------------------


class ReplicatePayload(BaseModel):
    """Replicate prediction object as delivered to webhooks and status reads."""

    model_config = ConfigDict(extra="ignore")

    id: StrictStr = Field(..., min_length=1)
    status: StrictStr
    output: Any = None
    error: Any = None

    def to_update(self) -> StatusUpdate | None:
        status = REPLICATE_STATUS_MAP.get(self.status)
        if status is None:
            return None
        return StatusUpdate(
            external_job_id=self.id,
            status=status,
            result_url=_first_output(self.output) if status is GenerationStatus.COMPLETED else None,
            error_message=_error_text(self.error) if status is GenerationStatus.FAILED else None,
        )


# ---------------------------------------------------------------------------
# RunPod
# ---------------------------------------------------------------------------


class RunPodOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    result_url: str | None = None
    error: str | None = None


class RunPodPayload(BaseModel):
    """RunPod serverless job object."""

    model_config = ConfigDict(extra="ignore")

    id: StrictStr = Field(..., min_length=1)
    status: StrictStr
    output: RunPodOutput | list[Any] | str | None = None
    error: Any = None

    def _result_url(self) -> str | None:
        if isinstance(self.output, RunPodOutput):
            return self.output.result_url
        return _first_output(self.output)

    def _failure(self) -> str | None:
        text = _error_text(self.error)
        if text is None and isinstance(self.output, RunPodOutput):
            text = self.output.error
        return text

    def to_update(self) -> StatusUpdate | None:
        status = RUNPOD_STATUS_MAP.get(self.status)
        if status is None:
            return None
        return StatusUpdate(
            external_job_id=self.id,
            status=status,
            result_url=self._result_url() if status is GenerationStatus.COMPLETED else None,
            error_message=self._failure() if status is GenerationStatus.FAILED else None,
        )


_PAYLOAD_MODELS: dict[ProviderId, type[ReplicatePayload] | type[RunPodPayload]] = {
    ProviderId.REPLICATE: ReplicatePayload,
    ProviderId.RUNPOD: RunPodPayload,
}


def parse_provider_payload(provider: ProviderId, data: Any) -> ReplicatePayload | RunPodPayload:
    """Validate a decoded JSON document against *provider*'s payload model.

    Raises
    ------
    pydantic.ValidationError
        If required fields are missing or mistyped.
    """
    return _PAYLOAD_MODELS[provider].model_validate(data)


# ---------------------------------------------------------------------------
# Payments (Polar)
# ---------------------------------------------------------------------------


class PolarEvent(BaseModel):
    """Payment provider event envelope."""

    model_config = ConfigDict(extra="ignore")

    type: StrictStr = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None

    @property
    def metadata(self) -> dict[str, Any]:
        meta = self.data.get("metadata")
        return meta if isinstance(meta, dict) else {}

    @property
    def event_key(self) -> str:
        """Deduplication key for checkout grants: event type plus the object id when present."""
        object_id = self.data.get("id")
        if object_id is None:
            return f"{self.type}:{self.created_at or ''}"
        return f"{self.type}:{object_id}"
