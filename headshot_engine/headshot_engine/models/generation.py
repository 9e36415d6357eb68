"""Generation records and the provider-facing job payloads.

A ``Generation`` is the persistent record of one headshot request.  It is
created as ``queued`` before any provider is contacted, moves to
``processing`` once a provider accepts the job, and ends in ``completed``
or ``failed`` when the provider reports back.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from headshot_engine.config import ProviderId


class GenerationStatus(str, Enum):
    """Lifecycle state of a generation."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)


class PersonalInfo(BaseModel):
    """Optional attributes that steer the prompt.

    Unknown keys are preserved so clients can send richer profiles without
    a schema change; only the fields below influence the prompt.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    gender: str | None = None
    age: int | str | None = None
    ethnicity: str | None = None
    hair_color: str | None = Field(default=None, alias="hairColor")
    eye_color: str | None = Field(default=None, alias="eyeColor")
    preferences: list[str] = Field(default_factory=list)


class JobRequest(BaseModel):
    """Everything a provider adapter needs to submit one job."""

    model_config = ConfigDict(frozen=True)

    upload_url: str = Field(..., min_length=1)
    style: str = ""
    model: str = Field(..., min_length=1)
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    webhook_url: str | None = None


class SubmissionResult(BaseModel):
    """Outcome of a single provider submission.  Adapters never raise."""

    model_config = ConfigDict(frozen=True)

    success: bool
    external_job_id: str | None = None
    error: str | None = None
    error_type: str | None = Field(
        default=None,
        description="Failure class: timeout, transport, http_status, malformed_response, not_configured.",
    )

    @classmethod
    def accepted(cls, external_job_id: str) -> SubmissionResult:
        return cls(success=True, external_job_id=external_job_id)

    @classmethod
    def rejected(cls, error: str, error_type: str) -> SubmissionResult:
        return cls(success=False, error=error, error_type=error_type)


class StatusUpdate(BaseModel):
    """A provider status already normalised onto :class:`GenerationStatus`."""

    model_config = ConfigDict(frozen=True)

    external_job_id: str
    status: GenerationStatus
    result_url: str | None = None
    error_message: str | None = None


class Generation(BaseModel):
    """Read model of a persisted generation."""

    id: str
    user_id: str
    upload_id: str
    model: str
    style: str = ""
    personal_info: dict[str, Any] = Field(default_factory=dict)
    provider: ProviderId | None = None
    provider_job_id: str | None = None
    status: GenerationStatus = GenerationStatus.QUEUED
    result_url: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
