"""Error taxonomy for the generation orchestration subsystem.

Every error carries a stable machine-readable ``code``, the HTTP status the
API layer maps it onto, and whether the caller may retry.  Remote-call and
persistence failures are converted into these types at their boundary so
callers never see raw ``httpx`` or SQLAlchemy exceptions.
"""

from __future__ import annotations


class HeadshotError(Exception):
    """Base class for all orchestration errors."""

    code: str = "internal_error"
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, remaining: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.remaining = remaining

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"code": self.code, "message": self.message}
        if self.remaining is not None:
            payload["remaining"] = self.remaining
        return payload


class PayloadValidationError(HeadshotError):
    """Input failed validation.  Raised before any side effect."""

    code = "validation_error"
    http_status = 400


class ProfileNotFoundError(HeadshotError):
    """The requesting user has no profile, so no tier can be resolved."""

    code = "profile_not_found"
    http_status = 404


class QuotaExceededError(HeadshotError):
    """The user's tier limit for the current period has been reached."""

    code = "quota_exceeded"
    http_status = 429


class InsufficientCreditsError(HeadshotError):
    """A credit-based user has no credits left."""

    code = "insufficient_credits"
    http_status = 402


class UsageCheckError(HeadshotError):
    """The usage store could not be consulted.  Admission is denied."""

    code = "usage_check_failed"
    http_status = 503
    retryable = True


class ProviderSubmissionError(HeadshotError):
    """Every provider attempt for a generation failed."""

    code = "provider_submission_failed"
    http_status = 502
    retryable = True


class PersistenceError(HeadshotError):
    """The generation store rejected or failed a write."""

    code = "persistence_error"
    http_status = 503
    retryable = True


class WebhookAuthError(HeadshotError):
    """A webhook delivery failed authentication."""

    code = "webhook_auth_failed"
    http_status = 401
