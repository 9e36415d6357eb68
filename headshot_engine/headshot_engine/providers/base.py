"""Interface and shared HTTP plumbing for provider adapters.

Every provider adapter must satisfy :class:`ProviderAdapter` so the
orchestrator and sweeper can stay provider-agnostic.  ``submit`` never
raises: timeouts, transport failures, non-2xx responses and malformed bodies
all come back as a failed :class:`SubmissionResult` carrying an error type.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import SecretStr, ValidationError

from headshot_engine.config import ProviderId
from headshot_engine.models.generation import JobRequest, StatusUpdate, SubmissionResult

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 30.0
_MAX_ERROR_BODY = 500


class ProviderAdapter(Protocol):
    """Structural interface for compute providers."""

    provider_id: ProviderId

    async def submit(self, request: JobRequest) -> SubmissionResult:
        """Start a job for *request* and return the provider's job id."""
        ...

    async def fetch_status(self, external_job_id: str) -> StatusUpdate | None:
        """Ask the provider for a job's current state.

        Returns ``None`` when the state cannot be determined (transport
        failure, unknown status token).
        """
        ...

    async def close(self) -> None:
        ...


class ProviderCallError(Exception):
    """A provider HTTP call failed.  Never escapes an adapter."""

    def __init__(self, message: str, error_type: str) -> None:
        super().__init__(message)
        self.error_type = error_type


class HttpProviderAdapter:
    """Base class for adapters that talk JSON over HTTP.

    Subclasses provide the URLs, request payload and status parsing.

    Parameters
    ----------
    api_key:
        Bearer credential for the provider API.  Submissions fail fast with
        ``not_configured`` when it is missing.
    base_url:
        Provider API root.
    http_client:
        Optional ``httpx.AsyncClient`` (injected by tests and by the API
        process so connections are pooled).  A default client is created
        if not provided.
    timeout:
        Request timeout in seconds for a client created here.
    """

    provider_id: ProviderId

    def __init__(
        self,
        *,
        api_key: SecretStr | None,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def configured(self) -> bool:
        return self._api_key is not None and bool(self._api_key.get_secret_value())

    # -- subclass hooks ----------------------------------------------------

    def _submit_url(self) -> str:
        raise NotImplementedError

    def _status_url(self, external_job_id: str) -> str:
        raise NotImplementedError

    def build_payload(self, request: JobRequest) -> dict[str, Any]:
        raise NotImplementedError

    def _parse_status(self, data: dict[str, Any]) -> StatusUpdate | None:
        raise NotImplementedError

    # -- shared behaviour --------------------------------------------------

    def _headers(self) -> dict[str, str]:
        token = self._api_key.get_secret_value() if self._api_key is not None else ""
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def _request_json(self, method: str, url: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a request and return the decoded JSON object.

        Raises
        ------
        ProviderCallError
            On timeout, transport error, non-2xx status or a body that is
            not a JSON object.
        """
        try:
            response = await self._client.request(method, url, json=body, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise ProviderCallError(f"{self.provider_id.value} request timed out", "timeout") from exc
        except httpx.HTTPError as exc:
            raise ProviderCallError(f"{self.provider_id.value} transport error: {exc}", "transport") from exc

        if not 200 <= response.status_code < 300:
            raise ProviderCallError(
                f"{self.provider_id.value} API error: {response.status_code} {response.text[:_MAX_ERROR_BODY]}",
                "http_status",
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderCallError(
                f"{self.provider_id.value} returned a non-JSON response", "malformed_response"
            ) from exc
        if not isinstance(data, dict):
            raise ProviderCallError(
                f"{self.provider_id.value} returned an unexpected response shape", "malformed_response"
            )
        return data

    async def submit(self, request: JobRequest) -> SubmissionResult:
        """Submit *request* to the provider.  Failures are returned, not raised."""
        if not self.configured:
            logger.error("%s adapter has no API credential configured", self.provider_id.value)
            return SubmissionResult.rejected(f"{self.provider_id.value} is not configured", "not_configured")

        try:
            data = await self._request_json("POST", self._submit_url(), self.build_payload(request))
        except ProviderCallError as exc:
            logger.warning("%s submission failed (%s): %s", self.provider_id.value, exc.error_type, exc)
            return SubmissionResult.rejected(str(exc), exc.error_type)

        job_id = data.get("id")
        if not isinstance(job_id, str) or not job_id:
            logger.warning("%s submission response has no job id", self.provider_id.value)
            return SubmissionResult.rejected(
                f"{self.provider_id.value} response did not include a job id", "malformed_response"
            )

        logger.info("%s accepted job %s", self.provider_id.value, job_id)
        return SubmissionResult.accepted(job_id)

    async def fetch_status(self, external_job_id: str) -> StatusUpdate | None:
        if not self.configured:
            return None
        try:
            data = await self._request_json("GET", self._status_url(external_job_id))
        except ProviderCallError as exc:
            logger.warning(
                "%s status check for %s failed (%s): %s",
                self.provider_id.value,
                external_job_id,
                exc.error_type,
                exc,
            )
            return None
        try:
            return self._parse_status(data)
        except ValidationError:
            logger.warning("%s status response for %s is malformed", self.provider_id.value, external_job_id)
            return None
