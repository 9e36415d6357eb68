"""Replicate prediction adapter (SDXL)."""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import SecretStr

from headshot_engine.config import EngineSettings, ProviderId
from headshot_engine.models.generation import JobRequest, StatusUpdate
from headshot_engine.providers.base import HttpProviderAdapter
from headshot_engine.providers.prompt import NEGATIVE_PROMPT, SAMPLER_PARAMETERS, build_headshot_prompt
from headshot_engine.webhooks.payloads import ReplicatePayload

DEFAULT_MODEL_VERSION = "39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"


class ReplicateAdapter(HttpProviderAdapter):
    """Submits predictions to ``POST /predictions`` and reads ``GET /predictions/{id}``."""

    provider_id = ProviderId.REPLICATE

    def __init__(
        self,
        *,
        api_token: SecretStr | None,
        base_url: str = "https://api.replicate.com/v1",
        model_version: str = DEFAULT_MODEL_VERSION,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(api_key=api_token, base_url=base_url, http_client=http_client, timeout=timeout)
        self._model_version = model_version

    @classmethod
    def from_settings(cls, settings: EngineSettings, http_client: httpx.AsyncClient | None = None) -> ReplicateAdapter:
        return cls(
            api_token=settings.replicate_api_token,
            base_url=settings.replicate_api_url,
            model_version=settings.replicate_model_version,
            http_client=http_client,
            timeout=settings.provider_timeout_seconds,
        )

    def _submit_url(self) -> str:
        return f"{self._base_url}/predictions"

    def _status_url(self, external_job_id: str) -> str:
        return f"{self._base_url}/predictions/{external_job_id}"

    def build_payload(self, request: JobRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "version": self._model_version,
            "input": {
                "image": request.upload_url,
                "prompt": build_headshot_prompt(request.style, request.personal_info),
                "negative_prompt": NEGATIVE_PROMPT,
                **SAMPLER_PARAMETERS,
            },
        }
        if request.webhook_url:
            payload["webhook"] = request.webhook_url
            payload["webhook_events_filter"] = ["start", "completed"]
        return payload

    def _parse_status(self, data: dict[str, Any]) -> StatusUpdate | None:
        return ReplicatePayload.model_validate(data).to_update()
