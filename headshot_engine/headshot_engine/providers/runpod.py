"""RunPod serverless endpoint adapter."""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import SecretStr

from headshot_engine.config import EngineSettings, ProviderId
from headshot_engine.models.generation import JobRequest, StatusUpdate
from headshot_engine.providers.base import HttpProviderAdapter
from headshot_engine.providers.prompt import NEGATIVE_PROMPT, SAMPLER_PARAMETERS, build_headshot_prompt
from headshot_engine.webhooks.payloads import RunPodPayload


class RunPodAdapter(HttpProviderAdapter):
    """Submits to ``POST /{endpoint_id}/run`` and reads ``GET /{endpoint_id}/status/{id}``."""

    provider_id = ProviderId.RUNPOD

    def __init__(
        self,
        *,
        api_key: SecretStr | None,
        endpoint_id: str,
        base_url: str = "https://api.runpod.ai/v2",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(api_key=api_key, base_url=base_url, http_client=http_client, timeout=timeout)
        self._endpoint_id = endpoint_id

    @classmethod
    def from_settings(cls, settings: EngineSettings, http_client: httpx.AsyncClient | None = None) -> RunPodAdapter:
        return cls(
            api_key=settings.runpod_api_key,
            endpoint_id=settings.runpod_endpoint_id,
            base_url=settings.runpod_api_url,
            http_client=http_client,
            timeout=settings.provider_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return super().configured and bool(self._endpoint_id)

    def _submit_url(self) -> str:
        return f"{self._base_url}/{self._endpoint_id}/run"

    def _status_url(self, external_job_id: str) -> str:
        return f"{self._base_url}/{self._endpoint_id}/status/{external_job_id}"

    def build_payload(self, request: JobRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "input": {
                "image_url": request.upload_url,
                "prompt": build_headshot_prompt(request.style, request.personal_info),
                "negative_prompt": NEGATIVE_PROMPT,
                "style": request.style,
                "personal_info": request.personal_info.model_dump(by_alias=True, exclude_none=True),
                **SAMPLER_PARAMETERS,
            },
        }
        if request.webhook_url:
            payload["webhook"] = request.webhook_url
        return payload

    def _parse_status(self, data: dict[str, Any]) -> StatusUpdate | None:
        return RunPodPayload.model_validate(data).to_update()
