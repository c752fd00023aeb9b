import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from mediagen.config import settings
from mediagen.providers.base import (
    BaseProvider,
    GenerationRequest,
    ModelConfig,
    ProviderResult,
    compose_negative_prompt,
    compose_prompt,
    resolve_seed,
)
from mediagen.providers.credentials import Credential
from mediagen.providers.errors import ProviderError, decode_json, error_for_status, from_transport
from mediagen.providers.extract import probe_text
from mediagen.providers.poller import JobPoller

logger = logging.getLogger(__name__)

JOB_ID_PATHS = ("job_id", "data.id", "request_id", "requestId", "id", "task_id")
RESULT_PATHS = {
    "image": ("data.outputs", "outputs", "output", "image_url"),
    "video": ("data.outputs", "outputs", "output", "video_url"),
}


class WavespeedProvider(BaseProvider):
    """Submit-and-poll job API."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.wavespeed_base_url,
            timeout=30.0,
            transport=transport,
        )
        self._sleep = sleep

    @property
    def provider_name(self) -> str:
        return "wavespeed"

    def build_payload(self, request: GenerationRequest, model: ModelConfig) -> dict[str, Any]:
        if model.media_type == "edited-image":
            return {
                "enable_base64_output": False,
                "enable_sync_mode": False,
                "images": [request.image_url],
                "prompt": compose_prompt(request, model),
                "size": f"{request.width or model.width}x{request.height or model.height}",
            }

        payload: dict[str, Any] = {
            "prompt": compose_prompt(request, model),
            "width": request.width or model.width,
            "height": request.height or model.height,
            "num_inference_steps": request.steps or model.steps,
            "guidance_scale": request.guidance or model.guidance,
            "seed": resolve_seed(request.seed),
        }
        negative = compose_negative_prompt(request, model)
        if negative:
            payload["negative_prompt"] = negative
        if model.media_type == "video":
            payload["image_url"] = request.image_url
            payload["duration"] = request.duration or model.duration
        return payload

    def status_path(self, job_id: str, model: ModelConfig) -> str:
        if model.media_type == "edited-image":
            return f"/api/v3/predictions/{job_id}/result"
        return f"/api/v3/wavespeed-ai/job/{job_id}"

    async def _request(self, method: str, path: str, credential: Credential, **kwargs) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                headers={"Authorization": f"Bearer {credential.secret}"},
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise from_transport(exc, self.provider_name) from exc
        if response.is_error:
            logger.warning(f"Wavespeed {method} {path} -> {response.status_code}: {response.text[:200]}")
            raise error_for_status(response, self.provider_name)
        return decode_json(response, self.provider_name)

    async def generate(
        self,
        request: GenerationRequest,
        model: ModelConfig,
        credential: Credential,
    ) -> ProviderResult:
        submitted = await self._request(
            "POST", model.endpoint, credential, json=self.build_payload(request, model)
        )
        job_id = probe_text(submitted, JOB_ID_PATHS)
        if not job_id:
            raise ProviderError("No job id in Wavespeed response", detail=str(submitted)[:500])
        logger.info(f"Wavespeed job {job_id} submitted for {model.id}")

        async def status_fn(current: str) -> Any:
            return await self._request("GET", self.status_path(current, model), credential)

        poller = JobPoller(model.poll_interval_seconds, model.poll_max_attempts, sleep=self._sleep)
        result_paths = RESULT_PATHS["video" if model.media_type == "video" else "image"]
        media_url = await poller.poll(job_id, status_fn, result_paths)
        return ProviderResult(
            provider=self.provider_name,
            media_url=media_url,
            raw_metadata={"model": model.id, "job_id": job_id},
        )

    async def close(self) -> None:
        await self._client.aclose()
