import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from mediagen.providers.base import (
    BaseProvider,
    GenerationRequest,
    ModelConfig,
    ProviderResult,
    compose_prompt,
)
from mediagen.providers.credentials import Credential
from mediagen.providers.errors import ProviderError, decode_json, error_for_status, from_transport
from mediagen.providers.extract import probe_text
from mediagen.providers.poller import JobPoller

logger = logging.getLogger(__name__)

STATUS_URL_PATHS = ("status_url", "statusUrl")
RESULT_PATHS = (
    "output.video.url",
    "output.url",
    "result.video.url",
    "result.url",
    "video_url",
    "videoUrl",
    "output",
    "result",
)


class FalQueueProvider(BaseProvider):
    """Queue API: the submit response names the status URL to poll."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = httpx.AsyncClient(timeout=30.0, transport=transport)
        self._sleep = sleep

    @property
    def provider_name(self) -> str:
        return "fal"

    def build_payload(self, request: GenerationRequest, model: ModelConfig) -> dict[str, Any]:
        return {
            "prompt": compose_prompt(request, model),
            "image_url": request.image_url,
            "duration": request.duration or model.duration,
        }

    async def _request(self, method: str, url: str, credential: Credential, **kwargs) -> Any:
        try:
            response = await self._client.request(
                method,
                url,
                headers={"Authorization": f"Bearer {credential.secret}"},
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise from_transport(exc, self.provider_name) from exc
        if response.is_error:
            logger.warning(f"fal {method} {url} -> {response.status_code}: {response.text[:200]}")
            raise error_for_status(response, self.provider_name)
        return decode_json(response, self.provider_name)

    async def generate(
        self,
        request: GenerationRequest,
        model: ModelConfig,
        credential: Credential,
    ) -> ProviderResult:
        submitted = await self._request(
            "POST",
            model.endpoint,
            credential,
            params={"_subdomain": "queue"},
            json=self.build_payload(request, model),
        )
        status_url = probe_text(submitted, STATUS_URL_PATHS)
        if not status_url:
            raise ProviderError("No status_url in fal response", detail=str(submitted)[:500])
        logger.info(f"fal job queued for {model.id}: {status_url}")

        async def status_fn(url: str) -> Any:
            return await self._request("GET", url, credential)

        poller = JobPoller(model.poll_interval_seconds, model.poll_max_attempts, sleep=self._sleep)
        media_url = await poller.poll(
            status_url, status_fn, RESULT_PATHS, status_paths=("status", "state")
        )
        return ProviderResult(
            provider=self.provider_name,
            media_url=media_url,
            raw_metadata={"model": model.id, "status_url": status_url},
        )

    async def close(self) -> None:
        await self._client.aclose()
