import base64
import binascii
import logging
from typing import Any

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

logger = logging.getLogger(__name__)

# JSON responses carry base64 image data under one of these.
IMAGE_B64_PATHS = ("images.0.b64_json", "image", "data.0.b64_json")


class HuggingFaceInferenceProvider(BaseProvider):
    """Synchronous text-to-image: one POST returns the image itself."""

    def __init__(self, base_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.huggingface_inference_url,
            timeout=settings.default_timeout_seconds,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return "inference"

    def build_payload(self, request: GenerationRequest, model: ModelConfig) -> dict[str, Any]:
        parameters: dict[str, Any] = {
            "num_inference_steps": request.steps or model.steps,
            "guidance_scale": request.guidance or model.guidance,
            "width": request.width or model.width,
            "height": request.height or model.height,
            "seed": resolve_seed(request.seed),
        }
        negative = compose_negative_prompt(request, model)
        if negative:
            parameters["negative_prompt"] = negative
        return {"inputs": compose_prompt(request, model), "parameters": parameters}

    async def generate(
        self,
        request: GenerationRequest,
        model: ModelConfig,
        credential: Credential,
    ) -> ProviderResult:
        try:
            response = await self._client.post(
                f"/{model.endpoint}",
                json=self.build_payload(request, model),
                headers={"Authorization": f"Bearer {credential.secret}"},
                timeout=model.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise from_transport(exc, self.provider_name) from exc

        if response.is_error:
            logger.warning(
                f"Inference call to {model.endpoint} failed: {response.status_code} {response.text[:200]}"
            )
            raise error_for_status(response, self.provider_name)

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if content_type.startswith("image/"):
            return ProviderResult(
                provider=self.provider_name,
                content=response.content,
                content_type=content_type,
                raw_metadata={"model": model.id},
            )

        data = decode_json(response, self.provider_name)

        encoded = probe_text(data, IMAGE_B64_PATHS)
        if not encoded:
            raise ProviderError("No image in inference response", detail=str(data)[:500])
        if encoded.startswith("data:"):
            encoded = encoded.split(",", 1)[-1]
        try:
            content = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ProviderError("Malformed base64 image in inference response") from exc

        return ProviderResult(
            provider=self.provider_name,
            content=content,
            content_type="image/png",
            raw_metadata={"model": model.id},
        )

    async def close(self) -> None:
        await self._client.aclose()
