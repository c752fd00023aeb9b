import json
import logging
from typing import Any

import httpx

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

logger = logging.getLogger(__name__)


def space_url(space: str) -> str:
    """'owner/Space.Name' -> 'https://owner-space-name.hf.space'."""
    if space.startswith("http"):
        return space.rstrip("/")
    slug = space.lower().replace("/", "-").replace(".", "-").replace("_", "-")
    return f"https://{slug}.hf.space"


def build_params(request: GenerationRequest, model: ModelConfig) -> list[Any]:
    """Positional inputs for a space's `/infer` endpoint."""
    prompt = compose_prompt(request, model)
    negative = compose_negative_prompt(request, model)
    width = request.width or model.width
    height = request.height or model.height
    steps = request.steps or model.steps
    guidance = request.guidance or model.guidance
    randomize = request.seed is None or request.seed < 0
    seed = resolve_seed(request.seed)

    return [prompt, negative, seed, randomize, width, height, guidance, steps]


def extract_media_url(data: Any, base_url: str) -> str | None:
    """
    Spaces return the image in several shapes:
    "url", {"url"}, {"path"}, [[...]] galleries, {"image": {"url" | "path"}}.
    Relative paths are served from the space's file route.
    """
    if not isinstance(data, list) or not data:
        return None
    first = data[0]
    if isinstance(first, list):
        if not first:
            return None
        first = first[0]
    if isinstance(first, dict) and isinstance(first.get("image"), dict):
        first = first["image"]

    if isinstance(first, str):
        return first
    if isinstance(first, dict):
        if first.get("url"):
            return first["url"]
        path = first.get("path")
        if path:
            return path if path.startswith("http") else f"{base_url}/gradio_api/file={path}"
    return None


class GradioSpaceProvider(BaseProvider):
    """Session-based: each call opens its own HTTP session against the space."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "gradio"

    async def generate(
        self,
        request: GenerationRequest,
        model: ModelConfig,
        credential: Credential,
    ) -> ProviderResult:
        base_url = space_url(model.endpoint)
        api_name = (model.api_name or "/infer").lstrip("/")

        try:
            async with httpx.AsyncClient(
                base_url=base_url,
                headers={"Authorization": f"Bearer {credential.secret}"},
                timeout=model.timeout_seconds,
                transport=self._transport,
            ) as session:
                response = await session.post(
                    f"/gradio_api/call/{api_name}", json={"data": build_params(request, model)}
                )
                if response.is_error:
                    raise error_for_status(response, self.provider_name)
                body = decode_json(response, self.provider_name)
                event_id = body.get("event_id") if isinstance(body, dict) else None
                if not event_id:
                    raise ProviderError("Space did not return an event id", detail=response.text[:500])

                data = await self._read_result(session, api_name, event_id)
        except httpx.HTTPError as exc:
            raise from_transport(exc, self.provider_name) from exc

        media_url = extract_media_url(data, base_url)
        if not media_url:
            raise ProviderError("No image in space response", detail=json.dumps(data)[:500])
        logger.info(f"Space {model.endpoint} returned {media_url}")
        return ProviderResult(
            provider=self.provider_name,
            media_url=media_url,
            raw_metadata={"model": model.id, "event_id": event_id},
        )

    async def _read_result(self, session: httpx.AsyncClient, api_name: str, event_id: str) -> Any:
        """Consume the server-sent event stream until `complete` or `error`."""
        event = None
        async with session.stream("GET", f"/gradio_api/call/{api_name}/{event_id}") as stream:
            if stream.is_error:
                await stream.aread()
                raise error_for_status(stream, self.provider_name)
            async for line in stream.aiter_lines():
                if line.startswith("event:"):
                    event = line[len("event:"):].strip()
                elif line.startswith("data:") and event in ("complete", "error"):
                    payload = line[len("data:"):].strip()
                    if event == "error":
                        # Spaces report cold starts and queue overflow this way.
                        raise ProviderError("Space reported an error", retryable=True, detail=payload)
                    try:
                        return json.loads(payload)
                    except ValueError as exc:
                        raise ProviderError("Space sent a malformed result", detail=payload[:500]) from exc
        raise ProviderError("Space stream ended without a result", retryable=True)
