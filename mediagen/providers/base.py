import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from mediagen.providers.credentials import Credential

MAX_SEED = 2147483647


def resolve_seed(seed: int | None) -> int:
    """Unset or -1 means pick a random seed."""
    if seed is None or seed < 0:
        return random.randint(0, MAX_SEED)
    return seed


@dataclass(frozen=True)
class ModelConfig:
    """Static description of one generation model and how to reach it."""
    id: str
    name: str
    provider: str
    credential_family: str
    endpoint: str
    media_type: str = "image"
    timeout_seconds: float = 60.0
    max_retries: int = 2
    width: int = 1024
    height: int = 1024
    steps: int = 30
    guidance: float = 7.5
    duration: int | None = None
    mandatory_prompt: str | None = None
    mandatory_negative_prompt: str | None = None
    api_name: str | None = None
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 60


@dataclass(frozen=True)
class GenerationRequest:
    """Uniform request every adapter translates into its own payload."""
    prompt: str
    negative_prompt: str | None = None
    width: int | None = None
    height: int | None = None
    steps: int | None = None
    guidance: float | None = None
    seed: int | None = None
    image_url: str | None = None
    duration: int | None = None


@dataclass(frozen=True)
class ProviderResult:
    """Standardized outcome: a remote media URL or inline bytes."""
    provider: str
    media_url: str | None = None
    content: bytes | None = None
    content_type: str | None = None
    raw_metadata: dict[str, Any] = field(default_factory=dict)


class BaseProvider(ABC):
    """Abstract interface for generation back-ends."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @abstractmethod
    async def generate(
        self,
        request: GenerationRequest,
        model: ModelConfig,
        credential: Credential,
    ) -> ProviderResult:
        """
        Call the provider and return a standardized result.
        Failures are raised as ProviderFailure subclasses; business logic
        NEVER sees raw provider errors.
        """
        ...

    async def close(self) -> None:
        """Cleanup resources (e.g., httpx client)."""
        pass


def compose_prompt(request: GenerationRequest, model: ModelConfig) -> str:
    if model.mandatory_prompt:
        return f"{model.mandatory_prompt}, {request.prompt}"
    return request.prompt


def compose_negative_prompt(request: GenerationRequest, model: ModelConfig) -> str:
    parts = [model.mandatory_negative_prompt, request.negative_prompt]
    return ", ".join(part for part in parts if part)
