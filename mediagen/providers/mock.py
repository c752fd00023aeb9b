import hashlib

from mediagen.providers.base import BaseProvider, GenerationRequest, ModelConfig, ProviderResult
from mediagen.providers.credentials import Credential

# 1x1 transparent PNG
_PIXEL = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000001e221bc330000000049454e44ae426082"
)


class MockProvider(BaseProvider):
    """Deterministic mock provider for testing and development."""

    @property
    def provider_name(self) -> str:
        return "mock"

    async def generate(
        self,
        request: GenerationRequest,
        model: ModelConfig,
        credential: Credential,
    ) -> ProviderResult:
        digest = hashlib.sha256(f"{model.id}:{request.prompt}".encode()).hexdigest()[:16]
        return ProviderResult(
            provider=self.provider_name,
            content=_PIXEL,
            content_type="image/png",
            raw_metadata={"provider": "mock", "model": model.id, "digest": digest},
        )
