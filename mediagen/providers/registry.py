"""Provider registry: one shared adapter instance per provider name."""
from mediagen.providers.base import BaseProvider
from mediagen.providers.mock import MockProvider

_providers: dict[str, BaseProvider] = {}


def get_provider(name: str) -> BaseProvider:
    if name not in _providers:
        if name == "inference":
            from mediagen.providers.inference import HuggingFaceInferenceProvider
            _providers[name] = HuggingFaceInferenceProvider()
        elif name == "wavespeed":
            from mediagen.providers.wavespeed import WavespeedProvider
            _providers[name] = WavespeedProvider()
        elif name == "fal":
            from mediagen.providers.fal import FalQueueProvider
            _providers[name] = FalQueueProvider()
        elif name == "gradio":
            from mediagen.providers.gradio import GradioSpaceProvider
            _providers[name] = GradioSpaceProvider()
        elif name == "mock":
            _providers[name] = MockProvider()
        else:
            raise ValueError(f"Unknown provider: {name}")
    return _providers[name]


async def close_all() -> None:
    for provider in _providers.values():
        await provider.close()
    _providers.clear()
