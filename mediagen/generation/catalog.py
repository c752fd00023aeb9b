"""Operation kinds, their fixed prices, and the models that can serve them."""
from dataclasses import dataclass

from mediagen.ledger.models import OperationType
from mediagen.providers.base import ModelConfig


@dataclass(frozen=True)
class Operation:
    kind: str
    cost: int
    operation_type: OperationType
    media_type: str
    default_model: str
    requires_image: bool = False
    duration: int | None = None
    models: tuple[str, ...] = ()

    @property
    def allowed_models(self) -> tuple[str, ...]:
        return self.models or (self.default_model,)


MODELS: dict[str, ModelConfig] = {
    model.id: model
    for model in (
        ModelConfig(
            id="flux-dev",
            name="Flux Dev",
            provider="inference",
            credential_family="huggingface",
            endpoint="black-forest-labs/FLUX.1-dev",
            steps=30,
            guidance=7.5,
            timeout_seconds=60,
            max_retries=2,
        ),
        ModelConfig(
            id="flux-schnell",
            name="Flux Schnell",
            provider="inference",
            credential_family="huggingface",
            endpoint="black-forest-labs/FLUX.1-schnell",
            steps=4,
            timeout_seconds=30,
            max_retries=2,
        ),
        ModelConfig(
            id="wavespeed-flux",
            name="Wavespeed Flux",
            provider="wavespeed",
            credential_family="wavespeed",
            endpoint="/api/v3/wavespeed-ai/flux-1.1-pro",
            timeout_seconds=45,
            max_retries=2,
        ),
        ModelConfig(
            id="gradio-nsfw-real",
            name="NSFW Real",
            provider="gradio",
            credential_family="huggingface",
            endpoint="aiqtech/NSFW-Real",
            steps=20,
            timeout_seconds=90,
            max_retries=1,
        ),
        ModelConfig(
            id="anime-new",
            name="Anime New",
            provider="gradio",
            credential_family="huggingface",
            endpoint="Heartsync/NSFW-Uncensored-image",
            steps=28,
            guidance=7.0,
            timeout_seconds=90,
            max_retries=1,
        ),
        ModelConfig(
            id="wavespeed-edit",
            name="Wavespeed Edit",
            provider="wavespeed",
            credential_family="wavespeed",
            endpoint="/api/v3/bytedance/seedream-v4/edit",
            media_type="edited-image",
            timeout_seconds=60,
            max_retries=2,
        ),
        ModelConfig(
            id="video-express",
            name="Express (3s)",
            provider="wavespeed",
            credential_family="wavespeed",
            endpoint="/api/v3/wavespeed-ai/video-express",
            media_type="video",
            duration=3,
            timeout_seconds=90,
            max_retries=2,
        ),
        ModelConfig(
            id="video-express-hd",
            name="Express HD (5s)",
            provider="wavespeed",
            credential_family="wavespeed",
            endpoint="/api/v3/wavespeed-ai/video-express-hd",
            media_type="video",
            duration=5,
            timeout_seconds=120,
            max_retries=2,
        ),
        ModelConfig(
            id="video-elite",
            name="Elite (5s)",
            provider="fal",
            credential_family="huggingface",
            endpoint="https://router.huggingface.co/fal-ai/fal-ai/wan/v2.2-a14b/image-to-video",
            media_type="video",
            duration=5,
            timeout_seconds=180,
            max_retries=1,
            poll_max_attempts=90,
        ),
    )
}

OPERATIONS: dict[str, Operation] = {
    op.kind: op
    for op in (
        Operation(
            "image", 500, OperationType.IMAGE, "image", "flux-dev",
            models=("flux-dev", "flux-schnell", "wavespeed-flux", "gradio-nsfw-real", "anime-new"),
        ),
        Operation(
            "edit", 1000, OperationType.EDIT, "edited-image", "wavespeed-edit",
            requires_image=True, models=("wavespeed-edit",),
        ),
        # Image-to-video: the source image is mandatory.
        Operation(
            "video3", 2000, OperationType.VIDEO_3S, "video", "video-express",
            requires_image=True, duration=3, models=("video-express",),
        ),
        Operation(
            "video5", 3000, OperationType.VIDEO_5S, "video", "video-express-hd",
            requires_image=True, duration=5, models=("video-express-hd", "video-elite"),
        ),
    )
}


class Catalog:
    """Lookup over operations and models."""

    def __init__(
        self,
        operations: dict[str, Operation] | None = None,
        models: dict[str, ModelConfig] | None = None,
    ):
        self.operations = operations if operations is not None else OPERATIONS
        self.models = models if models is not None else MODELS

    def operation(self, kind: str) -> Operation | None:
        return self.operations.get(kind)

    def model_for(self, operation: Operation, model_id: str | None) -> ModelConfig | None:
        """The requested model if this operation lists it, else None."""
        model_id = model_id or operation.default_model
        if model_id not in operation.allowed_models:
            return None
        model = self.models.get(model_id)
        if model is None:
            return None
        if model.media_type != operation.media_type:
            return None
        return model

    def models_for(self, operation: Operation) -> list[ModelConfig]:
        return [self.models[m] for m in operation.allowed_models if m in self.models]
