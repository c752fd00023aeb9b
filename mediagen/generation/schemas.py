import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from mediagen.generation.models import JobStatus

MAX_PROMPT_LENGTH = 2000
MAX_PIXELS = 2048 * 2048
ALLOWED_DIMENSIONS = (512, 768, 832, 1024, 1216, 1280, 1536, 2048)


class GenerateRequest(BaseModel):
    operation: str = Field(min_length=1, max_length=32)
    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_LENGTH)
    negative_prompt: str | None = Field(default=None, max_length=MAX_PROMPT_LENGTH)
    model: str | None = None
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=255)
    width: int = 1024
    height: int = 1024
    guidance_scale: float = Field(default=7.5, ge=1, le=20)
    num_inference_steps: int = Field(default=20, ge=1, le=50)
    seed: int | None = Field(default=None, ge=-1)
    image_url: str | None = None
    duration: Literal["1", "3", "5", "8"] | None = None

    @model_validator(mode="after")
    def check_dimensions(self) -> "GenerateRequest":
        for value in (self.width, self.height):
            if value not in ALLOWED_DIMENSIONS:
                raise ValueError("Please select a valid image size from the available options")
        if self.width * self.height > MAX_PIXELS:
            raise ValueError("The selected image size is too large. Please choose a smaller size.")
        if self.operation == "edit" and not self.image_url:
            raise ValueError("Please upload a valid image")
        if self.image_url and not self.image_url.startswith(("http://", "https://", "data:")):
            raise ValueError("Please upload a valid image")
        return self


class GenerateResponse(BaseModel):
    media_id: uuid.UUID
    media_url: str
    remaining_credits: int
    credits_used: int
    operation: str
    model: str
    cached: bool = False


class ModelInfo(BaseModel):
    id: str
    name: str
    media_type: str
    provider: str


class OperationInfo(BaseModel):
    kind: str
    cost: int
    default_model: str
    models: list[ModelInfo]


class JobResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    operation: str
    model_id: str
    cost: int
    status: JobStatus
    provider: str | None = None
    result_url: str | None = None
    media_id: uuid.UUID | None = None
    created_at: datetime
