import uuid
from datetime import datetime

from pydantic import BaseModel

from mediagen.media.models import MediaStatus


class MediaResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    status: MediaStatus
    media_type: str
    url: str
    mime_type: str
    size_bytes: int
    prompt: str | None = None
    expires_at: datetime | None = None
    created_at: datetime
