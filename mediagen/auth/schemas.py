import uuid
from datetime import datetime

from pydantic import BaseModel

from mediagen.auth.models import UserTier


class UserResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    email: str
    display_name: str | None = None
    avatar_url: str | None = None
    credits: int
    tier: UserTier
    created_at: datetime
