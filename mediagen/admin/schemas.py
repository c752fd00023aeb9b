from typing import Any

from pydantic import BaseModel


class SettingUpdate(BaseModel):
    key: str
    value: Any


class SettingsResponse(BaseModel):
    settings: dict[str, Any]
