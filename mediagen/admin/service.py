import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.admin.models import AppSetting
from mediagen.core.exceptions import ForbiddenError, InvalidInputError
from mediagen.auth.models import User

logger = logging.getLogger(__name__)

GENERATION_ENABLED = "generation_enabled"

# Known settings and their defaults; anything else is rejected.
DEFAULTS: dict[str, Any] = {
    GENERATION_ENABLED: True,
}


def require_admin(user: User) -> None:
    if not user.is_admin:
        raise ForbiddenError("Admin access required")


async def get_setting(db: AsyncSession, key: str) -> Any:
    result = await db.execute(select(AppSetting.value).where(AppSetting.key == key))
    stored = result.scalar_one_or_none()
    if stored is None:
        return DEFAULTS.get(key)
    return stored.get("value")


async def get_all(db: AsyncSession) -> dict[str, Any]:
    result = await db.execute(select(AppSetting.key, AppSetting.value))
    values = dict(DEFAULTS)
    for key, stored in result.all():
        if key in DEFAULTS:
            values[key] = stored.get("value")
    return values


async def set_setting(db: AsyncSession, key: str, value: Any, changed_by: User | None = None) -> Any:
    if key not in DEFAULTS:
        raise InvalidInputError(f"Unknown setting: {key}")
    if type(value) is not type(DEFAULTS[key]):
        raise InvalidInputError(f"Setting {key} expects a {type(DEFAULTS[key]).__name__}")

    setting = await db.get(AppSetting, key)
    if setting is None:
        setting = AppSetting(key=key, value={"value": value})
        db.add(setting)
    else:
        setting.value = {"value": value}
    await db.flush()
    logger.info(f"Setting {key} set to {value!r} by {changed_by.email if changed_by else 'system'}")
    return value


async def is_generation_enabled(db: AsyncSession) -> bool:
    return bool(await get_setting(db, GENERATION_ENABLED))
