"""
Media ingestion and lifecycle.

Generated media is re-hosted in our own object store so the upstream URL
never reaches the browser. New items are temp (24h expiry, at most 10 per
user); saving promotes them to a permanent key.

Key layout: {temp|permanent}/{user_id}/{uuid}.{ext}
"""
import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import httpx
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.config import settings
from mediagen.core.exceptions import InvalidInputError, NotFoundError, StorageError
from mediagen.db.base import utcnow
from mediagen.media.models import Media, MediaStatus
from mediagen.media.storage import ObjectStore

logger = logging.getLogger(__name__)

TEMP = "temp"
PERMANENT = "permanent"

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
}


@dataclass(frozen=True)
class StoredObject:
    storage_key: str
    url: str
    size: int
    mime_type: str


def build_key(namespace: str, user_id: uuid.UUID, mime_type: str) -> str:
    ext = EXTENSIONS.get(mime_type, "bin")
    return f"{namespace}/{user_id}/{uuid.uuid4()}.{ext}"


def _permanent_key(storage_key: str) -> str:
    _, rest = storage_key.split("/", 1)
    return f"{PERMANENT}/{rest}"


def _decode_data_url(data_url: str) -> tuple[bytes, str]:
    header, _, payload = data_url.partition(",")
    mime_type = header[len("data:"):].split(";")[0] or "application/octet-stream"
    try:
        return base64.b64decode(payload), mime_type
    except (binascii.Error, ValueError) as exc:
        raise StorageError("Generated media could not be decoded") from exc


async def fetch(client: httpx.AsyncClient, source_url: str) -> tuple[bytes, str]:
    """Download result bytes server-side."""
    if source_url.startswith("data:"):
        return _decode_data_url(source_url)
    try:
        response = await client.get(source_url, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error(f"Failed to fetch generated media from {source_url}: {exc}")
        raise StorageError("Generated media could not be retrieved") from exc
    mime_type = response.headers.get("content-type", "").split(";")[0].strip()
    if not mime_type or mime_type == "application/octet-stream":
        mime_type = "video/mp4" if source_url.split("?")[0].endswith(".mp4") else "image/png"
    return response.content, mime_type


async def ingest_bytes(
    store: ObjectStore,
    data: bytes,
    mime_type: str,
    user_id: uuid.UUID,
    namespace: str = TEMP,
) -> StoredObject:
    if not data:
        raise StorageError("Generated media was empty")
    key = build_key(namespace, user_id, mime_type)
    url = await store.put(key, data, mime_type)
    logger.info(f"Stored {len(data)} bytes at {key}")
    return StoredObject(storage_key=key, url=url, size=len(data), mime_type=mime_type)


async def ingest(
    client: httpx.AsyncClient,
    store: ObjectStore,
    source_url: str,
    user_id: uuid.UUID,
    namespace: str = TEMP,
) -> StoredObject:
    data, mime_type = await fetch(client, source_url)
    return await ingest_bytes(store, data, mime_type, user_id, namespace)


async def record_temp_media(
    db: AsyncSession,
    user_id: uuid.UUID,
    stored: StoredObject,
    media_type: str,
    prompt: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Media:
    media = Media(
        user_id=user_id,
        status=MediaStatus.TEMP,
        media_type=media_type,
        storage_key=stored.storage_key,
        url=stored.url,
        mime_type=stored.mime_type,
        size_bytes=stored.size,
        prompt=prompt,
        metadata_=metadata,
        expires_at=utcnow() + timedelta(hours=settings.temp_media_ttl_hours),
    )
    db.add(media)
    await db.flush()
    return media


async def delete_objects(store: ObjectStore, keys: list[str]) -> int:
    """Best-effort: failures are logged, never raised."""
    deleted = 0
    for key in keys:
        try:
            await store.delete(key)
            deleted += 1
        except StorageError:
            logger.warning(f"Could not delete orphaned object {key}")
    return deleted


async def prune_temp_rows(
    db: AsyncSession, user_id: uuid.UUID, keep: int | None = None
) -> list[str]:
    """Delete temp rows beyond the `keep` newest; returns their storage keys."""
    keep = settings.temp_media_limit if keep is None else keep
    result = await db.execute(
        select(Media.id, Media.storage_key)
        .where(Media.user_id == user_id, Media.status == MediaStatus.TEMP)
        .order_by(Media.created_at.desc(), Media.id.desc())
        .offset(keep)
    )
    rows = result.all()
    if not rows:
        return []
    await db.execute(delete(Media).where(Media.id.in_([row[0] for row in rows])))
    logger.info(f"Pruned {len(rows)} temp media for {user_id}")
    return [row[1] for row in rows]


async def prune_temp_media(
    db: AsyncSession, store: ObjectStore, user_id: uuid.UUID, keep: int | None = None
) -> int:
    """Enforce the temp window: rows are deleted and committed, then objects."""
    keys = await prune_temp_rows(db, user_id, keep)
    await db.commit()
    await delete_objects(store, keys)
    return len(keys)


async def get_media(db: AsyncSession, media_id: uuid.UUID, user_id: uuid.UUID) -> Media:
    result = await db.execute(
        select(Media).where(Media.id == media_id, Media.user_id == user_id)
    )
    media = result.scalar_one_or_none()
    if media is None:
        raise NotFoundError("Media", str(media_id))
    return media


async def list_media(
    db: AsyncSession,
    user_id: uuid.UUID,
    status: MediaStatus | None = None,
    media_type: str | None = None,
    limit: int = 50,
) -> list[Media]:
    query = select(Media).where(Media.user_id == user_id)
    if status is not None:
        query = query.where(Media.status == status)
    if media_type is not None:
        query = query.where(Media.media_type == media_type)
    result = await db.execute(query.order_by(Media.created_at.desc()).limit(limit))
    return list(result.scalars().all())


async def promote(
    db: AsyncSession, store: ObjectStore, media_id: uuid.UUID, user_id: uuid.UUID
) -> Media:
    """
    temp -> saved. The bytes are copied to a permanent key first; if the row
    update fails the new object is removed so the bytes keep exactly one home.
    """
    media = await get_media(db, media_id, user_id)
    if media.status == MediaStatus.SAVED:
        return media
    if media.expires_at is not None and media.expires_at.replace(tzinfo=None) <= utcnow().replace(tzinfo=None):
        raise InvalidInputError("This media has expired and can no longer be saved")

    old_key = media.storage_key
    new_key = _permanent_key(old_key)
    new_url = await store.copy(old_key, new_key, media.mime_type)

    try:
        media.status = MediaStatus.SAVED
        media.storage_key = new_key
        media.url = new_url
        media.expires_at = None
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error(f"Saving media {media_id} failed, removing {new_key}: {exc}")
        await delete_objects(store, [new_key])
        raise StorageError("Media could not be saved") from exc

    await delete_objects(store, [old_key])
    logger.info(f"Media {media_id} saved to {new_key}")
    return media


async def delete_media(
    db: AsyncSession, store: ObjectStore, media_id: uuid.UUID, user_id: uuid.UUID
) -> None:
    media = await get_media(db, media_id, user_id)
    key = media.storage_key
    await db.delete(media)
    await db.commit()
    await delete_objects(store, [key])


async def sweep_expired(db: AsyncSession, store: ObjectStore, batch_size: int = 500) -> int:
    """Remove temp media past their expiry (rows first, then objects)."""
    result = await db.execute(
        select(Media.id, Media.storage_key)
        .where(Media.status == MediaStatus.TEMP, Media.expires_at <= utcnow())
        .limit(batch_size)
    )
    rows = result.all()
    if not rows:
        return 0
    await db.execute(delete(Media).where(Media.id.in_([row[0] for row in rows])))
    await db.commit()
    await delete_objects(store, [row[1] for row in rows])
    logger.info(f"Swept {len(rows)} expired temp media")
    return len(rows)
