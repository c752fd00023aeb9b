import uuid

from fastapi import APIRouter, Query, Response

from mediagen.core.dependencies import CurrentUser, DbSession, Store
from mediagen.media import service
from mediagen.media.models import MediaStatus
from mediagen.media.schemas import MediaResponse

router = APIRouter(prefix="/media", tags=["media"])


@router.get("", response_model=list[MediaResponse])
async def list_media(
    db: DbSession,
    user: CurrentUser,
    status: MediaStatus | None = None,
    media_type: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
) -> list[MediaResponse]:
    items = await service.list_media(db, user.id, status=status, media_type=media_type, limit=limit)
    return [MediaResponse.model_validate(m) for m in items]


@router.get("/{media_id}/content")
async def get_content(media_id: uuid.UUID, db: DbSession, user: CurrentUser, store: Store) -> Response:
    media = await service.get_media(db, media_id, user.id)
    data = await store.get(media.storage_key)
    return Response(
        content=data,
        media_type=media.mime_type,
        headers={"Cache-Control": "private, max-age=3600"},
    )


@router.post("/{media_id}/save", response_model=MediaResponse)
async def save_media(media_id: uuid.UUID, db: DbSession, user: CurrentUser, store: Store) -> MediaResponse:
    media = await service.promote(db, store, media_id, user.id)
    return MediaResponse.model_validate(media)


@router.delete("/{media_id}", status_code=204)
async def delete_media(media_id: uuid.UUID, db: DbSession, user: CurrentUser, store: Store) -> Response:
    await service.delete_media(db, store, media_id, user.id)
    return Response(status_code=204)
