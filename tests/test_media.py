"""Tests for media re-hosting, the temp window, saving and expiry."""
import base64
import uuid
from datetime import timedelta

import boto3
import pytest
from botocore.stub import Stubber
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from mediagen.core.exceptions import InvalidInputError, NotFoundError, StorageError
from mediagen.db.base import utcnow
from mediagen.media import service as media_service
from mediagen.media.models import Media, MediaStatus
from mediagen.media.storage import S3ObjectStore


async def _add_media(db, store, user_id, *, created_at=None, expires_in=timedelta(hours=24), status=MediaStatus.TEMP):
    stored = await media_service.ingest_bytes(store, b"png-bytes", "image/png", user_id)
    media = Media(
        user_id=user_id,
        status=status,
        media_type="image",
        storage_key=stored.storage_key,
        url=stored.url,
        mime_type=stored.mime_type,
        size_bytes=stored.size,
        expires_at=utcnow() + expires_in if status == MediaStatus.TEMP else None,
        created_at=created_at or utcnow(),
    )
    db.add(media)
    await db.commit()
    return media


@pytest.mark.asyncio
async def test_ingest_bytes_uses_temp_namespace(store):
    user_id = uuid.uuid4()

    stored = await media_service.ingest_bytes(store, b"abc", "video/mp4", user_id)

    assert stored.storage_key.startswith(f"temp/{user_id}/")
    assert stored.storage_key.endswith(".mp4")
    assert stored.size == 3
    assert store.objects[stored.storage_key] == b"abc"


@pytest.mark.asyncio
async def test_empty_result_is_rejected(store):
    with pytest.raises(StorageError):
        await media_service.ingest_bytes(store, b"", "image/png", uuid.uuid4())


@pytest.mark.asyncio
async def test_fetch_decodes_data_urls(http_client):
    data_url = "data:image/webp;base64," + base64.b64encode(b"webp-bytes").decode()

    data, mime_type = await media_service.fetch(http_client, data_url)

    assert data == b"webp-bytes"
    assert mime_type == "image/webp"


@pytest.mark.asyncio
async def test_fetch_failure_is_a_storage_error(http_client):
    # The fixture client answers 404 to everything.
    with pytest.raises(StorageError):
        await media_service.fetch(http_client, "https://upstream.test/missing.png")


@pytest.mark.asyncio
async def test_eleventh_temp_item_evicts_the_oldest(db, make_user, store):
    user = await make_user()
    start = utcnow() - timedelta(hours=1)
    items = [
        await _add_media(db, store, user.id, created_at=start + timedelta(minutes=i))
        for i in range(11)
    ]
    oldest = items[0]

    removed = await media_service.prune_temp_media(db, store, user.id)

    assert removed == 1
    remaining = (await db.execute(select(Media.id).where(Media.user_id == user.id))).scalars().all()
    assert len(remaining) == 10
    assert oldest.id not in remaining
    assert oldest.storage_key not in store.objects
    assert all(item.storage_key in store.objects for item in items[1:])


@pytest.mark.asyncio
async def test_saved_media_does_not_count_toward_temp_window(db, make_user, store):
    user = await make_user()
    for _ in range(3):
        await _add_media(db, store, user.id, status=MediaStatus.SAVED)
    for _ in range(10):
        await _add_media(db, store, user.id)

    assert await media_service.prune_temp_media(db, store, user.id) == 0


@pytest.mark.asyncio
async def test_promote_moves_object_to_permanent_key(db, make_user, store):
    user = await make_user()
    media = await _add_media(db, store, user.id)
    old_key = media.storage_key

    saved = await media_service.promote(db, store, media.id, user.id)

    assert saved.status == MediaStatus.SAVED
    assert saved.expires_at is None
    assert saved.storage_key == old_key.replace("temp/", "permanent/", 1)
    assert saved.storage_key in store.objects
    assert old_key not in store.objects


@pytest.mark.asyncio
async def test_promote_is_idempotent_for_saved_media(db, make_user, store):
    user = await make_user()
    media = await _add_media(db, store, user.id)

    first = await media_service.promote(db, store, media.id, user.id)
    second = await media_service.promote(db, store, media.id, user.id)

    assert first.storage_key == second.storage_key
    assert len(store.objects) == 1


@pytest.mark.asyncio
async def test_failed_promote_leaves_no_orphaned_copy(db, make_user, store, monkeypatch):
    user = await make_user()
    media = await _add_media(db, store, user.id)
    media_id, old_key = media.id, media.storage_key

    async def failing_commit():
        raise OperationalError("UPDATE media", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", failing_commit)
    with pytest.raises(StorageError):
        await media_service.promote(db, store, media_id, user.id)
    monkeypatch.undo()

    assert list(store.objects) == [old_key]
    db.expire_all()
    reloaded = await db.get(Media, media_id)
    assert reloaded.status == MediaStatus.TEMP
    assert reloaded.storage_key == old_key


@pytest.mark.asyncio
async def test_expired_media_cannot_be_saved(db, make_user, store):
    user = await make_user()
    media = await _add_media(db, store, user.id, expires_in=timedelta(minutes=-5))

    with pytest.raises(InvalidInputError):
        await media_service.promote(db, store, media.id, user.id)


@pytest.mark.asyncio
async def test_media_is_private_to_its_owner(db, make_user, store):
    owner = await make_user()
    stranger = await make_user()
    media = await _add_media(db, store, owner.id)

    with pytest.raises(NotFoundError):
        await media_service.get_media(db, media.id, stranger.id)


@pytest.mark.asyncio
async def test_delete_removes_row_and_object(db, make_user, store):
    user = await make_user()
    media = await _add_media(db, store, user.id)

    await media_service.delete_media(db, store, media.id, user.id)

    assert store.objects == {}
    assert await db.get(Media, media.id) is None


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_temp_media(db, make_user, store):
    user = await make_user()
    expired = await _add_media(db, store, user.id, expires_in=timedelta(hours=-1))
    live = await _add_media(db, store, user.id)
    saved = await _add_media(db, store, user.id, status=MediaStatus.SAVED)

    assert await media_service.sweep_expired(db, store) == 1

    remaining = (await db.execute(select(Media.id))).scalars().all()
    assert set(remaining) == {live.id, saved.id}
    assert expired.storage_key not in store.objects


@pytest.mark.asyncio
async def test_object_delete_failures_are_logged_not_raised(store):
    store.objects["temp/a.png"] = b"x"
    store.fail_on.add("delete")

    assert await media_service.delete_objects(store, ["temp/a.png"]) == 0


class TestS3ObjectStore:
    def _store(self):
        client = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )
        return S3ObjectStore(bucket="media", client=client, public_base_url="https://cdn.test/"), client

    @pytest.mark.asyncio
    async def test_put_returns_public_url(self):
        store, client = self._store()
        with Stubber(client) as stubber:
            stubber.add_response("put_object", {})
            url = await store.put("temp/u/a.png", b"data", "image/png")

        assert url == "https://cdn.test/temp/u/a.png"

    @pytest.mark.asyncio
    async def test_client_errors_become_storage_errors(self):
        store, client = self._store()
        with Stubber(client) as stubber:
            stubber.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)
            with pytest.raises(StorageError):
                await store.delete("temp/u/a.png")

    def test_url_without_public_base(self):
        store = S3ObjectStore(bucket="media", client=object(), public_base_url="")
        assert store.url_for("permanent/u/a.png").startswith("s3://media/")
