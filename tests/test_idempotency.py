"""Tests for the idempotency registry."""
import asyncio

import pytest

from mediagen.core.exceptions import DuplicateRequestError
from mediagen.idempotency import service as idempotency
from mediagen.idempotency.models import IdempotencyStatus


@pytest.mark.asyncio
async def test_begin_records_started(db, make_user):
    user = await make_user()

    record = await idempotency.begin(db, user.id, "abc", "image")
    await db.commit()

    assert record.status == IdempotencyStatus.STARTED
    assert record.operation == "image"
    assert record.completed_at is None


@pytest.mark.asyncio
async def test_begin_returns_the_inserted_row(db, make_user):
    user = await make_user()

    record = await idempotency.begin(db, user.id, "row", "edit")
    await db.commit()

    stored = await idempotency.get(db, user.id, "row")
    assert stored.id == record.id
    assert (record.user_id, record.key) == (user.id, "row")


@pytest.mark.asyncio
async def test_second_begin_with_same_key_is_rejected(db, make_user):
    user = await make_user()

    await idempotency.begin(db, user.id, "abc", "image")
    await db.commit()

    with pytest.raises(DuplicateRequestError) as exc_info:
        await idempotency.begin(db, user.id, "abc", "image")
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_keys_are_scoped_per_user(db, make_user):
    alice = await make_user()
    bob = await make_user()

    await idempotency.begin(db, alice.id, "shared", "image")
    await idempotency.begin(db, bob.id, "shared", "image")
    await db.commit()

    assert await idempotency.get(db, alice.id, "shared") is not None
    assert await idempotency.get(db, bob.id, "shared") is not None


@pytest.mark.asyncio
async def test_concurrent_begin_has_exactly_one_winner(make_user, session_factory):
    user = await make_user()

    async def claim():
        async with session_factory() as session:
            async with session.begin():
                await idempotency.begin(session, user.id, "race", "image")

    results = await asyncio.gather(*(claim() for _ in range(5)), return_exceptions=True)

    winners = [r for r in results if r is None]
    losers = [r for r in results if isinstance(r, DuplicateRequestError)]
    assert len(winners) == 1
    assert len(losers) == 4


@pytest.mark.asyncio
async def test_complete_is_applied_once(db, make_user):
    user = await make_user()
    await idempotency.begin(db, user.id, "abc", "image")
    await db.commit()

    assert await idempotency.complete(
        db, user.id, "abc", IdempotencyStatus.SUCCEEDED, {"media_url": "https://media.test/a.png"}
    )
    await db.commit()
    # A completed record is never modified again.
    assert not await idempotency.complete(db, user.id, "abc", IdempotencyStatus.FAILED, {"error": "x"})
    await db.commit()

    db.expire_all()
    record = await idempotency.get(db, user.id, "abc")
    assert record.status == IdempotencyStatus.SUCCEEDED
    assert record.result == {"media_url": "https://media.test/a.png"}
    assert record.completed_at is not None


@pytest.mark.asyncio
async def test_complete_requires_terminal_status(db, make_user):
    user = await make_user()
    await idempotency.begin(db, user.id, "abc", "image")

    with pytest.raises(ValueError):
        await idempotency.complete(db, user.id, "abc", IdempotencyStatus.STARTED)
