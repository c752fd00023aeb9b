"""
Idempotency registry.

A (user, key) pair is claimed at most once: `begin` is a single
INSERT ... ON CONFLICT DO NOTHING against the unique constraint, so of two
concurrent requests carrying the same key exactly one wins. `complete` moves
a started record to succeeded/failed exactly once; completed records are
never modified again.
"""
import logging
import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.core.exceptions import DuplicateRequestError
from mediagen.db.base import utcnow
from mediagen.idempotency.models import IdempotencyKey, IdempotencyStatus

logger = logging.getLogger(__name__)


def _insert(db: AsyncSession):
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert(IdempotencyKey)
    return pg_insert(IdempotencyKey)


async def get(db: AsyncSession, user_id: uuid.UUID, key: str) -> IdempotencyKey | None:
    result = await db.execute(
        select(IdempotencyKey).where(
            IdempotencyKey.user_id == user_id, IdempotencyKey.key == key
        )
    )
    return result.scalar_one_or_none()


async def begin(
    db: AsyncSession, user_id: uuid.UUID, key: str, operation: str
) -> IdempotencyKey:
    """Claim `key` for this user. Raises DuplicateRequestError if it already exists."""
    stmt = (
        _insert(db)
        .values(
            id=uuid.uuid4(),
            user_id=user_id,
            key=key,
            operation=operation,
            status=IdempotencyStatus.STARTED,
            created_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["user_id", "key"])
        .returning(IdempotencyKey)
    )
    record = (await db.scalars(stmt)).first()
    if record is None:
        logger.info(f"Duplicate request detected: user={user_id} key={key}")
        raise DuplicateRequestError(key)
    return record


async def complete(
    db: AsyncSession,
    user_id: uuid.UUID,
    key: str,
    status: IdempotencyStatus,
    result: dict[str, Any] | None = None,
) -> bool:
    """Resolve a started record. Returns False if it was already completed."""
    if status == IdempotencyStatus.STARTED:
        raise ValueError("complete() needs a terminal status")

    outcome = await db.execute(
        update(IdempotencyKey)
        .where(
            IdempotencyKey.user_id == user_id,
            IdempotencyKey.key == key,
            IdempotencyKey.status == IdempotencyStatus.STARTED,
        )
        .values(status=status, result=result, completed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if outcome.rowcount != 1:
        logger.warning(f"Idempotency key {key} for {user_id} was not in started state")
        return False
    return True
