"""
Ledger service: the financial core.

Rules:
- NEVER update or delete ledger entries (append-only).
- users.credits is the authoritative balance; it only changes here, through a
  compare-and-swap on the value just read, and always together with exactly
  one ledger entry in the same transaction. SUM(delta) == credits.
- A lost swap raises ContentionError; callers retry the whole operation.
- Idempotency via idempotency_key (unique constraint on the ledger).
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mediagen.auth.models import User
from mediagen.core.exceptions import ContentionError, InsufficientCreditsError, NotFoundError
from mediagen.ledger.models import LedgerEntry, OperationType

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CreditResult:
    entry: LedgerEntry
    new_balance: int
    # False when the idempotency key had already been applied (no-op replay).
    applied: bool


@dataclass(frozen=True)
class Discrepancy:
    user_id: uuid.UUID
    current_balance: int
    ledger_balance: int

    @property
    def difference(self) -> int:
        return self.current_balance - self.ledger_balance


@dataclass(frozen=True)
class ReconciliationReport:
    total_users: int
    discrepancies: list[Discrepancy]


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(select(User.credits).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFoundError("User", str(user_id))
    return int(balance)


async def get_ledger_balance(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Balance derived from the ledger alone. Must always equal get_balance."""
    result = await db.execute(
        select(func.coalesce(func.sum(LedgerEntry.delta), 0)).where(
            LedgerEntry.user_id == user_id
        )
    )
    return int(result.scalar_one())


async def _find_by_key(db: AsyncSession, idempotency_key: str) -> LedgerEntry | None:
    result = await db.execute(
        select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def _swap_balance(
    db: AsyncSession, user_id: uuid.UUID, expected: int, new: int
) -> None:
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.credits == expected)
        .values(credits=new)
    )
    if result.rowcount != 1:
        logger.warning(f"Balance swap lost for user {user_id}: expected {expected}")
        raise ContentionError(str(user_id))


async def _append(
    db: AsyncSession,
    user_id: uuid.UUID,
    delta: int,
    balance_after: int,
    operation_type: OperationType,
    description: str | None,
    idempotency_key: str | None,
    metadata: dict[str, Any] | None,
) -> LedgerEntry:
    entry = LedgerEntry(
        user_id=user_id,
        delta=delta,
        balance_after=balance_after,
        operation_type=operation_type,
        description=description,
        idempotency_key=idempotency_key,
        metadata_=metadata,
    )
    db.add(entry)
    await db.flush()
    return entry


async def charge(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    operation_type: OperationType,
    *,
    description: str | None = None,
    idempotency_key: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> LedgerEntry:
    """
    Debit `amount` if the balance covers it.
    - Compare-and-swap on the balance just read (ContentionError on loss)
    - Never lets the balance go negative (InsufficientCreditsError)
    - Appends the negative ledger entry in the same transaction
    - Idempotent via idempotency_key: a replay returns the original entry

    Must be called within a transaction (the caller should commit).
    """
    if amount <= 0:
        raise ValueError("Charge amount must be positive")

    if idempotency_key is not None:
        existing = await _find_by_key(db, idempotency_key)
        if existing is not None:
            return existing

    balance = await get_balance(db, user_id)
    if balance < amount:
        raise InsufficientCreditsError(balance=balance, required=amount)

    new_balance = balance - amount
    await _swap_balance(db, user_id, expected=balance, new=new_balance)
    entry = await _append(
        db,
        user_id,
        delta=-amount,
        balance_after=new_balance,
        operation_type=operation_type,
        description=description or f"{operation_type.value} generation",
        idempotency_key=idempotency_key,
        metadata=metadata,
    )
    logger.info(f"Charged {amount} credits from {user_id}, balance now {new_balance}")
    return entry


async def credit(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    operation_type: OperationType,
    *,
    description: str | None = None,
    idempotency_key: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> CreditResult:
    """
    Add `amount` to the balance (signup bonus, purchase, admin grant).
    If idempotency_key was already applied this is a no-op returning the
    original entry with applied=False.
    """
    if amount <= 0:
        raise ValueError("Credit amount must be positive")

    if idempotency_key is not None:
        existing = await _find_by_key(db, idempotency_key)
        if existing is not None:
            logger.info(f"Credit already applied for key {idempotency_key}")
            return CreditResult(
                entry=existing,
                new_balance=await get_balance(db, user_id),
                applied=False,
            )

    balance = await get_balance(db, user_id)
    new_balance = balance + amount
    await _swap_balance(db, user_id, expected=balance, new=new_balance)
    entry = await _append(
        db,
        user_id,
        delta=amount,
        balance_after=new_balance,
        operation_type=operation_type,
        description=description,
        idempotency_key=idempotency_key,
        metadata=metadata,
    )
    logger.info(f"Credited {amount} credits to {user_id}, balance now {new_balance}")
    return CreditResult(entry=entry, new_balance=new_balance, applied=True)


async def retry_on_contention(
    operation: Callable[[], Awaitable[T]], attempts: int = 3
) -> T:
    """Run `operation` (one whole transaction) again while it loses balance swaps."""
    attempt = 1
    while True:
        try:
            return await operation()
        except ContentionError:
            if attempt >= attempts:
                raise
            logger.info(f"Ledger contention, retrying ({attempt}/{attempts})")
            attempt += 1


async def list_entries(
    db: AsyncSession, user_id: uuid.UUID, limit: int = 50, offset: int = 0
) -> list[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.user_id == user_id)
        .order_by(LedgerEntry.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def reconcile(db: AsyncSession) -> ReconciliationReport:
    """Compare every user's balance with the sum of their ledger entries."""
    ledger_sum = func.coalesce(func.sum(LedgerEntry.delta), 0)
    result = await db.execute(
        select(User.id, User.credits, ledger_sum)
        .outerjoin(LedgerEntry, LedgerEntry.user_id == User.id)
        .group_by(User.id, User.credits)
    )
    rows = result.all()
    discrepancies = [
        Discrepancy(user_id=row[0], current_balance=int(row[1]), ledger_balance=int(row[2]))
        for row in rows
        if int(row[1]) != int(row[2])
    ]
    if discrepancies:
        logger.warning(f"Ledger reconciliation found {len(discrepancies)} discrepancies")
    return ReconciliationReport(total_users=len(rows), discrepancies=discrepancies)
