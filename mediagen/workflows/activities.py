"""
Temporal activities for background maintenance.

Each activity is a discrete, retryable unit of work that opens its own
session; none of them hold a transaction across object-store calls.
"""
import logging
from dataclasses import dataclass, field

from temporalio import activity

from mediagen.db.session import async_session_factory
from mediagen.generation import service as generation_service
from mediagen.ledger import service as ledger_service
from mediagen.media import service as media_service
from mediagen.media.storage import get_object_store

logger = logging.getLogger(__name__)


@dataclass
class SweepInput:
    batch_size: int = 500


@dataclass
class OrphanedJobsInput:
    older_than_minutes: int


@dataclass
class ReconcileOutput:
    total_users: int
    user_ids: list[str] = field(default_factory=list)


@activity.defn
async def sweep_expired_media(input: SweepInput) -> int:
    """Delete expired temp media until a batch comes back short."""
    store = get_object_store()
    total = 0
    while True:
        async with async_session_factory() as db:
            swept = await media_service.sweep_expired(db, store, batch_size=input.batch_size)
        total += swept
        if swept < input.batch_size:
            return total
        activity.heartbeat(total)


@activity.defn
async def fail_orphaned_jobs(input: OrphanedJobsInput) -> int:
    async with async_session_factory() as db:
        return await generation_service.fail_orphaned_jobs(db, input.older_than_minutes)


@activity.defn
async def reconcile_ledger() -> ReconcileOutput:
    async with async_session_factory() as db:
        report = await ledger_service.reconcile(db)
    for d in report.discrepancies:
        logger.error(
            f"Ledger mismatch for {d.user_id}: balance={d.current_balance} "
            f"ledger={d.ledger_balance} diff={d.difference}"
        )
    return ReconcileOutput(
        total_users=report.total_users,
        user_ids=[str(d.user_id) for d in report.discrepancies],
    )
