"""Temporal worker entrypoint. Run with: python -m mediagen.workflows.worker"""
import asyncio
import logging

from temporalio.client import Client
from temporalio.exceptions import WorkflowAlreadyStartedError
from temporalio.worker import Worker

from mediagen.config import settings
from mediagen.core.logging_setup import configure_logging
from mediagen.workflows.activities import (
    fail_orphaned_jobs,
    reconcile_ledger,
    sweep_expired_media,
)
from mediagen.workflows.maintenance import MaintenanceInput, MediaMaintenanceWorkflow

logger = logging.getLogger("mediagen.workflows.worker")

MAINTENANCE_WORKFLOW_ID = "media-maintenance"
MAINTENANCE_SCHEDULE = "0 * * * *"


async def main() -> None:
    configure_logging()
    client = await Client.connect(settings.temporal_host)

    worker = Worker(
        client,
        task_queue=settings.temporal_task_queue,
        workflows=[MediaMaintenanceWorkflow],
        activities=[
            sweep_expired_media,
            fail_orphaned_jobs,
            reconcile_ledger,
        ],
    )

    try:
        await client.start_workflow(
            MediaMaintenanceWorkflow.run,
            MaintenanceInput(orphaned_job_minutes=settings.orphaned_job_minutes),
            id=MAINTENANCE_WORKFLOW_ID,
            task_queue=settings.temporal_task_queue,
            cron_schedule=MAINTENANCE_SCHEDULE,
        )
    except WorkflowAlreadyStartedError:
        logger.info("Maintenance schedule already running")

    logger.info(f"Worker started on task queue: {settings.temporal_task_queue}")
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
