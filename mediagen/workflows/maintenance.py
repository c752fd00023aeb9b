"""
MediaMaintenanceWorkflow: periodic housekeeping.

Started on a cron schedule (see worker.py). Each step is an activity so a
failed sweep is retried by Temporal without redoing the others.
"""
from dataclasses import dataclass, field
from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from mediagen.workflows.activities import (
        OrphanedJobsInput,
        ReconcileOutput,
        SweepInput,
        fail_orphaned_jobs,
        reconcile_ledger,
        sweep_expired_media,
    )


@dataclass
class MaintenanceInput:
    orphaned_job_minutes: int = 30
    sweep_batch_size: int = 500


@dataclass
class MaintenanceResult:
    media_swept: int = 0
    jobs_failed: int = 0
    discrepancies: list[str] = field(default_factory=list)


@workflow.defn
class MediaMaintenanceWorkflow:
    @workflow.run
    async def run(self, input: MaintenanceInput) -> MaintenanceResult:
        swept: int = await workflow.execute_activity(
            sweep_expired_media,
            SweepInput(batch_size=input.sweep_batch_size),
            start_to_close_timeout=timedelta(minutes=5),
            retry_policy=RetryPolicy(maximum_attempts=3),
        )

        failed: int = await workflow.execute_activity(
            fail_orphaned_jobs,
            OrphanedJobsInput(older_than_minutes=input.orphaned_job_minutes),
            start_to_close_timeout=timedelta(minutes=1),
            retry_policy=RetryPolicy(maximum_attempts=3),
        )

        report: ReconcileOutput = await workflow.execute_activity(
            reconcile_ledger,
            start_to_close_timeout=timedelta(minutes=5),
            retry_policy=RetryPolicy(maximum_attempts=2),
        )

        return MaintenanceResult(
            media_swept=swept,
            jobs_failed=failed,
            discrepancies=report.user_ids,
        )
