import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from mediagen.providers.errors import GenerationTimeout, ProviderError
from mediagen.providers.extract import probe, probe_text

logger = logging.getLogger(__name__)

SUCCEEDED = frozenset({"completed", "finished", "succeeded", "success"})
FAILED = frozenset({"failed", "error", "cancelled", "canceled"})

DEFAULT_STATUS_PATHS = ("data.status", "status", "state")
DEFAULT_ERROR_PATHS = ("data.error", "error")


class JobPoller:
    """Polls an upstream job until it succeeds, fails, or runs out of ticks.

    Stopping (or being cancelled) never touches the upstream job.
    """

    def __init__(
        self,
        interval_seconds: float = 2.0,
        max_attempts: int = 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def poll(
        self,
        job_id: str,
        status_fn: Callable[[str], Awaitable[Any]],
        result_paths: Iterable[str],
        status_paths: Iterable[str] = DEFAULT_STATUS_PATHS,
        error_paths: Iterable[str] = DEFAULT_ERROR_PATHS,
    ) -> str:
        result_paths = tuple(result_paths)
        for attempt in range(1, self.max_attempts + 1):
            await self._sleep(self.interval_seconds)
            data = await status_fn(job_id)

            status = (probe_text(data, status_paths) or "").lower()
            error = probe(data, error_paths)

            if status in FAILED or (error and status not in SUCCEEDED):
                logger.warning(f"Job {job_id} failed upstream: {error or status}")
                raise ProviderError(f"Job {job_id} failed", detail=str(error or status))

            if status in SUCCEEDED:
                media_url = probe_text(data, result_paths)
                if not media_url:
                    raise ProviderError(
                        f"Job {job_id} completed without a result", detail=str(data)[:500]
                    )
                logger.info(f"Job {job_id} completed after {attempt} polls")
                return media_url

            logger.debug(f"Job {job_id} still {status or 'pending'} ({attempt}/{self.max_attempts})")

        raise GenerationTimeout(
            f"Job {job_id} did not finish after {self.max_attempts} polls"
        )
