import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from mediagen.providers.credentials import Credential, CredentialPool
from mediagen.providers.errors import (
    CredentialsExhausted,
    GenerationTimeout,
    ProviderFailure,
    is_retryable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Credential rotation first, fixed backoff second.

    A round tries every credential of the family in order, moving on
    immediately after a retryable failure. Only when a whole round has failed
    does the policy sleep `backoff_seconds` and start another round, for at
    most `max_retries` extra rounds. Each attempt races `timeout_seconds`;
    losing that race cancels the attempt and counts as a retryable timeout.
    Non-retryable failures propagate at once.
    """

    def __init__(
        self,
        max_retries: int = 2,
        backoff_seconds: float = 5.0,
        timeout_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep

    def with_limits(self, max_retries: int, timeout_seconds: float) -> "RetryPolicy":
        return RetryPolicy(
            max_retries=max_retries,
            backoff_seconds=self.backoff_seconds,
            timeout_seconds=timeout_seconds,
            sleep=self._sleep,
        )

    async def execute(
        self,
        attempt_fn: Callable[[Credential], Awaitable[T]],
        pool: CredentialPool,
        family: str,
        classify: Callable[[BaseException], bool] = is_retryable,
    ) -> T:
        last_error: BaseException | None = None

        for round_no in range(self.max_retries + 1):
            if round_no > 0:
                logger.info(
                    f"All {family} credentials failed, backing off {self.backoff_seconds}s "
                    f"(round {round_no + 1}/{self.max_retries + 1})"
                )
                await self._sleep(self.backoff_seconds)

            credential = pool.next(family)
            while credential is not None:
                try:
                    return await asyncio.wait_for(
                        attempt_fn(credential), timeout=self.timeout_seconds
                    )
                except asyncio.TimeoutError:
                    last_error = GenerationTimeout(
                        f"{family} attempt exceeded {self.timeout_seconds}s"
                    )
                except Exception as exc:
                    if not classify(exc):
                        raise
                    last_error = exc
                logger.warning(
                    f"{family} attempt with credential #{credential.index} failed: {last_error}"
                )
                credential = pool.next(family, after_index=credential.index)

        if isinstance(last_error, ProviderFailure):
            raise last_error
        raise CredentialsExhausted(
            f"{family}: retries exhausted", detail=str(last_error) if last_error else None
        )
