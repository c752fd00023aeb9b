"""Tests for credential rotation, fixed backoff and per-attempt timeouts."""
import asyncio

import pytest

from mediagen.core.exceptions import ConfigurationError
from mediagen.providers.credentials import CredentialPool
from mediagen.providers.errors import (
    CredentialsExhausted,
    GenerationTimeout,
    NetworkError,
    ProviderError,
    QuotaExceeded,
    is_retryable,
)
from mediagen.providers.retry import RetryPolicy


class SleepRecorder:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _pool(*tokens: str) -> CredentialPool:
    return CredentialPool({"wavespeed": list(tokens)})


class TestCredentialPool:
    def test_iterates_in_order_then_exhausts(self):
        pool = _pool("a", "b")
        first = pool.next("wavespeed")
        second = pool.next("wavespeed", after_index=first.index)

        assert (first.secret, second.secret) == ("a", "b")
        assert pool.next("wavespeed", after_index=second.index) is None

    def test_unknown_family_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            _pool("a").next("fal")

    def test_empty_family_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            CredentialPool({"wavespeed": []}).size("wavespeed")

    def test_repr_hides_secret(self):
        credential = _pool("super-secret").next("wavespeed")
        assert "super-secret" not in repr(credential)


class TestClassification:
    def test_flags_win_over_message(self):
        assert is_retryable(QuotaExceeded("x"))
        assert not is_retryable(ProviderError("timeout in message"))
        assert is_retryable(ProviderError("x", retryable=True))

    def test_plain_exceptions_fall_back_to_message_patterns(self):
        assert is_retryable(RuntimeError("Model is loading"))
        assert is_retryable(RuntimeError("ECONNREFUSED"))
        assert not is_retryable(RuntimeError("invalid prompt"))


@pytest.mark.asyncio
async def test_rotates_to_next_credential_without_sleeping():
    sleep = SleepRecorder()
    policy = RetryPolicy(max_retries=2, backoff_seconds=5, sleep=sleep)
    seen = []

    async def attempt(credential):
        seen.append(credential.secret)
        if credential.secret == "a":
            raise QuotaExceeded("quota")
        return "ok"

    assert await policy.execute(attempt, _pool("a", "b"), "wavespeed") == "ok"
    assert seen == ["a", "b"]
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_all_credentials_tried_each_round_with_fixed_backoff():
    """K credentials and R retries: K * (R + 1) attempts, R sleeps of equal length."""
    sleep = SleepRecorder()
    policy = RetryPolicy(max_retries=2, backoff_seconds=5, sleep=sleep)
    seen = []

    async def attempt(credential):
        seen.append(credential.secret)
        raise NetworkError("unreachable")

    with pytest.raises(NetworkError):
        await policy.execute(attempt, _pool("a", "b", "c"), "wavespeed")

    assert seen == ["a", "b", "c"] * 3
    assert sleep.calls == [5, 5]


@pytest.mark.asyncio
async def test_success_in_a_later_round():
    sleep = SleepRecorder()
    policy = RetryPolicy(max_retries=2, backoff_seconds=5, sleep=sleep)
    attempts = 0

    async def attempt(credential):
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise QuotaExceeded("quota")
        return credential.secret

    assert await policy.execute(attempt, _pool("a", "b"), "wavespeed") == "a"
    assert sleep.calls == [5]


@pytest.mark.asyncio
async def test_non_retryable_failure_stops_immediately():
    sleep = SleepRecorder()
    policy = RetryPolicy(max_retries=2, sleep=sleep)
    seen = []

    async def attempt(credential):
        seen.append(credential.secret)
        raise ProviderError("content rejected")

    with pytest.raises(ProviderError):
        await policy.execute(attempt, _pool("a", "b"), "wavespeed")

    assert seen == ["a"]
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_attempt_exceeding_timeout_counts_as_retryable():
    policy = RetryPolicy(max_retries=0, timeout_seconds=0.01, sleep=SleepRecorder())
    seen = []

    async def attempt(credential):
        seen.append(credential.secret)
        if credential.secret == "slow":
            await asyncio.sleep(1)
        return credential.secret

    assert await policy.execute(attempt, _pool("slow", "fast"), "wavespeed") == "fast"
    assert seen == ["slow", "fast"]


@pytest.mark.asyncio
async def test_timeout_on_every_attempt_raises_generation_timeout():
    policy = RetryPolicy(max_retries=0, timeout_seconds=0.01, sleep=SleepRecorder())

    async def attempt(credential):
        await asyncio.sleep(1)

    with pytest.raises(GenerationTimeout):
        await policy.execute(attempt, _pool("a"), "wavespeed")


@pytest.mark.asyncio
async def test_non_provider_retryable_errors_end_as_credentials_exhausted():
    policy = RetryPolicy(max_retries=0, sleep=SleepRecorder())

    async def attempt(credential):
        raise RuntimeError("network blip")

    with pytest.raises(CredentialsExhausted) as exc_info:
        await policy.execute(attempt, _pool("a"), "wavespeed")
    assert exc_info.value.retryable


def test_with_limits_keeps_backoff_and_sleep():
    sleep = SleepRecorder()
    policy = RetryPolicy(max_retries=2, backoff_seconds=7, timeout_seconds=60, sleep=sleep)

    limited = policy.with_limits(max_retries=1, timeout_seconds=30)

    assert (limited.max_retries, limited.timeout_seconds, limited.backoff_seconds) == (1, 30, 7)
    assert limited._sleep is sleep
