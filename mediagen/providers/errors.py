"""Normalized provider failures.

Adapters translate every upstream problem into one of these; retry logic and
the orchestrator only ever look at `retryable`.
"""
from typing import Any

import httpx

_RETRYABLE_PATTERNS = (
    "timeout",
    "network",
    "econnrefused",
    "enotfound",
    "etimedout",
    "rate limit",
    "quota",
    "too many requests",
    "loading",
    "warming",
    "initializing",
    "starting",
)


class ProviderFailure(Exception):
    code = "PROVIDER_FAILURE"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        self.status_code = status_code
        self.detail = detail


class QuotaExceeded(ProviderFailure):
    code = "QUOTA_EXCEEDED"
    retryable = True


class ProviderError(ProviderFailure):
    code = "PROVIDER_ERROR"
    retryable = False


class GenerationTimeout(ProviderFailure):
    code = "TIMEOUT"
    retryable = True


class NetworkError(ProviderFailure):
    code = "NETWORK_ERROR"
    retryable = True


class CredentialsExhausted(ProviderFailure):
    """Every credential of a family was tried in the current round."""

    code = "CREDENTIALS_EXHAUSTED"
    retryable = True


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderFailure):
        return exc.retryable
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    message = str(exc).lower()
    return any(pattern in message for pattern in _RETRYABLE_PATTERNS)


def error_for_status(response: httpx.Response, provider: str) -> ProviderFailure:
    """Map a non-2xx upstream response onto the failure taxonomy."""
    status = response.status_code
    body = response.text[:500]
    message = f"{provider} returned HTTP {status}"
    if status in (402, 429):
        return QuotaExceeded(message, status_code=status, detail=body)
    if status == 408 or status >= 500:
        return ProviderError(message, retryable=True, status_code=status, detail=body)
    if any(pattern in body.lower() for pattern in ("loading", "warming")):
        return ProviderError(message, retryable=True, status_code=status, detail=body)
    return ProviderError(message, status_code=status, detail=body)


def from_transport(exc: httpx.HTTPError, provider: str) -> ProviderFailure:
    if isinstance(exc, httpx.TimeoutException):
        return GenerationTimeout(f"{provider} request timed out", detail=str(exc))
    return NetworkError(f"{provider} unreachable", detail=str(exc))


def decode_json(response: httpx.Response, provider: str) -> Any:
    """Parse a 2xx body; anything that is not JSON is an upstream error."""
    try:
        return response.json()
    except ValueError as exc:
        content_type = response.headers.get("content-type", "unknown")
        raise ProviderError(
            f"{provider} returned a non-JSON {content_type} body", detail=response.text[:500]
        ) from exc
