"""
Retry/backoff state machine for upstream calls.

Each attempt is classified into one of three outcomes:

  Ok(response)          relay the response as-is
  Retry(reason, delay)  sleep delay_ms, record the retry, try again
  Fail(error)           stop and raise error

`decide` is pure: it looks at the current RetryState and the attempt result
and never mutates anything. The engine applies `RetryState.record` after it
has slept, so every transition is visible in one loop.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional, Union

import httpx

from ..errors import (
    ApiError,
    InternalProxyError,
    RateLimitExceeded,
    UpstreamConnectionError,
    UpstreamRequestError,
)

MAX_BACKOFF_MS = 10_000
RATE_LIMIT_BASE_MS = 1_000

REASON_CONNECTION = "connection"
REASON_SERVER_ERROR = "server_error"
REASON_RATE_LIMITED = "rate_limited"

# Reasons that advance the exponential backoff schedule. 429 waits are
# computed separately and leave the schedule alone.
_BACKOFF_REASONS = (REASON_CONNECTION, REASON_SERVER_ERROR)


@dataclass
class RetryState:
    max_retries: int
    backoff_ms: int
    attempt_count: int = 0

    def can_retry(self) -> bool:
        return self.attempt_count < self.max_retries

    def rate_limit_delay_ms(self, retry_after_ms: Optional[int]) -> int:
        if retry_after_ms is not None and retry_after_ms > 0:
            return retry_after_ms
        return min(RATE_LIMIT_BASE_MS * (2 ** self.attempt_count), MAX_BACKOFF_MS)

    def record(self, retry: "Retry") -> None:
        self.attempt_count += 1
        if retry.reason in _BACKOFF_REASONS:
            self.backoff_ms = min(self.backoff_ms * 2, MAX_BACKOFF_MS)


@dataclass(frozen=True)
class Ok:
    response: Any


@dataclass(frozen=True)
class Retry:
    reason: str
    delay_ms: int
    status_code: Optional[int] = None


@dataclass(frozen=True)
class Fail:
    error: ApiError


Outcome = Union[Ok, Retry, Fail]


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """
    Retry-After as milliseconds. Accepts delta-seconds or an HTTP-date.
    Returns None when absent, unparsable, or not in the future.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        seconds = int(value)
    except ValueError:
        seconds = None

    if seconds is not None:
        return seconds * 1000 if seconds > 0 else None

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    delta_ms = int((when - now).total_seconds() * 1000)
    return delta_ms if delta_ms > 0 else None


def is_connection_failure(exc: BaseException) -> bool:
    """Upstream never produced a response: refused, reset, DNS, timeouts."""
    return isinstance(exc, (httpx.TimeoutException, httpx.NetworkError))


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 408


def decide(
    state: RetryState,
    response: Any = None,
    error: Optional[BaseException] = None,
) -> Outcome:
    """
    Classify one attempt. Pass either the upstream response (anything with
    `status_code` and `headers`) or the exception raised while sending.
    """
    if error is not None:
        if is_connection_failure(error):
            if state.can_retry():
                return Retry(REASON_CONNECTION, state.backoff_ms)
            return Fail(UpstreamConnectionError(cause=error))
        if isinstance(error, httpx.RequestError):
            return Fail(UpstreamRequestError(cause=error))
        return Fail(InternalProxyError(cause=error))

    status_code = int(response.status_code)

    if status_code == 429:
        if state.can_retry():
            retry_after = parse_retry_after(response.headers.get("retry-after"))
            return Retry(REASON_RATE_LIMITED, state.rate_limit_delay_ms(retry_after), status_code)
        return Fail(RateLimitExceeded())

    if is_retryable_status(status_code):
        if state.can_retry():
            return Retry(REASON_SERVER_ERROR, state.backoff_ms, status_code)
        return Fail(UpstreamRequestError(upstream_status=status_code))

    return Ok(response)
