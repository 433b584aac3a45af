from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from ticketproxy.errors import (
    InternalProxyError,
    RateLimitExceeded,
    UpstreamConnectionError,
    UpstreamRequestError,
)
from ticketproxy.proxy.retry import (
    MAX_BACKOFF_MS,
    REASON_CONNECTION,
    REASON_RATE_LIMITED,
    REASON_SERVER_ERROR,
    Fail,
    Ok,
    Retry,
    RetryState,
    decide,
    parse_retry_after,
)

REQUEST = httpx.Request("GET", "https://upstream.test/v1/events")


def response(status, **headers):
    return httpx.Response(status, headers=headers, request=REQUEST)


@pytest.mark.parametrize("status", [200, 201, 204, 301, 400, 401, 404, 422])
def test_non_retryable_statuses_are_relayed(status):
    state = RetryState(max_retries=2, backoff_ms=250)
    outcome = decide(state, response=response(status))
    assert isinstance(outcome, Ok)


@pytest.mark.parametrize("status", [408, 500, 502, 503, 504])
def test_server_errors_retry_with_current_backoff(status):
    state = RetryState(max_retries=2, backoff_ms=400)
    outcome = decide(state, response=response(status))
    assert outcome == Retry(REASON_SERVER_ERROR, 400, status)


def test_server_error_without_budget_fails_with_upstream_status():
    state = RetryState(max_retries=0, backoff_ms=250)
    outcome = decide(state, response=response(502))

    assert isinstance(outcome, Fail)
    assert isinstance(outcome.error, UpstreamRequestError)
    assert outcome.error.status_code == 502


def test_connection_failures_retry_then_fail():
    err = httpx.ConnectError("refused", request=REQUEST)

    assert decide(RetryState(1, 250), error=err) == Retry(REASON_CONNECTION, 250)

    outcome = decide(RetryState(1, 250, attempt_count=1), error=err)
    assert isinstance(outcome.error, UpstreamConnectionError)
    assert outcome.error.status_code == 502


def test_timeouts_count_as_connection_failures():
    err = httpx.ReadTimeout("slow", request=REQUEST)
    assert decide(RetryState(1, 250), error=err).reason == REASON_CONNECTION


def test_other_transport_errors_fail_immediately():
    err = httpx.UnsupportedProtocol("ftp?", request=REQUEST)
    outcome = decide(RetryState(3, 250), error=err)

    assert isinstance(outcome.error, UpstreamRequestError)
    assert outcome.error.status_code == 502


def test_unexpected_exceptions_become_internal_errors():
    outcome = decide(RetryState(3, 250), error=RuntimeError("bug"))
    assert isinstance(outcome.error, InternalProxyError)
    assert outcome.error.status_code == 500


def test_rate_limit_uses_retry_after_seconds():
    outcome = decide(RetryState(2, 250), response=response(429, **{"Retry-After": "3"}))
    assert outcome == Retry(REASON_RATE_LIMITED, 3000, 429)


def test_rate_limit_without_retry_after_backs_off_from_one_second():
    assert decide(RetryState(5, 250), response=response(429)).delay_ms == 1000
    assert decide(RetryState(5, 250, attempt_count=2), response=response(429)).delay_ms == 4000
    assert decide(RetryState(10, 250, attempt_count=6), response=response(429)).delay_ms == MAX_BACKOFF_MS


def test_rate_limit_without_budget_fails():
    outcome = decide(RetryState(0, 250), response=response(429, **{"Retry-After": "3"}))
    assert isinstance(outcome.error, RateLimitExceeded)
    assert outcome.error.status_code == 429


def test_record_doubles_backoff_up_to_the_cap():
    state = RetryState(max_retries=10, backoff_ms=3000)
    for expected in (6000, MAX_BACKOFF_MS, MAX_BACKOFF_MS):
        state.record(Retry(REASON_SERVER_ERROR, state.backoff_ms))
        assert state.backoff_ms == expected
    assert state.attempt_count == 3


def test_rate_limited_retries_leave_backoff_alone():
    state = RetryState(max_retries=3, backoff_ms=250)
    state.record(Retry(REASON_RATE_LIMITED, 2000, 429))

    assert state.attempt_count == 1
    assert state.backoff_ms == 250


def test_parse_retry_after_variants():
    now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    later = format_datetime(now + timedelta(seconds=30), usegmt=True)
    earlier = format_datetime(now - timedelta(seconds=30), usegmt=True)

    assert parse_retry_after("5") == 5000
    assert parse_retry_after(" 2 ") == 2000
    assert parse_retry_after("0") is None
    assert parse_retry_after("-1") is None
    assert parse_retry_after("") is None
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None
    assert parse_retry_after(later, now=now) == 30000
    assert parse_retry_after(earlier, now=now) is None
