"""Tests for RetryPolicy and call_with_retry."""

from __future__ import annotations

import asyncio

import pytest

from charforge.core.api.http.errors import ApiError, RateLimitError, ServerError
from charforge.core.generation.errors import (
    AuthenticationRequiredError,
    ErrorKind,
    InsufficientBalanceError,
    RateLimitedError,
    ServerSideError,
    TransientNetworkError,
    UnknownGenerationError,
)
from charforge.core.generation.retry import RetryPolicy, call_with_retry


class Recorder:
    """Collects sleeps and retry notifications instead of waiting."""

    def __init__(self) -> None:
        self.sleeps: list[float] = []
        self.retries: list[tuple[int, float, ErrorKind]] = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)

    def on_retry(self, attempt: int, delay: float, error) -> None:
        self.retries.append((attempt, delay, error.kind))


def scripted(*outcomes):
    calls = {"n": 0}

    async def attempt():
        outcome = outcomes[min(calls["n"], len(outcomes) - 1)]
        calls["n"] += 1
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return attempt, calls


def _server_error(status: int = 503, retry_after: str | None = None) -> ApiError:
    exc_type = RateLimitError if status == 429 else ServerError
    return exc_type(
        message="HTTP error response",
        method="POST",
        url="https://example.test/generate-character",
        status_code=status,
        response_headers={"Retry-After": retry_after} if retry_after else None,
    )


class TestPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.max_attempts == 4
        assert policy.base_delay_s == 1.0
        assert policy.max_delay_s == 10.0

    def test_delay_without_jitter_is_exponential(self):
        policy = RetryPolicy(base_delay_s=1.0, max_delay_s=100.0, jitter=0.0)
        assert [policy.compute_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped_at_max(self):
        policy = RetryPolicy(base_delay_s=1.0, max_delay_s=10.0)
        assert all(policy.compute_delay(n) <= 10.0 for n in range(12))
        assert policy.compute_delay(10) == 10.0

    def test_jitter_bounds(self):
        policy = RetryPolicy(base_delay_s=1.0, max_delay_s=100.0, jitter=0.3)
        for _ in range(50):
            delay = policy.compute_delay(2)
            assert 4.0 <= delay < 4.0 * 1.3

    def test_rate_limit_hint_honoured_and_capped(self):
        policy = RetryPolicy(base_delay_s=1.0, max_delay_s=10.0, jitter=0.0)
        assert policy.delay_for(0, RateLimitedError("slow", retry_after_s=3.0)) == 3.0
        assert policy.delay_for(0, RateLimitedError("slow", retry_after_s=60.0)) == 10.0
        assert policy.delay_for(1, TransientNetworkError("net", retry_after_s=3.0)) == 2.0

    def test_max_delay_must_not_undercut_base(self):
        with pytest.raises(ValueError):
            RetryPolicy(base_delay_s=5.0, max_delay_s=1.0)


class TestCallWithRetry:
    async def test_first_success_no_retry(self):
        rec = Recorder()
        attempt, calls = scripted("ok")
        assert await call_with_retry(attempt, RetryPolicy(), sleep=rec.sleep) == "ok"
        assert calls["n"] == 1
        assert rec.sleeps == []

    async def test_retries_until_success(self):
        rec = Recorder()
        attempt, calls = scripted(_server_error(), ConnectionResetError(), "ok")
        policy = RetryPolicy(base_delay_s=1.0, max_delay_s=10.0, jitter=0.0)

        result = await call_with_retry(attempt, policy, on_retry=rec.on_retry, sleep=rec.sleep)

        assert result == "ok"
        assert calls["n"] == 3
        assert rec.sleeps == [1.0, 2.0]
        assert rec.retries == [
            (2, 1.0, ErrorKind.SERVER_SIDE),
            (3, 2.0, ErrorKind.TRANSIENT_NETWORK),
        ]

    async def test_bounded_attempts(self):
        rec = Recorder()
        attempt, calls = scripted(_server_error(502))
        policy = RetryPolicy(max_retries=3, base_delay_s=0.0, max_delay_s=0.0, jitter=0.0)

        with pytest.raises(ServerSideError) as exc_info:
            await call_with_retry(attempt, policy, sleep=rec.sleep)

        assert calls["n"] == policy.max_retries + 1
        assert len(rec.sleeps) == policy.max_retries
        assert exc_info.value.status_code == 502
        assert isinstance(exc_info.value.__cause__, ServerError)

    async def test_zero_retries_single_attempt(self):
        attempt, calls = scripted(_server_error())
        with pytest.raises(ServerSideError):
            await call_with_retry(attempt, RetryPolicy(max_retries=0), sleep=Recorder().sleep)
        assert calls["n"] == 1

    @pytest.mark.parametrize(
        "error",
        [AuthenticationRequiredError("sign in"), InsufficientBalanceError("no credits")],
    )
    async def test_non_retryable_short_circuits(self, error):
        rec = Recorder()
        attempt, calls = scripted(error)

        with pytest.raises(type(error)) as exc_info:
            await call_with_retry(attempt, RetryPolicy(), sleep=rec.sleep)

        assert exc_info.value is error
        assert calls["n"] == 1
        assert rec.sleeps == []

    async def test_unknown_is_not_retried(self):
        attempt, calls = scripted(ValueError("weird"))
        with pytest.raises(UnknownGenerationError):
            await call_with_retry(attempt, RetryPolicy(), sleep=Recorder().sleep)
        assert calls["n"] == 1

    async def test_rate_limit_waits_retry_after(self):
        rec = Recorder()
        attempt, _ = scripted(_server_error(429, retry_after="2"), "ok")
        policy = RetryPolicy(base_delay_s=0.1, max_delay_s=10.0, jitter=0.0)

        assert await call_with_retry(attempt, policy, sleep=rec.sleep) == "ok"
        assert rec.sleeps == [2.0]

    async def test_attempt_timeout_is_transient(self):
        calls = {"n": 0}

        async def slow_then_ok():
            calls["n"] += 1
            if calls["n"] == 1:
                await asyncio.sleep(1.0)
            return "ok"

        policy = RetryPolicy(base_delay_s=0.0, max_delay_s=0.0, jitter=0.0, attempt_timeout_s=0.01)
        rec = Recorder()

        result = await call_with_retry(slow_then_ok, policy, on_retry=rec.on_retry, sleep=rec.sleep)

        assert result == "ok"
        assert calls["n"] == 2
        assert rec.retries[0][2] is ErrorKind.TRANSIENT_NETWORK

    async def test_cancellation_propagates(self):
        async def cancelled():
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await call_with_retry(cancelled, RetryPolicy(), sleep=Recorder().sleep)
