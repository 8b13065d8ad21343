"""Bounded retry with exponential backoff and jitter.

``call_with_retry`` runs one logical remote call: attempts ``0..max_retries``
inclusive, classifying every failure once and retrying only retryable kinds.
Waits are ``asyncio.sleep`` suspensions, so the event loop stays free.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
import random
from typing import TypeVar

from pydantic import BaseModel, Field, field_validator

from charforge.core.api.http.logging_utils import generation_attempt
from charforge.core.generation.errors import ClassifiedError, ErrorKind, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

AttemptFn = Callable[[], Awaitable[T]]
RetryHook = Callable[[int, float, ClassifiedError], None]
SleepFn = Callable[[float], Awaitable[None]]


class RetryPolicy(BaseModel):
    """Retry policy for generation calls.

    Args:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay_s: Base delay in seconds for exponential backoff
        max_delay_s: Maximum delay in seconds (caps exponential growth)
        jitter: Upper bound of the random extra delay, as a fraction of the
            exponential delay (0.3 = up to +30%)
        attempt_timeout_s: Hard timeout per attempt (None disables it)
    """

    model_config = {"frozen": True}

    max_retries: int = Field(default=3, ge=0)
    base_delay_s: float = Field(default=1.0, ge=0.0)
    max_delay_s: float = Field(default=10.0, ge=0.0)
    jitter: float = Field(default=0.3, ge=0.0, le=1.0)
    attempt_timeout_s: float | None = Field(default=30.0, gt=0.0)

    @field_validator("max_delay_s")
    @classmethod
    def validate_max_delay(cls, v: float, info) -> float:
        """Ensure max_delay_s >= base_delay_s."""
        base = info.data.get("base_delay_s", 1.0)
        if v < base:
            raise ValueError("max_delay_s must be >= base_delay_s")
        return v

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def compute_delay(self, attempt: int) -> float:
        """Compute the wait after a failed attempt.

        ``delay = min(base * 2**attempt + U[0, jitter * base * 2**attempt), max)``

        Args:
            attempt: Zero-based index of the attempt that just failed

        Returns:
            Delay in seconds before the next attempt
        """
        exponential = self.base_delay_s * (2**attempt)
        extra = random.random() * self.jitter * exponential if self.jitter > 0 else 0.0
        return min(exponential + extra, self.max_delay_s)

    def delay_for(self, attempt: int, error: ClassifiedError) -> float:
        """Delay honouring a server retry-after hint for rate limiting."""
        if error.kind is ErrorKind.RATE_LIMITED and error.retry_after_s is not None:
            return min(error.retry_after_s, self.max_delay_s)
        return self.compute_delay(attempt)


DEFAULT_RETRY_POLICY = RetryPolicy()


async def _run_attempt(attempt_fn: AttemptFn[T], timeout_s: float | None) -> T:
    if timeout_s is None:
        return await attempt_fn()
    try:
        return await asyncio.wait_for(attempt_fn(), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise TimeoutError(f"Generation attempt timed out after {timeout_s:.0f}s") from e


async def call_with_retry(
    attempt_fn: AttemptFn[T],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    *,
    on_retry: RetryHook | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Execute ``attempt_fn`` with bounded, classified retries.

    Args:
        attempt_fn: Zero-argument coroutine factory performing one remote attempt
        policy: Retry policy
        on_retry: Called as ``on_retry(next_attempt, delay_s, error)`` before each wait
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        The first successful attempt's result

    Raises:
        ClassifiedError: The classified failure of the last attempt, or of the
            first non-retryable attempt (authentication and balance failures
            short-circuit immediately)
    """
    for attempt in range(policy.max_attempts):
        try:
            with generation_attempt(attempt + 1):
                result = await _run_attempt(attempt_fn, policy.attempt_timeout_s)
        except asyncio.CancelledError:
            raise
        except Exception as raw:
            error = classify(raw)
            if not error.retryable or attempt >= policy.max_retries:
                logger.warning(
                    "Generation failed after %d attempt(s): %s",
                    attempt + 1,
                    error,
                    extra={"kind": error.kind.value, "retryable": error.retryable},
                )
                if error is raw:
                    raise
                raise error from raw

            delay = policy.delay_for(attempt, error)
            logger.warning(
                "Generation attempt %d/%d failed (retryable): %s; retrying in %.2fs",
                attempt + 1,
                policy.max_attempts,
                error,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt + 2, delay, error)
            await sleep(delay)
            continue

        if attempt:
            logger.info("Generation succeeded", extra={"attempt": attempt + 1})
        return result

    raise AssertionError("unreachable: retry loop exits by return or raise")
