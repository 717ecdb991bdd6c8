"""Retry-with-exponential-backoff executor for fallible async operations.

Schedule (default initial=1000ms, cap=30000ms, max_retries=3):
  Attempt 1:     0ms (immediate)
  Attempt 2:  1000ms
  Attempt 3:  2000ms
  Attempt 4:  4000ms

Design:
- Delay before retry n is initial * 2^(n-1), capped at max_delay_ms
- Only errors the caller classifies as retryable are retried
- A provider hint (``retry_after_seconds`` on the error) raises the delay,
  still capped at max_delay_ms
- No jitter by default (deterministic for tests); optional jitter adds up
  to 10% of the delay and never changes the number of attempts
- The final failure carries the attempt count alongside the original error
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Final, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_INITIAL_DELAY_MS: Final[int] = 1000
DEFAULT_MAX_DELAY_MS: Final[int] = 30000

BACKOFF_MAX_RETRIES_ENV = "CASETRACE_BACKOFF_MAX_RETRIES"
BACKOFF_INITIAL_DELAY_MS_ENV = "CASETRACE_BACKOFF_INITIAL_DELAY_MS"
BACKOFF_MAX_DELAY_MS_ENV = "CASETRACE_BACKOFF_MAX_DELAY_MS"


@dataclass(frozen=True)
class BackoffPolicy:
    """Retry budget and delay curve.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        initial_delay_ms: Delay before the first retry.
        max_delay_ms: Upper bound for any single delay.
        jitter: Add up to 10% random jitter to each delay.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    jitter: bool = False

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be >= 0")

    @classmethod
    def from_env(cls) -> BackoffPolicy:
        """Build a policy from CASETRACE_BACKOFF_* variables, falling back to defaults.

        Raises:
            ValueError: If a variable is set but is not an integer.
        """
        return cls(
            max_retries=int(os.environ.get(BACKOFF_MAX_RETRIES_ENV, DEFAULT_MAX_RETRIES)),
            initial_delay_ms=int(
                os.environ.get(BACKOFF_INITIAL_DELAY_MS_ENV, DEFAULT_INITIAL_DELAY_MS)
            ),
            max_delay_ms=int(os.environ.get(BACKOFF_MAX_DELAY_MS_ENV, DEFAULT_MAX_DELAY_MS)),
        )


@dataclass(frozen=True)
class BackoffResult(Generic[T]):
    """Successful outcome of execute_with_backoff.

    Attributes:
        value: The operation's return value.
        attempts: Total calls made, including the successful one.
    """

    value: T
    attempts: int

    @property
    def retry_count(self) -> int:
        """Retries consumed before success."""
        return self.attempts - 1


class OperationFailedError(Exception):
    """Raised when an operation fails permanently.

    Chained from the last error raised by the operation.

    Attributes:
        cause: The last error raised by the operation.
        attempts: Total calls made.
        exhausted: True if the error was retryable but the budget ran out.
    """

    def __init__(self, cause: BaseException, attempts: int, exhausted: bool) -> None:
        reason = "retries exhausted" if exhausted else "non-retryable error"
        super().__init__(f"{reason} after {attempts} attempt(s): {cause}")
        self.cause = cause
        self.attempts = attempts
        self.exhausted = exhausted

    @property
    def retry_count(self) -> int:
        """Retries consumed before giving up."""
        return self.attempts - 1


def compute_backoff_ms(
    attempt: int,
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
    jitter: bool = False,
) -> int:
    """Compute the delay before retry number ``attempt``.

    Args:
        attempt: One-based retry number (1 = first retry).
        initial_delay_ms: Delay before the first retry.
        max_delay_ms: Cap for any single delay.
        jitter: If True, add random jitter up to 10% of the delay.

    Returns:
        Delay in milliseconds.

    Example:
        >>> compute_backoff_ms(1, 10, 100)
        10
        >>> compute_backoff_ms(3, 10, 100)
        40
        >>> compute_backoff_ms(5, 10, 100)
        100
    """
    if attempt < 1:
        return 0

    delay = min(initial_delay_ms * (2 ** (attempt - 1)), max_delay_ms)

    if jitter:
        delay += int(delay * 0.1 * random.random())

    return int(delay)


def get_retry_schedule(policy: BackoffPolicy) -> list[int]:
    """Delays (ms) before each retry allowed by the policy, without jitter."""
    return [
        compute_backoff_ms(n, policy.initial_delay_ms, policy.max_delay_ms)
        for n in range(1, policy.max_retries + 1)
    ]


async def execute_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    is_retryable: Callable[[BaseException], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Callable[[int, BaseException, int], None] | None = None,
) -> BackoffResult[T]:
    """Call ``operation`` until it succeeds or fails permanently.

    Args:
        operation: Zero-argument coroutine function to call.
        policy: Retry budget and delay curve.
        is_retryable: Classifies an error as transient.
        sleep: Awaitable sleep taking seconds; injectable for tests.
        on_retry: Optional callback ``(attempt, error, delay_ms)`` invoked
            before each backoff sleep.

    Returns:
        BackoffResult with the value and the number of attempts made.

    Raises:
        OperationFailedError: On a non-retryable error, or when a retryable
            error persists past ``policy.max_retries`` retries.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            value = await operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise OperationFailedError(exc, attempt, exhausted=False) from exc
            if attempt > policy.max_retries:
                raise OperationFailedError(exc, attempt, exhausted=True) from exc

            delay_ms = compute_backoff_ms(
                attempt, policy.initial_delay_ms, policy.max_delay_ms, policy.jitter
            )
            retry_after = getattr(exc, "retry_after_seconds", None)
            if retry_after is not None:
                delay_ms = min(max(delay_ms, int(retry_after * 1000)), policy.max_delay_ms)
            logger.warning(
                "Retryable error (attempt %d/%d), backing off %dms: %s",
                attempt,
                policy.max_retries + 1,
                delay_ms,
                exc,
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay_ms)
            await sleep(delay_ms / 1000)
            continue

        return BackoffResult(value=value, attempts=attempt)
