"""
Retry Executor

Wraps fallible async operations (upstream API calls) with bounded retries.
Only failures classified as transient are retried: HTTP statuses listed in
the policy (408, 429 and 5xx by default) and, when opted in, transport error
codes. Everything else propagates on the first attempt.

Backoff is exponential with +/-10% jitter since the failing calls usually
target rate-limited third-party APIs:
    delay(n) = min(initial_delay * multiplier ** (n - 1) +/- jitter, max_delay)
"""

import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from mediasync.core.exceptions import HttpStatusError, NetworkError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Transport error codes worth retrying when a call site opts in
TRANSIENT_NETWORK_CODES = frozenset({
    "ECONNRESET",
    "ETIMEDOUT",
    "ECONNREFUSED",
    "ENOTFOUND",
    "EAI_AGAIN",
})


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry settings for one call site.

    Constructed at call time; never persisted.
    """
    max_attempts: int = 3
    retryable_status_codes: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES
    retryable_error_codes: frozenset[str] = frozenset()
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        # Accept any iterable from callers, store immutable sets
        object.__setattr__(self, "retryable_status_codes", frozenset(self.retryable_status_codes))
        object.__setattr__(self, "retryable_error_codes", frozenset(self.retryable_error_codes))

    def is_retryable(self, error: BaseException) -> bool:
        """Check whether a failure is classified as transient by this policy."""
        if isinstance(error, HttpStatusError):
            return error.status in self.retryable_status_codes
        if isinstance(error, NetworkError):
            return error.code in self.retryable_error_codes
        return False

    def backoff(self, attempt: int) -> float:
        """
        Delay to wait after the given (1-based) failed attempt.

        Args:
            attempt: Number of attempts made so far

        Returns:
            Delay in seconds, never negative and never above max_delay
        """
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        delay += delay * self.jitter * (random.random() * 2 - 1)
        return max(0.0, min(delay, self.max_delay))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    on_retry: Callable[[BaseException, int, float], Any] | None = None,
) -> T:
    """
    Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine function to attempt
        policy: Retry policy (default: RetryPolicy())
        on_retry: Optional hook called as on_retry(error, attempt, delay)
            before each backoff sleep

    Returns:
        The operation's result

    Raises:
        RetryExhaustedError: Every attempt failed with a retryable error
            (chained from the last failure)
        Exception: The first non-retryable failure, unchanged
    """
    policy = policy or RetryPolicy()
    last_error: BaseException | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not policy.is_retryable(e):
                raise

            last_error = e
            if attempt >= policy.max_attempts:
                break

            delay = policy.backoff(attempt)
            logger.warning(
                f"Retryable failure: {e} (attempt {attempt}/{policy.max_attempts}), "
                f"retrying in {delay:.2f}s"
            )
            if on_retry:
                on_retry(e, attempt, delay)
            await asyncio.sleep(delay)

    logger.error(f"Giving up after {policy.max_attempts} attempts: {last_error}")
    raise RetryExhaustedError(policy.max_attempts, last_error) from last_error


def retryable(policy: RetryPolicy | None = None):
    """
    Decorator form of with_retry for async functions and methods.

    Example:
        @retryable(RetryPolicy(max_attempts=5))
        async def fetch_list(self, list_id): ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await with_retry(lambda: func(*args, **kwargs), policy)
        return wrapper
    return decorator
