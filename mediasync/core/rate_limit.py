"""
Rate Limiting for External APIs

RateLimiter enforces a minimum gap between the *starts* of consecutive calls
to the same external service (TMDB, MDBList, Trakt). It is a single-slot
leaky bucket, not a sliding window: it bounds spacing, not burst rate.

The check-wait-update sequence for a service key runs under a per-key lock,
so concurrent callers are serialized and each one is spaced from the
previous caller.

SlidingWindowLimiter bounds the number of calls within a rolling window for
APIs that publish "N requests per window" quotas.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """
    Per-service minimum-interval throttle.

    One instance is constructed at process start and shared through the
    application context; state per service key is created lazily on first
    call and lives as long as the limiter.
    """

    def __init__(
        self,
        min_intervals: dict[str, float] | None = None,
        default_interval: float = 0.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize the rate limiter.

        Args:
            min_intervals: Minimum spacing in seconds per service key
            default_interval: Spacing for service keys not listed
            clock: Monotonic clock returning seconds
            sleep: Coroutine used to wait
        """
        self.min_intervals = dict(min_intervals or {})
        self.default_interval = default_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def interval_for(self, service_key: str) -> float:
        return self.min_intervals.get(service_key, self.default_interval)

    def last_call(self, service_key: str) -> float | None:
        """Timestamp of the last recorded call start, if any."""
        return self._last_call.get(service_key)

    async def wait_for_quota(self, service_key: str) -> None:
        """
        Wait until a call to the service may start, then record it.

        Args:
            service_key: External service identity (e.g. "tmdb")
        """
        lock = self._locks.setdefault(service_key, asyncio.Lock())
        async with lock:
            interval = self.interval_for(service_key)
            last = self._last_call.get(service_key)

            if last is not None:
                remaining = interval - (self._clock() - last)
                if remaining > 0:
                    logger.debug(f"Rate limit for {service_key}: waiting {remaining:.3f}s")
                    await self._sleep(remaining)

            self._last_call[service_key] = self._clock()

    async def limited(self, service_key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Wait for quota, then run the operation."""
        await self.wait_for_quota(service_key)
        return await operation()


class SlidingWindowLimiter:
    """
    Allow at most max_requests call starts within any window of `window`
    seconds.
    """

    def __init__(
        self,
        max_requests: int,
        window: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._requests: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                while self._requests and now - self._requests[0] >= self.window:
                    self._requests.popleft()

                if len(self._requests) < self.max_requests:
                    self._requests.append(now)
                    return

                wait = self.window - (now - self._requests[0])
                logger.debug(f"Request window full, waiting {wait:.3f}s")
                await self._sleep(wait)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        await self.acquire()
        return await operation()
