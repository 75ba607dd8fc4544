"""Rate limiters for upstream market-data requests."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Monotonic = Callable[[], float]


class RateLimiter:
    """Minimum-spacing limiter: at most ``max_requests_per_second`` acquisitions."""

    def __init__(self, max_requests_per_second: float) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class SlidingWindowRateLimiter:
    """Allow ``max_requests`` within any ``window_seconds`` span.

    ``acquire(n)`` records ``n`` requests. When the window is already full
    it sleeps until enough requests leave the window. A request for more
    slots than the window holds is served in window-sized chunks. The
    clock and sleep are injectable so tests never wait on the wall clock.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        monotonic: Monotonic = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._max_requests = max_requests
        self._window = window_seconds
        self._monotonic = monotonic
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()
        self.total_wait_seconds = 0.0

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self._window:
            self._timestamps.popleft()

    @property
    def in_window(self) -> int:
        self._prune(self._monotonic())
        return len(self._timestamps)

    def wait_time(self, count: int = 1) -> float:
        """Seconds to wait before ``count`` more requests fit in the window.

        ``count`` is capped at the window size.
        """
        now = self._monotonic()
        self._prune(now)
        count = min(count, self._max_requests)
        overflow = len(self._timestamps) + count - self._max_requests
        if overflow <= 0:
            return 0.0
        return max(0.0, self._window - (now - self._timestamps[overflow - 1]))

    async def acquire(self, count: int = 1) -> float:
        """Reserve ``count`` request slots, sleeping while the window is full.

        Returns:
            Seconds slept.
        """
        async with self._lock:
            waited = 0.0
            remaining = count
            while remaining > 0:
                chunk = min(remaining, self._max_requests)
                delay = self.wait_time(chunk)
                if delay > 0:
                    logger.debug(
                        "Rate limit reached (%d/%d in %.0fs window); sleeping %.2fs",
                        len(self._timestamps),
                        self._max_requests,
                        self._window,
                        delay,
                    )
                    await self._sleep(delay)
                    waited += delay
                    self.total_wait_seconds += delay
                now = self._monotonic()
                self._prune(now)
                self._timestamps.extend([now] * chunk)
                remaining -= chunk
            return waited
