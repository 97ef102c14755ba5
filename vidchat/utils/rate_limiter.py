"""
Fixed-window rate limiter for the caption provider.

The free caption endpoint tolerates a handful of requests per minute, so the
transcript fetcher asks this limiter for a slot before every network attempt.
Callers over the ceiling are suspended until the window resets instead of
being rejected.

Usage:
    limiter = FixedWindowRateLimiter(limit=10, window_seconds=60)
    await limiter.acquire()
    entries = await provider.fetch_entries(video_id)
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """
    Process-wide request counter with a periodic reset.

    Check-then-act between concurrent coroutines is not locked: two callers
    can both observe a free slot before either records it, so a small
    over-admission per window is possible and accepted.
    """

    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 60.0,
        *,
        safety_margin_seconds: float = 0.1,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize rate limiter.

        Args:
            limit: Requests allowed per window
            window_seconds: Window length in seconds
            safety_margin_seconds: Extra wait added after the window resets
            clock: Time source returning seconds (defaults to time.time)
            sleep: Coroutine used to wait (defaults to asyncio.sleep)
        """
        self.limit = max(1, int(limit))
        self.window_seconds = float(window_seconds)
        self.safety_margin_seconds = max(0.0, float(safety_margin_seconds))
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep

        self.request_count = 0
        self.window_reset_at = self._clock() + self.window_seconds

        # Statistics
        self.total_requests = 0
        self.total_wait_time = 0.0
        self.rate_limit_hits = 0

    def try_acquire(self) -> float:
        """
        Record a request if the current window has room.

        Returns:
            0.0 when the request was admitted, otherwise the number of seconds
            to wait before trying again.
        """
        now = self._clock()
        if now > self.window_reset_at:
            self.request_count = 0
            self.window_reset_at = now + self.window_seconds

        if self.request_count >= self.limit:
            return max(0.0, self.window_reset_at - now) + self.safety_margin_seconds

        self.request_count += 1
        self.total_requests += 1
        return 0.0

    async def acquire(self) -> float:
        """
        Wait until a slot is available, then take it.

        Returns:
            Total seconds spent waiting (0 if admitted immediately)
        """
        waited = 0.0
        while True:
            wait_time = self.try_acquire()
            if wait_time <= 0:
                return waited
            self.rate_limit_hits += 1
            logger.info(
                "[RATE LIMITER] Ceiling of %s requests reached, waiting %.2fs for window reset",
                self.limit,
                wait_time,
            )
            await self._sleep(wait_time)
            waited += wait_time
            self.total_wait_time += wait_time

    def get_stats(self) -> dict:
        return {
            "limit": self.limit,
            "window_seconds": self.window_seconds,
            "request_count": self.request_count,
            "window_reset_at": self.window_reset_at,
            "total_requests": self.total_requests,
            "total_wait_time": self.total_wait_time,
            "rate_limit_hits": self.rate_limit_hits,
        }
