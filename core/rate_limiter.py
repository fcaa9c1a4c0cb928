"""
Core Module - Rate Limiter.

Enforces a minimum spacing between outbound requests of one client.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from .clock import ClockProtocol, SystemClock


class RateLimiter:
    """Minimum-interval limiter; concurrent callers queue on a lock."""

    def __init__(
        self,
        min_interval_seconds: float,
        clock: Optional[ClockProtocol] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be non-negative")
        self._min_interval = min_interval_seconds
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._next_allowed: Optional[float] = None
        self._waits = 0

    @property
    def min_interval_seconds(self) -> float:
        return self._min_interval

    @property
    def wait_count(self) -> int:
        """How many acquisitions had to sleep."""
        return self._waits

    async def acquire(self) -> None:
        """Wait until the next request slot."""
        async with self._lock:
            now = self._clock.monotonic()
            if self._next_allowed is not None and now < self._next_allowed:
                wait_time = self._next_allowed - now
                self._waits += 1
                await self._sleep(wait_time)
                now = self._next_allowed
            self._next_allowed = now + self._min_interval
