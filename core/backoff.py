"""
Core Module - Backoff Policy.

============================================================
RESPONSIBILITY
============================================================
Bounded exponential backoff with jitter for outbound calls.

- Shared by the price source and the collector delivery
- Injected as an object so tests can use zero delays
- Honors Retry-After hints carried by rate-limit errors

============================================================
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BackoffPolicy:
    """
    Retry schedule: initial * multiplier**attempt, capped, then jittered.

    max_retries counts retries after the first attempt, so an operation
    runs at most max_retries + 1 times.
    """

    max_retries: int = 10
    initial_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 60.0
    jitter: Tuple[float, float] = (0.85, 1.15)
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def no_delay(cls, max_retries: int = 3) -> "BackoffPolicy":
        """Policy that retries immediately (tests, replay)."""
        return cls(
            max_retries=max_retries,
            initial_delay_seconds=0.0,
            max_delay_seconds=0.0,
            jitter=(1.0, 1.0),
        )

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Delay before retry number `attempt` (0-based).

        Args:
            attempt: Retry index
            retry_after: Server hint in seconds, used as a floor
        """
        base = min(
            self.initial_delay_seconds * (self.multiplier ** attempt),
            self.max_delay_seconds,
        )
        low, high = self.jitter
        delay = base * self.rng.uniform(low, high) if low != high else base * low
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_on: Tuple[Type[BaseException], ...],
        should_retry: Optional[Callable[[BaseException], bool]] = None,
        label: str = "operation",
    ) -> T:
        """
        Run operation, retrying on the given exception types.

        Raises:
            The last exception once retries are exhausted, or any
            exception that is not retryable.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except retry_on as e:
                if should_retry is not None and not should_retry(e):
                    raise
                if attempt >= self.max_retries:
                    logger.error(f"{label} failed after {attempt + 1} attempts: {e}")
                    raise

                retry_after = getattr(e, "retry_after_seconds", None)
                wait_time = self.delay_for(attempt, retry_after)
                logger.warning(
                    f"{label} retry {attempt + 1}/{self.max_retries} "
                    f"in {wait_time:.2f}s: {e}"
                )
                await self.sleep(wait_time)
                attempt += 1
