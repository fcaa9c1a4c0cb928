"""
Event Sink - Buffered Delivery.

============================================================
RESPONSIBILITY
============================================================
Buffers formatted records and flushes them to a Delivery.

- Flushes when the buffer is full or the flush interval has
  elapsed, whichever comes first
- Failed flushes keep the undelivered records buffered; the
  next trigger retries them
- Records starting before send_from_timestamp_ms are dropped
  before buffering

============================================================
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from core.clock import ClockProtocol, SystemClock
from core.exceptions import DeliveryError

from .delivery import Delivery
from .formatters import record_start_ms


logger = logging.getLogger(__name__)


class EventSink:
    """Size/time triggered buffer in front of a Delivery."""

    def __init__(
        self,
        delivery: Delivery,
        max_buffer_size: int = 500,
        flush_interval_seconds: float = 10.0,
        send_from_timestamp_ms: Optional[int] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        if max_buffer_size < 1:
            raise ValueError("max_buffer_size must be at least 1")
        self._delivery = delivery
        self._max_buffer_size = max_buffer_size
        self._flush_interval = flush_interval_seconds
        self._send_from = send_from_timestamp_ms
        self._clock = clock or SystemClock()

        self._buffer: List[Dict[str, Any]] = []
        self._last_flush = self._clock.monotonic()

        self._delivered = 0
        self._dropped = 0
        self._failed_flushes = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def add(self, records: Iterable[Dict[str, Any]]) -> int:
        """
        Buffer records.

        Returns:
            Number of records accepted after the cutoff filter
        """
        accepted = 0
        for record in records:
            if self._send_from is not None:
                start = record_start_ms(record)
                if start is not None and start < self._send_from:
                    self._dropped += 1
                    continue
            self._buffer.append(record)
            accepted += 1
        return accepted

    def should_flush(self) -> bool:
        if not self._buffer:
            return False
        if len(self._buffer) >= self._max_buffer_size:
            return True
        return self._clock.monotonic() - self._last_flush >= self._flush_interval

    async def maybe_flush(self) -> int:
        """Flush if a trigger fired. Returns records delivered."""
        if not self.should_flush():
            return 0
        return await self.flush()

    async def flush(self) -> int:
        """
        Deliver everything buffered.

        Never raises on delivery failure: undelivered records stay
        buffered and the error is logged.

        Returns:
            Records delivered by this call
        """
        if not self._buffer:
            self._last_flush = self._clock.monotonic()
            return 0

        batch = list(self._buffer)
        try:
            await self._delivery.send(batch)
        except DeliveryError as e:
            delivered = e.delivered_count
            del self._buffer[:delivered]
            self._delivered += delivered
            self._failed_flushes += 1
            logger.error(
                f"[{self._delivery.name}] Flush failed, "
                f"{len(self._buffer)} records kept for retry: {e}"
            )
            return delivered

        del self._buffer[:len(batch)]
        self._delivered += len(batch)
        self._last_flush = self._clock.monotonic()
        logger.info(f"[{self._delivery.name}] Flushed {len(batch)} records")
        return len(batch)

    async def close(self) -> None:
        """Force a final flush and release the delivery."""
        await self.flush()
        if self._buffer:
            logger.error(
                f"[{self._delivery.name}] {len(self._buffer)} records "
                f"undelivered at shutdown"
            )
        await self._delivery.close()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "buffered": len(self._buffer),
            "delivered": self._delivered,
            "dropped_before_cutoff": self._dropped,
            "failed_flushes": self._failed_flushes,
        }
