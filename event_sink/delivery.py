"""
Event Sink - Delivery.

============================================================
RESPONSIBILITY
============================================================
Hands formatted batches to their destination.

- ApiDelivery: POST {base_url}/api/log in chunks of 50, with
  request spacing and bounded backoff retry
- StdoutDelivery: one JSON line per record (dry runs, piping)

A delivery either returns normally (every record accepted) or
raises DeliveryError carrying how many leading records made it.

============================================================
"""

import asyncio
import json
import logging
import sys
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, TextIO

import aiohttp

from core.backoff import BackoffPolicy
from core.constants import DELIVERY_BATCH_SIZE, DELIVERY_MIN_INTERVAL_SECONDS
from core.exceptions import DeliveryError
from core.rate_limiter import RateLimiter


logger = logging.getLogger(__name__)


class Delivery(ABC):
    """Destination of formatted records."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def send(self, batch: List[Dict[str, Any]]) -> None:
        """
        Deliver a batch.

        Raises:
            DeliveryError: If some records were not accepted
        """
        pass

    async def close(self) -> None:
        return None


# ============================================================
# STDOUT
# ============================================================

class StdoutDelivery(Delivery):
    """Writes records as JSON lines."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    @property
    def name(self) -> str:
        return "stdout"

    async def send(self, batch: List[Dict[str, Any]]) -> None:
        stream = self._stream or sys.stdout
        for record in batch:
            stream.write(json.dumps(record, default=str) + "\n")
        stream.flush()


# ============================================================
# COLLECTOR API
# ============================================================

class ApiDelivery(Delivery):
    """Collector API client over aiohttp."""

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        base_url: str,
        api_key: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = DEFAULT_TIMEOUT,
        batch_size: int = DELIVERY_BATCH_SIZE,
        backoff: Optional[BackoffPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._url = f"{base_url.rstrip('/')}/api/log"
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout
        self._batch_size = batch_size
        self._backoff = backoff or BackoffPolicy()
        self._rate_limiter = rate_limiter or RateLimiter(DELIVERY_MIN_INTERVAL_SECONDS)
        self._sent = 0

    @property
    def name(self) -> str:
        return "api"

    @property
    def url(self) -> str:
        return self._url

    @property
    def sent_count(self) -> int:
        return self._sent

    async def send(self, batch: List[Dict[str, Any]]) -> None:
        delivered = 0
        for start in range(0, len(batch), self._batch_size):
            chunk = batch[start:start + self._batch_size]
            try:
                await self._backoff.call(
                    lambda: self._post(chunk),
                    retry_on=(DeliveryError,),
                    should_retry=lambda e: e.is_retryable,
                    label=f"[{self.name}] POST {len(chunk)} records",
                )
            except DeliveryError as e:
                raise DeliveryError(
                    f"Delivery stopped after {delivered}/{len(batch)} records: {e.message}",
                    status_code=e.status_code,
                    batch_size=len(batch),
                    delivered_count=delivered,
                    cause=e,
                ) from e
            delivered += len(chunk)
            self._sent += len(chunk)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
            self._owns_session = True
        return self._session

    async def _post(self, chunk: List[Dict[str, Any]]) -> None:
        await self._rate_limiter.acquire()
        session = await self._get_session()

        start_time = time.time()
        try:
            async with session.post(
                self._url,
                json=chunk,
                headers={
                    "Content-Type": "application/json",
                    "x-api-key": self._api_key,
                },
            ) as response:
                latency_ms = (time.time() - start_time) * 1000
                if response.status >= 400:
                    body = await response.text()
                    raise DeliveryError(
                        f"HTTP {response.status}: {body[:200]}",
                        status_code=response.status,
                        batch_size=len(chunk),
                    )
                logger.debug(
                    f"[{self.name}] Delivered {len(chunk)} records in {latency_ms:.0f}ms"
                )
        except asyncio.TimeoutError as e:
            raise DeliveryError(
                "Request timeout",
                batch_size=len(chunk),
                cause=e,
            ) from e
        except aiohttp.ClientError as e:
            raise DeliveryError(
                f"Connection error: {e}",
                batch_size=len(chunk),
                cause=e,
            ) from e

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
