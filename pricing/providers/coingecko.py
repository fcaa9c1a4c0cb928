"""
CoinGecko Price Source - Historical daily USD prices.

Uses the /coins/{id}/history endpoint, which returns the snapshot
price of a coin for a given date (dd-mm-yyyy, UTC).

Tiers:
- Pro (api key set): pro-api.coingecko.com, x-cg-pro-api-key header
- Public (no key): api.coingecko.com, heavily throttled
"""

import asyncio
import logging
import time
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import aiohttp

from core.constants import COINGECKO_PRO_BASE_URL, COINGECKO_PUBLIC_BASE_URL
from core.exceptions import PriceFetchError, PriceParseError, PriceRateLimitError
from pricing.providers.base import PriceSource


logger = logging.getLogger(__name__)


class CoinGeckoPriceSource(PriceSource):
    """CoinGecko historical price source over aiohttp."""

    DEFAULT_TIMEOUT = 30.0
    DEFAULT_RETRY_AFTER_SECONDS = 60

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = (
            base_url
            or (COINGECKO_PRO_BASE_URL if api_key else COINGECKO_PUBLIC_BASE_URL)
        ).rstrip("/")
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._last_latency_ms: Optional[float] = None

    @property
    def name(self) -> str:
        return "coingecko"

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def last_latency_ms(self) -> Optional[float]:
        return self._last_latency_ms

    async def fetch_usd_price(self, price_feed_id: str, day: date) -> Optional[Decimal]:
        url = f"{self._base_url}/coins/{price_feed_id}/history"
        params = {
            "date": day.strftime("%d-%m-%Y"),
            "localization": "false",
        }
        data = await self._make_request(url, params, price_feed_id)
        return self.parse_price(data, price_feed_id)

    @staticmethod
    def parse_price(data: Any, price_feed_id: str) -> Optional[Decimal]:
        """
        Extract market_data.current_price.usd.

        Returns None when the coin has no market data for the day
        (CoinGecko omits market_data before listing).
        """
        if not isinstance(data, dict):
            raise PriceParseError(
                f"Unexpected response type {type(data).__name__}",
                price_feed_id=price_feed_id,
            )

        usd = (
            (data.get("market_data") or {})
            .get("current_price", {})
            .get("usd")
        )
        if usd is None:
            return None

        try:
            return Decimal(str(usd))
        except InvalidOperation as e:
            raise PriceParseError(
                f"Invalid usd price {usd!r}",
                price_feed_id=price_feed_id,
                cause=e,
            )

    # ─────────────────────────────────────────────────────────────
    # HTTP Helpers
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": "twb-indexer/1.0",
        }
        if self._api_key:
            headers["x-cg-pro-api-key"] = self._api_key
        return headers

    async def _make_request(
        self,
        url: str,
        params: dict[str, Any],
        price_feed_id: str,
    ) -> Any:
        session = await self._get_session()

        start_time = time.time()
        try:
            async with session.get(
                url,
                params=params,
                headers=self._get_default_headers(),
            ) as response:
                self._last_latency_ms = (time.time() - start_time) * 1000

                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise PriceRateLimitError(
                        "Rate limit exceeded",
                        price_feed_id=price_feed_id,
                        retry_after_seconds=(
                            float(retry_after) if retry_after
                            else self.DEFAULT_RETRY_AFTER_SECONDS
                        ),
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise PriceFetchError(
                        f"HTTP {response.status}: {body[:200]}",
                        price_feed_id=price_feed_id,
                        status_code=response.status,
                    )

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise PriceParseError(
                        "Response body is not JSON",
                        price_feed_id=price_feed_id,
                        cause=e,
                    )

        except asyncio.TimeoutError as e:
            raise PriceFetchError(
                "Request timeout",
                price_feed_id=price_feed_id,
                cause=e,
            )
        except aiohttp.ClientError as e:
            raise PriceFetchError(
                f"Connection error: {e}",
                price_feed_id=price_feed_id,
                cause=e,
            )

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
