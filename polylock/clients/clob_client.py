"""
Read-only CLOB client for Polymarket prices and order books.
Uses the public REST endpoints; no credentials required.
"""

from typing import Optional
import time

import aiohttp

from ..errors import ExternalServiceError
from ..models import OrderBook, OrderBookLevel
from ..utils.logger import get_logger

logger = get_logger("clob")


class ClobPriceClient:
    """
    Price source for outcome tokens.

    get_price returns the best buy price in [0, 1]; get_order_book returns
    a normalized book (bids descending, asks ascending).
    """

    BASE_URL = "https://clob.polymarket.com"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout_seconds: float = 5.0):
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def initialize(self) -> None:
        if not self._session:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        logger.info("CLOB price client initialized")

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(self, endpoint: str, params: dict) -> dict:
        if not self._session:
            await self.initialize()

        url = f"{self.BASE_URL}{endpoint}"
        try:
            async with self._session.get(url, params=params, timeout=self.timeout) as response:
                response.raise_for_status()
                return await response.json()
        except aiohttp.ClientError as e:
            raise ExternalServiceError(f"CLOB request {endpoint} failed: {e}") from e

    async def get_price(self, token_id: str) -> Optional[float]:
        """
        Get the current buy price for a token.

        Returns:
            Price in [0, 1], or None if the venue returned no price
        """
        data = await self._request("/price", {"token_id": token_id, "side": "buy"})
        raw = data.get("price") if data else None
        if raw is None:
            return None
        try:
            price = float(raw)
        except (TypeError, ValueError):
            raise ExternalServiceError(f"Invalid price payload for {token_id}: {raw!r}")
        if not 0.0 <= price <= 1.0:
            raise ExternalServiceError(f"Price {price} out of range for {token_id}")
        return price

    async def get_order_book(self, token_id: str) -> OrderBook:
        """Get the order book snapshot for a token."""
        data = await self._request("/book", {"token_id": token_id})
        return parse_order_book(token_id, data or {})


def parse_order_book(token_id: str, data: dict) -> OrderBook:
    """Convert the raw book payload (string prices/sizes) to an OrderBook."""
    def levels(raw_levels) -> list[OrderBookLevel]:
        parsed = []
        for level in raw_levels or []:
            try:
                parsed.append(OrderBookLevel(price=float(level["price"]), size=float(level["size"])))
            except (KeyError, TypeError, ValueError):
                continue
        return parsed

    bids = sorted(levels(data.get("bids")), key=lambda lvl: lvl.price, reverse=True)
    asks = sorted(levels(data.get("asks")), key=lambda lvl: lvl.price)
    return OrderBook(token_id=token_id, bids=bids, asks=asks, timestamp=time.time())
