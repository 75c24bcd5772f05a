"""
Order Book Imbalance (OBI) engine.

OBI = (bidVol - askVol) / (bidVol + askVol), in [-1, 1].
Positive = buying pressure, negative = selling pressure. Each side keeps a
rolling 90s average of the per-tick readings.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from ..errors import ExternalServiceError
from ..models import OrderBook, Side
from ..utils.logger import get_logger
from .rolling import Clock, RollingAverage

logger = get_logger("obi")

METHOD_ORDERBOOK = "orderbook"
METHOD_PRICE = "price-based"


@dataclass
class ObiReading:
    """One tick of OBI input, labelled with the method that produced it."""
    method: str
    yes_obi: float
    no_obi: float
    combined: float
    best_bid_yes: Optional[float] = None
    best_bid_no: Optional[float] = None

    @property
    def pair_cost(self) -> Optional[float]:
        """bestBid YES + bestBid NO, when both books were read."""
        if self.best_bid_yes is None or self.best_bid_no is None:
            return None
        return self.best_bid_yes + self.best_bid_no


def calculate_obi(bid_volume: float, ask_volume: float) -> float:
    total = bid_volume + ask_volume
    if total == 0:
        return 0.0
    return (bid_volume - ask_volume) / total


def price_imbalance(price: float) -> float:
    """Deviation from fair value 0.50, scaled to [-1, 1]."""
    return (price - 0.50) * 2


class OBIEngine:
    """Rolling OBI per outcome plus a combined average."""

    def __init__(self, window_seconds: float = 90.0, top_n: int = 10, clock: Clock = time.time):
        self.window_seconds = window_seconds
        self.top_n = top_n
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self._yes = RollingAverage(self.window_seconds, self._clock)
        self._no = RollingAverage(self.window_seconds, self._clock)
        self._combined = RollingAverage(self.window_seconds, self._clock)

    def update(self, bid_volume: float, ask_volume: float, side: Side = Side.YES) -> float:
        """Record a raw volume reading for one side and return its OBI."""
        obi = calculate_obi(bid_volume, ask_volume)
        self._series(side).add(obi)
        yes_latest = self._yes.latest() or 0.0
        no_latest = self._no.latest() or 0.0
        self._combined.add((yes_latest + no_latest) / 2)
        return obi

    def update_from_orderbook(self, book: OrderBook, side: Side) -> float:
        bid_volume = sum(level.size for level in book.bids[:self.top_n])
        ask_volume = sum(level.size for level in book.asks[:self.top_n])
        return self.update(bid_volume, ask_volume, side)

    def update_from_prices(self, price_yes: float, price_no: float) -> ObiReading:
        """Fallback estimator when book depth is unavailable."""
        yes_imbalance = price_imbalance(price_yes)
        no_imbalance = price_imbalance(price_no)
        combined = (yes_imbalance - no_imbalance) / 2

        self._yes.add(yes_imbalance)
        self._no.add(no_imbalance)
        self._combined.add(combined)

        return ObiReading(
            method=METHOD_PRICE,
            yes_obi=yes_imbalance,
            no_obi=no_imbalance,
            combined=combined,
        )

    def _series(self, side: Optional[Side]) -> RollingAverage:
        if side is Side.YES:
            return self._yes
        if side is Side.NO:
            return self._no
        return self._combined

    def rolling_obi(self, side: Optional[Side] = Side.YES) -> float:
        """Rolling average for YES, NO, or combined (side=None). 0 when empty."""
        return self._series(side).average() or 0.0

    def is_blocking(self, side: Side = Side.YES, threshold: float = -0.30) -> bool:
        return self.rolling_obi(side) <= threshold

    @property
    def sample_count(self) -> int:
        return self._yes.count()

    def state(self, threshold: float = -0.30) -> dict:
        return {
            "yesObi": round(self.rolling_obi(Side.YES), 4),
            "noObi": round(self.rolling_obi(Side.NO), 4),
            "combinedObi": round(self.rolling_obi(None), 4),
            "yesBlocking": self.is_blocking(Side.YES, threshold),
            "noBlocking": self.is_blocking(Side.NO, threshold),
            "sampleCount": self.sample_count,
        }


async def refresh_obi(
    price_source,
    yes_token_id: str,
    no_token_id: str,
    engine: OBIEngine,
    timeout: float = 5.0
) -> Optional[ObiReading]:
    """
    Feed the engine from live books, falling back to prices.

    Returns None when neither method produced a reading this tick.
    """
    try:
        yes_book, no_book = await asyncio.wait_for(
            asyncio.gather(
                price_source.get_order_book(yes_token_id),
                price_source.get_order_book(no_token_id),
            ),
            timeout=timeout,
        )
        if yes_book and no_book and (yes_book.bids or yes_book.asks) and (no_book.bids or no_book.asks):
            yes_obi = engine.update_from_orderbook(yes_book, Side.YES)
            no_obi = engine.update_from_orderbook(no_book, Side.NO)
            return ObiReading(
                method=METHOD_ORDERBOOK,
                yes_obi=yes_obi,
                no_obi=no_obi,
                combined=(yes_obi + no_obi) / 2,
                best_bid_yes=yes_book.best_bid,
                best_bid_no=no_book.best_bid,
            )
    except (asyncio.TimeoutError, ExternalServiceError) as e:
        logger.debug(f"OBI book update failed: {e}")

    try:
        yes_price, no_price = await asyncio.wait_for(
            asyncio.gather(
                price_source.get_price(yes_token_id),
                price_source.get_price(no_token_id),
            ),
            timeout=timeout,
        )
        return engine.update_from_prices(
            yes_price if yes_price is not None else 0.50,
            no_price if no_price is not None else 0.50,
        )
    except (asyncio.TimeoutError, ExternalServiceError) as e:
        logger.debug(f"OBI price fallback failed: {e}")
        return None
