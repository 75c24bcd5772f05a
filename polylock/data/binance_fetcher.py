"""
Binance kline fetcher.

Pulls candles for the three score timeframes and turns them into
ScoreInputs. Results are cached per asset for 30 seconds.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp
import numpy as np
import pandas as pd

from ..errors import ExternalServiceError
from ..signals.score_engine import ScoreInputs
from ..utils.logger import get_logger

logger = get_logger("binance")

SYMBOLS = {
    "BTC": "BTCUSDT",
    "ETH": "ETHUSDT",
    "SOL": "SOLUSDT",
    "XRP": "XRPUSDT",
}

# (interval, limit) per timeframe
TIMEFRAMES = {
    "1m": 30,   # micro, last 30 minutes
    "15m": 16,  # meso, last 4 hours
    "4h": 18,   # macro, last 72 hours
}

KLINE_COLUMNS = [
    "open_time", "open", "high", "low", "close", "volume",
    "close_time", "quote_volume", "trades", "taker_base", "taker_quote", "ignore",
]

CACHE_TTL_SECONDS = 30.0
DEFAULT_VOLATILITY = 0.01


@dataclass
class CachedInputs:
    inputs: ScoreInputs
    fetched_at: float


def klines_to_frame(raw: list) -> pd.DataFrame:
    """Raw kline arrays -> DataFrame with float OHLCV columns."""
    if not raw:
        return pd.DataFrame(columns=["open_time", "open", "high", "low", "close", "volume"])
    df = pd.DataFrame(raw, columns=KLINE_COLUMNS[: len(raw[0])])
    for col in ("open", "high", "low", "close", "volume"):
        df[col] = df[col].astype(float)
    return df


def candle_returns(df: pd.DataFrame) -> list[float]:
    """Per-candle (close - open) / open."""
    if df.empty:
        return []
    opens = df["open"]
    returns = ((df["close"] - opens) / opens).where(opens != 0, 0.0)
    return [float(r) for r in returns]


def volatility(returns: list[float]) -> float:
    """Population standard deviation of returns, 0.01 with fewer than two."""
    if len(returns) < 2:
        return DEFAULT_VOLATILITY
    return float(np.std(np.array(returns, dtype=float)))


def net_move(df: pd.DataFrame) -> float:
    """(last close - first open) / first open over the frame."""
    if df.empty:
        return 0.0
    first = float(df["open"].iloc[0])
    last = float(df["close"].iloc[-1])
    if first == 0:
        return 0.0
    return (last - first) / first


class MarketDataFetcher:
    """
    Fetches candles from the Binance REST API.

    Failures surface as ExternalServiceError; callers keep their previous
    score when that happens.
    """

    BASE_URL = "https://api.binance.com"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 5.0,
        cache_ttl_seconds: float = CACHE_TTL_SECONDS,
    ):
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cache: dict[str, CachedInputs] = {}

    async def initialize(self) -> None:
        if not self._session:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        logger.info("Binance fetcher initialized")

    async def close(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def fetch_klines(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        if not self._session:
            await self.initialize()

        url = f"{self.BASE_URL}/api/v3/klines"
        params = {"symbol": symbol, "interval": interval, "limit": limit}
        try:
            async with self._session.get(url, params=params, timeout=self.timeout) as response:
                response.raise_for_status()
                raw = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExternalServiceError(f"Binance klines {symbol} {interval} failed: {e}") from e

        return klines_to_frame(raw)

    async def fetch_all_timeframes(self, asset: str) -> dict[str, pd.DataFrame]:
        symbol = SYMBOLS.get(asset.upper())
        if symbol is None:
            raise ExternalServiceError(f"No Binance symbol for {asset}")

        intervals = list(TIMEFRAMES)
        frames = await asyncio.gather(
            *(self.fetch_klines(symbol, interval, TIMEFRAMES[interval]) for interval in intervals)
        )
        return dict(zip(intervals, frames))

    async def get_score_inputs(self, asset: str) -> ScoreInputs:
        """Score inputs for an asset, served from cache when fresh."""
        now = time.time()
        cached = self._cache.get(asset)
        if cached and now - cached.fetched_at < self.cache_ttl_seconds:
            return cached.inputs

        try:
            frames = await self.fetch_all_timeframes(asset)
        except ExternalServiceError:
            if cached:
                logger.warning(f"Serving stale candles for {asset}", extra={"asset": asset})
                return cached.inputs
            raise
        micro = candle_returns(frames["1m"])

        inputs = ScoreInputs(
            micro_returns=micro,
            meso_returns=candle_returns(frames["15m"]),
            macro_returns=candle_returns(frames["4h"]),
            volatility_30m=volatility(micro),
            net_move=net_move(frames["1m"]),
        )
        self._cache[asset] = CachedInputs(inputs=inputs, fetched_at=now)

        logger.debug(
            f"Fetched candles for {asset}",
            extra={"asset": asset, "micro": len(micro), "vol30m": round(inputs.volatility_30m, 5)},
        )
        return inputs

    def clear_cache(self) -> None:
        self._cache.clear()
