"""
Market resolver for the 15-minute up/down windows.

Maps (asset, window) to the venue market and its two outcome tokens.
"""
import asyncio
from typing import Optional

from ..clients.gamma_client import GammaClient
from ..errors import ExternalServiceError
from ..models import WINDOW_SECONDS, VenueMarket, Window
from ..utils.logger import get_logger

logger = get_logger("market_resolver")

# Assets and their slug prefixes
SUPPORTED_ASSETS = {
    "BTC": "btc-updown-15m",
    "SOL": "sol-updown-15m",
    "XRP": "xrp-updown-15m",
    "ETH": "eth-updown-15m",
}

WINDOW_TOLERANCE_SECONDS = 90


def generate_slug(asset: str, window_start: int) -> str:
    prefix = SUPPORTED_ASSETS.get(asset.upper())
    if not prefix:
        raise ValueError(f"Unsupported asset: {asset}")
    return f"{prefix}-{window_start}"


class MarketResolver:
    """
    Resolves and caches the venue market per asset per window.

    A None result means no tradable venue this tick; it is not cached so
    the next tick retries.
    """

    def __init__(self, gamma_client: GammaClient, timeout_seconds: float = 5.0):
        self.gamma_client = gamma_client
        self.timeout_seconds = timeout_seconds
        self._cache: dict[tuple[str, int], VenueMarket] = {}

    async def resolve_window_market(self, asset: str, window: Window) -> Optional[VenueMarket]:
        key = (asset, window.window_id)
        if key in self._cache:
            return self._cache[key]

        slug = generate_slug(asset, window.start)
        try:
            market = await asyncio.wait_for(
                self.gamma_client.fetch_market_by_slug(slug),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, ExternalServiceError) as e:
            logger.debug(f"[{asset}] Market lookup failed for {slug}: {e}")
            return None

        if market is None:
            logger.debug(f"[{asset}] No market for {slug}")
            return None

        if market.end_date is not None:
            drift = abs(market.end_date.timestamp() - window.end)
            if drift > WINDOW_TOLERANCE_SECONDS:
                logger.debug(f"[{asset}] Market end mismatch for {slug} ({drift:.0f}s)")
                return None

        up = market.get_up_token()
        down = market.get_down_token()
        if not up or not down:
            logger.debug(f"[{asset}] Market {slug} has no token ids")
            return None

        venue = VenueMarket(
            asset=asset,
            slug=slug,
            venue_id=market.condition_id or market.market_id,
            question=market.question,
            end_time=market.end_date,
            yes_token_id=up.token_id,
            no_token_id=down.token_id,
        )

        # Drop markets from previous windows
        self._cache = {k: v for k, v in self._cache.items() if k[1] >= window.window_id}
        self._cache[key] = venue
        return venue


def get_window(now: Optional[float] = None, duration: int = WINDOW_SECONDS) -> Window:
    """The 15-minute window containing `now`."""
    return Window.at(now, duration)
