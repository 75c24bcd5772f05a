"""
Gamma API client for Polymarket market metadata.
Looks up the 15-minute up/down events by slug.
"""

import json
from dataclasses import dataclass, field
from typing import Optional
from datetime import datetime

import aiohttp

from ..errors import ExternalServiceError
from ..utils.logger import get_logger

logger = get_logger("gamma")


@dataclass
class Token:
    """Token (outcome) information."""
    token_id: str
    outcome: str  # "Up" / "Down" for the 15m markets
    price: float = 0.0


@dataclass
class Market:
    """Market information."""
    market_id: str
    condition_id: str
    slug: str
    question: str
    tokens: list[Token] = field(default_factory=list)
    active: bool = True
    closed: bool = False
    end_date: Optional[datetime] = None

    def get_token(self, outcome: str, fallback_index: int) -> Optional[Token]:
        """Find a token by outcome name, falling back to its position."""
        for token in self.tokens:
            if token.outcome.lower() == outcome.lower():
                return token
        return self.tokens[fallback_index] if len(self.tokens) > fallback_index else None

    def get_up_token(self) -> Optional[Token]:
        return self.get_token("up", 0)

    def get_down_token(self) -> Optional[Token]:
        return self.get_token("down", 1)


def _parse_list(raw) -> list:
    """Gamma returns some arrays as JSON strings, some as lists."""
    if isinstance(raw, list):
        return raw
    if not raw:
        return []
    if raw.startswith("["):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            pass
    return raw.split(",")


class GammaClient:
    """
    Client for Polymarket Gamma API.

    The Gamma API provides event and market metadata without
    requiring authentication.
    """

    BASE_URL = "https://gamma-api.polymarket.com"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout_seconds: float = 5.0):
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def initialize(self) -> None:
        """Initialize HTTP session."""
        if not self._session:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        logger.info("Gamma client initialized")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(self, endpoint: str, params: Optional[dict] = None):
        """Make HTTP request to Gamma API."""
        if not self._session:
            await self.initialize()

        url = f"{self.BASE_URL}{endpoint}"

        try:
            async with self._session.get(url, params=params, timeout=self.timeout) as response:
                response.raise_for_status()
                return await response.json()
        except aiohttp.ClientError as e:
            raise ExternalServiceError(f"Gamma API request failed: {e}") from e

    async def fetch_market_by_slug(self, slug: str) -> Optional[Market]:
        """
        Fetch the first open market of the event with this slug.

        Returns:
            Market or None if the event does not exist or is closed
        """
        data = await self._request("/events", params={"slug": slug})
        if not data:
            return None

        event = data[0]
        if event.get("closed"):
            return None

        markets = event.get("markets", [])
        if not markets:
            return None

        market = self._parse_market(markets[0])
        if market.closed:
            return None
        return market

    def _parse_market(self, data: dict) -> Market:
        """Parse market from API response."""
        token_ids = _parse_list(data.get("clobTokenIds", ""))
        outcomes = _parse_list(data.get("outcomes", ""))
        prices = _parse_list(data.get("outcomePrices", ""))

        tokens = []
        for i, token_id in enumerate(token_ids):
            token_id = str(token_id).strip()
            if not token_id:
                continue

            outcome = str(outcomes[i]).strip() if i < len(outcomes) else f"Outcome {i}"
            try:
                price = float(str(prices[i]).strip()) if i < len(prices) else 0.0
            except (ValueError, TypeError):
                price = 0.0

            tokens.append(Token(token_id=token_id, outcome=outcome, price=price))

        end_date = None
        end_date_str = data.get("endDate")
        if end_date_str:
            try:
                end_date = datetime.fromisoformat(end_date_str.replace("Z", "+00:00"))
            except (ValueError, TypeError):
                logger.debug(f"Unparseable endDate {end_date_str!r}")

        return Market(
            market_id=str(data.get("id", "")),
            condition_id=data.get("conditionId", ""),
            slug=data.get("slug", ""),
            question=data.get("question", ""),
            tokens=tokens,
            active=data.get("active", True),
            closed=data.get("closed", False),
            end_date=end_date
        )
