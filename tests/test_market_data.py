"""
Tests for venue market resolution and market data parsing.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from polylock.clients.clob_client import parse_order_book
from polylock.clients.gamma_client import GammaClient, Market, Token
from polylock.data.binance_fetcher import (
    MarketDataFetcher,
    candle_returns,
    klines_to_frame,
    net_move,
    volatility,
)
from polylock.data.market_resolver import MarketResolver, generate_slug, get_window
from polylock.errors import ExternalServiceError
from polylock.models import Window

from conftest import WINDOW_START


def gamma_market(end: int = WINDOW_START + 900) -> Market:
    return Market(
        market_id="123",
        condition_id="cond-btc",
        slug=f"btc-updown-15m-{WINDOW_START}",
        question="Bitcoin Up or Down?",
        tokens=[Token("down-token", "Down"), Token("up-token", "Up")],
        end_date=datetime.fromtimestamp(end, tz=timezone.utc),
    )


class TestWindows:
    """Tests for window arithmetic."""

    def test_window_boundaries(self):
        window = get_window(WINDOW_START + 125)

        assert window.window_id == WINDOW_START
        assert window.end == WINDOW_START + 900
        assert window.elapsed == 125
        assert window.remaining == 775

    def test_generate_slug(self):
        assert generate_slug("btc", WINDOW_START) == f"btc-updown-15m-{WINDOW_START}"
        with pytest.raises(ValueError):
            generate_slug("DOGE", WINDOW_START)


class TestMarketResolver:
    """Tests for resolving the venue market per window."""

    @pytest.mark.asyncio
    async def test_maps_up_and_down_tokens(self):
        gamma = AsyncMock()
        gamma.fetch_market_by_slug.return_value = gamma_market()
        resolver = MarketResolver(gamma)

        venue = await resolver.resolve_window_market("BTC", Window.at(WINDOW_START + 10))

        assert venue.yes_token_id == "up-token"
        assert venue.no_token_id == "down-token"
        assert venue.venue_id == "cond-btc"
        gamma.fetch_market_by_slug.assert_awaited_once_with(f"btc-updown-15m-{WINDOW_START}")

    @pytest.mark.asyncio
    async def test_result_is_cached_per_window(self):
        gamma = AsyncMock()
        gamma.fetch_market_by_slug.return_value = gamma_market()
        resolver = MarketResolver(gamma)

        await resolver.resolve_window_market("BTC", Window.at(WINDOW_START + 10))
        await resolver.resolve_window_market("BTC", Window.at(WINDOW_START + 20))

        assert gamma.fetch_market_by_slug.await_count == 1

    @pytest.mark.asyncio
    async def test_end_time_mismatch_is_rejected(self):
        gamma = AsyncMock()
        gamma.fetch_market_by_slug.return_value = gamma_market(end=WINDOW_START + 1800)
        resolver = MarketResolver(gamma)

        assert await resolver.resolve_window_market("BTC", Window.at(WINDOW_START + 10)) is None

    @pytest.mark.asyncio
    async def test_lookup_failure_is_retried_next_tick(self):
        gamma = AsyncMock()
        gamma.fetch_market_by_slug.side_effect = [ExternalServiceError("gamma down"), gamma_market()]
        resolver = MarketResolver(gamma)
        window = Window.at(WINDOW_START + 10)

        assert await resolver.resolve_window_market("BTC", window) is None
        assert await resolver.resolve_window_market("BTC", window) is not None


class TestGammaParsing:
    """Tests for Gamma market payload parsing."""

    def test_parse_string_encoded_lists(self):
        market = GammaClient()._parse_market({
            "id": 42,
            "conditionId": "0xabc",
            "slug": "btc-updown-15m-1",
            "question": "Up or Down?",
            "clobTokenIds": '["111", "222"]',
            "outcomes": '["Up", "Down"]',
            "outcomePrices": '["0.55", "0.45"]',
            "endDate": "2023-11-14T22:30:00Z",
        })

        assert market.market_id == "42"
        assert market.get_up_token().token_id == "111"
        assert market.get_down_token().price == pytest.approx(0.45)
        assert market.end_date.tzinfo is not None

    def test_missing_tokens(self):
        market = GammaClient()._parse_market({"id": 1})
        assert market.get_up_token() is None


class TestClobParsing:
    def test_order_book_is_sorted(self):
        book = parse_order_book("yes", {
            "bids": [{"price": "0.40", "size": "10"}, {"price": "0.45", "size": "5"}],
            "asks": [{"price": "0.50", "size": "3"}, {"price": "0.47", "size": "7"}, {"bad": 1}],
        })

        assert book.best_bid == 0.45
        assert book.best_ask == 0.47
        assert len(book.asks) == 2


class TestCandles:
    """Tests for kline helpers."""

    def raw(self):
        # open_time, open, high, low, close, volume
        return [
            [0, "100", "102", "99", "101", "10"],
            [60, "101", "103", "100", "103.02", "12"],
        ]

    def test_returns_and_net_move(self):
        df = klines_to_frame(self.raw())

        assert candle_returns(df) == pytest.approx([0.01, 0.02])
        assert net_move(df) == pytest.approx(0.0302)

    def test_volatility(self):
        assert volatility([0.01]) == 0.01
        assert volatility([0.01, 0.03]) == pytest.approx(0.01)

    def test_empty_frame(self):
        df = klines_to_frame([])
        assert candle_returns(df) == []
        assert net_move(df) == 0.0


class TestMarketDataFetcher:
    """Tests for score input caching."""

    def frames(self):
        df = klines_to_frame(TestCandles().raw())
        return {"1m": df, "15m": df, "4h": df}

    @pytest.mark.asyncio
    async def test_score_inputs_from_frames(self):
        fetcher = MarketDataFetcher()
        fetcher.fetch_all_timeframes = AsyncMock(return_value=self.frames())

        inputs = await fetcher.get_score_inputs("BTC")
        await fetcher.get_score_inputs("BTC")

        assert inputs.micro_returns == pytest.approx([0.01, 0.02])
        assert inputs.volatility_30m == pytest.approx(0.005)
        assert fetcher.fetch_all_timeframes.await_count == 1

    @pytest.mark.asyncio
    async def test_stale_inputs_served_on_failure(self):
        fetcher = MarketDataFetcher(cache_ttl_seconds=0)
        fetcher.fetch_all_timeframes = AsyncMock(return_value=self.frames())
        first = await fetcher.get_score_inputs("BTC")

        fetcher.fetch_all_timeframes.side_effect = ExternalServiceError("binance down")

        assert await fetcher.get_score_inputs("BTC") is first

    @pytest.mark.asyncio
    async def test_failure_without_cache_raises(self):
        fetcher = MarketDataFetcher()
        fetcher.fetch_all_timeframes = AsyncMock(side_effect=ExternalServiceError("binance down"))

        with pytest.raises(ExternalServiceError):
            await fetcher.get_score_inputs("BTC")

    @pytest.mark.asyncio
    async def test_fetches_only_score_timeframes(self):
        fetcher = MarketDataFetcher()
        fetcher.fetch_klines = AsyncMock(return_value=klines_to_frame(TestCandles().raw()))

        frames = await fetcher.fetch_all_timeframes("BTC")

        assert set(frames) == {"1m", "15m", "4h"}
        intervals = [c.args[1] for c in fetcher.fetch_klines.call_args_list]
        assert sorted(intervals) == ["15m", "1m", "4h"]
