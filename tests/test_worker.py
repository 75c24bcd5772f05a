"""
Tests for the multi-asset worker.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from polylock.config import Config, TraderConfig
from polylock.execution import ShadowExchange
from polylock.models import AssetSignal, OrderBook, OrderBookLevel, SignalOrder
from polylock.storage import SnapshotStore
from polylock.trader.state_machine import TraderState
from polylock.trader.worker import MultiAssetWorker

from conftest import WINDOW_START, make_market

MARKETS = {"BTC": make_market("BTC"), "SOL": make_market("SOL")}
PRICES = {}
for m in MARKETS.values():
    PRICES[m.yes_token_id] = 0.55
    PRICES[m.no_token_id] = 0.45


def book(token_id: str) -> OrderBook:
    return OrderBook(
        token_id=token_id,
        bids=[OrderBookLevel(0.45, 100)],
        asks=[OrderBookLevel(0.47, 100)],
    )


@pytest.fixture
def resolver():
    resolver = AsyncMock()

    async def resolve(asset, window):
        return MARKETS[asset]

    resolver.resolve_window_market.side_effect = resolve
    return resolver


@pytest.fixture
def price_source():
    source = AsyncMock()

    async def get_price(token_id):
        return PRICES[token_id]

    async def get_order_book(token_id):
        return book(token_id)

    source.get_price.side_effect = get_price
    source.get_order_book.side_effect = get_order_book
    return source


@pytest.fixture
def signals():
    signals = MagicMock()
    signals.signal_for.side_effect = lambda asset: AssetSignal(asset, SignalOrder.START, stability=0.7)
    return signals


def make_worker(resolver, price_source, signals, trader=None, **kwargs) -> MultiAssetWorker:
    trader = trader or TraderConfig(assets=("BTC", "SOL"), call_timeout_seconds=0.2)
    config = Config(trader=trader)
    return MultiAssetWorker(
        config=config,
        exchange=ShadowExchange(),
        price_source=price_source,
        resolver=resolver,
        signals=signals,
        **kwargs,
    )


class TestMultiAssetWorker:
    """Tests for one worker tick across assets."""

    @pytest.mark.asyncio
    async def test_tick_drives_every_asset(self, resolver, price_source, signals):
        worker = make_worker(resolver, price_source, signals)

        state = await worker.process_tick(WINDOW_START + 100)

        assert set(state["assets"]) == {"BTC", "SOL"}
        assert all(a["state"] == TraderState.ENTRY.value for a in state["assets"].values())
        assert state["window"]["id"] == WINDOW_START
        assert state["balance"] == 1000.0
        assert worker.tick_count == 1

    @pytest.mark.asyncio
    async def test_failing_asset_does_not_block_others(self, resolver, price_source, signals):
        async def resolve(asset, window):
            if asset == "SOL":
                raise RuntimeError("boom")
            return MARKETS[asset]

        resolver.resolve_window_market.side_effect = resolve
        worker = make_worker(resolver, price_source, signals)

        state = await worker.process_tick(WINDOW_START + 100)

        assert state["assets"]["BTC"]["state"] == TraderState.ENTRY.value
        assert state["assets"]["SOL"]["state"] == TraderState.IDLE.value

    @pytest.mark.asyncio
    async def test_slow_price_source_only_stalls_its_asset(self, resolver, price_source, signals):
        async def get_price(token_id):
            if token_id.endswith("sol"):
                await asyncio.sleep(10)
            return PRICES[token_id]

        price_source.get_price.side_effect = get_price
        worker = make_worker(resolver, price_source, signals)

        state = await worker.process_tick(WINDOW_START + 100)

        assert state["assets"]["BTC"]["state"] == TraderState.ENTRY.value
        assert state["assets"]["SOL"]["state"] == TraderState.ARMED.value
        assert state["assets"]["SOL"]["priceYes"] is None

    @pytest.mark.asyncio
    async def test_resting_fills_reach_the_machine(self, resolver, price_source, signals):
        trader = TraderConfig(
            assets=("BTC", "SOL"),
            call_timeout_seconds=0.2,
            entry_price_yes=0.55,
            entry_size=20,
            ladder_levels=(0.40,),
            ladder_size=20,
        )
        worker = make_worker(resolver, price_source, signals, trader=trader)
        for i in range(3):
            await worker.process_tick(WINDOW_START + 100 + i * 2)
        assert len(worker.exchange.open_orders()) == 2

        # The ladder bid rests at 0.40; drop NO so it crosses
        PRICES[MARKETS["BTC"].no_token_id] = 0.30
        try:
            state = await worker.process_tick(WINDOW_START + 110)
        finally:
            PRICES[MARKETS["BTC"].no_token_id] = 0.45

        btc = state["assets"]["BTC"]
        assert btc["position"]["no_shares"] == 20
        assert btc["state"] == TraderState.LOCKED.value
        assert state["assets"]["SOL"]["position"]["no_shares"] == 0

    @pytest.mark.asyncio
    async def test_snapshot_written(self, resolver, price_source, signals, tmp_path):
        store = SnapshotStore(str(tmp_path / "worker_state.json"))
        worker = make_worker(resolver, price_source, signals, snapshot_store=store)

        await worker.process_tick(WINDOW_START + 100)

        data = json.loads((tmp_path / "worker_state.json").read_text())
        assert set(data["assets"]) == {"BTC", "SOL"}
        assert "totals" in data

    @pytest.mark.asyncio
    async def test_resolution_failure_is_contained(self, resolver, price_source, signals):
        resolution = MagicMock()
        resolution.check_pending = AsyncMock(side_effect=RuntimeError("db gone"))
        resolution.get_stats.return_value = {}
        worker = make_worker(resolver, price_source, signals, resolution=resolution)

        state = await worker.process_tick(WINDOW_START + 100)

        assert state["stats"] == {}
        resolution.check_pending.assert_awaited_once()
