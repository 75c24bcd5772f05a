"""
Tests for the per-asset state machine.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from polylock.config import RiskCaps, TraderConfig
from polylock.execution import ShadowExchange
from polylock.models import AssetSignal, OrderType, Position, SignalOrder, Window
from polylock.trader.state_machine import AssetStateMachine, TickContext, TraderState

from conftest import WINDOW_START, make_market

MARKET = make_market("BTC")
START = AssetSignal(asset="BTC", order=SignalOrder.START, stability=0.7)
HOLD = AssetSignal(asset="BTC", order=SignalOrder.HOLD, stability=0.7)


def ctx(now, price_yes=0.55, price_no=0.45, signal=START, fills=(), market=MARKET) -> TickContext:
    return TickContext(
        now=now,
        window=Window.at(now),
        market=market,
        price_yes=price_yes,
        price_no=price_no,
        signal=signal,
        fills=list(fills),
    )


def single_level_config(**overrides) -> TraderConfig:
    values = dict(
        entry_price_yes=0.45,
        entry_size=20,
        ladder_levels=(0.40,),
        ladder_size=20,
        recovery_deficit_threshold=100,
    )
    values.update(overrides)
    return TraderConfig(**values)


@pytest.fixture
def exchange():
    exchange = ShadowExchange(starting_balance=1000.0)
    exchange.place_order = AsyncMock(wraps=exchange.place_order)
    return exchange


def placed(exchange):
    """(order_type, price, size) for every order submitted."""
    return [
        (c.args[0].order_type, c.args[0].price, c.args[0].size)
        for c in exchange.place_order.call_args_list
    ]


class TestLifecycle:
    """Tests for the happy path from ARMED to LOCKED."""

    @pytest.mark.asyncio
    async def test_full_cycle_reaches_lock(self, exchange):
        machine = AssetStateMachine("BTC", exchange, config=single_level_config())
        t = WINDOW_START + 100

        await machine.tick(ctx(t))
        assert machine.current_state is TraderState.ENTRY

        await machine.tick(ctx(t + 2))
        assert machine.current_state is TraderState.LADDERING
        assert machine.state.position.yes_shares == 20
        assert machine.state.position.yes_cost == pytest.approx(9.0)

        await machine.tick(ctx(t + 4))
        assert machine.current_state is TraderState.LOCKING
        assert len(exchange.open_orders(MARKET.token_ids)) == 1

        await machine.tick(ctx(t + 6))
        assert machine.current_state is TraderState.LOCKING

        fills = await exchange.match_open_orders({MARKET.no_token_id: 0.40})
        assert len(fills) == 1

        snapshot = await machine.tick(ctx(t + 8, fills=fills))
        assert snapshot.state is TraderState.LOCKED
        assert snapshot.locked
        assert snapshot.pnl_if_yes_wins == pytest.approx(3.0)
        assert snapshot.pnl_if_no_wins == pytest.approx(3.0)

        assert placed(exchange) == [
            (OrderType.FOK, 0.45, 20),
            (OrderType.GTC, 0.40, 20),
        ]

        states = [tr.to_state for tr in machine.state.transitions]
        assert states == [
            TraderState.ARMED,
            TraderState.ENTRY,
            TraderState.LADDERING,
            TraderState.LOCKING,
            TraderState.LOCKED,
        ]

    @pytest.mark.asyncio
    async def test_redelivered_fill_is_applied_once(self, exchange):
        machine = AssetStateMachine("BTC", exchange, config=single_level_config())
        t = WINDOW_START + 100
        for i in range(3):
            await machine.tick(ctx(t + i * 2))

        fills = await exchange.match_open_orders({MARKET.no_token_id: 0.40})
        await machine.tick(ctx(t + 10, fills=fills))
        await machine.tick(ctx(t + 12, fills=fills))

        assert machine.state.position.no_shares == 20
        assert machine.current_state is TraderState.LOCKED

    @pytest.mark.asyncio
    async def test_locked_stays_locked(self, exchange):
        machine = AssetStateMachine("BTC", exchange, config=single_level_config())
        t = WINDOW_START + 100
        for i in range(3):
            await machine.tick(ctx(t + i * 2))
        fills = await exchange.match_open_orders({MARKET.no_token_id: 0.40})
        await machine.tick(ctx(t + 10, fills=fills))

        for i in range(5):
            await machine.tick(ctx(t + 20 + i * 2, price_yes=0.70, price_no=0.30))

        assert machine.current_state is TraderState.LOCKED
        assert len(placed(exchange)) == 2

    @pytest.mark.asyncio
    async def test_guardrails_keep_machine_armed(self, exchange):
        machine = AssetStateMachine("BTC", exchange, config=single_level_config())
        for i in range(3):
            await machine.tick(ctx(WINDOW_START + 100 + i * 2, signal=HOLD))

        assert machine.current_state is TraderState.ARMED
        exchange.place_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_entry_is_attempted_once_even_when_killed(self, exchange):
        """A killed entry still moves on to laddering."""
        machine = AssetStateMachine("BTC", exchange, config=single_level_config(entry_price_yes=0.70))
        t = WINDOW_START + 100

        await machine.tick(ctx(t))
        await machine.tick(ctx(t + 2))

        assert machine.current_state is TraderState.LADDERING
        assert machine.state.position.is_empty
        assert placed(exchange) == [(OrderType.FOK, 0.70, 20)]


class TestTickHandling:
    """Tests for tick idempotence and market availability."""

    @pytest.mark.asyncio
    async def test_repeated_tick_is_a_noop(self, exchange):
        machine = AssetStateMachine("BTC", exchange, config=single_level_config())
        t = WINDOW_START + 100

        await machine.tick(ctx(t, 0.6, 0.4, signal=HOLD))
        first = await machine.tick(ctx(t + 2, 0.4, 0.6, signal=HOLD))
        again = await machine.tick(ctx(t + 2, 0.4, 0.6, signal=HOLD))

        assert again is first
        assert machine.state.leader_tracker.total_flips == 0
        assert machine.state.leader_tracker.pending_flip_count == 1

        await machine.tick(ctx(t + 4, 0.4, 0.6, signal=HOLD))
        assert machine.state.leader_tracker.total_flips == 1

    @pytest.mark.asyncio
    async def test_idle_until_market_resolves(self, exchange):
        machine = AssetStateMachine("BTC", exchange, config=single_level_config())
        t = WINDOW_START + 100

        await machine.tick(ctx(t, market=None))
        assert machine.current_state is TraderState.IDLE

        await machine.tick(ctx(t + 2, signal=HOLD))
        assert machine.current_state is TraderState.ARMED

    @pytest.mark.asyncio
    async def test_missing_prices_skip_dispatch(self, exchange):
        machine = AssetStateMachine("BTC", exchange, config=single_level_config())
        await machine.tick(ctx(WINDOW_START + 100, price_yes=None, price_no=None))

        assert machine.current_state is TraderState.ARMED
        assert machine.state.price_yes is None


class TestWindowReset:
    """Tests for the new-window reset."""

    @pytest.mark.asyncio
    async def test_new_window_resets_and_registers_position(self, exchange):
        resolution = MagicMock()
        machine = AssetStateMachine(
            "BTC", exchange, config=single_level_config(), resolution=resolution
        )
        t = WINDOW_START + 100
        for i in range(3):
            await machine.tick(ctx(t + i * 2))
        assert len(exchange.open_orders()) == 1

        snapshot = await machine.tick(ctx(WINDOW_START + 900 + 100, signal=HOLD))

        assert snapshot.state is TraderState.ARMED
        assert snapshot.window_id == WINDOW_START + 900
        assert snapshot.position.is_empty
        assert not snapshot.locked
        assert not machine.state.entry_done
        assert not machine.state.ladder_done
        assert exchange.open_orders() == []

        resolution.register_position.assert_called_once()
        kwargs = resolution.register_position.call_args.kwargs
        assert kwargs["window_id"] == WINDOW_START
        assert kwargs["asset"] == "BTC"
        assert kwargs["position"].yes_shares == 20
        assert kwargs["end_time"] == WINDOW_START + 900

    @pytest.mark.asyncio
    async def test_empty_position_is_not_registered(self, exchange):
        resolution = MagicMock()
        machine = AssetStateMachine(
            "BTC", exchange, config=single_level_config(), resolution=resolution
        )
        await machine.tick(ctx(WINDOW_START + 100, signal=HOLD))
        await machine.tick(ctx(WINDOW_START + 1000, signal=HOLD))

        resolution.register_position.assert_not_called()


async def start_locking(machine, position: Position, signal=HOLD):
    """Put an armed machine straight into LOCKING with the given position."""
    await machine.tick(ctx(WINDOW_START + 100, signal=signal))
    machine.state.state = TraderState.LOCKING
    machine.state.position = position


class TestRecovery:
    """Tests for deficit recovery."""

    @pytest.mark.asyncio
    async def test_recovery_buys_deficit_side(self, exchange):
        machine = AssetStateMachine("BTC", exchange, caps=RiskCaps(max_pair_cost=2.0))
        await start_locking(machine, Position(yes_shares=20, yes_cost=12))

        await machine.tick(ctx(WINDOW_START + 102))
        assert machine.current_state is TraderState.RECOVERY

        await machine.tick(ctx(WINDOW_START + 104))
        assert machine.current_state is TraderState.LOCKING
        assert placed(exchange) == [(OrderType.IOC, 0.47, 10)]
        assert machine.state.position.no_shares == 10
        assert machine.state.position.no_cost == pytest.approx(4.7)

    @pytest.mark.asyncio
    async def test_recovery_blocked_by_pair_cost(self, exchange):
        machine = AssetStateMachine("BTC", exchange)
        await start_locking(machine, Position(yes_shares=20, yes_cost=12))

        await machine.tick(ctx(WINDOW_START + 102))
        await machine.tick(ctx(WINDOW_START + 104))

        assert machine.current_state is TraderState.LOCKING
        exchange.place_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_small_deficit_stays_locking(self, exchange):
        machine = AssetStateMachine("BTC", exchange)
        await start_locking(machine, Position(yes_shares=10, yes_cost=4, no_shares=3, no_cost=1))

        await machine.tick(ctx(WINDOW_START + 102))
        assert machine.current_state is TraderState.LOCKING


class TestEndgame:
    """Tests for the final-seconds push."""

    @pytest.mark.asyncio
    async def test_single_endgame_attempt(self, exchange):
        machine = AssetStateMachine("BTC", exchange, caps=RiskCaps(max_pair_cost=2.0))
        await start_locking(machine, Position(yes_shares=10, yes_cost=6, no_shares=10, no_cost=5))

        await machine.tick(ctx(WINDOW_START + 892, price_yes=0.95, price_no=0.05))
        assert machine.current_state is TraderState.ENDGAME
        assert machine.state.endgame_done
        assert placed(exchange) == [(OrderType.IOC, 0.97, 6)]

        await machine.tick(ctx(WINDOW_START + 894, price_yes=0.95, price_no=0.05))
        assert len(placed(exchange)) == 1

    @pytest.mark.asyncio
    async def test_endgame_waits_for_winner_price(self, exchange):
        machine = AssetStateMachine("BTC", exchange, caps=RiskCaps(max_pair_cost=2.0))
        await start_locking(machine, Position(yes_shares=10, yes_cost=6, no_shares=10, no_cost=5))

        await machine.tick(ctx(WINDOW_START + 892, price_yes=0.80, price_no=0.20))

        assert machine.current_state is TraderState.ENDGAME
        assert not machine.state.endgame_done
        exchange.place_order.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_endgame_before_entry(self, exchange):
        """ARMED machines never jump to ENDGAME."""
        machine = AssetStateMachine("BTC", exchange)
        await machine.tick(ctx(WINDOW_START + 100, signal=HOLD))
        await machine.tick(ctx(WINDOW_START + 895, signal=HOLD))

        assert machine.current_state is TraderState.ARMED


class TestLaddering:
    """Tests for placing several resting ladder levels."""

    async def run_to_locking(self, machine):
        t = WINDOW_START + 100
        for i in range(3):
            await machine.tick(ctx(t + i * 2))
        assert machine.current_state is TraderState.LOCKING

    @pytest.mark.asyncio
    async def test_rejected_level_is_skipped(self, exchange):
        # 0.50 pushes notional to 19 > 17, the other levels stay under
        machine = AssetStateMachine(
            "BTC",
            exchange,
            config=single_level_config(ladder_levels=(0.30, 0.50, 0.35)),
            caps=RiskCaps(max_notional=17.0),
        )

        await self.run_to_locking(machine)

        assert placed(exchange) == [
            (OrderType.FOK, 0.45, 20),
            (OrderType.GTC, 0.30, 20),
            (OrderType.GTC, 0.35, 20),
        ]
        assert len(exchange.open_orders(MARKET.token_ids)) == 2

    @pytest.mark.asyncio
    async def test_open_order_cap_stops_ladder(self, exchange):
        machine = AssetStateMachine(
            "BTC",
            exchange,
            config=single_level_config(ladder_levels=(0.40, 0.38, 0.36)),
            caps=RiskCaps(max_open_orders=1),
        )

        await self.run_to_locking(machine)

        ladder = [p for p in placed(exchange) if p[0] is OrderType.GTC]
        assert ladder == [(OrderType.GTC, 0.40, 20)]

    @pytest.mark.asyncio
    async def test_every_level_placed_when_caps_allow(self, exchange):
        machine = AssetStateMachine(
            "BTC",
            exchange,
            config=single_level_config(ladder_levels=(0.40, 0.38, 0.36)),
        )

        await self.run_to_locking(machine)

        ladder = [p for p in placed(exchange) if p[0] is OrderType.GTC]
        assert ladder == [
            (OrderType.GTC, 0.40, 20),
            (OrderType.GTC, 0.38, 20),
            (OrderType.GTC, 0.36, 20),
        ]
