"""
Per-asset trading state machine.

IDLE -> ARMED -> ENTRY -> LADDERING -> LOCKING -> {LOCKED | RECOVERY} -> ENDGAME

Each tick runs exactly one state handler. A new window is the only total
reset: position, trackers, lock state and phase flags are cleared and the
machine goes back to ARMED (or IDLE when no market is available).

All per-window mutable state lives in one AssetState record owned by the
machine. The only shared resource is the exchange ledger.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..config import RiskCaps, TraderConfig
from ..data.leader_tracker import LeaderTracker, LeaderUpdate
from ..data.obi import OBIEngine, ObiReading
from ..errors import ExternalServiceError, OrderRejectedError, RecoveryNotPossibleError
from ..execution.exchange import ExchangeInterface
from ..models import (
    AssetSignal,
    Fill,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    Side,
    VenueMarket,
    Window,
)
from ..risk.limiter import RiskLimiter
from ..utils.logger import TradeLogger, get_logger
from .guardrails import EntryMode, GuardrailEvaluator, GuardrailInputs
from .lock_detector import LockDetector, analyze, recovery_shares
from .resolution import ResolutionTracker

logger = get_logger("state_machine")

MAX_ORDER_PRICE = 0.99
TRANSITION_HISTORY = 50


class TraderState(str, Enum):
    IDLE = "IDLE"
    ARMED = "ARMED"  # waiting for guardrails
    ENTRY = "ENTRY"
    LADDERING = "LADDERING"
    LOCKING = "LOCKING"
    LOCKED = "LOCKED"
    RECOVERY = "RECOVERY"
    ENDGAME = "ENDGAME"  # final seconds


ENDGAME_FROM = (TraderState.LOCKING, TraderState.LOCKED, TraderState.RECOVERY)


@dataclass
class Transition:
    from_state: TraderState
    to_state: TraderState
    reason: str
    at: float


@dataclass
class TickContext:
    """Inputs gathered by the worker for one asset-tick."""
    now: float
    window: Window
    market: Optional[VenueMarket] = None
    price_yes: Optional[float] = None
    price_no: Optional[float] = None
    signal: Optional[AssetSignal] = None
    obi_reading: Optional[ObiReading] = None
    fills: list[Fill] = field(default_factory=list)


@dataclass
class AssetSnapshot:
    """Per-tick export consumed by the dashboard and the snapshot file."""
    asset: str
    state: TraderState
    window_id: Optional[int]
    leader: Optional[Side]
    flip_count: int
    obi: float
    position: Position
    locked: bool
    pnl_if_yes_wins: float
    pnl_if_no_wins: float
    price_yes: Optional[float]
    price_no: Optional[float]

    def to_dict(self) -> dict:
        return {
            "asset": self.asset,
            "state": self.state.value,
            "windowId": self.window_id,
            "leader": self.leader.value if self.leader else None,
            "flipCount": self.flip_count,
            "obi": round(self.obi, 4),
            "position": self.position.to_dict(),
            "locked": self.locked,
            "pnlIfYesWins": round(self.pnl_if_yes_wins, 4),
            "pnlIfNoWins": round(self.pnl_if_no_wins, 4),
            "priceYes": self.price_yes,
            "priceNo": self.price_no,
        }


@dataclass
class AssetState:
    """Everything one asset owns for the current window."""
    asset: str
    leader_tracker: LeaderTracker
    obi_engine: OBIEngine
    lock_detector: LockDetector
    state: TraderState = TraderState.IDLE
    window: Optional[Window] = None
    market: Optional[VenueMarket] = None
    position: Position = field(default_factory=Position)
    entry_done: bool = False
    ladder_done: bool = False
    endgame_done: bool = False
    price_yes: Optional[float] = None
    price_no: Optional[float] = None
    last_leader: Optional[LeaderUpdate] = None
    resting_order_ids: set[str] = field(default_factory=set)
    applied_fill_ids: set[str] = field(default_factory=set)
    last_tick_at: Optional[float] = None
    transitions: list[Transition] = field(default_factory=list)

    @property
    def window_id(self) -> Optional[int]:
        return self.window.window_id if self.window else None


class AssetStateMachine:
    """
    Drives one asset through its trading lifecycle.

    Every order attempt is gated by the risk limiter and wrapped so that a
    failure degrades to a logged no-op. Each phase is attempted at most
    once per window, whether or not the attempt succeeded.
    """

    def __init__(
        self,
        asset: str,
        exchange: ExchangeInterface,
        guardrails: Optional[GuardrailEvaluator] = None,
        risk_limiter: Optional[RiskLimiter] = None,
        config: Optional[TraderConfig] = None,
        caps: Optional[RiskCaps] = None,
        resolution: Optional[ResolutionTracker] = None,
        trade_logger: Optional[TradeLogger] = None,
        rolling_window_seconds: float = 90.0,
    ):
        self.asset = asset
        self.exchange = exchange
        self.config = config or TraderConfig()
        self.guardrails = guardrails or GuardrailEvaluator()
        self.trade_logger = trade_logger or TradeLogger()
        self.risk = risk_limiter or RiskLimiter(caps, self.trade_logger)
        self.caps = caps or self.risk.caps
        self.resolution = resolution

        self.state = AssetState(
            asset=asset,
            leader_tracker=LeaderTracker(rolling_window_seconds),
            obi_engine=OBIEngine(rolling_window_seconds),
            lock_detector=LockDetector(asset, self.trade_logger),
        )
        self._last_snapshot: Optional[AssetSnapshot] = None

    # ------------------------------------------------------------------
    # Window lifecycle
    # ------------------------------------------------------------------

    async def ensure_window(self, window: Window, market: Optional[VenueMarket]) -> bool:
        """
        Align the machine with the current window.

        Returns True when this call started a new window.
        """
        s = self.state
        if s.window_id != window.window_id:
            await self._start_window(window, market)
            return True

        if market is not None and s.market is None:
            s.market = market
            if s.state is TraderState.IDLE:
                self._transition(TraderState.ARMED, "market resolved", window.now)
        return False

    async def _start_window(self, window: Window, market: Optional[VenueMarket]) -> None:
        s = self.state
        previous_window, previous_market = s.window, s.market

        if previous_window is not None:
            logger.info(f"[{self.asset}] New window detected", extra={"asset": self.asset, "window_id": window.window_id})

            if self.resolution is not None and previous_market is not None and not s.position.is_empty:
                self.resolution.register_position(
                    window_id=previous_window.window_id,
                    asset=self.asset,
                    position=s.position.copy(),
                    end_time=previous_window.end,
                    yes_token_id=previous_market.yes_token_id,
                    no_token_id=previous_market.no_token_id,
                )

            if previous_market is not None and s.resting_order_ids:
                try:
                    await self.exchange.cancel_all(previous_market.token_ids)
                except (ExternalServiceError, OrderRejectedError) as e:
                    logger.warning(f"[{self.asset}] Could not cancel old orders: {e}")

        s.window = window
        s.market = market
        s.position = Position()
        s.entry_done = False
        s.ladder_done = False
        s.endgame_done = False
        s.price_yes = None
        s.price_no = None
        s.resting_order_ids = set()
        s.applied_fill_ids = set()
        s.leader_tracker.reset_for_new_window()
        s.obi_engine.reset()
        s.lock_detector.reset()

        target = TraderState.ARMED if market is not None else TraderState.IDLE
        self._transition(target, "new window", window.now)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, ctx: TickContext) -> AssetSnapshot:
        s = self.state

        # Same or older tick: nothing new to apply
        if s.last_tick_at is not None and ctx.now <= s.last_tick_at and self._last_snapshot is not None:
            return self._last_snapshot

        await self.ensure_window(ctx.window, ctx.market)
        s.last_tick_at = ctx.now

        self._apply_fills(ctx.fills)

        fresh_prices = ctx.price_yes is not None and ctx.price_no is not None
        if fresh_prices:
            s.price_yes, s.price_no = ctx.price_yes, ctx.price_no
            s.last_leader = s.leader_tracker.update(ctx.price_yes, ctx.price_no)

        if s.market is not None and s.price_yes is not None and s.price_no is not None:
            await self._dispatch(ctx)

        self._last_snapshot = self.snapshot()
        return self._last_snapshot

    async def _dispatch(self, ctx: TickContext) -> None:
        s = self.state

        if s.state in ENDGAME_FROM and ctx.window.remaining <= self.config.endgame_seconds:
            self._transition(TraderState.ENDGAME, f"{ctx.window.remaining:.0f}s left", ctx.now)

        if s.state is TraderState.ARMED:
            self._handle_armed(ctx)
        elif s.state is TraderState.ENTRY:
            await self._handle_entry(ctx)
        elif s.state is TraderState.LADDERING:
            await self._handle_laddering(ctx)
        elif s.state is TraderState.LOCKING:
            self._handle_locking(ctx)
        elif s.state is TraderState.RECOVERY:
            await self._handle_recovery(ctx)
        elif s.state is TraderState.ENDGAME:
            await self._handle_endgame(ctx)
        # LOCKED and IDLE wait

    def _apply_fills(self, fills: list[Fill]) -> None:
        s = self.state
        if s.market is None:
            return

        for fill in fills:
            if fill.order_id in s.applied_fill_ids:
                continue
            side = s.market.side_for(fill.token_id)
            if side is None or fill.side is not OrderSide.BUY:
                continue

            s.position.apply_buy(side, fill.size, fill.price)
            s.applied_fill_ids.add(fill.order_id)
            s.resting_order_ids.discard(fill.order_id)
            self.trade_logger.order_filled(self.asset, fill.order_id, side.value, fill.price, fill.size)

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _handle_armed(self, ctx: TickContext) -> None:
        s = self.state
        leader = s.leader_tracker.leader
        if leader is None:
            return

        signal = ctx.signal or AssetSignal(asset=self.asset)
        decision = self.guardrails.check_all(GuardrailInputs(
            elapsed_seconds=ctx.window.elapsed,
            window_seconds=ctx.window.duration,
            obi=s.obi_engine.rolling_obi(leader),
            obi_side=leader,
            flip_count=s.leader_tracker.flip_count,
            shares=s.position.total_shares,
            stability=signal.stability,
            price_yes=s.price_yes,
            price_no=s.price_no,
            upstream_order=signal.order,
            pair_cost=ctx.obi_reading.pair_cost if ctx.obi_reading else None,
        ))

        if not decision.allowed:
            logger.debug(f"[{self.asset}] Guardrails: {decision.summary}")
            return

        if decision.mode is EntryMode.RECOVERY:
            self._transition(TraderState.RECOVERY, decision.summary, ctx.now)
        else:
            self._transition(TraderState.ENTRY, decision.summary, ctx.now)

    async def _handle_entry(self, ctx: TickContext) -> None:
        s = self.state
        if s.entry_done:
            self._transition(TraderState.LADDERING, "entry already attempted", ctx.now)
            return

        leader = s.leader_tracker.leader or Side.NO
        price = self.config.entry_price_yes if leader is Side.YES else self.config.entry_price_no
        size = self.config.entry_size

        if (
            self.risk.can_place_order(s.position, price, size, self.caps, self.asset, "ENTRY")
            and self.risk.can_add_pair_position(
                s.position, leader, price, size, OrderType.FOK, self.caps, self.asset, "ENTRY"
            )
        ):
            logger.info(f"[{self.asset}] Executing entry: BUY {leader.value} @ {price:.2f}")
            await self._place("ENTRY", leader, price, size, OrderType.FOK)

        s.entry_done = True
        self._transition(TraderState.LADDERING, "entry attempted", ctx.now)

    async def _handle_laddering(self, ctx: TickContext) -> None:
        s = self.state
        if s.ladder_done:
            self._transition(TraderState.LOCKING, "ladder already placed", ctx.now)
            return

        leader = s.leader_tracker.leader or Side.NO
        side = leader.opposite
        size = self.config.ladder_size

        for price in self.config.ladder_levels:
            open_count = len(self.exchange.open_orders(s.market.token_ids))
            if not self.risk.can_open_resting_order(open_count, self.caps, self.asset, "LADDER"):
                break
            if not self.risk.can_place_order(s.position, price, size, self.caps, self.asset, "LADDER"):
                continue
            if not self.risk.can_add_pair_position(
                s.position, side, price, size, OrderType.GTC, self.caps, self.asset, "LADDER"
            ):
                continue
            await self._place("LADDER", side, price, size, OrderType.GTC)

        s.ladder_done = True
        self._transition(TraderState.LOCKING, f"ladder placed on {side.value}", ctx.now)

    def _handle_locking(self, ctx: TickContext) -> None:
        s = self.state
        status = s.lock_detector.check_lock(s.position)
        analysis = status.analysis

        if status.locked:
            self._transition(
                TraderState.LOCKED,
                f"YES:${analysis.pnl_if_yes_wins:.2f} NO:${analysis.pnl_if_no_wins:.2f}",
                ctx.now,
            )
            return

        deficit = analysis.deficit(analysis.recovery_side)
        if analysis.needs_recovery and deficit > self.config.recovery_deficit_threshold:
            self._transition(
                TraderState.RECOVERY,
                f"deficit ${deficit:.2f} on {analysis.recovery_side.value}",
                ctx.now,
            )
            return

        logger.debug(
            f"[{self.asset}] Lock check: YES=${analysis.pnl_if_yes_wins:.2f} NO=${analysis.pnl_if_no_wins:.2f}"
        )

    async def _handle_recovery(self, ctx: TickContext) -> None:
        s = self.state
        analysis = analyze(s.position)
        side = analysis.recovery_side
        deficit = analysis.deficit(side)
        price = s.price_yes if side is Side.YES else s.price_no

        try:
            needed = recovery_shares(deficit, price, self.config.recovery_buffer_shares)
        except RecoveryNotPossibleError as e:
            logger.warning(f"[{self.asset}] {e}")
            self._transition(TraderState.LOCKING, "recovery not possible", ctx.now)
            return

        if 0 < needed < self.config.recovery_max_shares:
            order_price = min(price + self.config.aggressive_price_bump, MAX_ORDER_PRICE)
            size = min(needed, self.config.recovery_order_size)

            full = self.risk.check_order(s.position, price, needed, self.caps)
            if not full.allowed:
                self.trade_logger.order_blocked(self.asset, "RECOVERY", full.reason)
            elif (
                self.risk.can_place_order(s.position, order_price, size, self.caps, self.asset, "RECOVERY")
                and self.risk.can_add_pair_position(
                    s.position, side, order_price, size, OrderType.IOC, self.caps, self.asset, "RECOVERY"
                )
            ):
                logger.info(f"[{self.asset}] Recovery: BUY {size} {side.value} @ {order_price:.2f}")
                await self._place("RECOVERY", side, order_price, size, OrderType.IOC)

        self._transition(TraderState.LOCKING, "recovery attempted", ctx.now)

    async def _handle_endgame(self, ctx: TickContext) -> None:
        s = self.state
        if s.endgame_done:
            return

        leader = s.leader_tracker.leader
        if leader is None:
            return
        winner_price = s.price_yes if leader is Side.YES else s.price_no
        if winner_price < self.config.endgame_price:
            return

        deficit = analyze(s.position).deficit(leader)
        if deficit <= 0:
            return

        try:
            needed = recovery_shares(deficit, winner_price, buffer=0)
        except RecoveryNotPossibleError:
            return

        s.endgame_done = True
        size = min(self.config.endgame_max_shares, needed)
        order_price = min(winner_price + self.config.aggressive_price_bump, MAX_ORDER_PRICE)

        logger.info(
            f"[{self.asset}] ENDGAME: {leader.value} @ {winner_price:.2f} ({ctx.window.remaining:.0f}s left)"
        )
        if (
            self.risk.can_place_order(s.position, order_price, size, self.caps, self.asset, "ENDGAME")
            and self.risk.can_add_pair_position(
                s.position, leader, order_price, size, OrderType.IOC, self.caps, self.asset, "ENDGAME"
            )
        ):
            await self._place("ENDGAME", leader, order_price, size, OrderType.IOC)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _place(
        self,
        label: str,
        side: Side,
        price: float,
        size: float,
        order_type: OrderType,
    ) -> Optional[OrderResult]:
        """Submit one order. Failures are logged and return None."""
        s = self.state
        request = OrderRequest(
            token_id=s.market.token_for(side),
            side=OrderSide.BUY,
            price=round(price, 2),
            size=size,
            order_type=order_type,
        )

        try:
            result = await asyncio.wait_for(
                self.exchange.place_order(request),
                timeout=self.config.call_timeout_seconds,
            )
        except (asyncio.TimeoutError, ExternalServiceError, OrderRejectedError) as e:
            logger.warning(f"[{self.asset}] {label} order error: {e}", extra={"asset": self.asset})
            return None

        self.trade_logger.order_placed(
            self.asset, label, side.value, size, request.price, order_type.value, result.status.value
        )

        if result.status is OrderStatus.FILLED:
            fill_size = result.size or size
            fill_price = result.fill_price if result.fill_price is not None else request.price
            s.position.apply_buy(side, fill_size, fill_price)
            if result.order_id:
                s.applied_fill_ids.add(result.order_id)
        elif result.status is OrderStatus.OPEN and result.order_id:
            s.resting_order_ids.add(result.order_id)

        return result

    def _transition(self, to_state: TraderState, reason: str, at: Optional[float] = None) -> None:
        s = self.state
        if s.state is to_state:
            return
        s.transitions.append(Transition(s.state, to_state, reason, at if at is not None else time.time()))
        if len(s.transitions) > TRANSITION_HISTORY:
            del s.transitions[0]

        logger.info(
            f"[{self.asset}] {s.state.value} -> {to_state.value}: {reason}",
            extra={"asset": self.asset, "from": s.state.value, "to": to_state.value},
        )
        s.state = to_state

    def snapshot(self) -> AssetSnapshot:
        s = self.state
        analysis = analyze(s.position)
        return AssetSnapshot(
            asset=self.asset,
            state=s.state,
            window_id=s.window_id,
            leader=s.leader_tracker.leader,
            flip_count=s.leader_tracker.flip_count,
            obi=s.obi_engine.rolling_obi(Side.YES),
            position=s.position.copy(),
            locked=s.lock_detector.locked,
            pnl_if_yes_wins=analysis.pnl_if_yes_wins,
            pnl_if_no_wins=analysis.pnl_if_no_wins,
            price_yes=s.price_yes,
            price_no=s.price_no,
        )

    @property
    def last_snapshot(self) -> AssetSnapshot:
        return self._last_snapshot or self.snapshot()

    @property
    def current_state(self) -> TraderState:
        return self.state.state
