"""
Multi-asset worker.

One tick = resolve market, fetch prices, match resting orders, refresh OBI
and run the state machine, for every asset concurrently. Each asset-tick
is isolated: a failure or a slow fetch on one asset never stops the others.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from ..config import Config
from ..data.obi import refresh_obi
from ..errors import ExternalServiceError
from ..execution.exchange import ExchangeInterface
from ..models import AssetSignal, Fill, VenueMarket, Window
from ..risk.limiter import RiskLimiter
from ..storage import SnapshotStore
from ..utils.logger import TradeLogger, get_logger
from .guardrails import GuardrailEvaluator
from .resolution import ResolutionTracker
from .state_machine import AssetSnapshot, AssetStateMachine, TickContext

logger = get_logger("worker")


class SignalSource(Protocol):
    def signal_for(self, asset: str) -> AssetSignal:
        ...


class MultiAssetWorker:
    """Owns one state machine per asset and drives them every tick."""

    def __init__(
        self,
        config: Config,
        exchange: ExchangeInterface,
        price_source,
        resolver,
        signals: Optional[SignalSource] = None,
        resolution: Optional[ResolutionTracker] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.exchange = exchange
        self.price_source = price_source
        self.resolver = resolver
        self.signals = signals
        self.resolution = resolution
        self.snapshot_store = snapshot_store
        self._clock = clock

        self.trade_logger = TradeLogger()
        guardrails = GuardrailEvaluator(config.guardrails)
        risk = RiskLimiter(config.risk, self.trade_logger)

        self.machines: dict[str, AssetStateMachine] = {
            asset: AssetStateMachine(
                asset=asset,
                exchange=exchange,
                guardrails=guardrails,
                risk_limiter=risk,
                config=config.trader,
                caps=config.risk,
                resolution=resolution,
                trade_logger=self.trade_logger,
            )
            for asset in config.trader.assets
        }

        self._unapplied_fills: dict[str, list[Fill]] = {asset: [] for asset in self.machines}
        self._last_telemetry: dict[str, float] = {}
        self.tick_count = 0

    @property
    def timeout(self) -> float:
        return self.config.trader.call_timeout_seconds

    async def process_tick(self, now: Optional[float] = None) -> dict:
        """Process every asset once and export the snapshot."""
        now = self._clock() if now is None else now
        window = Window.at(now, self.config.trader.window_seconds)

        snapshots = await asyncio.gather(
            *(self._process_asset(asset, window, now) for asset in self.machines)
        )

        state = await self.export_state(window, list(snapshots))
        if self.snapshot_store is not None:
            self.snapshot_store.write(state)

        if self.resolution is not None:
            try:
                await self.resolution.check_pending(now)
            except Exception as e:
                logger.error(f"Resolution check failed: {e}", exc_info=True)

        self._telemetry(now, window, list(snapshots))
        self.tick_count += 1
        return state

    async def _process_asset(self, asset: str, window: Window, now: float) -> AssetSnapshot:
        machine = self.machines[asset]
        try:
            market = await self._resolve_market(asset, window)
            await machine.ensure_window(window, market)
            market = machine.state.market

            price_yes = price_no = None
            reading = None
            if market is not None:
                price_yes, price_no = await self._fetch_prices(asset, market)
                if price_yes is not None and price_no is not None:
                    fills = await self.exchange.match_open_orders({
                        market.yes_token_id: price_yes,
                        market.no_token_id: price_no,
                    })
                    self._unapplied_fills[asset].extend(fills)
                reading = await refresh_obi(
                    self.price_source,
                    market.yes_token_id,
                    market.no_token_id,
                    machine.state.obi_engine,
                    timeout=self.timeout,
                )

            ctx = TickContext(
                now=now,
                window=window,
                market=market,
                price_yes=price_yes,
                price_no=price_no,
                signal=self.signals.signal_for(asset) if self.signals is not None else None,
                obi_reading=reading,
                fills=list(self._unapplied_fills[asset]),
            )
            snapshot = await machine.tick(ctx)
            self._unapplied_fills[asset].clear()
            return snapshot

        except Exception as e:
            logger.error(f"[{asset}] Tick failed: {e}", extra={"asset": asset}, exc_info=True)
            return machine.last_snapshot

    async def _resolve_market(self, asset: str, window: Window) -> Optional[VenueMarket]:
        try:
            return await asyncio.wait_for(
                self.resolver.resolve_window_market(asset, window),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, ExternalServiceError) as e:
            logger.warning(f"[{asset}] Market resolution failed: {e}", extra={"asset": asset})
            return None

    async def _fetch_prices(self, asset: str, market: VenueMarket) -> tuple[Optional[float], Optional[float]]:
        """Both prices or neither; the machine keeps last-known values on failure."""
        try:
            price_yes, price_no = await asyncio.wait_for(
                asyncio.gather(
                    self.price_source.get_price(market.yes_token_id),
                    self.price_source.get_price(market.no_token_id),
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, ExternalServiceError) as e:
            logger.debug(f"[{asset}] Price fetch error: {e}")
            return None, None

        if price_yes is None or price_no is None:
            return None, None
        return price_yes, price_no

    async def export_state(self, window: Window, snapshots: list[AssetSnapshot]) -> dict:
        totals = {"yesShares": 0.0, "noShares": 0.0, "yesCost": 0.0, "noCost": 0.0}
        for snap in snapshots:
            totals["yesShares"] += snap.position.yes_shares
            totals["noShares"] += snap.position.no_shares
            totals["yesCost"] += snap.position.yes_cost
            totals["noCost"] += snap.position.no_cost
        total_cost = totals["yesCost"] + totals["noCost"]
        totals["totalCost"] = total_cost
        totals["pnlIfYesWins"] = totals["yesShares"] - total_cost
        totals["pnlIfNoWins"] = totals["noShares"] - total_cost

        return {
            "assets": {snap.asset: snap.to_dict() for snap in snapshots},
            "totals": totals,
            "balance": await self.exchange.get_balance(),
            "pendingOrders": len(self.exchange.open_orders()),
            "window": window.to_dict(),
            "stats": self.resolution.get_stats() if self.resolution is not None else None,
            "lastUpdate": datetime.now(timezone.utc).isoformat(),
        }

    def _telemetry(self, now: float, window: Window, snapshots: list[AssetSnapshot]) -> None:
        interval = self.config.trader.telemetry_interval_seconds
        for snap in snapshots:
            if now - self._last_telemetry.get(snap.asset, float("-inf")) < interval:
                continue
            self._last_telemetry[snap.asset] = now
            logger.debug(
                f"[{snap.asset}] tick",
                extra={
                    "window_id": window.window_id,
                    "remaining_sec": int(window.remaining),
                    "state": snap.state.value,
                    "leader": snap.leader.value if snap.leader else None,
                    "flips": snap.flip_count,
                    "obi": round(snap.obi, 4),
                    "price_yes": snap.price_yes,
                    "price_no": snap.price_no,
                    "position": snap.position.to_dict(),
                    "locked": snap.locked,
                },
            )
