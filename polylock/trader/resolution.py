"""
Window resolution tracking.

When a window closes with a position, the position is registered here.
Once the window has ended (plus a grace period) the final prices decide
the winner, pnl is computed and the result is stored in SQLite.
"""
import asyncio
import sqlite3
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .. import database
from ..errors import ExternalServiceError, StartupError
from ..models import Position, Side
from ..utils.logger import TradeLogger, get_logger

logger = get_logger("resolution")

RESOLUTION_GRACE_SECONDS = 30
WINNER_PRICE = 0.95
BREAKEVEN_BAND = 0.01
HISTORY_SIZE = 100
OUTCOME_KEYS = {"WIN": "wins", "LOSS": "losses", "BREAKEVEN": "breakeven"}


@dataclass
class PendingResolution:
    window_id: int
    asset: str
    position: Position
    end_time: float
    yes_token_id: str
    no_token_id: str
    registered_at: float

    @property
    def key(self) -> str:
        return f"{self.window_id}-{self.asset}"


def classify_pnl(pnl: float) -> str:
    if pnl > BREAKEVEN_BAND:
        return "WIN"
    if pnl < -BREAKEVEN_BAND:
        return "LOSS"
    return "BREAKEVEN"


def _empty_totals() -> dict:
    return {"wins": 0, "losses": 0, "breakeven": 0, "total_pnl": 0.0}


class ResolutionTracker:
    """Resolves closed windows and keeps session and all-time statistics."""

    def __init__(
        self,
        db_path: str,
        price_source=None,
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
        trade_logger: Optional[TradeLogger] = None,
    ):
        self.db_path = db_path
        self.price_source = price_source
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self.trade_logger = trade_logger or TradeLogger()

        self.pending: dict[str, PendingResolution] = {}
        self.session = _empty_totals()
        self.session_start = datetime.now(timezone.utc).isoformat()
        self.all_time = _empty_totals()
        self.history: deque[database.WindowResult] = deque(maxlen=HISTORY_SIZE)

    def initialize(self) -> None:
        """Create the results table and load all-time stats. Failure is fatal."""
        try:
            database.init_db(self.db_path)
            self.all_time = database.load_stats(self.db_path)
            self.history.extend(database.recent_results(self.db_path, HISTORY_SIZE))
        except (sqlite3.Error, OSError) as e:
            raise StartupError(f"Results database {self.db_path} unavailable: {e}") from e
        logger.info("Resolution tracker initialized", extra={"db_path": self.db_path})

    def register_position(
        self,
        window_id: int,
        asset: str,
        position: Position,
        end_time: float,
        yes_token_id: str,
        no_token_id: str,
    ) -> None:
        pending = PendingResolution(
            window_id=window_id,
            asset=asset,
            position=position.copy(),
            end_time=end_time,
            yes_token_id=yes_token_id,
            no_token_id=no_token_id,
            registered_at=self._clock(),
        )
        self.pending[pending.key] = pending
        logger.debug(f"Registered position for resolution: {pending.key}")

    def resolve_position(self, key: str, winner: Side) -> Optional[database.WindowResult]:
        pending = self.pending.pop(key, None)
        if pending is None:
            logger.debug(f"No pending position for {key}")
            return None

        position = pending.position
        proceeds = position.shares(winner) * 1.00
        pnl = proceeds - position.total_cost
        outcome = classify_pnl(pnl)

        result = database.WindowResult(
            id=None,
            window_id=pending.window_id,
            asset=pending.asset,
            winner=winner.value,
            result=outcome,
            pnl=pnl,
            yes_shares=position.yes_shares,
            no_shares=position.no_shares,
            total_cost=position.total_cost,
            resolved_at=datetime.now(timezone.utc).isoformat(),
        )

        try:
            result.id = database.record_result(self.db_path, result)
        except sqlite3.Error as e:
            logger.error(f"Failed to store result {key}: {e}")

        # all_time mirrors the results table
        counted = [self.session]
        if result.id is not None:
            counted.append(self.all_time)
        else:
            logger.warning(f"Result {key} not stored, all-time stats unchanged")
        for totals in counted:
            totals[OUTCOME_KEYS[outcome]] += 1
            totals["total_pnl"] += pnl
        self.history.appendleft(result)

        self.trade_logger.window_resolved(pending.asset, pending.window_id, winner.value, outcome, pnl)
        return result

    async def determine_winner(self, yes_token_id: str, no_token_id: str) -> Optional[Side]:
        """YES or NO once one side trades at 0.95 or above, else None."""
        if self.price_source is None:
            return None
        try:
            yes_price, no_price = await asyncio.wait_for(
                asyncio.gather(
                    self.price_source.get_price(yes_token_id),
                    self.price_source.get_price(no_token_id),
                ),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, ExternalServiceError) as e:
            logger.debug(f"Could not determine winner: {e}")
            return None

        if yes_price is not None and yes_price >= WINNER_PRICE:
            return Side.YES
        if no_price is not None and no_price >= WINNER_PRICE:
            return Side.NO
        return None

    async def check_pending(self, now: Optional[float] = None) -> list[database.WindowResult]:
        """Try to resolve every pending window that ended more than 30s ago."""
        now = self._clock() if now is None else now
        resolved = []

        for key, pending in list(self.pending.items()):
            if now < pending.end_time + RESOLUTION_GRACE_SECONDS:
                continue
            winner = await self.determine_winner(pending.yes_token_id, pending.no_token_id)
            if winner is not None:
                result = self.resolve_position(key, winner)
                if result is not None:
                    resolved.append(result)
        return resolved

    @property
    def pending_count(self) -> int:
        return len(self.pending)

    def get_stats(self) -> dict:
        s = self.session
        session_trades = s["wins"] + s["losses"] + s["breakeven"]
        a = self.all_time
        return {
            "session": {
                **s,
                "startTime": self.session_start,
                "totalTrades": session_trades,
                "winRate": f"{s['wins'] / session_trades * 100:.1f}%" if session_trades else "N/A",
            },
            "allTime": {**a, "totalTrades": a["wins"] + a["losses"] + a["breakeven"]},
            "recentTrades": [r.to_dict() for r in list(self.history)[:5]],
        }
