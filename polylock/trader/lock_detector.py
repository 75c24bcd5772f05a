"""
Dual-profit lock detection and recovery sizing.

A winning share redeems for 1.00 and a losing one for 0, so
    pnl_if_yes_wins = yes_shares - total_cost
    pnl_if_no_wins  = no_shares  - total_cost
The position is a dual lock when both are positive.
"""
import math
import time
from dataclasses import dataclass
from typing import Optional

from ..errors import InvalidSpreadError, RecoveryNotPossibleError
from ..models import Position, Side
from ..utils.logger import TradeLogger, get_logger

logger = get_logger("lock")


@dataclass
class LockAnalysis:
    yes_shares: float
    no_shares: float
    yes_cost: float
    no_cost: float
    total_cost: float
    avg_yes_price: float
    avg_no_price: float
    pair_cost: Optional[float]
    pnl_if_yes_wins: float
    pnl_if_no_wins: float
    is_dual_lock: bool
    is_breakeven: bool
    yes_deficit: float
    no_deficit: float
    needs_recovery: bool
    recovery_side: Side

    def deficit(self, side: Side) -> float:
        return self.yes_deficit if side is Side.YES else self.no_deficit

    def pnl(self, side: Side) -> float:
        return self.pnl_if_yes_wins if side is Side.YES else self.pnl_if_no_wins


@dataclass
class LockStatus:
    analysis: LockAnalysis
    locked: bool
    lock_timestamp: Optional[float]


@dataclass
class AggressiveLockPlan:
    buy_winner: int
    buy_loser: int
    spread: float
    estimated_cost: float


def analyze(position: Position) -> LockAnalysis:
    """Payoff of the position under both outcomes."""
    total_cost = position.total_cost
    pnl_yes = position.yes_shares * 1.00 - total_cost
    pnl_no = position.no_shares * 1.00 - total_cost

    paired = min(position.yes_shares, position.no_shares)

    return LockAnalysis(
        yes_shares=position.yes_shares,
        no_shares=position.no_shares,
        yes_cost=position.yes_cost,
        no_cost=position.no_cost,
        total_cost=total_cost,
        avg_yes_price=position.avg_price(Side.YES),
        avg_no_price=position.avg_price(Side.NO),
        pair_cost=total_cost / paired if paired > 0 else None,
        pnl_if_yes_wins=pnl_yes,
        pnl_if_no_wins=pnl_no,
        is_dual_lock=pnl_yes > 0 and pnl_no > 0,
        is_breakeven=pnl_yes >= 0 and pnl_no >= 0,
        yes_deficit=max(0.0, -pnl_yes),
        no_deficit=max(0.0, -pnl_no),
        needs_recovery=pnl_yes < 0 or pnl_no < 0,
        recovery_side=Side.YES if pnl_yes < pnl_no else Side.NO,
    )


def recovery_shares(deficit: float, current_price: float, buffer: float = 2.0) -> int:
    """
    Shares to buy on the deficit side to get back to breakeven.

    X = ceil(D / (1 - P) + B). Buying at or above 1.00 can never recover,
    so that raises RecoveryNotPossibleError.
    """
    if deficit <= 0:
        return 0
    if current_price >= 1:
        raise RecoveryNotPossibleError(current_price)
    return math.ceil(deficit / (1 - current_price) + buffer)


def aggressive_lock(
    winner_price: float,
    winner_pnl: float,
    loser_price: float,
    loser_deficit: float,
    target_winner_profit: float = 0.0,
) -> AggressiveLockPlan:
    """
    Closed-form winner/loser share deltas:

        dW = [L_def*P_L - (W_pnl - target)*(1 - P_L)] / spread
        dL = [L_def + dW*P_W] / (1 - P_L)

    where spread = 1 - P_W - P_L must be positive.
    """
    spread = 1.0 - winner_price - loser_price
    if spread <= 0:
        raise InvalidSpreadError(spread)

    d_w = (loser_deficit * loser_price - (winner_pnl - target_winner_profit) * (1 - loser_price)) / spread
    d_l = (loser_deficit + d_w * winner_price) / (1 - loser_price)

    return AggressiveLockPlan(
        buy_winner=max(0, math.ceil(d_w)),
        buy_loser=max(0, math.ceil(d_l)),
        spread=spread,
        estimated_cost=d_w * winner_price + d_l * loser_price,
    )


class LockDetector:
    """Sticky lock state for one asset within one window."""

    def __init__(self, asset: str = "", trade_logger: Optional[TradeLogger] = None):
        self.asset = asset
        self.trade_logger = trade_logger or TradeLogger()
        self.locked = False
        self.lock_timestamp: Optional[float] = None
        self.lock_snapshot: Optional[Position] = None

    def analyze(self, position: Position) -> LockAnalysis:
        return analyze(position)

    def check_lock(self, position: Position) -> LockStatus:
        analysis = analyze(position)

        if analysis.is_dual_lock and not self.locked:
            self.locked = True
            self.lock_timestamp = time.time()
            self.lock_snapshot = position.copy()
            self.trade_logger.lock_achieved(self.asset, analysis.pnl_if_yes_wins, analysis.pnl_if_no_wins)

        return LockStatus(analysis=analysis, locked=self.locked, lock_timestamp=self.lock_timestamp)

    def recovery_shares(self, deficit: float, current_price: float, buffer: float = 2.0) -> int:
        return recovery_shares(deficit, current_price, buffer)

    def aggressive_lock(self, *args, **kwargs) -> AggressiveLockPlan:
        return aggressive_lock(*args, **kwargs)

    def reset(self) -> None:
        self.locked = False
        self.lock_timestamp = None
        self.lock_snapshot = None

    def state(self) -> dict:
        return {
            "locked": self.locked,
            "lockTimestamp": self.lock_timestamp,
            "lockSnapshot": self.lock_snapshot.to_dict() if self.lock_snapshot else None,
        }
