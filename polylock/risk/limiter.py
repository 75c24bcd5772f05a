"""
Per-asset risk limits.

Every prospective order is checked against:
- Projected total shares (max_shares)
- Projected total cost (max_notional)
- Projected pair cost, with a taker fee surcharge on FOK/IOC
- Concurrently open resting orders (max_open_orders)

Checks are advisory gates: a rejected order is simply not placed.
"""
from dataclasses import dataclass
from typing import Optional

from ..config import RiskCaps
from ..models import OrderType, Position, Side
from ..utils.logger import TradeLogger, get_logger

logger = get_logger("risk")


@dataclass
class RiskCheckResult:
    """Result of risk check."""
    allowed: bool
    reason: str
    projected_shares: float = 0.0
    projected_cost: float = 0.0
    projected_pair_cost: Optional[float] = None


class RiskLimiter:
    """
    Stateless gate over a position snapshot and the configured caps.

    The check_* methods return a RiskCheckResult with the reason; the
    can_* wrappers return a bool and log rejections.
    """

    def __init__(self, caps: Optional[RiskCaps] = None, trade_logger: Optional[TradeLogger] = None):
        self.caps = caps or RiskCaps()
        self.trade_logger = trade_logger or TradeLogger()

    def check_order(
        self,
        position: Position,
        price: float,
        size: float,
        caps: Optional[RiskCaps] = None,
    ) -> RiskCheckResult:
        """Share and notional caps on the projected position."""
        caps = caps or self.caps

        if size <= 0 or price < 0:
            return RiskCheckResult(False, f"Invalid order size={size} price={price}")

        projected_shares = position.total_shares + size
        projected_cost = position.total_cost + price * size

        if projected_shares > caps.max_shares:
            return RiskCheckResult(
                allowed=False,
                reason=f"Shares {projected_shares:.0f} would exceed max {caps.max_shares:.0f}",
                projected_shares=projected_shares,
                projected_cost=projected_cost,
            )

        if projected_cost > caps.max_notional:
            return RiskCheckResult(
                allowed=False,
                reason=f"Notional ${projected_cost:.2f} would exceed max ${caps.max_notional:.2f}",
                projected_shares=projected_shares,
                projected_cost=projected_cost,
            )

        return RiskCheckResult(
            allowed=True,
            reason="All checks passed",
            projected_shares=projected_shares,
            projected_cost=projected_cost,
        )

    def check_pair_position(
        self,
        position: Position,
        side: Side,
        price: float,
        size: float,
        order_type: OrderType,
        caps: Optional[RiskCaps] = None,
    ) -> RiskCheckResult:
        """
        Projected pair cost after the order.

        Urgent orders pay the taker fee on top of the limit price. While one
        side is still empty there is no pair cost to bound.
        """
        caps = caps or self.caps

        effective_price = price * (1 + caps.taker_fee_rate) if order_type.is_urgent else price
        added_cost = effective_price * size

        next_yes_shares = position.yes_shares + (size if side is Side.YES else 0.0)
        next_no_shares = position.no_shares + (size if side is Side.NO else 0.0)
        next_yes_cost = position.yes_cost + (added_cost if side is Side.YES else 0.0)
        next_no_cost = position.no_cost + (added_cost if side is Side.NO else 0.0)

        min_shares = min(next_yes_shares, next_no_shares)
        if min_shares <= 0:
            return RiskCheckResult(True, "No pair yet")

        pair_cost = (next_yes_cost + next_no_cost) / min_shares
        ceiling = caps.max_pair_cost + caps.pair_cost_buffer

        if pair_cost > ceiling:
            return RiskCheckResult(
                allowed=False,
                reason=f"Pair cost {pair_cost:.3f} would exceed {ceiling:.3f}",
                projected_pair_cost=pair_cost,
            )

        return RiskCheckResult(True, "Pair cost OK", projected_pair_cost=pair_cost)

    def check_open_orders(self, open_count: int, caps: Optional[RiskCaps] = None) -> RiskCheckResult:
        caps = caps or self.caps
        if open_count >= caps.max_open_orders:
            return RiskCheckResult(False, f"Open orders {open_count} at max {caps.max_open_orders}")
        return RiskCheckResult(True, "Open orders OK")

    def can_place_order(
        self,
        position: Position,
        price: float,
        size: float,
        caps: Optional[RiskCaps] = None,
        asset: str = "",
        label: str = "",
    ) -> bool:
        result = self.check_order(position, price, size, caps)
        if not result.allowed:
            self.trade_logger.order_blocked(asset, label, result.reason)
        return result.allowed

    def can_add_pair_position(
        self,
        position: Position,
        side: Side,
        price: float,
        size: float,
        order_type: OrderType,
        caps: Optional[RiskCaps] = None,
        asset: str = "",
        label: str = "",
    ) -> bool:
        result = self.check_pair_position(position, side, price, size, order_type, caps)
        if not result.allowed:
            self.trade_logger.order_blocked(asset, label, result.reason)
        return result.allowed

    def can_open_resting_order(
        self,
        open_count: int,
        caps: Optional[RiskCaps] = None,
        asset: str = "",
        label: str = "",
    ) -> bool:
        result = self.check_open_orders(open_count, caps)
        if not result.allowed:
            self.trade_logger.order_blocked(asset, label, result.reason)
        return result.allowed

    def get_risk_summary(self, position: Position, open_count: int) -> dict:
        caps = self.caps
        return {
            "shares": f"{position.total_shares:.0f}/{caps.max_shares:.0f}",
            "notional": f"${position.total_cost:.2f}/${caps.max_notional:.2f}",
            "open_orders": f"{open_count}/{caps.max_open_orders}",
        }
