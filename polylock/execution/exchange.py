"""
Exchange interface and the simulated (shadow) exchange.

The trader depends only on ExchangeInterface. ShadowExchange keeps a
fictitious ledger: balance, per-token positions and the list of resting
orders. FOK/IOC orders resolve immediately; GTC orders rest until a
matching pass fills them.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..config import ExchangeConfig
from ..errors import OrderRejectedError, StartupError
from ..models import Fill, OrderRequest, OrderResult, OrderSide, OrderStatus, OrderType
from ..utils.logger import get_logger

logger = get_logger("exchange")

# Urgent orders with no reference price fill only inside this band
FILL_BAND_LOW = 0.40
FILL_BAND_HIGH = 0.60


@dataclass
class RestingOrder:
    """GTC order sitting in the shadow book."""
    order_id: str
    token_id: str
    side: OrderSide
    price: float
    size: float
    order_type: OrderType
    status: OrderStatus = OrderStatus.OPEN
    created_at: float = field(default_factory=time.time)


class ExchangeInterface(ABC):
    """Capabilities the trader needs from an exchange."""

    @abstractmethod
    async def initialize(self) -> None:
        ...

    @abstractmethod
    async def place_order(self, order: OrderRequest) -> OrderResult:
        ...

    @abstractmethod
    async def cancel_order(self, order_id: str) -> bool:
        ...

    @abstractmethod
    async def cancel_all(self, token_ids: Optional[Iterable[str]] = None) -> int:
        ...

    @abstractmethod
    async def get_positions(self) -> dict[str, float]:
        ...

    @abstractmethod
    async def get_balance(self) -> float:
        ...

    @abstractmethod
    def open_orders(self, token_ids: Optional[Iterable[str]] = None) -> list[RestingOrder]:
        ...

    async def match_open_orders(self, prices: dict[str, float]) -> list[Fill]:
        """Fill resting orders against current prices. Exchanges that fill on their own return nothing."""
        return []


class ShadowExchange(ExchangeInterface):
    """
    Simulated exchange with a single shared ledger.

    All ledger mutations run under one asyncio.Lock so concurrent asset
    tasks never interleave a balance change with its position change.
    """

    def __init__(self, starting_balance: float = 1000.0):
        self.starting_balance = starting_balance
        self.balance = starting_balance
        self.positions: dict[str, float] = {}
        self.orders: list[RestingOrder] = []
        self._reference_prices: dict[str, float] = {}
        self._order_counter = 1
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        if self.starting_balance < 0:
            raise StartupError(f"Invalid starting balance {self.starting_balance}")
        self._initialized = True
        logger.info("Shadow exchange initialized", extra={"balance": self.balance})

    def _next_order_id(self) -> str:
        order_id = f"shadow-{self._order_counter}"
        self._order_counter += 1
        return order_id

    def _can_fill_now(self, order: OrderRequest) -> bool:
        reference = self._reference_prices.get(order.token_id)
        if reference is not None:
            if order.side is OrderSide.BUY:
                return order.price >= reference
            return order.price <= reference
        return FILL_BAND_LOW <= order.price <= FILL_BAND_HIGH

    def _execute_fill(self, token_id: str, side: OrderSide, price: float, size: float) -> None:
        cost = price * size
        if side is OrderSide.BUY:
            self.balance -= cost
            self.positions[token_id] = self.positions.get(token_id, 0.0) + size
        else:
            self.balance += cost
            self.positions[token_id] = self.positions.get(token_id, 0.0) - size

    async def place_order(self, order: OrderRequest) -> OrderResult:
        if not 0.0 < order.price < 1.0 or order.size <= 0:
            raise OrderRejectedError(f"Invalid order price={order.price} size={order.size}")

        async with self._lock:
            order_id = self._next_order_id()

            if order.order_type.is_urgent:
                affordable = order.side is OrderSide.SELL or order.price * order.size <= self.balance
                if affordable and self._can_fill_now(order):
                    self._execute_fill(order.token_id, order.side, order.price, order.size)
                    logger.info(
                        f"[SHADOW] {order.order_type.value} filled {order.side.value} {order.size} @ {order.price:.2f}",
                        extra={"order_id": order_id, "balance": round(self.balance, 2)},
                    )
                    return OrderResult(OrderStatus.FILLED, order_id, fill_price=order.price, size=order.size)

                logger.debug(
                    f"[SHADOW] {order.order_type.value} killed {order.side.value} {order.size} @ {order.price:.2f}",
                    extra={"order_id": order_id},
                )
                return OrderResult(OrderStatus.KILLED, order_id)

            self.orders.append(RestingOrder(
                order_id=order_id,
                token_id=order.token_id,
                side=order.side,
                price=order.price,
                size=order.size,
                order_type=order.order_type,
            ))
            logger.debug(f"[SHADOW] GTC resting {order.side.value} {order.size} @ {order.price:.2f}")
            return OrderResult(OrderStatus.OPEN, order_id)

    async def match_open_orders(self, prices: dict[str, float]) -> list[Fill]:
        """
        Fill resting orders whose limit crosses the current price.

        BUY fills when limit >= price, SELL when limit <= price. Fills are
        at the limit price. The prices also become the reference for later
        FOK/IOC orders on the same tokens.
        """
        fills: list[Fill] = []
        async with self._lock:
            self._reference_prices.update(prices)

            still_open: list[RestingOrder] = []
            for order in self.orders:
                price = prices.get(order.token_id)
                crossed = price is not None and (
                    order.price >= price if order.side is OrderSide.BUY else order.price <= price
                )
                affordable = order.side is OrderSide.SELL or order.price * order.size <= self.balance
                if crossed and affordable:
                    self._execute_fill(order.token_id, order.side, order.price, order.size)
                    order.status = OrderStatus.FILLED
                    fills.append(Fill(
                        order_id=order.order_id,
                        token_id=order.token_id,
                        side=order.side,
                        price=order.price,
                        size=order.size,
                        timestamp=time.time(),
                    ))
                else:
                    still_open.append(order)
            self.orders = still_open

        for fill in fills:
            logger.info(
                f"[SHADOW] GTC filled {fill.side.value} {fill.size} @ {fill.price:.2f}",
                extra={"order_id": fill.order_id, "token_id": fill.token_id},
            )
        return fills

    async def cancel_order(self, order_id: str) -> bool:
        async with self._lock:
            for i, order in enumerate(self.orders):
                if order.order_id == order_id:
                    order.status = OrderStatus.CANCELLED
                    del self.orders[i]
                    logger.info(f"[SHADOW] Cancelled order {order_id}")
                    return True
        return False

    async def cancel_all(self, token_ids: Optional[Iterable[str]] = None) -> int:
        """Cancel resting orders, optionally only those on the given tokens."""
        wanted = set(token_ids) if token_ids is not None else None
        async with self._lock:
            keep, cancelled = [], 0
            for order in self.orders:
                if wanted is None or order.token_id in wanted:
                    order.status = OrderStatus.CANCELLED
                    cancelled += 1
                else:
                    keep.append(order)
            self.orders = keep
        if cancelled:
            logger.info(f"[SHADOW] Cancelled {cancelled} resting orders")
        return cancelled

    async def get_positions(self) -> dict[str, float]:
        async with self._lock:
            return dict(self.positions)

    async def get_balance(self) -> float:
        async with self._lock:
            return self.balance

    def open_orders(self, token_ids: Optional[Iterable[str]] = None) -> list[RestingOrder]:
        if token_ids is None:
            return list(self.orders)
        wanted = set(token_ids)
        return [o for o in self.orders if o.token_id in wanted]


def create_exchange(config: ExchangeConfig) -> ExchangeInterface:
    """Build the exchange variant selected by configuration."""
    if config.mode == "shadow":
        return ShadowExchange(starting_balance=config.starting_balance)
    raise StartupError(f"Unsupported exchange mode {config.mode!r}")
