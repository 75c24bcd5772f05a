"""
Shared data models for the trader.
"""
import math
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


WINDOW_SECONDS = 900


class Side(str, Enum):
    """Binary outcome. YES is the "Up" token, NO the "Down" token."""
    YES = "YES"
    NO = "NO"

    @property
    def opposite(self) -> "Side":
        return Side.NO if self is Side.YES else Side.YES


class OrderSide(str, Enum):
    """Order side enum."""
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    """Time-in-force. FOK/IOC resolve immediately, GTC rests."""
    FOK = "FOK"
    IOC = "IOC"
    GTC = "GTC"

    @property
    def is_urgent(self) -> bool:
        return self in (OrderType.FOK, OrderType.IOC)


class OrderStatus(str, Enum):
    FILLED = "FILLED"
    KILLED = "KILLED"
    OPEN = "OPEN"
    CANCELLED = "CANCELLED"


class SignalOrder(str, Enum):
    """Upstream recommendation graded from the conviction score."""
    START = "START"
    HOLD = "HOLD"
    STOP = "STOP"


@dataclass
class Position:
    """Per-asset, per-window holdings. Costs only grow except on reset."""
    yes_shares: float = 0.0
    yes_cost: float = 0.0
    no_shares: float = 0.0
    no_cost: float = 0.0

    @property
    def total_shares(self) -> float:
        return self.yes_shares + self.no_shares

    @property
    def total_cost(self) -> float:
        return self.yes_cost + self.no_cost

    @property
    def is_empty(self) -> bool:
        return self.yes_shares == 0 and self.no_shares == 0

    def shares(self, side: Side) -> float:
        return self.yes_shares if side is Side.YES else self.no_shares

    def cost(self, side: Side) -> float:
        return self.yes_cost if side is Side.YES else self.no_cost

    def avg_price(self, side: Side) -> float:
        shares = self.shares(side)
        return self.cost(side) / shares if shares > 0 else 0.0

    def apply_buy(self, side: Side, size: float, price: float) -> None:
        """Record a filled buy."""
        if size < 0 or price < 0:
            raise ValueError(f"Invalid fill: size={size} price={price}")
        if side is Side.YES:
            self.yes_shares += size
            self.yes_cost += size * price
        else:
            self.no_shares += size
            self.no_cost += size * price

    def copy(self) -> "Position":
        return Position(self.yes_shares, self.yes_cost, self.no_shares, self.no_cost)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Window:
    """
    A fixed-length betting epoch identified by its start timestamp.

    `now` is the observation time; elapsed/remaining are relative to it.
    """
    start: int
    now: float
    duration: int = WINDOW_SECONDS

    @classmethod
    def at(cls, now: Optional[float] = None, duration: int = WINDOW_SECONDS) -> "Window":
        ts = time.time() if now is None else now
        start = int(math.floor(ts / duration) * duration)
        return cls(start=start, now=ts, duration=duration)

    @property
    def window_id(self) -> int:
        return self.start

    @property
    def end(self) -> int:
        return self.start + self.duration

    @property
    def elapsed(self) -> float:
        return max(0.0, self.now - self.start)

    @property
    def remaining(self) -> float:
        return max(0.0, self.end - self.now)

    @property
    def progress(self) -> float:
        return self.elapsed / self.duration

    @property
    def end_time(self) -> datetime:
        return datetime.fromtimestamp(self.end, tz=timezone.utc)

    def to_dict(self) -> dict:
        return {
            "id": self.window_id,
            "start": datetime.fromtimestamp(self.start, tz=timezone.utc).isoformat(),
            "end": self.end_time.isoformat(),
            "elapsed_sec": int(self.elapsed),
            "remaining_sec": int(self.remaining),
            "progress": round(self.progress, 4),
        }


@dataclass
class VenueMarket:
    """Tradable market for one asset in one window."""
    asset: str
    slug: str
    venue_id: str
    question: str
    end_time: Optional[datetime]
    yes_token_id: str
    no_token_id: str

    def token_for(self, side: Side) -> str:
        return self.yes_token_id if side is Side.YES else self.no_token_id

    def side_for(self, token_id: str) -> Optional[Side]:
        if token_id == self.yes_token_id:
            return Side.YES
        if token_id == self.no_token_id:
            return Side.NO
        return None

    @property
    def token_ids(self) -> tuple:
        return (self.yes_token_id, self.no_token_id)


@dataclass
class OrderBookLevel:
    """Single price level."""
    price: float
    size: float


@dataclass
class OrderBook:
    """Book snapshot for one token. Bids best-first (desc), asks best-first (asc)."""
    token_id: str
    bids: list[OrderBookLevel] = field(default_factory=list)
    asks: list[OrderBookLevel] = field(default_factory=list)
    timestamp: float = 0.0

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None


@dataclass
class OrderRequest:
    """Order to submit to an exchange."""
    token_id: str
    side: OrderSide
    price: float
    size: float
    order_type: OrderType


@dataclass
class OrderResult:
    """Outcome of an order submission."""
    status: OrderStatus
    order_id: Optional[str] = None
    fill_price: Optional[float] = None
    size: Optional[float] = None

    @property
    def filled(self) -> bool:
        return self.status is OrderStatus.FILLED


@dataclass
class Fill:
    """A resting order that got matched after submission."""
    order_id: str
    token_id: str
    side: OrderSide
    price: float
    size: float
    timestamp: float = 0.0


@dataclass
class AssetSignal:
    """Upstream recommendation consumed by the guardrails."""
    asset: str
    order: SignalOrder = SignalOrder.STOP
    score: float = 0.0
    stability: float = 0.0
    regime: str = "CHOPPY"
    updated_at: Optional[float] = None
