"""
Leader and flip tracking.

The leader is the outcome priced higher. A change of leader only counts as
a flip after it is observed on two consecutive ticks.
"""
import time
from dataclasses import dataclass
from typing import Optional

from ..models import Side
from .rolling import Clock, RollingAverage, RollingCounter

FLIP_CONFIRMATION_TICKS = 2


@dataclass
class LeaderUpdate:
    """Result of a single leader observation."""
    leader: Side
    flipped: bool
    flip_count: int  # confirmed flips in the rolling window
    total_flips: int  # confirmed flips in the current betting window
    price_yes: float
    price_no: float

    @property
    def spread(self) -> float:
        return abs(self.price_yes - self.price_no)


class LeaderTracker:
    """Tracks which side leads and counts debounced reversals."""

    def __init__(self, window_seconds: float = 90.0, clock: Clock = time.time):
        self.window_seconds = window_seconds
        self._flip_counter = RollingCounter(window_seconds, clock)
        self._leader_history = RollingAverage(window_seconds, clock)

        self.current_leader: Optional[Side] = None
        self.pending_flip: Optional[Side] = None
        self.pending_flip_count = 0
        self.total_flips = 0

    def update(self, price_yes: float, price_no: float) -> LeaderUpdate:
        # Ties go to NO
        observed = Side.YES if price_yes > price_no else Side.NO
        self._leader_history.add(1.0 if observed is Side.YES else -1.0)

        flipped = False
        if self.current_leader is None:
            self.current_leader = observed
        elif observed is not self.current_leader:
            if self.pending_flip is observed:
                self.pending_flip_count += 1
            else:
                self.pending_flip = observed
                self.pending_flip_count = 1

            if self.pending_flip_count >= FLIP_CONFIRMATION_TICKS:
                self.current_leader = observed
                self._flip_counter.record()
                self.total_flips += 1
                flipped = True
                self._clear_pending()
        else:
            # A reversal that does not repeat is abandoned
            self._clear_pending()

        return LeaderUpdate(
            leader=self.current_leader,
            flipped=flipped,
            flip_count=self._flip_counter.count(),
            total_flips=self.total_flips,
            price_yes=price_yes,
            price_no=price_no,
        )

    def _clear_pending(self) -> None:
        self.pending_flip = None
        self.pending_flip_count = 0

    @property
    def leader(self) -> Optional[Side]:
        return self.current_leader

    @property
    def flip_count(self) -> int:
        return self._flip_counter.count()

    def leader_bias(self) -> float:
        """+1 mostly YES, -1 mostly NO, 0 balanced or no data."""
        return self._leader_history.average() or 0.0

    def reset_for_new_window(self) -> None:
        """Clear flip state; the current leader is kept for continuity."""
        self._flip_counter.reset()
        self.total_flips = 0
        self._clear_pending()

    def state(self) -> dict:
        return {
            "leader": self.current_leader.value if self.current_leader else None,
            "flipCount": self.flip_count,
            "totalFlips": self.total_flips,
            "leaderBias": round(self.leader_bias(), 4),
            "pendingFlip": self.pending_flip.value if self.pending_flip else None,
            "pendingFlipCount": self.pending_flip_count,
        }
