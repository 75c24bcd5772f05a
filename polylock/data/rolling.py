"""
Rolling window aggregates.

Fixed-duration, time-windowed sample buffers used by the OBI engine and
the leader tracker. Expiry is measured against an injectable clock.
"""
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

Clock = Callable[[], float]


@dataclass
class Sample:
    """Timestamped value."""
    timestamp: float
    value: float


class RollingAverage:
    """Average of the samples recorded in the last `window_seconds`."""

    def __init__(self, window_seconds: float = 90.0, clock: Clock = time.time):
        self.window_seconds = window_seconds
        self._clock = clock
        self._samples: deque[Sample] = deque()

    def add(self, value: float, timestamp: Optional[float] = None) -> None:
        ts = self._clock() if timestamp is None else timestamp
        self._samples.append(Sample(ts, value))
        self._cleanup()

    def _cleanup(self) -> None:
        cutoff = self._clock() - self.window_seconds
        # Samples are appended in time order; drop from the left
        while self._samples and self._samples[0].timestamp < cutoff:
            self._samples.popleft()

    def average(self) -> Optional[float]:
        """Mean of live samples, None when the window is empty."""
        self._cleanup()
        if not self._samples:
            return None
        return sum(s.value for s in self._samples) / len(self._samples)

    def latest(self) -> Optional[float]:
        self._cleanup()
        if not self._samples:
            return None
        return self._samples[-1].value

    def samples(self) -> list[Sample]:
        self._cleanup()
        return list(self._samples)

    def count(self) -> int:
        self._cleanup()
        return len(self._samples)

    def has_min_samples(self, n: int) -> bool:
        return self.count() >= n

    def reset(self) -> None:
        self._samples.clear()


class RollingCounter:
    """Counts events (e.g. confirmed flips) in the last `window_seconds`."""

    def __init__(self, window_seconds: float = 90.0, clock: Clock = time.time):
        self.window_seconds = window_seconds
        self._clock = clock
        self._events: deque[float] = deque()

    def record(self, timestamp: Optional[float] = None) -> None:
        self._events.append(self._clock() if timestamp is None else timestamp)
        self._cleanup()

    def _cleanup(self) -> None:
        cutoff = self._clock() - self.window_seconds
        while self._events and self._events[0] < cutoff:
            self._events.popleft()

    def count(self) -> int:
        self._cleanup()
        return len(self._events)

    def reset(self) -> None:
        self._events.clear()
