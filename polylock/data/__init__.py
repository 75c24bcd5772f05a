"""Market data: rolling aggregates, leader tracking, OBI and venue lookup."""

from .leader_tracker import LeaderTracker, LeaderUpdate
from .obi import OBIEngine, ObiReading, refresh_obi
from .rolling import RollingAverage, RollingCounter

__all__ = [
    "LeaderTracker",
    "LeaderUpdate",
    "OBIEngine",
    "ObiReading",
    "refresh_obi",
    "RollingAverage",
    "RollingCounter",
]
