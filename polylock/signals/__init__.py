"""Upstream conviction signals: score, regime, wind and the foreman."""

from .foreman import SignalForeman
from .regime import Regime, RegimeClassifier
from .score_engine import ScoreEngine, ScoreInputs, ScoreResult
from .wind import WindCalculator

__all__ = [
    "SignalForeman",
    "Regime",
    "RegimeClassifier",
    "ScoreEngine",
    "ScoreInputs",
    "ScoreResult",
    "WindCalculator",
]
