"""
Regime classification from the rolling score history.

Regimes: STEADY, WAKING, FADING, CHOPPY. Recomputed on every insertion
from the current history only; there is no smoothing.
"""
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from ..config import ScoreConfig

MIN_SAMPLES = 3
READY_FOR_NEXT_SECONDS = 180


class Regime(str, Enum):
    STEADY = "STEADY"  # stable, good to trade
    WAKING = "WAKING"  # score rising steadily
    FADING = "FADING"  # score falling steadily
    CHOPPY = "CHOPPY"  # unstable, avoid


@dataclass
class RegimeStats:
    mean: float
    std: float
    trend: float


DEFAULT_STATS = RegimeStats(mean=0.5, std=0.5, trend=0.0)


@dataclass
class RegimeDetails:
    regime: Regime
    stats: RegimeStats
    updated_at: Optional[float]


class RegimeClassifier:
    """Bounded FIFO of scores per asset and the regime derived from it."""

    def __init__(self, config: Optional[ScoreConfig] = None):
        self.config = config or ScoreConfig()
        self._history: dict[str, deque[float]] = {}
        self._details: dict[str, RegimeDetails] = {}

    def add_score(self, asset: str, score: float) -> Regime:
        history = self._history.setdefault(asset, deque(maxlen=self.config.regime_history))
        history.append(score)

        stats = self.stats(asset)
        regime = self._classify(stats)
        self._details[asset] = RegimeDetails(regime=regime, stats=stats, updated_at=time.time())
        return regime

    def stats(self, asset: str) -> RegimeStats:
        history = self._history.get(asset)
        if not history or len(history) < MIN_SAMPLES:
            return DEFAULT_STATS

        scores = np.array(history, dtype=float)
        mid = len(scores) // 2
        trend = float(np.mean(scores[mid:]) - np.mean(scores[:mid]))

        return RegimeStats(
            mean=float(np.mean(scores)),
            std=float(np.std(scores)),  # population std
            trend=trend,
        )

    def _classify(self, stats: RegimeStats) -> Regime:
        if stats.std >= self.config.steady_std_threshold:
            return Regime.CHOPPY
        if stats.trend > self.config.regime_trend_threshold:
            return Regime.WAKING
        if stats.trend < -self.config.regime_trend_threshold:
            return Regime.FADING
        return Regime.STEADY

    def regime(self, asset: str) -> Regime:
        details = self._details.get(asset)
        return details.regime if details else Regime.CHOPPY

    def regime_details(self, asset: str) -> RegimeDetails:
        return self._details.get(asset) or RegimeDetails(Regime.CHOPPY, DEFAULT_STATS, None)

    def is_good_to_trade(self, asset: str) -> bool:
        return self.regime(asset) in (Regime.STEADY, Regime.WAKING)

    def is_ready_for_next(self, asset: str, seconds_until_next: float) -> bool:
        return self.regime(asset) is Regime.STEADY and seconds_until_next <= READY_FOR_NEXT_SECONDS

    def all_regimes(self) -> dict[str, Regime]:
        return {asset: d.regime for asset, d in self._details.items()}

    def export_state(self) -> dict:
        return {
            "regimes": {
                asset: {
                    "regime": d.regime.value,
                    "mean": round(d.stats.mean, 4),
                    "std": round(d.stats.std, 4),
                    "trend": round(d.stats.trend, 4),
                    "updatedAt": d.updated_at,
                }
                for asset, d in self._details.items()
            },
            "historyLengths": {asset: len(h) for asset, h in self._history.items()},
        }
