"""
Directional conviction score.

Score = micro_t*0.4 + stability*0.3 + meso_t*0.2 + macro_t*0.1, then
penalized when the timeframes disagree on direction.
"""
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..config import ScoreConfig
from ..models import SignalOrder


@dataclass
class ScoreInputs:
    """Return series and volatility for one asset."""
    micro_returns: list[float] = field(default_factory=list)  # last 30 minutes
    meso_returns: list[float] = field(default_factory=list)  # last 4 hours
    macro_returns: list[float] = field(default_factory=list)  # last 72 hours
    volatility_30m: float = 0.01
    net_move: float = 0.0


@dataclass
class ScoreComponents:
    micro_trend: float
    meso_trend: float
    macro_trend: float
    stability: float


@dataclass
class Directions:
    micro: int
    meso: int
    macro: int


@dataclass
class ScoreResult:
    """Score in [0, 1] with its breakdown."""
    asset: str
    score: float
    order: SignalOrder
    components: ScoreComponents
    directions: Directions
    divergence: bool

    def to_dict(self) -> dict:
        return {
            "asset": self.asset,
            "score": self.score,
            "order": self.order.value,
            "components": {
                "microT": self.components.micro_trend,
                "mesoT": self.components.meso_trend,
                "macroT": self.components.macro_trend,
                "stability": self.components.stability,
            },
            "directions": {
                "micro": self.directions.micro,
                "meso": self.directions.meso,
                "macro": self.directions.macro,
            },
            "divergence": self.divergence,
        }


def trendiness(returns: Sequence[float]) -> float:
    """
    |sum(returns)| / sum(|returns|).

    1.0 for a one-directional series, near 0 for a choppy one, 0 when
    there is nothing to measure.
    """
    if not returns:
        return 0.0
    sum_abs = sum(abs(r) for r in returns)
    if sum_abs == 0:
        return 0.0
    return abs(sum(returns)) / sum_abs


def direction(returns: Sequence[float], dead_zone: float = 0.0001) -> int:
    """Sign of the net return with a neutral dead zone."""
    if not returns:
        return 0
    net = sum(returns)
    if net > dead_zone:
        return 1
    if net < -dead_zone:
        return -1
    return 0


def stability(net_move: float, volatility_30m: float, minutes: int = 30, normalizer: float = 0.5) -> float:
    """Net move relative to the move expected from volatility, clamped to [0, 1]."""
    # No observed variance is treated as maximally stable
    if volatility_30m == 0:
        return 1.0
    raw = abs(net_move) / (volatility_30m * math.sqrt(minutes))
    return max(0.0, min(1.0, raw / normalizer))


class ScoreEngine:
    """Computes the conviction score and keeps the latest result per asset."""

    def __init__(self, config: Optional[ScoreConfig] = None):
        self.config = config or ScoreConfig()
        self._last_scores: dict[str, ScoreResult] = {}

    def classify(self, score: float) -> SignalOrder:
        if score >= self.config.start_threshold:
            return SignalOrder.START
        if score >= self.config.hold_threshold:
            return SignalOrder.HOLD
        return SignalOrder.STOP

    def score(self, asset: str, inputs: ScoreInputs) -> ScoreResult:
        cfg = self.config

        micro_t = trendiness(inputs.micro_returns)
        meso_t = trendiness(inputs.meso_returns)
        macro_t = trendiness(inputs.macro_returns)

        micro_dir = direction(inputs.micro_returns, cfg.direction_dead_zone)
        meso_dir = direction(inputs.meso_returns, cfg.direction_dead_zone)
        macro_dir = direction(inputs.macro_returns, cfg.direction_dead_zone)

        stab = stability(inputs.net_move, inputs.volatility_30m, normalizer=cfg.stability_normalizer)

        value = (
            micro_t * cfg.micro_weight
            + stab * cfg.stability_weight
            + meso_t * cfg.meso_weight
            + macro_t * cfg.macro_weight
        )

        # Penalties compose independently
        if micro_dir != 0 and meso_dir != 0 and micro_dir != meso_dir:
            value *= cfg.micro_meso_penalty
        if micro_dir != 0 and macro_dir != 0 and micro_dir != macro_dir:
            value *= cfg.micro_macro_penalty

        result = ScoreResult(
            asset=asset,
            score=round(value, 2),
            order=self.classify(value),
            components=ScoreComponents(
                micro_trend=round(micro_t, 2),
                meso_trend=round(meso_t, 2),
                macro_trend=round(macro_t, 2),
                stability=round(stab, 2),
            ),
            directions=Directions(micro=micro_dir, meso=meso_dir, macro=macro_dir),
            divergence=micro_dir != meso_dir or micro_dir != macro_dir,
        )

        self._last_scores[asset] = result
        return result

    def last_score(self, asset: str) -> Optional[ScoreResult]:
        return self._last_scores.get(asset)

    def all_scores(self) -> dict[str, ScoreResult]:
        return dict(self._last_scores)
