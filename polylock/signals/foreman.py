"""
Signal foreman.

Periodically scores every asset, tracks regimes and wind, and publishes
one START/HOLD/STOP recommendation per asset for the guardrails.
"""
import asyncio
import time
from typing import Iterable, Optional, Protocol

from ..config import ScoreConfig
from ..errors import ExternalServiceError
from ..models import AssetSignal, SignalOrder
from ..utils.logger import get_logger
from .regime import Regime, RegimeClassifier
from .score_engine import ScoreEngine, ScoreInputs
from .wind import WindCalculator

logger = get_logger("foreman")

WIND_ALIGNED_BOOST = 0.2
WIND_AGAINST_PENALTY = 0.3


class ScoreInputSource(Protocol):
    async def get_score_inputs(self, asset: str) -> ScoreInputs:
        ...


class SignalForeman:
    """Aggregates score, regime and wind into per-asset orders."""

    def __init__(
        self,
        assets: Iterable[str],
        fetcher: ScoreInputSource,
        score_engine: Optional[ScoreEngine] = None,
        regime: Optional[RegimeClassifier] = None,
        wind: Optional[WindCalculator] = None,
        config: Optional[ScoreConfig] = None,
        timeout_seconds: float = 5.0,
    ):
        self.assets = [a.upper() for a in assets]
        self.fetcher = fetcher
        self.config = config or ScoreConfig()
        self.score_engine = score_engine or ScoreEngine(self.config)
        self.regime = regime or RegimeClassifier(self.config)
        self.wind = wind or WindCalculator()
        self.timeout_seconds = timeout_seconds
        self._signals: dict[str, AssetSignal] = {}

    def adjusted_score(self, asset: str, score: float, direction: int) -> float:
        """Scale the score by how strongly the global wind agrees with the asset."""
        wind = self.wind.wind
        wind_factor = abs(wind)
        if wind == 0:
            return score
        # A neutral asset counts as against a non-zero wind
        if direction != 0 and (wind > 0) == (direction > 0):
            adjusted = score * (1 + WIND_ALIGNED_BOOST * wind_factor)
        else:
            adjusted = score * (1 - WIND_AGAINST_PENALTY * wind_factor)
        return max(0.0, min(1.0, adjusted))

    async def _score_asset(self, asset: str) -> None:
        inputs = await asyncio.wait_for(self.fetcher.get_score_inputs(asset), timeout=self.timeout_seconds)
        result = self.score_engine.score(asset, inputs)
        self.regime.add_score(asset, result.score)
        self.wind.update_direction(asset, result.directions.micro)

    async def refresh(self) -> dict[str, AssetSignal]:
        """Score every asset and recompute the published orders."""
        results = await asyncio.gather(
            *(self._score_asset(asset) for asset in self.assets),
            return_exceptions=True,
        )
        for asset, result in zip(self.assets, results):
            if isinstance(result, (ExternalServiceError, asyncio.TimeoutError)):
                # Previous score stays in place
                logger.warning(f"Score refresh failed for {asset}: {result}", extra={"asset": asset})
            elif isinstance(result, Exception):
                logger.error(
                    f"Unexpected score failure for {asset}: {result}",
                    exc_info=result,
                    extra={"asset": asset},
                )
            elif isinstance(result, BaseException):
                raise result

        self._publish()
        return dict(self._signals)

    def _publish(self) -> None:
        now = time.time()
        candidates = []

        for asset in self.assets:
            result = self.score_engine.last_score(asset)
            if result is None:
                self._signals[asset] = AssetSignal(asset=asset, updated_at=now)
                continue

            adjusted = self.adjusted_score(asset, result.score, result.directions.micro)
            regime = self.regime.regime(asset)

            if adjusted >= self.config.start_threshold and regime is not Regime.CHOPPY:
                order = SignalOrder.START
                candidates.append((adjusted, asset))
            elif adjusted >= self.config.hold_threshold:
                order = SignalOrder.HOLD
            else:
                order = SignalOrder.STOP

            self._signals[asset] = AssetSignal(
                asset=asset,
                order=order,
                score=round(adjusted, 2),
                stability=result.components.stability,
                regime=regime.value,
                updated_at=now,
            )

        # Only the strongest START candidates keep START
        candidates.sort(reverse=True)
        for _, asset in candidates[self.config.max_concurrent_start:]:
            self._signals[asset].order = SignalOrder.HOLD

        logger.info(
            "Foreman orders updated",
            extra={
                "orders": {a: s.order.value for a, s in self._signals.items()},
                "wind": round(self.wind.wind, 2),
            },
        )

    def signal_for(self, asset: str) -> AssetSignal:
        return self._signals.get(asset.upper()) or AssetSignal(asset=asset.upper())

    def all_signals(self) -> dict[str, AssetSignal]:
        return dict(self._signals)

    def export_state(self) -> dict:
        return {
            "signals": {
                a: {"order": s.order.value, "score": s.score, "stability": s.stability, "regime": s.regime}
                for a, s in self._signals.items()
            },
            "wind": self.wind.export_state(),
            "regime": self.regime.export_state(),
        }
