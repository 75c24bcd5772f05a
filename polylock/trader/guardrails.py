"""
Entry guardrails.

A composite AND-gate over independent named checks. Every failing check
is reported, not only the first.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..config import GuardrailConfig
from ..models import SignalOrder, Side, WINDOW_SECONDS
from ..utils.logger import get_logger

logger = get_logger("guardrails")


class FlipMode(str, Enum):
    NORMAL = "NORMAL"
    SKIP = "SKIP"
    RECOVERY = "RECOVERY"


class EntryMode(str, Enum):
    ENTRY_ALLOWED = "ENTRY_ALLOWED"
    RECOVERY = "RECOVERY"
    BLOCKED = "BLOCKED"


@dataclass
class CheckResult:
    """Outcome of one named check."""
    name: str
    passed: bool
    reason: Optional[str] = None
    value: Optional[float] = None
    mode: Optional[FlipMode] = None


@dataclass
class Blocker:
    name: str
    reason: str


@dataclass
class GuardrailInputs:
    """Everything the gate looks at for one asset on one tick."""
    elapsed_seconds: float
    obi: float
    flip_count: int
    shares: float
    stability: float
    price_yes: float
    price_no: float
    window_seconds: float = WINDOW_SECONDS
    obi_side: Side = Side.YES
    upstream_order: SignalOrder = SignalOrder.START
    pair_cost: Optional[float] = None


@dataclass
class GuardrailDecision:
    allowed: bool
    mode: EntryMode
    results: dict[str, CheckResult] = field(default_factory=dict)
    blockers: list[Blocker] = field(default_factory=list)

    @property
    def summary(self) -> str:
        if self.allowed:
            return f"Entry allowed ({self.mode.value})"
        return "Entry blocked by: " + ", ".join(b.name for b in self.blockers)


class GuardrailEvaluator:
    """Runs every entry check and combines them."""

    def __init__(self, config: Optional[GuardrailConfig] = None):
        self.config = config or GuardrailConfig()

    def check_upstream(self, order: SignalOrder) -> CheckResult:
        passed = order is SignalOrder.START
        return CheckResult(
            name="upstream",
            passed=passed,
            reason=None if passed else f"Upstream says {order.value}",
        )

    def check_rhr(self, elapsed_seconds: float, window_seconds: float = WINDOW_SECONDS) -> CheckResult:
        progress = elapsed_seconds / window_seconds if window_seconds > 0 else 0.0
        passed = progress >= self.config.rhr_threshold
        return CheckResult(
            name="rhr",
            passed=passed,
            value=progress,
            reason=None if passed else (
                f"Only {progress * 100:.1f}% of window, need {self.config.rhr_threshold * 100:.0f}%"
            ),
        )

    def check_obi(self, obi: float, side: Side = Side.YES) -> CheckResult:
        blocking = obi <= self.config.obi_block_threshold
        return CheckResult(
            name="obi",
            passed=not blocking,
            value=obi,
            reason=f"OBI {obi:.2f} <= {self.config.obi_block_threshold} on {side.value}" if blocking else None,
        )

    def check_flips(self, flip_count: int, shares: float) -> CheckResult:
        if flip_count >= self.config.flip_skip_count and shares == 0:
            return CheckResult(
                name="flips",
                passed=False,
                value=flip_count,
                mode=FlipMode.SKIP,
                reason=f"{flip_count} flips with 0 shares = SKIP",
            )

        if flip_count >= self.config.flip_recovery_count and shares > 0:
            # Passes, but entry turns into recovery
            return CheckResult(
                name="flips",
                passed=True,
                value=flip_count,
                mode=FlipMode.RECOVERY,
                reason=f"{flip_count} flips with {shares:.0f} shares = RECOVERY MODE",
            )

        return CheckResult(name="flips", passed=True, value=flip_count, mode=FlipMode.NORMAL)

    def check_stability(self, stability: float) -> CheckResult:
        passed = stability >= self.config.min_stability
        return CheckResult(
            name="stability",
            passed=passed,
            value=stability,
            reason=None if passed else f"Stability {stability:.2f} < {self.config.min_stability}",
        )

    def check_spread(self, price_yes: float, price_no: float) -> CheckResult:
        spread = abs(price_yes - price_no)
        if spread < self.config.min_spread:
            reason = f"Spread {spread:.3f} too narrow"
        elif spread > self.config.max_spread:
            reason = f"Spread {spread:.3f} too wide"
        else:
            reason = None
        return CheckResult(name="spread", passed=reason is None, value=spread, reason=reason)

    def check_pair_cost(self, pair_cost: Optional[float]) -> CheckResult:
        if pair_cost is None:
            return CheckResult(name="pair_cost", passed=True)
        passed = pair_cost <= self.config.max_pair_cost
        return CheckResult(
            name="pair_cost",
            passed=passed,
            value=pair_cost,
            reason=None if passed else f"Pair cost {pair_cost:.3f} > {self.config.max_pair_cost}",
        )

    def check_all(self, inputs: GuardrailInputs) -> GuardrailDecision:
        checks = [
            self.check_upstream(inputs.upstream_order),
            self.check_rhr(inputs.elapsed_seconds, inputs.window_seconds),
            self.check_obi(inputs.obi, inputs.obi_side),
            self.check_flips(inputs.flip_count, inputs.shares),
            self.check_stability(inputs.stability),
            self.check_spread(inputs.price_yes, inputs.price_no),
            self.check_pair_cost(inputs.pair_cost),
        ]
        results = {c.name: c for c in checks}

        blockers = [Blocker(c.name, c.reason or "failed") for c in checks if not c.passed]
        allowed = not blockers

        if not allowed:
            mode = EntryMode.BLOCKED
        elif results["flips"].mode is FlipMode.RECOVERY:
            mode = EntryMode.RECOVERY
        else:
            mode = EntryMode.ENTRY_ALLOWED

        decision = GuardrailDecision(allowed=allowed, mode=mode, results=results, blockers=blockers)
        logger.debug(decision.summary)
        return decision
