"""
Tests for the entry guardrails.
"""

import pytest

from polylock.config import GuardrailConfig
from polylock.models import SignalOrder
from polylock.trader.guardrails import (
    EntryMode,
    FlipMode,
    GuardrailEvaluator,
    GuardrailInputs,
)


def inputs(**overrides) -> GuardrailInputs:
    """Inputs that pass every check unless overridden."""
    values = dict(
        elapsed_seconds=200,
        obi=0.1,
        flip_count=0,
        shares=0,
        stability=0.7,
        price_yes=0.55,
        price_no=0.45,
        upstream_order=SignalOrder.START,
    )
    values.update(overrides)
    return GuardrailInputs(**values)


@pytest.fixture
def evaluator():
    return GuardrailEvaluator(GuardrailConfig())


class TestGuardrails:
    """Tests for the composite entry gate."""

    def test_all_checks_pass(self, evaluator):
        decision = evaluator.check_all(inputs())

        assert decision.allowed
        assert decision.mode is EntryMode.ENTRY_ALLOWED
        assert decision.blockers == []
        assert set(decision.results) == {
            "upstream", "rhr", "obi", "flips", "stability", "spread", "pair_cost"
        }

    def test_obi_below_threshold_blocks(self, evaluator):
        decision = evaluator.check_all(inputs(obi=-0.31))

        assert not decision.allowed
        assert decision.mode is EntryMode.BLOCKED
        assert [b.name for b in decision.blockers] == ["obi"]

    def test_obi_at_threshold_blocks(self, evaluator):
        assert not evaluator.check_obi(-0.30).passed
        assert evaluator.check_obi(-0.29).passed

    def test_rhr_waits_for_progress(self, evaluator):
        assert not evaluator.check_rhr(60, 900).passed
        assert evaluator.check_rhr(90, 900).passed

    def test_flips_without_shares_skip(self, evaluator):
        decision = evaluator.check_all(inputs(flip_count=2, shares=0))

        assert not decision.allowed
        assert decision.results["flips"].mode is FlipMode.SKIP
        assert [b.name for b in decision.blockers] == ["flips"]

    def test_flips_with_shares_switch_to_recovery(self, evaluator):
        decision = evaluator.check_all(inputs(flip_count=3, shares=10))

        assert decision.allowed
        assert decision.mode is EntryMode.RECOVERY

    def test_two_flips_with_shares_is_normal(self, evaluator):
        result = evaluator.check_flips(2, 10)
        assert result.passed
        assert result.mode is FlipMode.NORMAL

    def test_every_blocker_is_reported(self, evaluator):
        decision = evaluator.check_all(inputs(
            upstream_order=SignalOrder.HOLD,
            elapsed_seconds=30,
            stability=0.5,
        ))

        assert [b.name for b in decision.blockers] == ["upstream", "rhr", "stability"]
        assert decision.summary == "Entry blocked by: upstream, rhr, stability"

    def test_spread_too_wide(self, evaluator):
        decision = evaluator.check_all(inputs(price_yes=0.80, price_no=0.10))
        assert [b.name for b in decision.blockers] == ["spread"]

    def test_pair_cost(self, evaluator):
        assert evaluator.check_pair_cost(None).passed
        assert evaluator.check_pair_cost(0.99).passed
        assert not evaluator.check_pair_cost(1.00).passed

    def test_custom_thresholds(self):
        evaluator = GuardrailEvaluator(GuardrailConfig(min_stability=0.8, obi_block_threshold=-0.1))
        decision = evaluator.check_all(inputs(obi=-0.1))

        assert [b.name for b in decision.blockers] == ["obi", "stability"]
