"""Guardrails, lock detection, the per-asset state machine and the worker."""

from .guardrails import EntryMode, GuardrailDecision, GuardrailEvaluator, GuardrailInputs
from .lock_detector import LockAnalysis, LockDetector
from .resolution import ResolutionTracker
from .scheduler import TickScheduler
from .state_machine import AssetSnapshot, AssetStateMachine, TickContext, TraderState
from .worker import MultiAssetWorker

__all__ = [
    "EntryMode",
    "GuardrailDecision",
    "GuardrailEvaluator",
    "GuardrailInputs",
    "LockAnalysis",
    "LockDetector",
    "ResolutionTracker",
    "TickScheduler",
    "AssetSnapshot",
    "AssetStateMachine",
    "TickContext",
    "TraderState",
    "MultiAssetWorker",
]
