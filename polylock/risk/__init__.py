"""Per-asset risk limits."""

from .limiter import RiskCheckResult, RiskLimiter

__all__ = ["RiskCheckResult", "RiskLimiter"]
