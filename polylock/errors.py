"""
Exception hierarchy for the trader.

Only StartupError is fatal; everything else is caught at the asset-tick
boundary and degrades to "no action this tick".
"""


class PolylockError(Exception):
    """Base class for all trader errors."""


class ExternalServiceError(PolylockError):
    """A collaborator (price source, venue resolver, data feed) failed or timed out."""


class OrderRejectedError(PolylockError):
    """The exchange refused an order outright (bad price, insufficient balance)."""


class RecoveryNotPossibleError(PolylockError):
    """Recovery sizing asked to buy at or above redemption value."""

    def __init__(self, price: float):
        super().__init__(f"Cannot recover by buying at {price:.3f} (>= 1.00)")
        self.price = price


class InvalidSpreadError(PolylockError):
    """Aggressive lock solver called with a non-positive price spread."""

    def __init__(self, spread: float):
        super().__init__(f"Spread {spread:.4f} <= 0, cannot solve lock")
        self.spread = spread


class StartupError(PolylockError):
    """Exchange or storage could not be initialized."""
