"""
Global wind: the average micro direction across all tracked assets.
"""


class WindCalculator:
    """Wind in [-1, 1]: -1 all assets down, +1 all assets up."""

    ALIGNMENT_THRESHOLD = 0.3

    def __init__(self):
        self.directions: dict[str, int] = {}
        self.wind = 0.0

    def update_direction(self, asset: str, direction: int) -> float:
        self.directions[asset] = direction
        return self.calculate()

    def calculate(self) -> float:
        if not self.directions:
            self.wind = 0.0
        else:
            self.wind = sum(self.directions.values()) / len(self.directions)
        return self.wind

    def describe(self) -> str:
        if self.wind > 0.5:
            return "STRONG_UP"
        if self.wind > 0.2:
            return "UP"
        if self.wind > -0.2:
            return "NEUTRAL"
        if self.wind > -0.5:
            return "DOWN"
        return "STRONG_DOWN"

    def alignment_multiplier(self, asset: str) -> float:
        """1.2 when the asset moves with a strong wind, 0.8 against it."""
        asset_dir = self.directions.get(asset, 0)
        t = self.ALIGNMENT_THRESHOLD
        if (self.wind > t and asset_dir > 0) or (self.wind < -t and asset_dir < 0):
            return 1.2
        if (self.wind > t and asset_dir < 0) or (self.wind < -t and asset_dir > 0):
            return 0.8
        return 1.0

    def export_state(self) -> dict:
        return {
            "wind": round(self.wind, 2),
            "description": self.describe(),
            "directions": dict(self.directions),
        }
