"""
Shared fixtures for the trader tests.
"""

import pytest

from polylock.models import VenueMarket

# 1_700_000_100 is a multiple of 900
WINDOW_START = 900 * 1_888_889


class FakeClock:
    """Manually advanced clock for the rolling-window tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def window_start():
    return WINDOW_START


def make_market(asset: str = "BTC") -> VenueMarket:
    lower = asset.lower()
    return VenueMarket(
        asset=asset,
        slug=f"{lower}-updown-15m-{WINDOW_START}",
        venue_id=f"cond-{lower}",
        question=f"{asset} Up or Down?",
        end_time=None,
        yes_token_id=f"yes-{lower}",
        no_token_id=f"no-{lower}",
    )


@pytest.fixture
def market():
    return make_market("BTC")
