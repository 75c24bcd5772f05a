# Polymarket clients
from .clob_client import ClobPriceClient
from .gamma_client import GammaClient

__all__ = ["ClobPriceClient", "GammaClient"]
