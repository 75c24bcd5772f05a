"""Exchange interface and simulated execution."""

from .exchange import ExchangeInterface, RestingOrder, ShadowExchange, create_exchange

__all__ = ["ExchangeInterface", "RestingOrder", "ShadowExchange", "create_exchange"]
