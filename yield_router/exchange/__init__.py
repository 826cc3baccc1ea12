from .exchange import Exchange, RouteParams
from .plugins import ExchangePlugin

__all__ = ["Exchange", "ExchangePlugin", "RouteParams"]
