from .base import Oracle, from_usd, to_usd
from .manual import ManualPriceOracle

__all__ = ["Oracle", "ManualPriceOracle", "to_usd", "from_usd"]
