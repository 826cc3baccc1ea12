"""
Manually fed price oracle with a freshness window.
"""

from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple

from ..core import get_logger
from ..core.constants import PRICE_DECIMALS
from ..core.exceptions import InvalidPriceError, PriceNotFoundError, StalePriceError
from ..core.utils import now_timestamp, round_decimal, to_decimal

logger = get_logger(__name__)


class ManualPriceOracle:
    """
    Oracle whose prices are pushed by an external feeder.

    Example:
        >>> oracle = ManualPriceOracle(freshness_window_seconds=3600)
        >>> oracle.set_price("USDC", Decimal("1.0002"))
        >>> oracle.get_token_usd_price("USDC")
        (Decimal('1.00020000'), 8)
    """

    def __init__(
        self,
        freshness_window_seconds: int = 86400,
        price_decimals: int = PRICE_DECIMALS,
        clock: Callable[[], float] = now_timestamp,
    ):
        self._freshness_window = freshness_window_seconds
        self._price_decimals = price_decimals
        self._clock = clock
        self._prices: Dict[str, Tuple[Decimal, float]] = {}

    @property
    def freshness_window_seconds(self) -> int:
        return self._freshness_window

    def set_price(self, token: str, price: Any, updated_at: Optional[float] = None) -> None:
        """Record a price; non-positive prices are stored and rejected on read."""
        price = round_decimal(to_decimal(price), self._price_decimals)
        self._prices[token] = (price, self._clock() if updated_at is None else updated_at)
        logger.debug(f"Price set: {token} = {price}")

    def set_prices(self, prices: Dict[str, Any]) -> None:
        for token, price in prices.items():
            self.set_price(token, price)

    def get_token_usd_price(self, token: str) -> Tuple[Decimal, int]:
        if token not in self._prices:
            raise PriceNotFoundError(details={"token": token})
        price, updated_at = self._prices[token]
        if price <= 0:
            raise InvalidPriceError(details={"token": token, "price": str(price)})
        age = self._clock() - updated_at
        if age > self._freshness_window:
            raise StalePriceError(
                details={"token": token, "age_seconds": age, "window_seconds": self._freshness_window}
            )
        return price, self._price_decimals
