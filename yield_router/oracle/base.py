"""
Oracle capability interface and USD conversion helpers.
"""

from decimal import ROUND_DOWN, Decimal
from typing import Protocol, runtime_checkable

from ..core.constants import USD_DECIMALS
from ..core.utils import mul_div


@runtime_checkable
class Oracle(Protocol):
    """USD price source."""

    def get_token_usd_price(self, token: str) -> tuple[Decimal, int]:
        """
        Return ``(price, decimals)`` for ``token``.

        Raises:
            PriceNotFoundError, StalePriceError, InvalidPriceError
        """
        ...


def to_usd(oracle: Oracle, token: str, amount: Decimal, rounding: str = ROUND_DOWN) -> Decimal:
    """Value ``amount`` of ``token`` in USD at the oracle price."""
    price, _ = oracle.get_token_usd_price(token)
    return mul_div(amount, price, Decimal(1), USD_DECIMALS, rounding)


def from_usd(
    oracle: Oracle,
    token: str,
    usd: Decimal,
    token_decimals: int,
    rounding: str = ROUND_DOWN,
) -> Decimal:
    """Amount of ``token`` worth ``usd`` at the oracle price."""
    price, _ = oracle.get_token_usd_price(token)
    return mul_div(usd, Decimal(1), price, token_decimals, rounding)
