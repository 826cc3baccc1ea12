"""
Strategy capability interface.

A strategy holds one deposit token in an external yield venue. The router
transfers tokens to ``strategy.address`` before calling ``deposit``;
``withdraw`` and ``withdraw_all`` deliver tokens to the router account and
return the amount actually delivered, which may be less than requested.
Every method must accept a zero amount.
"""

from decimal import Decimal
from typing import Protocol, runtime_checkable


@runtime_checkable
class Strategy(Protocol):
    """Yield venue adapter."""

    @property
    def address(self) -> str: ...

    @property
    def deposit_token(self) -> str: ...

    def deposit(self, amount: Decimal) -> None: ...

    def withdraw(self, amount: Decimal) -> Decimal: ...

    def withdraw_all(self) -> Decimal: ...

    def compound(self) -> None: ...

    def total_tokens(self) -> Decimal: ...
