"""
Swap plugin capability interface.

A plugin executes swaps against one venue. Before ``swap`` is called the
input tokens are already held by ``plugin.address`` in the token ledger; the
plugin must deliver the output tokens to ``recipient`` and return the
amount delivered.
"""

from decimal import Decimal
from typing import Protocol, runtime_checkable


@runtime_checkable
class ExchangePlugin(Protocol):
    """Swap venue adapter."""

    @property
    def address(self) -> str: ...

    def swap(self, amount_in: Decimal, token_in: str, token_out: str, recipient: str) -> Decimal: ...

    def get_amount_out(self, amount_in: Decimal, token_in: str, token_out: str) -> Decimal: ...

    def get_fee_bps(self, token_a: str, token_b: str) -> int: ...
