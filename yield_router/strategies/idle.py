"""Idle strategy: holds a supported token uninvested."""

from decimal import Decimal

from ..core.constants import ROUTER_ACCOUNT
from ..ledger import TokenLedger


class IdleStrategy:
    """Pass-through holder for capital not allocated to a yield venue."""

    def __init__(
        self,
        ledger: TokenLedger,
        token: str,
        address: str | None = None,
        owner: str = ROUTER_ACCOUNT,
    ):
        self._ledger = ledger
        self._token = token
        self._address = address or f"idle_{token.lower()}"
        self._owner = owner

    @property
    def address(self) -> str:
        return self._address

    @property
    def deposit_token(self) -> str:
        return self._token

    def deposit(self, amount: Decimal) -> None:
        # Tokens were already transferred in
        pass

    def withdraw(self, amount: Decimal) -> Decimal:
        amount = min(self._ledger.quantize(self._token, amount), self.total_tokens())
        return self._ledger.transfer(self._token, self._address, self._owner, amount)

    def withdraw_all(self) -> Decimal:
        return self._ledger.transfer(self._token, self._address, self._owner, self.total_tokens())

    def compound(self) -> None:
        pass

    def total_tokens(self) -> Decimal:
        return self._ledger.balance_of(self._token, self._address)

    def __repr__(self) -> str:
        return f"IdleStrategy(token={self._token!r}, address={self._address!r})"
