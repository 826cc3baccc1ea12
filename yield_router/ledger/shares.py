"""
Shares ledger.

Fungible ownership units of the pool. Mint, burn and forced transfers are
restricted to operator accounts (the router and the withdrawal queue);
holders may transfer their own shares.
"""

from decimal import Decimal
from typing import Any, Dict

from ..access import AccessControl, Role
from ..core.constants import SHARE_DECIMALS
from ..core.exceptions import InsufficientBalanceError, InvariantError
from ..core.utils import round_decimal, to_decimal

ZERO = round_decimal(Decimal(0), SHARE_DECIMALS)


class SharesToken:
    """Ledger of shares; ``sum(balances) == total_supply`` always holds."""

    def __init__(self, access: AccessControl):
        self._access = access
        self._balances: Dict[str, Decimal] = {}
        self._total_supply = ZERO

    @property
    def total_supply(self) -> Decimal:
        return self._total_supply

    def balance_of(self, account: str) -> Decimal:
        return self._balances.get(account, ZERO)

    def holders(self) -> Dict[str, Decimal]:
        return {a: b for a, b in self._balances.items() if b > 0}

    def mint(self, caller: str, account: str, amount: Any) -> Decimal:
        self._access.require(caller, Role.OPERATOR)
        amount = self._checked(amount)
        self._balances[account] = self.balance_of(account) + amount
        self._total_supply += amount
        return amount

    def burn(self, caller: str, account: str, amount: Any) -> Decimal:
        self._access.require(caller, Role.OPERATOR)
        amount = self._checked(amount)
        self._debit(account, amount)
        self._total_supply -= amount
        return amount

    def operator_transfer(self, caller: str, sender: str, recipient: str, amount: Any) -> Decimal:
        """Move shares between any accounts (escrow into/out of the router)."""
        self._access.require(caller, Role.OPERATOR)
        return self._move(sender, recipient, self._checked(amount))

    def transfer(self, sender: str, recipient: str, amount: Any) -> Decimal:
        return self._move(sender, recipient, self._checked(amount))

    def _move(self, sender: str, recipient: str, amount: Decimal) -> Decimal:
        if amount == 0 or sender == recipient:
            return amount
        self._debit(sender, amount)
        self._balances[recipient] = self.balance_of(recipient) + amount
        return amount

    def _checked(self, amount: Any) -> Decimal:
        amount = round_decimal(to_decimal(amount), SHARE_DECIMALS)
        if amount < 0:
            raise InvariantError(f"Negative share amount: {amount}")
        return amount

    def _debit(self, account: str, amount: Decimal) -> None:
        balance = self.balance_of(account)
        if balance < amount:
            raise InsufficientBalanceError(
                f"{account} has {balance} shares, needs {amount}",
                details={"account": account},
            )
        self._balances[account] = balance - amount

    def snapshot(self) -> Dict[str, Any]:
        return {"balances": dict(self._balances), "total_supply": self._total_supply}

    def restore(self, state: Dict[str, Any]) -> None:
        self._balances = dict(state["balances"])
        self._total_supply = state["total_supply"]
