"""
In-memory multi-token balance ledger.

Amounts are Decimals quantized to each token's decimals; every account is a
plain string.
"""

from copy import deepcopy
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict

from ..core import get_logger
from ..core.exceptions import (
    DuplicateError,
    InsufficientBalanceError,
    InvariantError,
    UnsupportedTokenError,
)
from ..core.utils import round_decimal, to_decimal

logger = get_logger(__name__)


class TokenLedger:
    """
    Balances of fungible tokens.

    Example:
        >>> ledger = TokenLedger()
        >>> ledger.register_token("USDC", 6)
        >>> ledger.mint("USDC", "alice", Decimal("100"))
        >>> ledger.transfer("USDC", "alice", "bob", Decimal("40"))
        >>> ledger.balance_of("USDC", "bob")
        Decimal('40.000000')
    """

    def __init__(self):
        self._decimals: Dict[str, int] = {}
        self._balances: Dict[str, Dict[str, Decimal]] = {}

    # =========================================================================
    # Tokens
    # =========================================================================

    def register_token(self, token: str, decimals: int) -> None:
        if token in self._decimals:
            raise DuplicateError(f"Token already registered: {token}", details={"token": token})
        if decimals < 0:
            raise InvariantError(f"Invalid decimals for {token}: {decimals}")
        self._decimals[token] = decimals
        self._balances[token] = {}
        logger.debug(f"Registered token {token} ({decimals} decimals)")

    def is_registered(self, token: str) -> bool:
        return token in self._decimals

    def decimals(self, token: str) -> int:
        try:
            return self._decimals[token]
        except KeyError:
            raise UnsupportedTokenError(f"Unknown token: {token}", details={"token": token})

    @property
    def tokens(self) -> list[str]:
        return list(self._decimals)

    def quantize(self, token: str, amount: Any, rounding: str = ROUND_DOWN) -> Decimal:
        """Round ``amount`` to the token's smallest unit."""
        return round_decimal(to_decimal(amount), self.decimals(token), rounding)

    # =========================================================================
    # Balances
    # =========================================================================

    def balance_of(self, token: str, account: str) -> Decimal:
        decimals = self.decimals(token)
        return self._balances[token].get(account, round_decimal(Decimal(0), decimals))

    def total_supply(self, token: str) -> Decimal:
        self.decimals(token)
        return sum(self._balances[token].values(), Decimal(0))

    def mint(self, token: str, account: str, amount: Any) -> Decimal:
        amount = self._checked_amount(token, amount)
        self._balances[token][account] = self.balance_of(token, account) + amount
        return amount

    def burn(self, token: str, account: str, amount: Any) -> Decimal:
        amount = self._checked_amount(token, amount)
        self._debit(token, account, amount)
        return amount

    def transfer(self, token: str, sender: str, recipient: str, amount: Any) -> Decimal:
        amount = self._checked_amount(token, amount)
        if amount == 0 or sender == recipient:
            return amount
        self._debit(token, sender, amount)
        self._balances[token][recipient] = self.balance_of(token, recipient) + amount
        return amount

    def _checked_amount(self, token: str, amount: Any) -> Decimal:
        amount = self.quantize(token, amount)
        if amount < 0:
            raise InvariantError(f"Negative amount: {amount} {token}")
        return amount

    def _debit(self, token: str, account: str, amount: Decimal) -> None:
        balance = self.balance_of(token, account)
        if balance < amount:
            raise InsufficientBalanceError(
                f"{account} has {balance} {token}, needs {amount}",
                details={"token": token, "account": account},
            )
        self._balances[token][account] = balance - amount

    # =========================================================================
    # Snapshots
    # =========================================================================

    def snapshot(self) -> Dict[str, Any]:
        return {
            "decimals": dict(self._decimals),
            "balances": deepcopy(self._balances),
        }

    def restore(self, state: Dict[str, Any]) -> None:
        self._decimals = dict(state["decimals"])
        self._balances = deepcopy(state["balances"])
