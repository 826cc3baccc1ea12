"""
Deposit batch.

Accumulates multi-token deposits for the open cycle and issues a receipt per
deposit. Before the cycle is allocated a receipt holder (or a moderator) may
take the deposit back straight from the batch; no oracle or swap is
involved.
"""

from decimal import ROUND_UP, Decimal
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from ..access import AccessControl, Role
from ..config.models import FeeSettings, RouterConfig
from ..core import TransactionManager, get_accounting_logger, get_logger
from ..core.constants import BATCH_ACCOUNT, MAX_BPS, USD_DECIMALS
from ..core.exceptions import (
    AmountExceedsBalanceError,
    CycleClosedError,
    DepositUnderMinimumError,
    FeeUnderpaidError,
    NotReceiptOwnerError,
    UnsupportedTokenError,
)
from ..core.structured_logging import EventType
from ..core.utils import mul_div, now_timestamp, round_decimal
from ..ledger import Receipt, ReceiptRegistry, TokenLedger
from ..oracle import Oracle, to_usd
from .registry import StrategyRegistry

logger = get_logger(__name__)


def calculate_fee_in_usd(settings: FeeSettings, amount_usd: Decimal) -> Decimal:
    """
    ``min(max(amount_usd * bps, min_fee), max_fee)``, rounded up.

    Example:
        >>> settings = FeeSettings(fee_in_bps=25, min_fee_in_usd=Decimal("0.15"),
        ...                        max_fee_in_usd=Decimal("1"), fee_treasury="t")
        >>> calculate_fee_in_usd(settings, Decimal("100"))
        Decimal('0.250000000000000000')
    """
    if not settings.charges_fee:
        return round_decimal(Decimal(0), USD_DECIMALS)
    fee = mul_div(amount_usd, Decimal(settings.fee_in_bps), Decimal(MAX_BPS), USD_DECIMALS, ROUND_UP)
    fee = max(fee, settings.min_fee_in_usd)
    fee = min(fee, settings.max_fee_in_usd)
    return round_decimal(fee, USD_DECIMALS, ROUND_UP)


class Batch:
    """
    Deposit intake for the open cycle.

    The batch owns the open cycle's id and countdown: the allocation window
    starts at the first deposit of a cycle.
    """

    def __init__(
        self,
        ledger: TokenLedger,
        oracle: Oracle,
        access: AccessControl,
        registry: StrategyRegistry,
        receipts: ReceiptRegistry,
        transactions: TransactionManager,
        config: RouterConfig,
        native_token: str,
        clock: Callable[[], float] = now_timestamp,
        account: str = BATCH_ACCOUNT,
    ):
        self._ledger = ledger
        self._oracle = oracle
        self._access = access
        self._registry = registry
        self._receipts = receipts
        self._transactions = transactions
        self._config = config
        self._native_token = native_token
        self._clock = clock
        self.account = account

        self._current_cycle_id = 0
        self._cycle_started_at: Optional[float] = None
        self._deposit_count = 0
        self._deposited: Dict[str, Decimal] = {}
        self._accounting = get_accounting_logger("batch")

    # =========================================================================
    # State
    # =========================================================================

    @property
    def current_cycle_id(self) -> int:
        return self._current_cycle_id

    @property
    def cycle_started_at(self) -> Optional[float]:
        """Time of the open cycle's first deposit."""
        return self._cycle_started_at

    @property
    def deposit_count(self) -> int:
        return self._deposit_count

    def deposited_amounts(self) -> Dict[str, Decimal]:
        """Receipt amounts of the open cycle per token, whatever the batch holds now."""
        return dict(self._deposited)

    @property
    def config(self) -> RouterConfig:
        return self._config

    def set_config(self, config: RouterConfig) -> None:
        self._config = config

    def balances(self) -> Dict[str, Decimal]:
        """Non-zero token balances held by the batch."""
        result = {}
        for token in self._registry.supported_tokens():
            balance = self._ledger.balance_of(token, self.account)
            if balance > 0:
                result[token] = balance
        return result

    def get_batch_value_usd(self) -> Tuple[Decimal, Dict[str, Decimal]]:
        """Total and per-token USD value of the batch at oracle prices."""
        values = {
            token: to_usd(self._oracle, token, balance)
            for token, balance in self.balances().items()
        }
        return sum(values.values(), Decimal(0)), values

    # =========================================================================
    # Fees
    # =========================================================================

    def get_deposit_fee_in_usd(self, amount_usd: Decimal) -> Decimal:
        return calculate_fee_in_usd(self._config.deposit_fee, amount_usd)

    def get_deposit_fee_in_native(self, amount_usd: Decimal) -> Decimal:
        fee_usd = self.get_deposit_fee_in_usd(amount_usd)
        return fee_in_native(self._ledger, self._oracle, self._native_token, fee_usd)

    # =========================================================================
    # Deposit / withdraw
    # =========================================================================

    def deposit(
        self,
        depositor: str,
        token: str,
        amount: Any,
        fee_amount: Any = 0,
    ) -> Receipt:
        """
        Move ``amount`` of ``token`` into the batch and mint a receipt.

        Raises:
            UnsupportedTokenError: token not supported or disabled
            DepositUnderMinimumError: amount below the configured minimum
            FeeUnderpaidError: ``fee_amount`` (native) below the deposit fee
        """
        if not self._registry.is_enabled(token):
            raise UnsupportedTokenError(details={"token": token})

        with self._transactions.atomic("deposit"):
            amount = self._ledger.quantize(token, amount)
            amount_usd = to_usd(self._oracle, token, amount)
            if amount <= 0 or amount_usd < self._config.min_deposit_usd:
                raise DepositUnderMinimumError(
                    details={"amount_usd": str(amount_usd), "minimum_usd": str(self._config.min_deposit_usd)}
                )

            fee_paid = self._collect_fee(depositor, amount_usd, fee_amount)
            self._ledger.transfer(token, depositor, self.account, amount)
            receipt = self._receipts.mint(self.account, self._current_cycle_id, amount, token, depositor)

            self._deposited[token] = self._deposited.get(token, Decimal(0)) + amount
            if self._deposit_count == 0:
                self._cycle_started_at = self._clock()
            self._deposit_count += 1

        self._accounting.deposit_received(
            receipt.id, depositor, token, amount, receipt.cycle_id,
            fee_paid=fee_paid, amount_usd=amount_usd,
        )
        logger.info(f"Deposit {amount} {token} from {depositor} -> receipt {receipt.id}")
        return receipt

    def _collect_fee(self, depositor: str, amount_usd: Decimal, fee_amount: Any) -> Decimal:
        required = self.get_deposit_fee_in_native(amount_usd)
        fee_amount = self._ledger.quantize(self._native_token, fee_amount)
        if fee_amount < required:
            raise FeeUnderpaidError(
                details={"required": str(required), "paid": str(fee_amount), "token": self._native_token}
            )
        treasury = self._config.deposit_fee.fee_treasury
        if fee_amount > 0 and treasury:
            self._ledger.transfer(self._native_token, depositor, treasury, fee_amount)
            return fee_amount
        return self._ledger.quantize(self._native_token, 0)

    def withdraw(
        self,
        caller: str,
        receipt_ids: Sequence[int],
        amounts: Optional[Sequence[Any]] = None,
    ) -> Dict[str, Decimal]:
        """
        Return deposits of the open cycle to their receipt holders.

        ``amounts`` defaults to the full receipt amounts; a partial amount
        decreases the receipt, a full one burns it. Moderators may withdraw
        on behalf of holders; tokens always go to the holder.

        Returns:
            Amount returned per token
        """
        if amounts is not None and len(amounts) != len(receipt_ids):
            raise AmountExceedsBalanceError("receipt_ids and amounts differ in length")

        is_moderator = self._access.has_role(caller, Role.MODERATOR)
        returned: Dict[str, Decimal] = {}

        with self._transactions.atomic("batch_withdraw"):
            for i, receipt_id in enumerate(receipt_ids):
                receipt = self._receipts.get(receipt_id)
                if receipt.owner != caller and not is_moderator:
                    raise NotReceiptOwnerError(details={"receipt_id": receipt_id, "account": caller})
                if receipt.cycle_id != self._current_cycle_id:
                    raise CycleClosedError(details={"receipt_id": receipt_id, "cycle_id": receipt.cycle_id})

                amount = receipt.amount if amounts is None else self._ledger.quantize(receipt.token, amounts[i])
                if amount <= 0 or amount > receipt.amount:
                    raise AmountExceedsBalanceError(
                        details={"receipt_id": receipt_id, "amount": str(amount), "balance": str(receipt.amount)}
                    )

                if amount == receipt.amount:
                    self._receipts.burn(self.account, receipt_id)
                else:
                    self._receipts.set_amount(self.account, receipt_id, receipt.amount - amount)
                self._ledger.transfer(receipt.token, self.account, receipt.owner, amount)
                self._deposited[receipt.token] -= amount
                returned[receipt.token] = returned.get(receipt.token, Decimal(0)) + amount

        for token, amount in returned.items():
            self._accounting.info(
                EventType.DEPOSIT_WITHDRAWN,
                f"Batch withdrawal: {amount} {token}",
                token=token,
                amount=amount,
                caller=caller,
                cycle_id=self._current_cycle_id,
            )
        return returned

    # =========================================================================
    # Cycle lifecycle
    # =========================================================================

    def start_new_cycle(self, caller: str) -> int:
        """Open the next cycle; called by the router once it allocated the batch."""
        self._access.require(caller, Role.OPERATOR)
        self._current_cycle_id += 1
        self._cycle_started_at = None
        self._deposit_count = 0
        self._deposited = {}
        return self._current_cycle_id

    def snapshot(self) -> Dict[str, Any]:
        return {
            "current_cycle_id": self._current_cycle_id,
            "cycle_started_at": self._cycle_started_at,
            "deposit_count": self._deposit_count,
            "deposited": dict(self._deposited),
            "config": self._config,
        }

    def restore(self, state: Dict[str, Any]) -> None:
        self._current_cycle_id = state["current_cycle_id"]
        self._cycle_started_at = state["cycle_started_at"]
        self._deposit_count = state["deposit_count"]
        self._deposited = dict(state["deposited"])
        self._config = state["config"]


def fee_in_native(ledger: TokenLedger, oracle: Oracle, native_token: str, fee_usd: Decimal) -> Decimal:
    """Native-token amount covering ``fee_usd``, rounded up."""
    if fee_usd <= 0:
        return ledger.quantize(native_token, 0)
    price, _ = oracle.get_token_usd_price(native_token)
    return mul_div(fee_usd, Decimal(1), price, ledger.decimals(native_token), ROUND_UP)

