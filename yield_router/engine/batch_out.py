"""
Deferred withdrawal queue.

Withdrawal requests are collected into withdrawal cycles (numbered
independently of deposit cycles). Executing a cycle nets every pending
request into one proportional withdrawal from the strategies; fulfilling it
pays each request its pro-rata part of the tokens received.
"""

from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from ..access import AccessControl, Role
from ..config.models import BatchOutConfig
from ..core import TransactionManager, get_accounting_logger, get_audit_logger, get_logger
from ..core.constants import BATCH_OUT_ACCOUNT, SHARE_DECIMALS, USD_DECIMALS
from ..core.exceptions import (
    AllWithdrawalsFulfilledError,
    CycleNotClosableYetError,
    CycleNotClosedError,
    FeeUnderpaidError,
    NotFoundError,
    UnsupportedTokenError,
)
from ..core.structured_logging import EventType, LogContext
from ..core.utils import div_down, mul_div, now_timestamp
from ..ledger import SharesToken, TokenLedger
from ..oracle import Oracle
from .batch import calculate_fee_in_usd, fee_in_native
from .models import WithdrawalCycle, WithdrawalRequest
from .registry import StrategyRegistry
from .router import StrategyRouter

if TYPE_CHECKING:
    from ..storage import CycleRepository

logger = get_logger(__name__)


class BatchOut:
    """
    Withdrawal queue settled in batches.

    Example:
        >>> batch_out.schedule_withdrawal("alice", None, "USDC", [], shares)
        >>> batch_out.withdraw_and_distribute("moderator")
    """

    def __init__(
        self,
        ledger: TokenLedger,
        oracle: Oracle,
        access: AccessControl,
        registry: StrategyRegistry,
        router: StrategyRouter,
        shares: SharesToken,
        transactions: TransactionManager,
        config: BatchOutConfig,
        native_token: str,
        repository: Optional["CycleRepository"] = None,
        clock: Callable[[], float] = now_timestamp,
        account: str = BATCH_OUT_ACCOUNT,
    ):
        self._ledger = ledger
        self._oracle = oracle
        self._access = access
        self._registry = registry
        self._router = router
        self._shares = shares
        self._transactions = transactions
        self._config = config
        self._native_token = native_token
        self._repository = repository
        self._clock = clock
        self.account = account

        self._current_cycle_id = 0
        self._cycles: Dict[int, WithdrawalCycle] = {0: WithdrawalCycle(id=0)}
        self._accounting = get_accounting_logger("batch_out")
        self._audit = get_audit_logger("batch_out")

    # =========================================================================
    # State
    # =========================================================================

    @property
    def config(self) -> BatchOutConfig:
        return self._config

    @property
    def current_cycle_id(self) -> int:
        return self._current_cycle_id

    @property
    def current_cycle(self) -> WithdrawalCycle:
        return self._cycles[self._current_cycle_id]

    def get_cycle(self, cycle_id: int) -> WithdrawalCycle:
        try:
            return self._cycles[cycle_id]
        except KeyError:
            raise NotFoundError(f"Withdrawal cycle {cycle_id} not found", details={"cycle_id": cycle_id})

    def get_not_fulfilled_cycle_ids(self) -> List[int]:
        """Executed withdrawal cycles still waiting for payout."""
        return [
            cycle_id
            for cycle_id, cycle in sorted(self._cycles.items())
            if cycle.is_executed and not cycle.is_fulfilled
        ]

    def get_withdrawal_fee_in_native(self, amount_usd: Decimal) -> Decimal:
        fee_usd = calculate_fee_in_usd(self._config.withdrawal_fee, amount_usd)
        return fee_in_native(self._ledger, self._oracle, self._native_token, fee_usd)

    # =========================================================================
    # Requests
    # =========================================================================

    def schedule_withdrawal(
        self,
        caller: str,
        recipient: Optional[str],
        token: str,
        receipt_ids: Sequence[int],
        shares: Any = 0,
        fee_amount: Any = 0,
    ) -> WithdrawalRequest:
        """
        Queue ``shares`` (plus any listed receipts) for the next settlement.

        The shares move into the queue's escrow right away; ``recipient``
        defaults to the caller.

        Raises:
            UnsupportedTokenError: token not supported
            AmountNotSpecifiedError: neither receipts nor shares given
            InsufficientSharesError: caller holds fewer shares than requested
            FeeUnderpaidError: ``fee_amount`` (native) below the withdrawal fee
        """
        if not self._registry.is_supported(token):
            raise UnsupportedTokenError(details={"token": token})
        recipient = recipient or caller

        with self._transactions.atomic("schedule_withdrawal"):
            shares = self._router.collect_shares(self.account, caller, receipt_ids, shares)
            usd = self._router.calculate_shares_usd_value(shares)
            self._collect_fee(caller, usd, fee_amount)

            self._shares.operator_transfer(self.account, caller, self.account, shares)
            cycle = self.current_cycle
            request = WithdrawalRequest(cycle_id=cycle.id, owner=recipient, shares=shares, token=token)
            cycle.requests.append(request)
            if cycle.started_at is None:
                cycle.started_at = self._clock()

        self._accounting.info(
            EventType.WITHDRAWAL_SCHEDULED,
            f"Withdrawal of {shares} shares to {token} scheduled",
            context=LogContext(account=caller, token=token, cycle_id=request.cycle_id),
            shares=shares,
            usd=usd,
            recipient=recipient,
        )
        return request

    def _collect_fee(self, caller: str, amount_usd: Decimal, fee_amount: Any) -> None:
        required = self.get_withdrawal_fee_in_native(amount_usd)
        fee_amount = self._ledger.quantize(self._native_token, fee_amount)
        if fee_amount < required:
            raise FeeUnderpaidError(
                details={"required": str(required), "paid": str(fee_amount), "token": self._native_token}
            )
        treasury = self._config.withdrawal_fee.fee_treasury
        if fee_amount > 0 and treasury:
            self._ledger.transfer(self._native_token, caller, treasury, fee_amount)

    # =========================================================================
    # Settlement
    # =========================================================================

    def execute_batch_withdraw(self, caller: str) -> WithdrawalCycle:
        """Pull the open cycle's funds into the queue and open the next cycle."""
        self._access.require(caller, Role.MODERATOR)
        return self._execute()

    def withdraw_fulfill(self, caller: str, cycle_id: int) -> Dict[str, Decimal]:
        """Pay out an executed cycle; returns the amount paid per recipient."""
        self._access.require(caller, Role.MODERATOR)
        return self._fulfill(cycle_id)

    def withdraw_and_distribute(self, caller: str) -> Dict[str, Decimal]:
        """Execute the open cycle and pay it out in one step."""
        self._access.require(caller, Role.MODERATOR)
        with self._transactions.atomic("withdraw_and_distribute"):
            cycle = self._execute()
            return self._fulfill(cycle.id)

    def _execute(self) -> WithdrawalCycle:
        cycle = self.current_cycle
        if not cycle.requests:
            raise CycleNotClosableYetError(
                "No withdrawal requests in the open cycle", details={"cycle_id": cycle.id}
            )

        with self._transactions.atomic("execute_batch_withdraw"):
            withdrawn_usd, received = self._router.withdraw_for_batch_out(
                self.account,
                cycle.shares_by_token(),
                self._config.max_slippage_to_withdraw_in_bps,
            )
            cycle.withdrawn_usd = withdrawn_usd
            cycle.received = received
            cycle.usd_per_share = div_down(withdrawn_usd, cycle.pending_shares, USD_DECIMALS)
            cycle.executed_at = self._clock()

            self._current_cycle_id += 1
            self._cycles[self._current_cycle_id] = WithdrawalCycle(id=self._current_cycle_id)

        self._accounting.info(
            EventType.WITHDRAWAL_CYCLE_EXECUTED,
            f"Withdrawal cycle {cycle.id} executed: {withdrawn_usd} USD",
            context=LogContext(cycle_id=cycle.id),
            shares=cycle.pending_shares,
            withdrawn_usd=withdrawn_usd,
            received={k: str(v) for k, v in received.items()},
        )
        logger.info(f"Withdrawal cycle {cycle.id} executed for {len(cycle.requests)} requests")
        return cycle

    def _fulfill(self, cycle_id: int) -> Dict[str, Decimal]:
        cycle = self.get_cycle(cycle_id)
        if not cycle.is_executed:
            raise CycleNotClosedError(details={"withdrawal_cycle_id": cycle_id})
        if cycle.is_fulfilled:
            raise AllWithdrawalsFulfilledError(details={"withdrawal_cycle_id": cycle_id})

        shares_by_token = cycle.shares_by_token()
        remaining = {token: cycle.received.get(token, Decimal(0)) for token in shares_by_token}
        last_request = {request.token: index for index, request in enumerate(cycle.requests)}
        paid: Dict[str, Decimal] = {}
        with self._transactions.atomic("withdraw_fulfill") as tx:
            for index, request in enumerate(cycle.requests):
                token = request.token
                # Rounding remainder goes to the last request for the token
                if index == last_request[token]:
                    amount = remaining[token]
                else:
                    amount = mul_div(
                        cycle.received.get(token, Decimal(0)),
                        request.shares,
                        shares_by_token[token],
                        self._ledger.decimals(token),
                    )
                remaining[token] -= amount
                if amount > 0:
                    self._ledger.transfer(token, self.account, request.owner, amount)
                request.amount_out = amount
                request.settled = True
                paid[request.owner] = paid.get(request.owner, Decimal(0)) + amount
            cycle.fulfilled_at = self._clock()
            tx.on_commit(lambda: self._on_fulfilled(cycle))
        return paid

    def _on_fulfilled(self, cycle: WithdrawalCycle) -> None:
        if self._repository is not None:
            self._repository.save_withdrawal_cycle(cycle)
        for request in cycle.requests:
            self._accounting.withdrawal_executed(
                request.owner, request.token, request.shares, request.amount_out,
                withdrawal_cycle_id=cycle.id,
            )
        self._accounting.info(
            EventType.WITHDRAWAL_CYCLE_FULFILLED,
            f"Withdrawal cycle {cycle.id} fulfilled",
            context=LogContext(cycle_id=cycle.id),
            requests=len(cycle.requests),
        )

    # =========================================================================
    # Upkeep
    # =========================================================================

    def _window_elapsed(self) -> bool:
        cycle = self.current_cycle
        if not cycle.requests or cycle.started_at is None:
            return False
        return self._clock() - cycle.started_at >= self._config.withdrawal_window_seconds

    def check_upkeep(self) -> bool:
        return self._window_elapsed() or bool(self.get_not_fulfilled_cycle_ids())

    def perform_upkeep(self) -> List[int]:
        """Execute the open cycle once its window elapsed, then pay out every executed cycle."""
        if not self.check_upkeep():
            raise CycleNotClosableYetError(details={"withdrawal_cycle_id": self._current_cycle_id})
        with self._transactions.atomic("batch_out_upkeep"):
            if self._window_elapsed():
                self._execute()
            fulfilled = self.get_not_fulfilled_cycle_ids()
            for cycle_id in fulfilled:
                self._fulfill(cycle_id)
        return fulfilled

    # =========================================================================
    # Settings
    # =========================================================================

    def update_settings(self, caller: str, **changes: Any) -> BatchOutConfig:
        """
        Change queue settings (slippage cap, fee, window).

        Raises:
            ConfigurationError: e.g. ``NewValueIsAboveMaxBps`` for a slippage
                cap above 10000
        """
        self._access.require(caller, Role.ADMIN)
        new_config = self._config.updated(**changes)
        old_config = self._config
        self._config = new_config
        for key in changes:
            self._audit.config_changed(
                f"batch_out.{key}", getattr(old_config, key), getattr(new_config, key), changed_by=caller
            )
        return new_config

    def set_max_slippage_to_withdraw(self, caller: str, bps: int) -> BatchOutConfig:
        return self.update_settings(caller, max_slippage_to_withdraw_in_bps=bps)

    # =========================================================================
    # Snapshots
    # =========================================================================

    def snapshot(self) -> Dict[str, Any]:
        return {
            "current_cycle_id": self._current_cycle_id,
            "cycles": {k: _copy_cycle(v) for k, v in self._cycles.items()},
            "config": self._config,
        }

    def restore(self, state: Dict[str, Any]) -> None:
        self._current_cycle_id = state["current_cycle_id"]
        self._cycles = {k: _copy_cycle(v) for k, v in state["cycles"].items()}
        self._config = state["config"]


def _copy_cycle(cycle: WithdrawalCycle) -> WithdrawalCycle:
    return replace(
        cycle,
        requests=[replace(r) for r in cycle.requests],
        received=dict(cycle.received),
    )
