"""
Strategy Router.

The allocation and accounting engine: runs the deposit cycle state machine,
sweeps the batch into weighted strategies, prices shares, mints user and
protocol-fee shares, settles direct withdrawals and rebalances.

Shares of a cycle are minted into the router's own account and handed to
receipt holders when they redeem their receipts.
"""

from dataclasses import replace
from decimal import ROUND_UP, Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..access import AccessControl, Role
from ..config.models import RouterConfig
from ..core import TransactionManager, get_accounting_logger, get_audit_logger, get_logger
from ..core.constants import INITIAL_PRICE_PER_SHARE, ROUTER_ACCOUNT, SHARE_DECIMALS, USD_DECIMALS
from ..core.exceptions import (
    AmountNotSpecifiedError,
    CycleNotClosableYetError,
    CycleNotClosedError,
    InsufficientSharesError,
    InvariantError,
    NoStrategiesError,
    NotFoundError,
    NotReceiptOwnerError,
    NothingToRebalanceError,
    SlippageExceededError,
    UnsupportedTokenError,
)
from ..core.structured_logging import EventType
from ..core.utils import apply_bps, div_down, div_up, mul_div, now_timestamp, round_decimal, to_decimal
from ..exchange import Exchange
from ..ledger import Receipt, ReceiptRegistry, SharesToken, TokenLedger
from ..oracle import Oracle, from_usd, to_usd
from ..strategies import Strategy
from .batch import Batch
from .models import Cycle, RebalanceMove, StrategyInfo
from .planner import Demand, PlannedTransfer, plan_transfers
from .registry import StrategyRegistry

if TYPE_CHECKING:
    from ..storage import CycleRepository

logger = get_logger(__name__)

ZERO_USD = round_decimal(Decimal(0), USD_DECIMALS)
ZERO_SHARES = round_decimal(Decimal(0), SHARE_DECIMALS)


class StrategyRouter:
    """
    Allocation engine.

    Example:
        >>> receipt = batch.deposit("alice", "USDC", Decimal("1000"))
        >>> cycle = router.allocate_to_strategies()
        >>> router.redeem_receipts_to_shares("alice", [receipt.id])
        >>> router.withdraw_from_strategies("alice", [], "USDC", shares, min_amount_out)
    """

    def __init__(
        self,
        ledger: TokenLedger,
        oracle: Oracle,
        access: AccessControl,
        registry: StrategyRegistry,
        batch: Batch,
        receipts: ReceiptRegistry,
        shares: SharesToken,
        exchange: Exchange,
        transactions: TransactionManager,
        config: RouterConfig,
        repository: Optional["CycleRepository"] = None,
        clock: Callable[[], float] = now_timestamp,
        account: str = ROUTER_ACCOUNT,
    ):
        self._ledger = ledger
        self._oracle = oracle
        self._access = access
        self._registry = registry
        self._batch = batch
        self._receipts = receipts
        self._shares = shares
        self._exchange = exchange
        self._transactions = transactions
        self._config = config
        self._repository = repository
        self._clock = clock
        self.account = account

        self._cycles: Dict[int, Cycle] = {}
        self._accounting = get_accounting_logger("router")
        self._audit = get_audit_logger("router")

    # =========================================================================
    # Observable state
    # =========================================================================

    @property
    def config(self) -> RouterConfig:
        return self._config

    @property
    def current_cycle_id(self) -> int:
        return self._batch.current_cycle_id

    @property
    def total_shares(self) -> Decimal:
        return self._shares.total_supply

    def get_cycle(self, cycle_id: int) -> Cycle:
        try:
            return self._cycles[cycle_id]
        except KeyError:
            raise NotFoundError(f"Cycle {cycle_id} is not closed", details={"cycle_id": cycle_id})

    def closed_cycles(self) -> List[Cycle]:
        return [self._cycles[i] for i in sorted(self._cycles)]

    @property
    def last_closed_price_per_share(self) -> Decimal:
        """PPS of the latest closed cycle (1 before any allocation)."""
        if self.current_cycle_id == 0:
            return INITIAL_PRICE_PER_SHARE
        return self._cycles[self.current_cycle_id - 1].price_per_share

    def get_price_per_share(self) -> Decimal:
        """Live USD value of one share, rounded down."""
        total_shares = self._shares.total_supply
        if total_shares == 0:
            return INITIAL_PRICE_PER_SHARE
        return div_down(self.get_strategies_value()[0], total_shares, USD_DECIMALS)

    def get_strategies_value(self) -> Tuple[Decimal, List[Decimal], List[Decimal]]:
        """
        USD value of every registered and idle strategy.

        Returns:
            ``(total, per registered strategy, per idle strategy)``
        """
        strategy_values = [
            to_usd(self._oracle, info.deposit_token, info.strategy.total_tokens())
            for info in self._registry.get_strategies()
        ]
        idle_values = [
            to_usd(self._oracle, idle.deposit_token, idle.total_tokens())
            for idle in self._registry.idle_strategies()
        ]
        total = sum(strategy_values, ZERO_USD) + sum(idle_values, ZERO_USD)
        return total, strategy_values, idle_values

    def calculate_shares_usd_value(self, shares: Any) -> Decimal:
        """USD value of ``shares`` at the live price, rounded down."""
        shares = to_decimal(shares)
        total_shares = self._shares.total_supply
        if shares <= 0 or total_shares == 0:
            return ZERO_USD
        total_value, _, _ = self.get_strategies_value()
        return mul_div(shares, total_value, total_shares, USD_DECIMALS)

    def receipt_shares(self, receipt: Receipt) -> Decimal:
        """
        Shares a receipt redeems for; zero while its cycle is open.

        ``usd_at_cycle_prices * received / deposited / cycle_pps``, rounded down.
        """
        cycle = self._cycles.get(receipt.cycle_id)
        if cycle is None or cycle.total_deposited_in_usd == 0:
            return ZERO_SHARES
        price = cycle.prices.get(receipt.token)
        if price is None:
            return ZERO_SHARES
        usd = mul_div(receipt.amount, price, Decimal(1), USD_DECIMALS)
        received_usd = mul_div(
            usd, cycle.received_by_strategies_in_usd, cycle.total_deposited_in_usd, USD_DECIMALS
        )
        return div_down(received_usd, cycle.price_per_share, SHARE_DECIMALS)

    def calculate_shares_from_receipts(self, receipt_ids: Sequence[int]) -> Decimal:
        return sum(
            (self.receipt_shares(self._receipts.get(rid)) for rid in receipt_ids),
            ZERO_SHARES,
        )

    # =========================================================================
    # Allocation
    # =========================================================================

    def check_upkeep(self) -> bool:
        """Whether the open cycle may be allocated now."""
        if self._registry.strategies_count == 0:
            return False
        if not self._allocation_window_elapsed():
            return False
        total, _ = self._batch.get_batch_value_usd()
        return total >= self._config.min_usd_per_cycle

    def perform_upkeep(self) -> Cycle:
        if not self.check_upkeep():
            raise CycleNotClosableYetError(details={"cycle_id": self.current_cycle_id})
        return self.allocate_to_strategies()

    def allocate_to_strategies(self) -> Cycle:
        """
        Close the open cycle: sweep the batch into strategies and mint shares.

        Raises:
            NoStrategiesError: nothing is registered
            CycleNotClosableYetError: window not elapsed or batch under minimum
            PriceManipulationError: a swap deviated from the oracle
        """
        if self._registry.strategies_count == 0:
            raise NoStrategiesError()
        if not self._allocation_window_elapsed():
            raise CycleNotClosableYetError(
                details={"cycle_id": self.current_cycle_id, "started_at": self._batch.cycle_started_at}
            )

        with self._transactions.atomic("allocate_to_strategies") as tx:
            cycle_id = self.current_cycle_id

            for strategy in self._all_strategies():
                strategy.compound()
            value_before, _, _ = self.get_strategies_value()

            batch_usd, per_token_usd = self._batch.get_batch_value_usd()
            if batch_usd < self._config.min_usd_per_cycle:
                raise CycleNotClosableYetError(
                    "Batch value is under the cycle minimum",
                    details={"batch_usd": str(batch_usd), "minimum_usd": str(self._config.min_usd_per_cycle)},
                )
            # Receipts are valued by what was deposited, not by what the batch
            # holds after rebalance_batch swapped it
            deposited = self._batch.deposited_amounts()
            prices = {
                token: self._oracle.get_token_usd_price(token)[0]
                for token in set(deposited) | set(per_token_usd)
            }
            total_deposited = sum(
                (mul_div(amount, prices[token], Decimal(1), USD_DECIMALS) for token, amount in deposited.items()),
                ZERO_USD,
            )

            total_shares = self._shares.total_supply
            fee_shares = self._mint_protocol_fee(cycle_id, value_before, total_shares)
            pps = self._cycle_price_per_share(value_before, total_shares + fee_shares)

            self._allocate_batch(per_token_usd)

            value_after, _, _ = self.get_strategies_value()
            received = max(value_after - value_before, ZERO_USD)
            new_shares = div_down(received, pps, SHARE_DECIMALS)
            if new_shares > 0:
                self._shares.mint(self.account, self.account, new_shares)

            cycle = Cycle(
                id=cycle_id,
                total_deposited_in_usd=total_deposited,
                received_by_strategies_in_usd=received,
                strategies_balance_with_compound_and_batch_deposits_in_usd=value_after,
                price_per_share=pps,
                closed_at=self._clock(),
                prices=prices,
            )
            self._cycles[cycle_id] = cycle
            self._batch.start_new_cycle(self.account)
            tx.on_commit(lambda: self._on_cycle_closed(cycle, new_shares, fee_shares))

        return cycle

    def _allocation_window_elapsed(self) -> bool:
        started_at = self._batch.cycle_started_at
        if started_at is None:
            return False
        return self._clock() - started_at >= self._config.allocation_window_seconds

    def _cycle_price_per_share(self, value_before: Decimal, total_shares: Decimal) -> Decimal:
        if total_shares == 0:
            return INITIAL_PRICE_PER_SHARE
        pps = div_up(value_before, total_shares, USD_DECIMALS)
        if pps == 0:
            raise InvariantError(
                "Price per share is zero with shares outstanding",
                code="ZeroPricePerShare",
                details={"total_shares": str(total_shares)},
            )
        return pps

    def _mint_protocol_fee(self, cycle_id: int, value_before: Decimal, total_shares: Decimal) -> Decimal:
        """
        Mint fee shares worth ``protocol_fee_bps`` of the yield since the last
        close; existing balances are untouched.
        """
        if cycle_id == 0 or total_shares == 0 or self._config.protocol_fee_bps == 0:
            return ZERO_SHARES
        previous = self._cycles[cycle_id - 1].strategies_balance_with_compound_and_batch_deposits_in_usd
        yield_usd = value_before - previous
        if yield_usd <= 0:
            return ZERO_SHARES

        fee_usd = apply_bps(yield_usd, self._config.protocol_fee_bps, USD_DECIMALS)
        if fee_usd <= 0 or fee_usd >= value_before:
            return ZERO_SHARES
        # Fee holder ends up owning exactly fee_usd at the post-mint price
        fee_shares = mul_div(fee_usd, total_shares, value_before - fee_usd, SHARE_DECIMALS)
        if fee_shares > 0:
            self._shares.mint(self.account, self._config.fee_collector, fee_shares)
            self._accounting.fee_shares_minted(
                cycle_id, self._config.fee_collector, fee_shares, yield_usd, fee_usd=fee_usd
            )
        return fee_shares

    def _allocate_batch(self, per_token_usd: Dict[str, Decimal]) -> List[RebalanceMove]:
        weighted = self._registry.weighted_strategies()
        total_weight = sum(info.weight for info in weighted)
        total_usd = sum(per_token_usd.values(), ZERO_USD)

        demand = []
        if total_weight > 0 and total_usd > 0:
            demand = [
                Demand(info.address, info.deposit_token, mul_div(total_usd, Decimal(info.weight), Decimal(total_weight)))
                for info in weighted
            ]
        plan = plan_transfers(per_token_usd, demand, self._config.dust_threshold_usd)
        moves = self._execute_plan(plan, self._batch.account)
        self._deposit_moves(weighted, moves)

        for token, balance in self._batch.balances().items():
            self._park_in_idle(self._batch.account, token, balance)
        return moves

    def _on_cycle_closed(self, cycle: Cycle, new_shares: Decimal, fee_shares: Decimal) -> None:
        if self._repository is not None:
            self._repository.save_cycle(cycle)
        self._accounting.cycle_closed(
            cycle.id,
            cycle.total_deposited_in_usd,
            cycle.received_by_strategies_in_usd,
            cycle.price_per_share,
            new_shares,
            fee_shares=fee_shares,
        )
        logger.info(
            f"Cycle {cycle.id} closed: deposited {cycle.total_deposited_in_usd} USD, "
            f"received {cycle.received_by_strategies_in_usd} USD, pps {cycle.price_per_share}"
        )

    # =========================================================================
    # Receipts -> shares
    # =========================================================================

    def redeem_receipts_to_shares(self, caller: str, receipt_ids: Sequence[int]) -> Decimal:
        """Burn the caller's receipts and release their shares to the caller."""
        with self._transactions.atomic("redeem_receipts_to_shares"):
            total = ZERO_SHARES
            for receipt_id in receipt_ids:
                receipt = self._receipts.get(receipt_id)
                if receipt.owner != caller:
                    raise NotReceiptOwnerError(details={"receipt_id": receipt_id, "account": caller})
                total += self._redeem_receipt(receipt)
        self._log_redeemed(caller, receipt_ids, total)
        return total

    def redeem_receipts_to_shares_by_moderators(self, caller: str, receipt_ids: Sequence[int]) -> Decimal:
        """Redeem receipts on behalf of their holders; shares go to each holder."""
        self._access.require(caller, Role.MODERATOR)
        with self._transactions.atomic("redeem_receipts_to_shares_by_moderators"):
            total = ZERO_SHARES
            for receipt_id in receipt_ids:
                total += self._redeem_receipt(self._receipts.get(receipt_id))
        self._log_redeemed(caller, receipt_ids, total)
        return total

    def _redeem_receipt(self, receipt: Receipt) -> Decimal:
        if receipt.cycle_id >= self.current_cycle_id:
            raise CycleNotClosedError(details={"receipt_id": receipt.id, "cycle_id": receipt.cycle_id})
        shares = self.receipt_shares(receipt)
        self._receipts.burn(self.account, receipt.id)
        if shares > 0:
            self._shares.operator_transfer(self.account, self.account, receipt.owner, shares)
        return shares

    def _log_redeemed(self, caller: str, receipt_ids: Sequence[int], shares: Decimal) -> None:
        self._accounting.info(
            EventType.RECEIPTS_REDEEMED,
            f"{len(receipt_ids)} receipts redeemed for {shares} shares",
            caller=caller,
            receipt_ids=list(receipt_ids),
            shares=shares,
        )

    def collect_shares(
        self,
        caller: str,
        owner: str,
        receipt_ids: Sequence[int],
        shares: Any,
    ) -> Decimal:
        """
        Make sure ``owner`` holds the shares it wants to withdraw.

        Receipts are consumed in order until ``shares`` is covered (the last
        one partially); the rest comes from the owner's free shares. With
        ``shares == 0`` every listed receipt is redeemed in full.
        """
        self._access.require(caller, Role.OPERATOR)
        return self._collect_shares(owner, receipt_ids, shares)

    def _collect_shares(self, owner: str, receipt_ids: Sequence[int], shares: Any) -> Decimal:
        shares = round_decimal(to_decimal(shares), SHARE_DECIMALS)
        if shares < 0:
            raise InvariantError("Share amount cannot be negative")
        if not receipt_ids and shares == 0:
            raise AmountNotSpecifiedError()

        receipts = []
        for receipt_id in receipt_ids:
            receipt = self._receipts.get(receipt_id)
            if receipt.owner != owner:
                raise NotReceiptOwnerError(details={"receipt_id": receipt_id, "account": owner})
            if receipt.cycle_id >= self.current_cycle_id:
                raise CycleNotClosedError(details={"receipt_id": receipt_id, "cycle_id": receipt.cycle_id})
            receipts.append(receipt)

        if shares == 0:
            shares = sum((self.receipt_shares(r) for r in receipts), ZERO_SHARES)
            if shares == 0:
                raise AmountNotSpecifiedError("Receipts carry no shares")

        needed = shares
        for receipt in receipts:
            if needed <= 0:
                break
            receipt_shares = self.receipt_shares(receipt)
            take = min(receipt_shares, needed)
            if take == receipt_shares:
                self._receipts.burn(self.account, receipt.id)
            else:
                # Decrement rounds up: the holder gives up at least what it takes
                spent = mul_div(
                    receipt.amount, take, receipt_shares,
                    self._ledger.decimals(receipt.token), ROUND_UP,
                )
                remaining = receipt.amount - spent
                if remaining <= 0:
                    self._receipts.burn(self.account, receipt.id)
                else:
                    self._receipts.set_amount(self.account, receipt.id, remaining)
            if take > 0:
                self._shares.operator_transfer(self.account, self.account, owner, take)
            needed -= take

        balance = self._shares.balance_of(owner)
        if balance < shares:
            raise InsufficientSharesError(
                details={"account": owner, "balance": str(balance), "requested": str(shares)}
            )
        return shares

    # =========================================================================
    # Withdrawals
    # =========================================================================

    def withdraw_from_strategies(
        self,
        caller: str,
        receipt_ids: Sequence[int],
        token: str,
        shares: Any,
        min_amount_out: Any,
    ) -> Decimal:
        """
        Burn shares for ``token`` pulled proportionally from every strategy.

        Raises:
            UnsupportedTokenError: token not supported
            AmountNotSpecifiedError: neither receipts nor shares given
            InsufficientSharesError: caller holds fewer shares than requested
            SlippageExceededError: output below ``min_amount_out``
        """
        if not self._registry.is_supported(token):
            raise UnsupportedTokenError(details={"token": token})

        with self._transactions.atomic("withdraw_from_strategies"):
            shares = self._collect_shares(caller, receipt_ids, shares)
            usd = self.calculate_shares_usd_value(shares)

            amount_out = self._withdraw_usd_to_token(usd, token)
            min_amount_out = self._ledger.quantize(token, min_amount_out)
            if amount_out < min_amount_out:
                raise SlippageExceededError(
                    details={"received": str(amount_out), "minimum": str(min_amount_out), "token": token}
                )

            self._shares.burn(self.account, caller, shares)
            self._ledger.transfer(token, self.account, caller, amount_out)
            self._reduce_last_cycle_balance(usd)

        self._accounting.withdrawal_executed(caller, token, shares, amount_out, usd=usd)
        logger.info(f"Withdrawal: {caller} burned {shares} shares for {amount_out} {token}")
        return amount_out

    def withdraw_for_batch_out(
        self,
        caller: str,
        shares_by_token: Dict[str, Decimal],
        max_slippage_bps: int,
    ) -> Tuple[Decimal, Dict[str, Decimal]]:
        """
        Aggregated withdrawal for the deferred queue.

        Burns the escrowed shares held by ``caller`` and delivers each token's
        pro-rata part of the withdrawn value to ``caller``.

        Returns:
            ``(withdrawn_usd, amount received per token)``
        """
        self._access.require(caller, Role.OPERATOR)
        total_shares = sum(shares_by_token.values(), ZERO_SHARES)
        if total_shares <= 0:
            raise AmountNotSpecifiedError()
        for token in shares_by_token:
            if not self._registry.is_supported(token):
                raise UnsupportedTokenError(details={"token": token})

        with self._transactions.atomic("withdraw_for_batch_out"):
            usd = self.calculate_shares_usd_value(total_shares)
            held = self._withdraw_proportionally(usd)

            supply = {token: to_usd(self._oracle, token, amount) for token, amount in held.items()}
            supply_total = sum(supply.values(), ZERO_USD)
            demand = [
                Demand(caller, token, mul_div(supply_total, token_shares, total_shares))
                for token, token_shares in shares_by_token.items()
            ]
            plan = plan_transfers(supply, demand, self._config.dust_threshold_usd)
            moves = self._execute_plan(plan, self.account)
            self._park_router_leftovers()

            received: Dict[str, Decimal] = {token: self._ledger.quantize(token, 0) for token in shares_by_token}
            for move in moves:
                received[move.to_token] += move.amount_out

            for token, token_shares in shares_by_token.items():
                token_usd = mul_div(usd, token_shares, total_shares)
                expected = from_usd(self._oracle, token, token_usd, self._ledger.decimals(token))
                minimum = expected - apply_bps(expected, max_slippage_bps, self._ledger.decimals(token), ROUND_UP)
                if received[token] < minimum:
                    raise SlippageExceededError(
                        details={"token": token, "received": str(received[token]), "minimum": str(minimum)}
                    )

            self._shares.burn(self.account, caller, total_shares)
            self._reduce_last_cycle_balance(usd)

        return usd, received

    def _withdraw_usd_to_token(self, usd: Decimal, token: str) -> Decimal:
        """Withdraw ``usd`` proportionally and swap every slice into ``token``."""
        held = self._withdraw_proportionally(usd, target_token=token)
        amount_out = self._ledger.quantize(token, 0)
        for held_token, amount in held.items():
            if held_token == token:
                amount_out += amount
            else:
                amount_out += self._exchange.swap(amount, held_token, token, self.account, self.account)
        return amount_out

    def _withdraw_proportionally(self, usd: Decimal, target_token: Optional[str] = None) -> Dict[str, Decimal]:
        """
        Pull a slice of ``usd`` from every strategy, proportional to its value.

        Cross-token slices under the dust threshold are left in place when a
        ``target_token`` is given.
        """
        total_value, strategy_values, idle_values = self.get_strategies_value()
        held: Dict[str, Decimal] = {}
        if usd <= 0 or total_value == 0:
            return held

        pairs = list(zip(self._registry.get_strategies(), strategy_values))
        pairs += [(idle, value) for idle, value in zip(self._registry.idle_strategies(), idle_values)]
        for entry, value in pairs:
            if value == 0:
                continue
            strategy = entry.strategy if isinstance(entry, StrategyInfo) else entry
            token = strategy.deposit_token
            slice_usd = mul_div(usd, value, total_value)
            if target_token is not None and token != target_token and slice_usd < self._config.dust_threshold_usd:
                continue
            amount = min(
                from_usd(self._oracle, token, slice_usd, self._ledger.decimals(token)),
                strategy.total_tokens(),
            )
            if amount <= 0:
                continue
            returned = strategy.withdraw(amount)
            if returned > 0:
                held[token] = held.get(token, Decimal(0)) + returned
        return held

    def _reduce_last_cycle_balance(self, usd: Decimal) -> None:
        # Withdrawals must not show up as negative yield in the next cycle
        cycle = self._cycles.get(self.current_cycle_id - 1)
        if cycle is None:
            return
        balance = max(cycle.strategies_balance_with_compound_and_batch_deposits_in_usd - usd, ZERO_USD)
        cycle.strategies_balance_with_compound_and_batch_deposits_in_usd = balance
        if self._repository is not None:
            repository = self._repository
            self._transactions.current.on_commit(lambda: repository.update_cycle_balance(cycle.id, balance))

    # =========================================================================
    # Rebalancing
    # =========================================================================

    def rebalance_batch(self, caller: str) -> List[RebalanceMove]:
        """
        Swap the unallocated batch toward the tokens strategies need.

        Raises:
            NoStrategiesError: nothing is registered
            NothingToRebalanceError: fewer than two token dimensions
        """
        self._access.require(caller, Role.MODERATOR)
        if self._registry.strategies_count == 0:
            raise NoStrategiesError()

        weighted = self._registry.weighted_strategies()
        total_weight = sum(info.weight for info in weighted)
        total_usd, per_token_usd = self._batch.get_batch_value_usd()

        weight_by_token: Dict[str, int] = {}
        for info in weighted:
            weight_by_token[info.deposit_token] = weight_by_token.get(info.deposit_token, 0) + info.weight
        if len(set(per_token_usd) | set(weight_by_token)) < 2 or total_weight == 0:
            raise NothingToRebalanceError()

        demand = [
            Demand(self._batch.account, token, mul_div(total_usd, Decimal(weight), Decimal(total_weight)))
            for token, weight in weight_by_token.items()
        ]
        plan = [
            t for t in plan_transfers(per_token_usd, demand, self._config.dust_threshold_usd) if t.is_swap
        ]
        with self._transactions.atomic("rebalance_batch"):
            moves = self._execute_plan(plan, self._batch.account)

        self._accounting.rebalance_executed("batch", len(moves), caller=caller)
        return moves

    def rebalance_strategies(self, caller: str) -> List[RebalanceMove]:
        """
        Move funds between strategies toward their weight targets.

        Overweight strategies and idle balances above dust are withdrawn,
        underweight strategies are topped up. Deltas under the dust threshold
        plus the swap fee on the target are left alone, so an immediate second
        call performs no moves.

        Raises:
            NothingToRebalanceError: fewer than two weighted strategies
        """
        self._access.require(caller, Role.MODERATOR)
        weighted = self._registry.weighted_strategies()
        if len(weighted) < 2:
            raise NothingToRebalanceError(details={"weighted_strategies": len(weighted)})

        dust = self._config.dust_threshold_usd
        with self._transactions.atomic("rebalance_strategies"):
            total_value, strategy_values, idle_values = self.get_strategies_value()
            strategies = self._registry.get_strategies()
            total_weight = self._registry.total_weight

            tokens = {info.deposit_token for info in self._registry.weighted_strategies()}
            deficits: List[Demand] = []
            for info, value in zip(strategies, strategy_values):
                target = mul_div(total_value, Decimal(info.weight), Decimal(total_weight))
                # A gap smaller than the swap fee on the target cannot be closed by a swap
                fee_bps = self._max_swap_fee_bps(info.deposit_token, tokens, abs(value - target))
                tolerance = dust + apply_bps(target, fee_bps, USD_DECIMALS, ROUND_UP)
                if value - target > tolerance:
                    amount = min(
                        from_usd(self._oracle, info.deposit_token, value - target, self._ledger.decimals(info.deposit_token)),
                        info.strategy.total_tokens(),
                    )
                    info.strategy.withdraw(amount)
                elif target - value > tolerance:
                    deficits.append(Demand(info.address, info.deposit_token, target - value))

            for idle, value in zip(self._registry.idle_strategies(), idle_values):
                if value > dust:
                    idle.withdraw_all()

            supply = {
                token: to_usd(self._oracle, token, self._ledger.balance_of(token, self.account))
                for token in self._registry.supported_tokens()
                if self._ledger.balance_of(token, self.account) > 0
            }
            plan = plan_transfers(supply, deficits, dust)
            moves = self._execute_plan(plan, self.account)
            self._deposit_moves(strategies, moves)
            self._park_router_leftovers()

        self._accounting.rebalance_executed(
            "strategies", len(moves), caller=caller, total_value_usd=total_value
        )
        return moves

    def _max_swap_fee_bps(self, token: str, tokens: Set[str], usd: Decimal) -> int:
        """Highest fee among routes from the other ``tokens`` into ``token``."""
        fee_bps = 0
        for other in tokens:
            if other == token or not self._exchange.has_route(other, token):
                continue
            amount_in = from_usd(self._oracle, other, usd, self._ledger.decimals(other))
            fee_bps = max(fee_bps, self._exchange.get_fee_bps(amount_in, other, token))
        return fee_bps

    # =========================================================================
    # Plan execution
    # =========================================================================

    def _execute_plan(self, plan: Sequence[PlannedTransfer], sender: str) -> List[RebalanceMove]:
        """Transfer or swap each planned USD amount from ``sender``."""
        moves: List[RebalanceMove] = []
        for transfer in plan:
            token = transfer.from_token
            amount = min(
                from_usd(self._oracle, token, transfer.usd, self._ledger.decimals(token)),
                self._ledger.balance_of(token, sender),
            )
            if amount <= 0:
                continue
            if transfer.is_swap:
                amount_out = self._exchange.swap(amount, token, transfer.to_token, sender, transfer.destination)
            else:
                amount_out = self._ledger.transfer(token, sender, transfer.destination, amount)
            moves.append(
                RebalanceMove(
                    from_token=token,
                    to_token=transfer.to_token,
                    destination=transfer.destination,
                    amount_in=amount,
                    amount_out=amount_out,
                )
            )
        return moves

    def _deposit_moves(self, strategies: Sequence[StrategyInfo], moves: Sequence[RebalanceMove]) -> None:
        # One deposit call per strategy
        delivered: Dict[str, Decimal] = {}
        for move in moves:
            delivered[move.destination] = delivered.get(move.destination, Decimal(0)) + move.amount_out
        for info in strategies:
            amount = delivered.get(info.address)
            if amount:
                info.strategy.deposit(amount)

    def _park_in_idle(self, sender: str, token: str, amount: Decimal) -> None:
        if amount <= 0:
            return
        idle = self._registry.idle_strategy_of(token)
        self._ledger.transfer(token, sender, idle.address, amount)
        idle.deposit(amount)

    def _park_router_leftovers(self) -> None:
        for token in self._registry.supported_tokens():
            self._park_in_idle(self.account, token, self._ledger.balance_of(token, self.account))

    def _all_strategies(self) -> List[Strategy]:
        return [info.strategy for info in self._registry.get_strategies()] + self._registry.idle_strategies()

    # =========================================================================
    # Administration
    # =========================================================================

    def remove_strategy(self, caller: str, address: str) -> None:
        """Withdraw everything from a strategy into its idle strategy, then unregister it."""
        self._access.require(caller, Role.ADMIN)
        info = self._registry.get_strategy(address)
        with self._transactions.atomic("remove_strategy"):
            returned = info.strategy.withdraw_all()
            self._park_in_idle(self.account, info.deposit_token, returned)
            self._registry.remove_strategy(caller, address)

    def set_idle_strategy(self, caller: str, token: str, idle_strategy: Strategy) -> None:
        """Replace the idle strategy of ``token`` and move its funds over."""
        self._access.require(caller, Role.ADMIN)
        with self._transactions.atomic("set_idle_strategy"):
            old = self._registry.replace_idle_strategy(token, idle_strategy)
            returned = old.withdraw_all()
            self._park_in_idle(self.account, token, returned)
        self._audit.registry_changed(
            f"idle strategy replaced for {token}",
            changed_by=caller,
            old=old.address,
            new=idle_strategy.address,
        )

    def update_settings(self, caller: str, **changes: Any) -> RouterConfig:
        """
        Change router settings; the new settings are validated as a whole.

        Raises:
            ConfigurationError: the resulting settings are invalid
        """
        self._access.require(caller, Role.ADMIN)
        new_config = self._config.updated(**changes)
        old_config = self._config
        self._config = new_config
        self._batch.set_config(new_config)
        for key in changes:
            self._audit.config_changed(key, getattr(old_config, key), getattr(new_config, key), changed_by=caller)
        return new_config

    # =========================================================================
    # Snapshots
    # =========================================================================

    def snapshot(self) -> Dict[str, Any]:
        return {
            "cycles": {k: replace(v) for k, v in self._cycles.items()},
            "config": self._config,
        }

    def restore(self, state: Dict[str, Any]) -> None:
        self._cycles = {k: replace(v) for k, v in state["cycles"].items()}
        self._config = state["config"]
