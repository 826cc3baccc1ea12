"""
Exchange routing and price-manipulation guard.

Routes are configured per unordered token pair. Every swap result is
cross-checked against the oracle: if the realized output deviates from the
oracle-implied output by more than the pair override (or the global cap),
the swap raises and the enclosing operation rolls back.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Dict, Optional, Tuple

from ..access import AccessControl, Role
from ..core import get_logger
from ..core.constants import MAX_BPS
from ..core.exceptions import (
    InvariantError,
    NewValueIsAboveMaxBpsError,
    PriceManipulationError,
    RouteNotFoundError,
    SwapFailedError,
)
from ..core.structured_logging import EventType, get_accounting_logger, get_audit_logger
from ..core.utils import deviation_bps, mul_div, to_decimal
from ..core.transaction import TransactionManager
from ..ledger import TokenLedger
from ..oracle import Oracle, to_usd
from .plugins import ExchangePlugin

logger = get_logger(__name__)


@dataclass(frozen=True)
class RouteParams:
    """Route of one token pair."""

    default_plugin: ExchangePlugin
    limit_usd: Decimal = Decimal("0")
    second_plugin: Optional[ExchangePlugin] = None
    custom_slippage_in_bps: Optional[int] = None


def _pair_key(token_a: str, token_b: str) -> Tuple[str, str]:
    return (token_a, token_b) if token_a < token_b else (token_b, token_a)


class Exchange:
    """
    Route selection and guarded swap execution.

    Example:
        >>> exchange.set_route("admin", "USDC", "USDT", plugin, limit_usd=Decimal("10000"),
        ...                    second_plugin=deep_plugin)
        >>> out = exchange.swap(Decimal("100"), "USDC", "USDT", sender="router", recipient="router")
    """

    def __init__(
        self,
        ledger: TokenLedger,
        oracle: Oracle,
        access: AccessControl,
        transactions: TransactionManager,
        max_stablecoin_slippage_in_bps: int = 200,
    ):
        self._ledger = ledger
        self._oracle = oracle
        self._access = access
        self._transactions = transactions
        self._check_bps(max_stablecoin_slippage_in_bps)
        self._max_slippage_bps = max_stablecoin_slippage_in_bps
        self._routes: Dict[Tuple[str, str], RouteParams] = {}
        self._accounting = get_accounting_logger("exchange")
        self._audit = get_audit_logger("exchange")

    # =========================================================================
    # Settings
    # =========================================================================

    @property
    def max_stablecoin_slippage_in_bps(self) -> int:
        return self._max_slippage_bps

    def set_max_stablecoin_slippage(self, caller: str, bps: int) -> None:
        self._access.require(caller, Role.ADMIN)
        self._check_bps(bps)
        old, self._max_slippage_bps = self._max_slippage_bps, bps
        self._audit.config_changed("max_stablecoin_slippage_in_bps", old, bps, changed_by=caller)

    def set_route(
        self,
        caller: str,
        token_a: str,
        token_b: str,
        default_plugin: ExchangePlugin,
        limit_usd: Decimal = Decimal("0"),
        second_plugin: Optional[ExchangePlugin] = None,
        custom_slippage_in_bps: Optional[int] = None,
    ) -> None:
        self._access.require(caller, Role.ADMIN)
        if token_a == token_b:
            raise InvariantError("Route tokens must differ", code="IdenticalTokens")
        self._ledger.decimals(token_a)
        self._ledger.decimals(token_b)
        if custom_slippage_in_bps is not None:
            self._check_bps(custom_slippage_in_bps)
        self._routes[_pair_key(token_a, token_b)] = RouteParams(
            default_plugin=default_plugin,
            limit_usd=to_decimal(limit_usd),
            second_plugin=second_plugin,
            custom_slippage_in_bps=custom_slippage_in_bps,
        )
        self._audit.registry_changed(
            f"route set {token_a}/{token_b}",
            changed_by=caller,
            default_plugin=default_plugin.address,
            second_plugin=second_plugin.address if second_plugin else None,
            limit_usd=limit_usd,
            custom_slippage_in_bps=custom_slippage_in_bps,
        )

    def has_route(self, token_a: str, token_b: str) -> bool:
        return _pair_key(token_a, token_b) in self._routes

    def get_route(self, token_a: str, token_b: str) -> RouteParams:
        try:
            return self._routes[_pair_key(token_a, token_b)]
        except KeyError:
            raise RouteNotFoundError(details={"token_a": token_a, "token_b": token_b})

    def slippage_cap_bps(self, token_a: str, token_b: str) -> int:
        route = self.get_route(token_a, token_b)
        if route.custom_slippage_in_bps is not None:
            return route.custom_slippage_in_bps
        return self._max_slippage_bps

    # =========================================================================
    # Quotes
    # =========================================================================

    def get_plugin(self, amount_in: Decimal, token_in: str, token_out: str) -> ExchangePlugin:
        """Second plugin once the USD notional reaches the route limit."""
        route = self.get_route(token_in, token_out)
        if route.second_plugin is not None and route.limit_usd > 0:
            if to_usd(self._oracle, token_in, amount_in) >= route.limit_usd:
                return route.second_plugin
        return route.default_plugin

    def get_amount_out(self, amount_in: Decimal, token_in: str, token_out: str) -> Decimal:
        plugin = self.get_plugin(amount_in, token_in, token_out)
        return plugin.get_amount_out(amount_in, token_in, token_out)

    def get_fee_bps(self, amount_in: Decimal, token_in: str, token_out: str) -> int:
        return self.get_plugin(amount_in, token_in, token_out).get_fee_bps(token_in, token_out)

    def oracle_amount_out(self, amount_in: Decimal, token_in: str, token_out: str) -> Decimal:
        """Output implied by oracle prices, in ``token_out`` units."""
        price_in, _ = self._oracle.get_token_usd_price(token_in)
        price_out, _ = self._oracle.get_token_usd_price(token_out)
        return mul_div(amount_in, price_in, price_out, self._ledger.decimals(token_out), ROUND_DOWN)

    # =========================================================================
    # Swap
    # =========================================================================

    def swap(
        self,
        amount_in: Decimal,
        token_in: str,
        token_out: str,
        sender: str,
        recipient: str,
    ) -> Decimal:
        """
        Swap ``amount_in`` of ``token_in`` held by ``sender`` into ``token_out``
        delivered to ``recipient``.

        Raises:
            RouteNotFoundError: no route for the pair
            SwapFailedError: the plugin delivered nothing
            PriceManipulationError: realized output deviates beyond the cap
        """
        amount_in = self._ledger.quantize(token_in, amount_in)
        if amount_in == 0:
            return self._ledger.quantize(token_out, 0)
        if token_in == token_out:
            self._ledger.transfer(token_in, sender, recipient, amount_in)
            return amount_in

        with self._transactions.atomic("swap"):
            plugin = self.get_plugin(amount_in, token_in, token_out)
            expected = self.oracle_amount_out(amount_in, token_in, token_out)

            balance_before = self._ledger.balance_of(token_out, recipient)
            self._ledger.transfer(token_in, sender, plugin.address, amount_in)
            plugin.swap(amount_in, token_in, token_out, recipient)
            received = self._ledger.balance_of(token_out, recipient) - balance_before

            if received <= 0:
                raise SwapFailedError(
                    details={"token_in": token_in, "token_out": token_out, "amount_in": str(amount_in)}
                )

            self._check_price(token_in, token_out, expected, received)

        self._accounting.swap_executed(token_in, token_out, amount_in, received, plugin.address)
        return received

    def _check_price(self, token_in: str, token_out: str, expected: Decimal, received: Decimal) -> None:
        cap = self.slippage_cap_bps(token_in, token_out)
        deviation = deviation_bps(expected, received)
        if deviation <= cap:
            return

        code = "ReceivedTooLittleTokenB" if received < expected else "ReceivedTooMuchTokenB"
        logger.warning(
            f"Swap {token_in}->{token_out} rejected: expected {expected}, received {received} "
            f"({deviation:.2f} bps > {cap} bps)"
        )
        self._accounting.warning(
            EventType.PRICE_MANIPULATION_BLOCKED,
            f"Swap {token_in}->{token_out} deviates {deviation:.2f} bps",
            token_in=token_in,
            token_out=token_out,
            expected=expected,
            received=received,
            cap_bps=cap,
        )
        raise PriceManipulationError(
            code=code,
            details={"token_in": token_in, "token_out": token_out, "deviation_bps": str(deviation)},
            expected=expected,
            received=received,
        )

    @staticmethod
    def _check_bps(bps: int) -> None:
        if bps < 0 or bps > MAX_BPS:
            raise NewValueIsAboveMaxBpsError(details={"value": bps})
