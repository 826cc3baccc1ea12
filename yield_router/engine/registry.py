"""
Strategy and supported-token registry.

Holds strategy registrations with relative weights and the tokens the batch
accepts, each with its idle strategy. Changes require the admin role.
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..access import AccessControl, Role
from ..core import Snapshotable, TransactionManager, get_audit_logger, get_logger
from ..core.exceptions import (
    DuplicateError,
    InvalidRangeError,
    InvariantError,
    NotFoundError,
    StrategyNotEmptyError,
    UnsupportedTokenError,
)
from ..ledger import TokenLedger
from ..strategies import Strategy
from .models import StrategyInfo, SupportedToken

logger = get_logger(__name__)


class StrategyRegistry:
    """
    Registered strategies and supported tokens.

    Example:
        >>> registry.add_supported_token("admin", "USDC", IdleStrategy(ledger, "USDC"))
        >>> registry.add_strategy("admin", venue_strategy, weight=5000)
    """

    def __init__(
        self,
        ledger: TokenLedger,
        access: AccessControl,
        transactions: Optional[TransactionManager] = None,
    ):
        self._ledger = ledger
        self._access = access
        self._transactions = transactions
        self._strategies: List[StrategyInfo] = []
        self._tokens: Dict[str, SupportedToken] = {}
        self._audit = get_audit_logger("registry")

    # =========================================================================
    # Strategies
    # =========================================================================

    def add_strategy(self, caller: str, strategy: Strategy, weight: int) -> StrategyInfo:
        self._access.require(caller, Role.ADMIN)
        if weight < 0:
            raise InvariantError("Weight cannot be negative", code="InvalidWeight")
        if any(s.address == strategy.address for s in self._strategies) or self._is_idle(strategy.address):
            raise DuplicateError(
                f"Strategy already registered: {strategy.address}",
                details={"strategy": strategy.address},
            )
        token = strategy.deposit_token
        if token not in self._tokens:
            raise UnsupportedTokenError(details={"token": token})

        info = StrategyInfo(strategy=strategy, deposit_token=token, weight=weight)
        self._strategies.append(info)
        self._track(strategy)
        self._audit.registry_changed(
            "strategy added", changed_by=caller, strategy=strategy.address, token=token, weight=weight
        )
        logger.info(f"Strategy {strategy.address} added ({token}, weight {weight})")
        return info

    def update_strategy(self, caller: str, address: str, weight: int) -> StrategyInfo:
        self._access.require(caller, Role.ADMIN)
        if weight < 0:
            raise InvariantError("Weight cannot be negative", code="InvalidWeight")
        info = self.get_strategy(address)
        old = info.weight
        info.weight = weight
        self._audit.config_changed(f"strategy_weight.{address}", old, weight, changed_by=caller)
        return info

    def remove_strategy(self, caller: str, address: str) -> StrategyInfo:
        """Unregister a strategy that holds no funds."""
        self._access.require(caller, Role.ADMIN)
        info = self.get_strategy(address)
        if info.strategy.total_tokens() > 0:
            raise StrategyNotEmptyError(details={"strategy": address})
        self._strategies = [s for s in self._strategies if s.address != address]
        self._audit.registry_changed("strategy removed", changed_by=caller, strategy=address)
        logger.info(f"Strategy {address} removed")
        return info

    def get_strategy(self, address: str) -> StrategyInfo:
        for info in self._strategies:
            if info.address == address:
                return info
        raise NotFoundError(f"Strategy not found: {address}", details={"strategy": address})

    def get_strategies(self) -> List[StrategyInfo]:
        return list(self._strategies)

    def get_strategies_in(self, start: int, stop: int) -> List[StrategyInfo]:
        """Registrations with index in ``[start, stop)``."""
        if start >= stop:
            raise InvalidRangeError(details={"start": start, "stop": stop})
        return self._strategies[start:stop]

    @property
    def strategies_count(self) -> int:
        return len(self._strategies)

    @property
    def total_weight(self) -> int:
        return sum(s.weight for s in self._strategies)

    def weighted_strategies(self) -> List[StrategyInfo]:
        return [s for s in self._strategies if s.weight > 0]

    # =========================================================================
    # Supported tokens
    # =========================================================================

    def add_supported_token(self, caller: str, token: str, idle_strategy: Strategy) -> SupportedToken:
        self._access.require(caller, Role.ADMIN)
        if token in self._tokens:
            raise DuplicateError(f"Token already supported: {token}", details={"token": token})
        self._ledger.decimals(token)
        self._check_idle(token, idle_strategy)

        supported = SupportedToken(token=token, idle_strategy=idle_strategy)
        self._tokens[token] = supported
        self._track(idle_strategy)
        self._audit.registry_changed(
            "token supported", changed_by=caller, token=token, idle_strategy=idle_strategy.address
        )
        return supported

    def remove_supported_token(self, caller: str, token: str) -> SupportedToken:
        self._access.require(caller, Role.ADMIN)
        supported = self.get_supported_token(token)
        if any(s.deposit_token == token for s in self._strategies):
            raise InvariantError(
                f"Token {token} is used by a registered strategy",
                code="CannotRemoveTokenOfActiveStrategy",
            )
        if supported.idle_strategy.total_tokens() > 0:
            raise StrategyNotEmptyError(details={"strategy": supported.idle_strategy.address})
        del self._tokens[token]
        self._audit.registry_changed("token removed", changed_by=caller, token=token)
        return supported

    def set_token_enabled(self, caller: str, token: str, enabled: bool) -> None:
        self._access.require(caller, Role.ADMIN)
        supported = self.get_supported_token(token)
        supported.enabled = enabled
        self._audit.config_changed(f"token_enabled.{token}", not enabled, enabled, changed_by=caller)

    def replace_idle_strategy(self, token: str, idle_strategy: Strategy) -> Strategy:
        """Swap the idle strategy of ``token``; the caller moves the funds."""
        supported = self.get_supported_token(token)
        self._check_idle(token, idle_strategy)
        old = supported.idle_strategy
        supported.idle_strategy = idle_strategy
        return old

    def get_supported_token(self, token: str) -> SupportedToken:
        try:
            return self._tokens[token]
        except KeyError:
            raise UnsupportedTokenError(details={"token": token})

    def is_supported(self, token: str) -> bool:
        return token in self._tokens

    def is_enabled(self, token: str) -> bool:
        return token in self._tokens and self._tokens[token].enabled

    def supported_tokens(self) -> List[str]:
        return list(self._tokens)

    def idle_strategies(self) -> List[Strategy]:
        return [t.idle_strategy for t in self._tokens.values()]

    def idle_strategy_of(self, token: str) -> Strategy:
        return self.get_supported_token(token).idle_strategy

    # =========================================================================
    # Internals
    # =========================================================================

    def _check_idle(self, token: str, idle_strategy: Strategy) -> None:
        if idle_strategy.deposit_token != token:
            raise InvariantError(
                f"Idle strategy token {idle_strategy.deposit_token} does not match {token}",
                code="InvalidIdleStrategy",
            )
        if any(s.address == idle_strategy.address for s in self._strategies):
            raise DuplicateError(f"Strategy already registered: {idle_strategy.address}")

    def _is_idle(self, address: str) -> bool:
        return any(t.idle_strategy.address == address for t in self._tokens.values())

    def _track(self, strategy: Strategy) -> None:
        # Strategies keeping state outside the token ledger roll back with the engine
        if (
            self._transactions is not None
            and isinstance(strategy, Snapshotable)
            and not self._transactions.in_transaction
        ):
            self._transactions.register(f"strategy:{strategy.address}", strategy)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "strategies": [replace(s) for s in self._strategies],
            "tokens": {k: replace(v) for k, v in self._tokens.items()},
        }

    def restore(self, state: Dict[str, Any]) -> None:
        self._strategies = [replace(s) for s in state["strategies"]]
        self._tokens = {k: replace(v) for k, v in state["tokens"].items()}
