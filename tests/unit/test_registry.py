"""
Tests for the strategy and supported-token registry.
"""

from decimal import Decimal

import pytest

from tests.conftest import ADMIN, MODERATOR
from tests.mocks import MockYieldStrategy
from yield_router.core.exceptions import (
    DuplicateError,
    InvalidRangeError,
    InvariantError,
    NotAdminError,
    NotFoundError,
    StrategyNotEmptyError,
    UnsupportedTokenError,
)
from yield_router.strategies import IdleStrategy


class TestStrategies:
    """Test cases for strategy registration."""

    def test_add_and_weights(self, system):
        """Test registration and total weight."""
        usdc = MockYieldStrategy(system.ledger, "USDC", "s_usdc")
        dai = MockYieldStrategy(system.ledger, "DAI", "s_dai")
        system.registry.add_strategy(ADMIN, usdc, weight=3000)
        system.registry.add_strategy(ADMIN, dai, weight=0)

        assert system.registry.strategies_count == 2
        assert system.registry.total_weight == 3000
        assert [s.address for s in system.registry.weighted_strategies()] == ["s_usdc"]
        assert system.registry.get_strategy("s_dai").deposit_token == "DAI"

    def test_requires_admin(self, system):
        """Test moderators cannot register strategies."""
        with pytest.raises(NotAdminError):
            system.registry.add_strategy(MODERATOR, MockYieldStrategy(system.ledger, "USDC", "s"), weight=1)

    def test_duplicate(self, system):
        """Test the same address twice, or an idle address."""
        system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "USDC", "s"), weight=1)

        with pytest.raises(DuplicateError):
            system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "USDC", "s"), weight=1)
        with pytest.raises(DuplicateError):
            system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "USDC", "idle_usdc"), weight=1)

    def test_unsupported_deposit_token(self, system):
        """Test a strategy for a token the batch does not accept."""
        with pytest.raises(UnsupportedTokenError):
            system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "NATIVE", "s"), weight=1)

    def test_negative_weight(self, system):
        """Test weights cannot be negative."""
        with pytest.raises(InvariantError):
            system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "USDC", "s"), weight=-1)

    def test_update_weight(self, system):
        """Test weight updates."""
        system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "USDC", "s"), weight=1)
        system.registry.update_strategy(ADMIN, "s", 7)
        assert system.registry.total_weight == 7

    def test_remove_requires_empty(self, system):
        """Test a strategy holding funds cannot be unregistered directly."""
        strategy = MockYieldStrategy(system.ledger, "USDC", "s")
        system.registry.add_strategy(ADMIN, strategy, weight=1)
        strategy.accrue(Decimal("1"))

        with pytest.raises(StrategyNotEmptyError):
            system.registry.remove_strategy(ADMIN, "s")
        strategy.lose(Decimal("1"))
        system.registry.remove_strategy(ADMIN, "s")
        with pytest.raises(NotFoundError):
            system.registry.get_strategy("s")

    def test_range_query(self, system):
        """Test index range queries."""
        for i in range(3):
            system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "USDC", f"s{i}"), weight=1)

        assert [s.address for s in system.registry.get_strategies_in(1, 10)] == ["s1", "s2"]
        with pytest.raises(InvalidRangeError):
            system.registry.get_strategies_in(2, 1)


class TestSupportedTokens:
    """Test cases for supported tokens and idle strategies."""

    def test_factory_registers_idle_strategies(self, system):
        """Test every supported token gets an idle strategy."""
        assert system.registry.supported_tokens() == ["USDC", "USDT", "DAI"]
        assert system.registry.idle_strategy_of("DAI").address == "idle_dai"
        assert not system.registry.is_supported("NATIVE")

    def test_idle_token_must_match(self, system):
        """Test an idle strategy for another token."""
        system.ledger.register_token("FRAX", 18)
        with pytest.raises(InvariantError):
            system.registry.add_supported_token(ADMIN, "FRAX", IdleStrategy(system.ledger, "USDC", "idle_frax"))

    def test_duplicate_token(self, system):
        """Test supporting a token twice."""
        with pytest.raises(DuplicateError):
            system.registry.add_supported_token(ADMIN, "USDC", IdleStrategy(system.ledger, "USDC", "idle_2"))

    def test_remove_token_in_use(self, system):
        """Test a token backing a registered strategy cannot be removed."""
        system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "DAI", "s"), weight=1)

        with pytest.raises(InvariantError):
            system.registry.remove_supported_token(ADMIN, "DAI")

    def test_remove_token(self, system):
        """Test removing an unused token."""
        system.registry.remove_supported_token(ADMIN, "DAI")

        assert not system.registry.is_supported("DAI")
        with pytest.raises(UnsupportedTokenError):
            system.registry.idle_strategy_of("DAI")

    def test_enable_toggle(self, system):
        """Test disabling keeps the token supported."""
        system.registry.set_token_enabled(ADMIN, "USDT", False)

        assert system.registry.is_supported("USDT")
        assert not system.registry.is_enabled("USDT")
