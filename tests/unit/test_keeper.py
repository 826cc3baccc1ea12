"""
Tests for the upkeep keeper.
"""

import asyncio
from decimal import Decimal

import pytest

from tests.conftest import ALLOCATION_WINDOW
from yield_router.config import KeeperConfig
from yield_router.core import get_correlation_id
from yield_router.keeper import UpkeepKeeper


@pytest.fixture
def keeper(system):
    return UpkeepKeeper(system.router, system.batch_out, KeeperConfig(poll_interval_seconds=0.01))


class TestRunOnce:
    """Test cases for a single upkeep pass."""

    def test_nothing_due(self, keeper, strategies):
        """Test a pass with no due upkeep."""
        assert keeper.run_once() == {"allocation": False, "withdrawals": False}
        assert keeper.get_status()["runs"] == 1

    def test_allocates_due_cycle(self, system, keeper, strategies, deposit, clock):
        """Test the open cycle is allocated once the window elapsed."""
        deposit("alice", "USDC", 1000)
        assert keeper.run_once()["allocation"] is False

        clock.advance(ALLOCATION_WINDOW)
        result = keeper.run_once()

        assert result["allocation"] is True
        assert system.router.current_cycle_id == 1

    def test_settles_withdrawals(self, system, keeper, strategies, deposit, clock):
        """Test due withdrawal cycles are executed and paid."""
        receipt = deposit("alice", "USDC", 1000)
        clock.advance(ALLOCATION_WINDOW)
        keeper.run_once()
        system.batch_out.schedule_withdrawal("alice", None, "USDC", [receipt.id])

        result = keeper.run_once()

        assert result["withdrawals"] is True
        assert system.ledger.balance_of("USDC", "alice") == Decimal("1000")

    def test_pass_shares_one_correlation_id(self, system, keeper, strategies, deposit, clock):
        """Test every transaction of one pass carries the same correlation id."""
        receipt = deposit("alice", "USDC", 1000)
        clock.advance(ALLOCATION_WINDOW)
        keeper.run_once()
        system.batch_out.schedule_withdrawal("alice", None, "USDC", [receipt.id])
        clock.advance(ALLOCATION_WINDOW)
        deposit("bob", "USDC", 500)
        clock.advance(ALLOCATION_WINDOW)

        keeper.run_once()

        allocation, settlement = system.transactions.get_transaction_history(limit=2)[::-1]
        assert allocation.operation == "allocate_to_strategies"
        assert allocation.correlation_id is not None
        assert settlement.correlation_id == allocation.correlation_id
        assert get_correlation_id() is None

    def test_failure_is_logged_and_counted(self, system, keeper, strategies, deposit, clock):
        """Test a failing upkeep does not raise."""
        deposit("alice", "USDC", 1000)
        clock.advance(ALLOCATION_WINDOW)
        system.oracle.set_price("USDT", Decimal("1.5"))

        result = keeper.run_once()

        assert result["allocation"] is False
        assert keeper.get_status()["failures"] == 1
        assert system.router.current_cycle_id == 0


class TestLifecycle:
    """Test cases for the background loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, keeper, strategies):
        """Test the loop polls until stopped."""
        await keeper.start()
        assert keeper.is_running

        await asyncio.sleep(0.05)
        await keeper.stop()

        assert not keeper.is_running
        assert keeper.get_status()["runs"] >= 1

    @pytest.mark.asyncio
    async def test_double_start_ignored(self, keeper):
        """Test starting twice keeps one loop."""
        await keeper.start()
        task = keeper._monitor_task
        await keeper.start()

        assert keeper._monitor_task is task
        await keeper.stop()

    def test_system_keeper(self, system):
        """Test the factory builds a keeper from config."""
        keeper = system.keeper()
        assert keeper.config == system.config.keeper
        assert not keeper.is_running
