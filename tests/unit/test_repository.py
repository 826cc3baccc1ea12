"""
Tests for SQLite cycle persistence.
"""

from decimal import Decimal

import pytest

from tests.conftest import ADMIN, ALLOCATION_WINDOW, MODERATOR, OWNER
from tests.mocks import MockSwapPlugin, MockYieldStrategy
from yield_router.core.exceptions import (
    DuplicateError,
    InvalidRangeError,
    PriceManipulationError,
    SlippageExceededError,
)
from yield_router.engine import Cycle, WithdrawalCycle, WithdrawalRequest
from yield_router.factory import build_system
from yield_router.storage import CycleRepository


@pytest.fixture
def repo(tmp_path):
    return CycleRepository(tmp_path / "data" / "cycles.db")


def make_cycle(cycle_id: int) -> Cycle:
    return Cycle(
        id=cycle_id,
        total_deposited_in_usd="1000",
        received_by_strategies_in_usd="999.5",
        strategies_balance_with_compound_and_batch_deposits_in_usd="1999.5",
        price_per_share="1.000000000000000001",
        closed_at=1_700_000_000 + cycle_id,
        prices={"USDC": "1.0001"},
    )


class TestCycleRepository:
    """Test cases for CycleRepository."""

    def test_creates_database(self, repo):
        """Test the database file and tables are created."""
        assert repo.db_path.exists()
        assert repo.count_cycles() == 0
        assert repo.latest_cycle() is None

    def test_save_and_get(self, repo):
        """Test decimals survive storage exactly."""
        repo.save_cycle(make_cycle(0))

        cycle = repo.get_cycle(0)
        assert cycle.price_per_share == Decimal("1.000000000000000001")
        assert cycle.prices == {"USDC": Decimal("1.0001")}
        assert repo.get_cycle(1) is None

    def test_duplicate(self, repo):
        """Test cycles are append-only."""
        repo.save_cycle(make_cycle(0))
        with pytest.raises(DuplicateError):
            repo.save_cycle(make_cycle(0))

    def test_range(self, repo):
        """Test range queries and the latest cycle."""
        for i in range(5):
            repo.save_cycle(make_cycle(i))

        assert [c.id for c in repo.get_cycles(1, 3)] == [1, 2]
        assert repo.latest_cycle().id == 4
        assert repo.count_cycles() == 5
        with pytest.raises(InvalidRangeError):
            repo.get_cycles(3, 3)

    def test_update_cycle_balance(self, repo):
        """Test only the strategies balance of a stored cycle changes."""
        repo.save_cycle(make_cycle(0))

        assert repo.update_cycle_balance(0, Decimal("1500"))
        cycle = repo.get_cycle(0)
        assert cycle.strategies_balance_with_compound_and_batch_deposits_in_usd == Decimal("1500")
        assert cycle.total_deposited_in_usd == Decimal("1000")
        assert not repo.update_cycle_balance(7, Decimal("1"))

    def test_withdrawal_cycles(self, repo):
        """Test withdrawal cycles are stored as dicts."""
        cycle = WithdrawalCycle(
            id=0,
            requests=[WithdrawalRequest(0, "alice", Decimal("10"), "USDC", settled=True, amount_out=Decimal("10"))],
            fulfilled_at=1_700_000_000,
            withdrawn_usd=Decimal("10"),
        )
        repo.save_withdrawal_cycle(cycle)

        stored = repo.get_withdrawal_cycles(0, 1)
        assert stored[0]["withdrawn_usd"] == "10"
        assert stored[0]["requests"][0]["owner"] == "alice"
        with pytest.raises(DuplicateError):
            repo.save_withdrawal_cycle(cycle)


class TestPersistenceOnCommit:
    """Test cases for engine writes to the repository."""

    @pytest.fixture
    def persisted(self, app_config, clock, repo):
        system = build_system(app_config, clock=clock, repository=repo)
        plugin = MockSwapPlugin(system.ledger)
        system.exchange.set_route(OWNER, "USDC", "USDT", plugin)
        system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "USDC", "s_usdc"), weight=1)
        system.registry.add_strategy(ADMIN, MockYieldStrategy(system.ledger, "USDT", "s_usdt"), weight=1)
        return system

    def test_closed_cycle_saved(self, persisted, repo, clock):
        """Test allocation writes the closed cycle."""
        persisted.ledger.mint("USDC", "alice", Decimal("1000"))
        persisted.batch.deposit("alice", "USDC", Decimal("1000"))
        clock.advance(ALLOCATION_WINDOW)

        persisted.router.allocate_to_strategies()

        stored = repo.get_cycle(0)
        assert stored.total_deposited_in_usd == Decimal("1000")
        assert stored.price_per_share == Decimal("1")

    def test_failed_allocation_not_saved(self, persisted, repo, clock):
        """Test nothing is written when the allocation rolls back."""
        persisted.ledger.mint("USDC", "alice", Decimal("1000"))
        persisted.batch.deposit("alice", "USDC", Decimal("1000"))
        clock.advance(ALLOCATION_WINDOW)
        persisted.oracle.set_price("USDT", Decimal("1.5"))

        with pytest.raises(PriceManipulationError):
            persisted.router.allocate_to_strategies()

        assert repo.count_cycles() == 0

    def test_fulfilled_withdrawal_saved(self, persisted, repo, clock):
        """Test fulfillment writes the withdrawal cycle."""
        persisted.ledger.mint("USDC", "alice", Decimal("1000"))
        receipt = persisted.batch.deposit("alice", "USDC", Decimal("1000"))
        clock.advance(ALLOCATION_WINDOW)
        persisted.router.allocate_to_strategies()
        persisted.batch_out.schedule_withdrawal("alice", None, "USDC", [receipt.id])

        persisted.batch_out.withdraw_and_distribute(MODERATOR)

        stored = repo.get_withdrawal_cycles(0, 10)
        assert len(stored) == 1
        assert stored[0]["fulfilled_at"] is not None

    def test_withdrawal_updates_stored_balance(self, persisted, repo, clock):
        """Test a direct withdrawal reduces the stored strategies balance."""
        persisted.ledger.mint("USDC", "alice", Decimal("1000"))
        receipt = persisted.batch.deposit("alice", "USDC", Decimal("1000"))
        clock.advance(ALLOCATION_WINDOW)
        persisted.router.allocate_to_strategies()

        persisted.router.withdraw_from_strategies("alice", [receipt.id], "USDC", Decimal("400"), 0)

        stored = repo.get_cycle(0)
        assert stored.strategies_balance_with_compound_and_batch_deposits_in_usd == Decimal("600")
        assert stored.strategies_balance_with_compound_and_batch_deposits_in_usd == (
            persisted.router.get_cycle(0).strategies_balance_with_compound_and_batch_deposits_in_usd
        )

    def test_failed_withdrawal_keeps_stored_balance(self, persisted, repo, clock):
        """Test a reverted withdrawal writes nothing."""
        persisted.ledger.mint("USDC", "alice", Decimal("1000"))
        receipt = persisted.batch.deposit("alice", "USDC", Decimal("1000"))
        clock.advance(ALLOCATION_WINDOW)
        persisted.router.allocate_to_strategies()

        with pytest.raises(SlippageExceededError):
            persisted.router.withdraw_from_strategies("alice", [receipt.id], "USDC", 0, Decimal("1001"))

        stored = repo.get_cycle(0)
        assert stored.strategies_balance_with_compound_and_batch_deposits_in_usd == Decimal("1000")
