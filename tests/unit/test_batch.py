"""
Batch Unit Tests.

Deposit intake, deposit fees and same-cycle withdrawals.
"""

from decimal import Decimal

import pytest

from tests.conftest import ADMIN, MODERATOR
from yield_router.config.models import FeeSettings
from yield_router.core.exceptions import (
    AmountExceedsBalanceError,
    CycleClosedError,
    DepositUnderMinimumError,
    FeeUnderpaidError,
    NotOperatorError,
    NotReceiptOwnerError,
    UnsupportedTokenError,
)
from yield_router.engine import calculate_fee_in_usd


@pytest.fixture
def deposit_fee(system):
    """25 bps deposit fee bounded to [0.15, 1] USD."""
    fee = FeeSettings(
        fee_in_bps=25,
        min_fee_in_usd=Decimal("0.15"),
        max_fee_in_usd=Decimal("1"),
        fee_treasury="fee_treasury",
    )
    system.router.update_settings(ADMIN, deposit_fee=fee)
    return fee


class TestFeeCalculation:
    """Test calculate_fee_in_usd."""

    def test_fee_bounds(self):
        """Test min and max clamp the bps fee."""
        fee = FeeSettings(
            fee_in_bps=25,
            min_fee_in_usd=Decimal("0.15"),
            max_fee_in_usd=Decimal("1"),
            fee_treasury="t",
        )

        assert calculate_fee_in_usd(fee, Decimal("100")) == Decimal("0.25")
        assert calculate_fee_in_usd(fee, Decimal("10")) == Decimal("0.15")
        assert calculate_fee_in_usd(fee, Decimal("100000")) == Decimal("1")

    def test_no_fee(self):
        """Test default settings charge nothing."""
        assert calculate_fee_in_usd(FeeSettings(), Decimal("1000")) == 0

    def test_fee_rounds_up(self):
        """Test what users owe is rounded up."""
        fee = FeeSettings(fee_in_bps=1, max_fee_in_usd=Decimal("50"), fee_treasury="t")

        assert calculate_fee_in_usd(fee, Decimal("0.000000000000000001")) == Decimal("0.000000000000000001")


class TestDeposit:
    """Test Batch.deposit."""

    def test_deposit_mints_receipt(self, system, fund):
        """Test a deposit moves tokens and issues a receipt."""
        fund("alice", "USDC", 1000)

        receipt = system.batch.deposit("alice", "USDC", Decimal("1000"))

        assert receipt.id == 0
        assert receipt.cycle_id == 0
        assert receipt.owner == "alice"
        assert receipt.amount == Decimal("1000")
        assert system.ledger.balance_of("USDC", "alice") == 0
        assert system.ledger.balance_of("USDC", system.batch.account) == Decimal("1000")
        assert system.batch.deposit_count == 1

    def test_countdown_starts_at_first_deposit(self, system, deposit, clock):
        """Test the cycle countdown."""
        assert system.batch.cycle_started_at is None

        deposit("alice", "USDC", 10)
        started = system.batch.cycle_started_at
        clock.advance(100)
        deposit("bob", "USDC", 10)

        assert started == clock() - 100
        assert system.batch.cycle_started_at == started

    def test_unsupported_token(self, system, fund):
        """Test deposits of unknown tokens."""
        fund("alice", "NATIVE", 1)

        with pytest.raises(UnsupportedTokenError):
            system.batch.deposit("alice", "NATIVE", Decimal("1"))

    def test_disabled_token(self, system, fund):
        """Test a disabled token is refused."""
        system.registry.set_token_enabled(ADMIN, "DAI", False)
        fund("alice", "DAI", 10)

        with pytest.raises(UnsupportedTokenError):
            system.batch.deposit("alice", "DAI", Decimal("10"))

    def test_minimum_deposit(self, system, fund):
        """Test deposits below the USD minimum."""
        system.router.update_settings(ADMIN, min_deposit_usd=Decimal("10"))
        fund("alice", "USDC", 100)

        with pytest.raises(DepositUnderMinimumError):
            system.batch.deposit("alice", "USDC", Decimal("9.99"))
        receipt = system.batch.deposit("alice", "USDC", Decimal("10"))
        assert receipt.amount == Decimal("10")

    def test_fee_paid_in_native(self, system, fund, deposit_fee):
        """Test the deposit fee leaves the deposit intact."""
        fund("alice", "USDC", 1000)
        fund("alice", "NATIVE", 1)
        required = system.batch.get_deposit_fee_in_native(Decimal("1000"))

        # max fee of 1 USD at 2000 USD per native token
        assert required == Decimal("0.0005")
        receipt = system.batch.deposit("alice", "USDC", Decimal("1000"), required)

        assert receipt.amount == Decimal("1000")
        assert system.ledger.balance_of("NATIVE", "fee_treasury") == Decimal("0.0005")

    def test_fee_underpaid(self, system, fund, deposit_fee):
        """Test an underpaid fee reverts the deposit."""
        fund("alice", "USDC", 1000)
        fund("alice", "NATIVE", 1)

        with pytest.raises(FeeUnderpaidError):
            system.batch.deposit("alice", "USDC", Decimal("1000"), Decimal("0.0004"))

        assert system.ledger.balance_of("USDC", "alice") == Decimal("1000")
        assert system.receipts.next_id == 0

    def test_fee_overpaid_goes_to_treasury(self, system, fund, deposit_fee):
        """Test overpayment is kept as paid."""
        fund("alice", "USDC", 1000)
        fund("alice", "NATIVE", 1)

        system.batch.deposit("alice", "USDC", Decimal("1000"), Decimal("0.01"))

        assert system.ledger.balance_of("NATIVE", "fee_treasury") == Decimal("0.01")

    def test_batch_value(self, system, deposit):
        """Test total and per-token USD value."""
        system.oracle.set_price("USDT", Decimal("0.99"))
        deposit("alice", "USDC", 100)
        deposit("bob", "USDT", 100)

        total, per_token = system.batch.get_batch_value_usd()

        assert total == Decimal("199")
        assert per_token == {"USDC": Decimal("100"), "USDT": Decimal("99")}


class TestBatchWithdraw:
    """Test Batch.withdraw."""

    def test_round_trip_loses_only_fees(self, system, fund, deposit_fee):
        """Test same-cycle deposit and withdrawal."""
        fund("alice", "USDC", 1000)
        fund("alice", "NATIVE", 1)
        fee = system.batch.get_deposit_fee_in_native(Decimal("1000"))
        receipt = system.batch.deposit("alice", "USDC", Decimal("1000"), fee)

        returned = system.batch.withdraw("alice", [receipt.id])

        assert returned == {"USDC": Decimal("1000")}
        assert system.ledger.balance_of("USDC", "alice") == Decimal("1000")
        assert system.ledger.balance_of("NATIVE", "alice") == Decimal("1") - fee
        assert not system.receipts.exists(receipt.id)

    def test_partial_withdraw_decreases_receipt(self, system, deposit):
        """Test partial amounts."""
        receipt = deposit("alice", "USDC", 1000)

        system.batch.withdraw("alice", [receipt.id], [Decimal("250")])

        assert system.receipts.get(receipt.id).amount == Decimal("750")
        assert system.ledger.balance_of("USDC", "alice") == Decimal("250")

    def test_amount_above_receipt(self, system, deposit):
        """Test withdrawing more than the receipt holds."""
        receipt = deposit("alice", "USDC", 1000)

        with pytest.raises(AmountExceedsBalanceError):
            system.batch.withdraw("alice", [receipt.id], [Decimal("1001")])

    def test_moderator_withdraws_to_holder(self, system, deposit):
        """Test delegated withdrawal pays the holder."""
        receipt = deposit("alice", "USDC", 1000)

        system.batch.withdraw(MODERATOR, [receipt.id])

        assert system.ledger.balance_of("USDC", "alice") == Decimal("1000")
        assert system.ledger.balance_of("USDC", MODERATOR) == 0

    def test_stranger_rejected(self, system, deposit):
        """Test a non-holder cannot withdraw."""
        receipt = deposit("alice", "USDC", 1000)

        with pytest.raises(NotReceiptOwnerError):
            system.batch.withdraw("mallory", [receipt.id])

    def test_closed_cycle_rejected(self, system, strategies, deposit, close_cycle):
        """Test receipts of allocated cycles cannot be withdrawn from the batch."""
        receipt = deposit("alice", "USDC", 1000)
        close_cycle()

        with pytest.raises(CycleClosedError):
            system.batch.withdraw("alice", [receipt.id])

    def test_start_new_cycle_requires_operator(self, system):
        """Test only engine accounts advance the cycle."""
        with pytest.raises(NotOperatorError):
            system.batch.start_new_cycle(ADMIN)
