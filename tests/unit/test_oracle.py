"""
Tests for the manual price oracle and USD conversions.
"""

from decimal import ROUND_UP, Decimal

import pytest

from tests.mocks import FakeClock
from yield_router.core.exceptions import InvalidPriceError, PriceNotFoundError, StalePriceError
from yield_router.oracle import ManualPriceOracle, Oracle, from_usd, to_usd


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oracle(clock):
    oracle = ManualPriceOracle(freshness_window_seconds=3600, clock=clock)
    oracle.set_prices({"USDC": "1.0002", "DAI": Decimal("0.9999")})
    return oracle


class TestManualPriceOracle:
    """Test cases for ManualPriceOracle."""

    def test_price_and_decimals(self, oracle):
        """Test prices are quantized to 8 decimals."""
        assert oracle.get_token_usd_price("USDC") == (Decimal("1.0002"), 8)
        assert isinstance(oracle, Oracle)

    def test_truncates_extra_digits(self, oracle):
        """Test digits beyond the price precision are dropped."""
        oracle.set_price("USDT", "0.999999999")
        price, _ = oracle.get_token_usd_price("USDT")
        assert price == Decimal("0.99999999")

    def test_unknown_token(self, oracle):
        """Test a token without a price."""
        with pytest.raises(PriceNotFoundError):
            oracle.get_token_usd_price("XYZ")

    def test_stale_price(self, oracle, clock):
        """Test prices older than the window."""
        clock.advance(3600)
        oracle.get_token_usd_price("USDC")

        clock.advance(1)
        with pytest.raises(StalePriceError):
            oracle.get_token_usd_price("USDC")

    def test_explicit_timestamp(self, oracle, clock):
        """Test set_price with an old update time."""
        oracle.set_price("USDT", 1, updated_at=clock() - 7200)
        with pytest.raises(StalePriceError):
            oracle.get_token_usd_price("USDT")

    def test_non_positive_price(self, oracle):
        """Test zero prices are rejected on read."""
        oracle.set_price("USDT", 0)
        with pytest.raises(InvalidPriceError):
            oracle.get_token_usd_price("USDT")


class TestConversions:
    """Test cases for to_usd and from_usd."""

    def test_to_usd(self, oracle):
        """Test USD value of a token amount."""
        assert to_usd(oracle, "USDC", Decimal("1000")) == Decimal("1000.2")

    def test_from_usd_rounding(self, oracle):
        """Test token amount for a USD value in both directions."""
        assert from_usd(oracle, "DAI", Decimal("1"), 6) == Decimal("1.000100")
        assert from_usd(oracle, "USDC", Decimal("1"), 6) == Decimal("0.999800")
        assert from_usd(oracle, "USDC", Decimal("1"), 6, ROUND_UP) == Decimal("0.999801")
