"""
Pytest configuration and fixtures for yield router tests.
"""

from decimal import Decimal

import pytest

from yield_router.config.models import (
    AccessConfig,
    AppConfig,
    ExchangeConfig,
    OracleConfig,
    RouterConfig,
    TokenConfig,
)
from yield_router.factory import build_system
from tests.mocks import FakeClock, MockSwapPlugin, MockYieldStrategy

OWNER = "owner"
ADMIN = "admin"
MODERATOR = "moderator"

ALLOCATION_WINDOW = 3600


# =============================================================================
# Configuration
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def router_config() -> RouterConfig:
    """Router settings without fees."""
    return RouterConfig(
        allocation_window_seconds=ALLOCATION_WINDOW,
        min_usd_per_cycle=Decimal("0"),
        dust_threshold_usd=Decimal("0.1"),
    )


@pytest.fixture
def app_config(router_config: RouterConfig) -> AppConfig:
    """Three stablecoins at $1, native token at $2000, 5% swap guard."""
    return AppConfig(
        environment="test",
        native_token=TokenConfig(symbol="NATIVE", decimals=18, supported=False),
        tokens=[
            TokenConfig(symbol="USDC", decimals=6),
            TokenConfig(symbol="USDT", decimals=6),
            TokenConfig(symbol="DAI", decimals=18),
        ],
        router=router_config,
        exchange=ExchangeConfig(max_stablecoin_slippage_in_bps=500),
        oracle=OracleConfig(
            prices={
                "USDC": Decimal("1"),
                "USDT": Decimal("1"),
                "DAI": Decimal("1"),
                "NATIVE": Decimal("2000"),
            }
        ),
        access=AccessConfig(owner=OWNER, admins=[ADMIN], moderators=[MODERATOR]),
    )


# =============================================================================
# System
# =============================================================================


@pytest.fixture
def system(app_config: AppConfig, clock: FakeClock):
    """Fully wired engine without strategies or routes."""
    return build_system(app_config, clock=clock)


@pytest.fixture
def swap_plugin(system) -> MockSwapPlugin:
    """1:1 swap venue routed for every stablecoin pair."""
    plugin = MockSwapPlugin(system.ledger)
    for token_a, token_b in (("USDC", "USDT"), ("USDC", "DAI"), ("USDT", "DAI")):
        system.exchange.set_route(OWNER, token_a, token_b, plugin)
    return plugin


@pytest.fixture
def strategies(system, swap_plugin):
    """USDC and USDT strategies with equal weight."""
    usdc = MockYieldStrategy(system.ledger, "USDC", "strategy_usdc")
    usdt = MockYieldStrategy(system.ledger, "USDT", "strategy_usdt")
    system.registry.add_strategy(ADMIN, usdc, weight=1)
    system.registry.add_strategy(ADMIN, usdt, weight=1)
    return usdc, usdt


@pytest.fixture
def fund(system):
    """Mint tokens to an account."""

    def _fund(account: str, token: str, amount) -> Decimal:
        return system.ledger.mint(token, account, Decimal(str(amount)))

    return _fund


@pytest.fixture
def close_cycle(system, clock):
    """Let the allocation window pass and allocate the open cycle."""

    def _close():
        clock.advance(ALLOCATION_WINDOW)
        return system.router.allocate_to_strategies()

    return _close


@pytest.fixture
def deposit(system, fund):
    """Fund an account and deposit into the batch."""

    def _deposit(account: str, token: str, amount, fee_amount=0):
        fund(account, token, amount)
        return system.batch.deposit(account, token, Decimal(str(amount)), fee_amount)

    return _deposit
