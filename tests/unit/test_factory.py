"""
Tests for system assembly.
"""

from decimal import Decimal

import pytest

from tests.conftest import ADMIN, MODERATOR, OWNER
from tests.mocks import MockSwapPlugin
from yield_router.access import Role
from yield_router.config import AppConfig, RouteConfig, StorageConfig
from yield_router.core.constants import BATCH_ACCOUNT, BATCH_OUT_ACCOUNT, ROUTER_ACCOUNT
from yield_router.core.exceptions import ConfigurationError
from yield_router.factory import build_system
from yield_router.ledger import TokenLedger


class TestBuildSystem:
    """Test cases for build_system."""

    def test_roles(self, system):
        """Test configured and engine roles."""
        assert system.access.owner == OWNER
        assert system.access.has_role(ADMIN, Role.ADMIN)
        assert system.access.has_role(MODERATOR, Role.MODERATOR)
        for account in (ROUTER_ACCOUNT, BATCH_ACCOUNT, BATCH_OUT_ACCOUNT):
            assert system.access.has_role(account, Role.OPERATOR)

    def test_tokens_and_prices(self, system):
        """Test tokens are registered and priced."""
        assert system.ledger.decimals("USDC") == 6
        assert system.ledger.decimals("NATIVE") == 18
        assert system.oracle.get_token_usd_price("NATIVE")[0] == Decimal("2000")

    def test_participants_registered(self, system):
        """Test every stateful component joins transactions."""
        assert set(system.transactions.participants) >= {
            "ledger", "shares", "receipts", "registry", "batch", "router", "batch_out",
        }

    def test_routes_from_config(self, app_config, clock):
        """Test configured routes resolve plugin names."""
        data = app_config.model_dump()
        data["exchange"]["routes"] = [
            {"token_a": "USDC", "token_b": "USDT", "default_plugin": "pool", "custom_slippage_in_bps": 50}
        ]
        config = AppConfig(**data)
        system = build_system(config, plugins={"pool": MockSwapPlugin(TokenLedger(), address="pool")}, clock=clock)

        assert system.exchange.has_route("USDT", "USDC")
        assert system.exchange.slippage_cap_bps("USDC", "USDT") == 50

    def test_unknown_plugin(self, app_config, clock):
        """Test a route naming a missing plugin."""
        config = app_config.model_copy(
            update={"exchange": app_config.exchange.model_copy(
                update={"routes": [RouteConfig(token_a="USDC", token_b="USDT", default_plugin="nope")]}
            )}
        )

        with pytest.raises(ConfigurationError) as exc_info:
            build_system(config, clock=clock)
        assert exc_info.value.code == "UnknownPlugin"

    def test_repository_from_config(self, app_config, clock, tmp_path):
        """Test storage.database_path creates the repository."""
        config = app_config.model_copy(
            update={"storage": StorageConfig(database_path=str(tmp_path / "db" / "cycles.db"))}
        )

        system = build_system(config, clock=clock)

        assert system.repository is not None
        assert system.repository.db_path.exists()

    def test_no_repository_by_default(self, system):
        """Test persistence is off without a database path."""
        assert system.repository is None
