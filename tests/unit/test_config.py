"""
Tests for configuration models and the YAML loader.
"""

from decimal import Decimal

import pytest
import yaml
from pydantic import ValidationError

from yield_router.config import (
    AppConfig,
    BatchOutConfig,
    ConfigFileNotFoundError,
    ConfigLoader,
    ConfigParseError,
    ConfigValidationError,
    FeeSettings,
    RouteConfig,
    RouterConfig,
    TokenConfig,
    load_config,
)
from yield_router.core.exceptions import ConfigurationError, NewValueIsAboveMaxBpsError


BASE_CONFIG = {
    "app_name": "Router Test",
    "environment": "development",
    "tokens": [
        {"symbol": "USDC", "decimals": 6},
        {"symbol": "USDT", "decimals": 6},
    ],
    "router": {
        "allocation_window_seconds": 3600,
        "min_usd_per_cycle": "100",
        "dust_threshold_usd": "0.5",
    },
    "exchange": {
        "max_stablecoin_slippage_in_bps": 200,
        "routes": [{"token_a": "USDC", "token_b": "USDT", "default_plugin": "stable_pool"}],
    },
    "oracle": {"prices": {"USDC": "1", "USDT": "0.9998", "NATIVE": 2000}},
}


@pytest.fixture
def config_dir(tmp_path):
    path = tmp_path / "config"
    path.mkdir()
    with open(path / "router.yaml", "w") as f:
        yaml.safe_dump(BASE_CONFIG, f)
    return path


# =============================================================================
# Model Tests
# =============================================================================


class TestFeeSettings:
    """Test cases for FeeSettings validation."""

    def test_valid_fee(self):
        """Test a bounded fee with a treasury."""
        fee = FeeSettings(fee_in_bps=25, min_fee_in_usd="0.15", max_fee_in_usd=1, fee_treasury="t")
        assert fee.min_fee_in_usd == Decimal("0.15")
        assert fee.charges_fee

    def test_bps_above_threshold(self):
        """Test fee_in_bps above 300."""
        with pytest.raises(ValidationError, match="FeePercentExceedsMaximum|exceeds"):
            FeeSettings(fee_in_bps=301, max_fee_in_usd=1, fee_treasury="t")

    def test_max_fee_above_threshold(self):
        """Test max fee above 50 USD."""
        with pytest.raises(ValidationError):
            FeeSettings(fee_in_bps=10, max_fee_in_usd=51, fee_treasury="t")

    def test_min_above_max(self):
        """Test min fee greater than max fee."""
        with pytest.raises(ValidationError):
            FeeSettings(min_fee_in_usd=2, max_fee_in_usd=1, fee_treasury="t")

    def test_bps_requires_max(self):
        """Test a bps fee without an upper bound."""
        with pytest.raises(ValidationError):
            FeeSettings(fee_in_bps=10, fee_treasury="t")

    def test_fee_requires_treasury(self):
        """Test a non-zero fee without a treasury."""
        with pytest.raises(ValidationError):
            FeeSettings(fee_in_bps=10, max_fee_in_usd=1)

    def test_nan_rejected(self):
        """Test non-finite decimals."""
        with pytest.raises(ValidationError):
            FeeSettings(max_fee_in_usd="NaN")


class TestRouterConfig:
    """Test cases for RouterConfig and BatchOutConfig."""

    def test_defaults(self):
        """Test default values."""
        config = RouterConfig()
        assert config.allocation_window_seconds == 0
        assert config.dust_threshold_usd == Decimal("0.1")
        assert config.protocol_fee_bps == 0

    def test_protocol_fee_requires_collector(self):
        """Test protocol fee without a collector."""
        with pytest.raises(ValidationError):
            RouterConfig(protocol_fee_bps=1000)

    def test_frozen(self):
        """Test configs are immutable."""
        config = RouterConfig()
        with pytest.raises(ValidationError):
            config.protocol_fee_bps = 5

    def test_updated_returns_validated_copy(self):
        """Test updated() applies changes on a copy."""
        config = RouterConfig()
        new = config.updated(protocol_fee_bps=1000, fee_collector="treasury")

        assert new.protocol_fee_bps == 1000
        assert config.protocol_fee_bps == 0

    def test_updated_above_max_bps(self):
        """Test updated() raises the dedicated bps error."""
        with pytest.raises(NewValueIsAboveMaxBpsError) as exc_info:
            RouterConfig().updated(protocol_fee_bps=10001, fee_collector="treasury")
        assert exc_info.value.code == "NewValueIsAboveMaxBps"

    def test_updated_other_error(self):
        """Test updated() maps other failures to ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            RouterConfig().updated(protocol_fee_bps=100)
        assert exc_info.value.code == "FeeCollectorNotSet"
        assert not isinstance(exc_info.value, NewValueIsAboveMaxBpsError)

    def test_batch_out_slippage_bound(self):
        """Test withdrawal slippage above 10000 bps."""
        with pytest.raises(ValidationError):
            BatchOutConfig(max_slippage_to_withdraw_in_bps=10001)


class TestRouteConfig:
    """Test cases for RouteConfig."""

    def test_identical_tokens(self):
        """Test a route from a token to itself."""
        with pytest.raises(ValidationError):
            RouteConfig(token_a="USDC", token_b="USDC", default_plugin="p")

    def test_custom_slippage_bound(self):
        """Test pair slippage above 10000 bps."""
        with pytest.raises(ValidationError):
            RouteConfig(token_a="USDC", token_b="USDT", default_plugin="p", custom_slippage_in_bps=20000)


class TestAppConfig:
    """Test cases for AppConfig."""

    def test_from_dict(self):
        """Test building the full config from a dict."""
        config = AppConfig.from_dict(BASE_CONFIG)

        assert config.router.min_usd_per_cycle == Decimal("100")
        assert config.oracle.prices["USDT"] == Decimal("0.9998")
        assert config.native_token.symbol == "NATIVE"
        assert [t.symbol for t in config.supported_tokens] == ["USDC", "USDT"]

    def test_unknown_environment_defaults(self):
        """Test environment normalization."""
        assert AppConfig(environment="PROD").is_production
        assert AppConfig(environment="weird").environment == "development"

    def test_duplicate_tokens(self):
        """Test duplicate token symbols."""
        with pytest.raises(ValidationError):
            AppConfig(tokens=[TokenConfig(symbol="USDC"), TokenConfig(symbol="USDC")])

    def test_native_token_not_listed(self):
        """Test the native token among deposit tokens."""
        with pytest.raises(ValidationError):
            AppConfig(tokens=[TokenConfig(symbol="NATIVE")])

    def test_route_with_unknown_token(self):
        """Test routes must reference known tokens."""
        data = dict(BASE_CONFIG)
        data["exchange"] = {"routes": [{"token_a": "USDC", "token_b": "DAI", "default_plugin": "p"}]}
        with pytest.raises(ValidationError):
            AppConfig(**data)

    def test_yaml_round_trip(self, tmp_path):
        """Test to_yaml output loads back."""
        config = AppConfig.from_dict(BASE_CONFIG)
        path = tmp_path / "out.yaml"

        config.to_yaml(path)

        assert AppConfig.from_yaml(path).model_dump() == config.model_dump()


# =============================================================================
# Loader Tests
# =============================================================================


class TestConfigLoader:
    """Test cases for ConfigLoader."""

    def test_load(self, config_dir):
        """Test loading a base file."""
        config = load_config(config_dir / "router.yaml")

        assert config.app_name == "Router Test"
        assert config.router.allocation_window_seconds == 3600

    def test_env_overlay(self, config_dir):
        """Test that <stem>.<env>.yaml is merged over the base."""
        with open(config_dir / "router.production.yaml", "w") as f:
            yaml.safe_dump({"environment": "production", "router": {"allocation_window_seconds": 86400}}, f)

        config = ConfigLoader().load(config_dir / "router.yaml", env="production")

        assert config.is_production
        assert config.router.allocation_window_seconds == 86400
        assert config.router.min_usd_per_cycle == Decimal("100")

    def test_env_var_substitution(self, config_dir, monkeypatch):
        """Test ${VAR} and ${VAR:default} references."""
        monkeypatch.setenv("ROUTER_WINDOW", "7200")
        monkeypatch.delenv("COLLECTOR", raising=False)
        data = dict(BASE_CONFIG)
        data["router"] = {"allocation_window_seconds": "${ROUTER_WINDOW}", "fee_collector": "${COLLECTOR:treasury}"}
        with open(config_dir / "env.yaml", "w") as f:
            yaml.safe_dump(data, f)

        config = load_config(config_dir / "env.yaml")

        assert config.router.allocation_window_seconds == 7200
        assert config.router.fee_collector == "treasury"

    def test_dotenv_file(self, config_dir, monkeypatch):
        """Test that a .env file next to the config is loaded."""
        monkeypatch.delenv("ROUTER_APP_NAME", raising=False)
        (config_dir / ".env").write_text("ROUTER_APP_NAME=From Dotenv\n")
        data = dict(BASE_CONFIG, app_name="${ROUTER_APP_NAME}")
        with open(config_dir / "dotenv.yaml", "w") as f:
            yaml.safe_dump(data, f)

        try:
            config = load_config(config_dir / "dotenv.yaml")
        finally:
            monkeypatch.delenv("ROUTER_APP_NAME", raising=False)

        assert config.app_name == "From Dotenv"

    def test_merge_configs(self):
        """Test deep merge."""
        merged = ConfigLoader().merge_configs({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"b": 10}, "e": 4})
        assert merged == {"a": {"b": 10, "c": 2}, "d": 3, "e": 4}

    def test_missing_file(self, tmp_path):
        """Test loading a missing file."""
        with pytest.raises(ConfigFileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_parse_error(self, tmp_path):
        """Test malformed YAML."""
        path = tmp_path / "bad.yaml"
        path.write_text("router: [unclosed\n")
        with pytest.raises(ConfigParseError):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        """Test a YAML list at top level."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigParseError):
            load_config(path)

    def test_validation_error_lists_fields(self, tmp_path):
        """Test validation errors name the failing field."""
        path = tmp_path / "invalid.yaml"
        with open(path, "w") as f:
            yaml.safe_dump({"router": {"protocol_fee_bps": 20000, "fee_collector": "t"}}, f)

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert any("router.protocol_fee_bps" in e for e in exc_info.value.errors)
        assert any("NewValueIsAboveMaxBps" in e for e in exc_info.value.errors)
