"""
Application Configuration Model.

Provides the main application configuration that integrates all
sub-configurations.
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from .base import BaseConfig
from .exchange import ExchangeConfig, OracleConfig
from .router import BatchOutConfig, RouterConfig


class TokenConfig(BaseConfig):
    """A token known to the ledger."""

    symbol: str
    decimals: int = Field(default=18, ge=0, le=36)
    supported: bool = Field(
        default=True,
        description="Accepted for deposits (gets an idle strategy)",
    )


class AccessConfig(BaseConfig):
    """Initial role assignment."""

    owner: str = "owner"
    admins: list[str] = Field(default_factory=list)
    moderators: list[str] = Field(default_factory=list)
    operators: list[str] = Field(default_factory=list)


class KeeperConfig(BaseConfig):
    """Upkeep automation settings."""

    enabled: bool = False
    poll_interval_seconds: float = Field(default=60.0, gt=0)


class StorageConfig(BaseConfig):
    """Cycle history persistence."""

    database_path: Optional[str] = Field(
        default=None,
        description="SQLite file for closed cycles; disabled when unset",
    )


class AppConfig(BaseConfig):
    """
    Main application configuration.

    Example:
        >>> config = AppConfig(
        ...     tokens=[TokenConfig(symbol="USDC", decimals=6)],
        ...     router=RouterConfig(allocation_window_seconds=3600),
        ... )

        >>> # Load from file
        >>> config = AppConfig.from_yaml("config.yaml")
    """

    app_name: str = Field(default="Yield Router")
    environment: str = Field(
        default="development",
        description="Environment (development, staging, production)",
    )
    log_level: str = Field(default="INFO")

    native_token: TokenConfig = Field(
        default_factory=lambda: TokenConfig(symbol="NATIVE", decimals=18, supported=False),
        description="Side currency used to pay deposit and withdrawal fees",
    )
    tokens: list[TokenConfig] = Field(default_factory=list)

    router: RouterConfig = Field(default_factory=RouterConfig)
    batch_out: BatchOutConfig = Field(default_factory=BatchOutConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    access: AccessConfig = Field(default_factory=AccessConfig)
    keeper: KeeperConfig = Field(default_factory=KeeperConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate and normalize environment."""
        v = v.lower().strip()
        valid_envs = {"development", "staging", "production", "dev", "prod", "test"}
        if v not in valid_envs:
            v = "development"
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper().strip()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            v = "INFO"
        return v

    @model_validator(mode="after")
    def check_tokens(self) -> "AppConfig":
        symbols = [t.symbol for t in self.tokens]
        if len(symbols) != len(set(symbols)):
            raise PydanticCustomError("DuplicateToken", "token symbols must be unique")
        if self.native_token.symbol in symbols:
            raise PydanticCustomError(
                "DuplicateToken", "native token must not be listed among tokens"
            )
        known = set(symbols)
        for route in self.exchange.routes:
            for symbol in (route.token_a, route.token_b):
                if symbol not in known:
                    raise PydanticCustomError(
                        "UnknownRouteToken",
                        "route references unknown token {symbol}",
                        {"symbol": symbol},
                    )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "prod")

    @property
    def supported_tokens(self) -> list[TokenConfig]:
        return [t for t in self.tokens if t.supported]

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        return cls(**(data or {}))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppConfig":
        return cls(**data)

    def to_yaml(self, path: str | Path) -> None:
        """
        Save configuration to YAML file.

        Note: Sensitive fields will be masked.
        """
        path = Path(path)
        data = self.masked_dict()

        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True)
