"""
Exchange and Oracle Configuration Models.

Swap routes per token pair and the manual oracle's freshness window.
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from ...core.constants import MAX_BPS, PRICE_DECIMALS
from .base import BaseConfig, coerce_decimal


def _check_bps(v: Optional[int], name: str) -> Optional[int]:
    if v is not None and v > MAX_BPS:
        raise PydanticCustomError(
            "NewValueIsAboveMaxBps",
            "{name} {value} exceeds {limit}",
            {"name": name, "value": v, "limit": MAX_BPS},
        )
    return v


class RouteConfig(BaseConfig):
    """
    Route for one token pair (either direction).

    Example:
        >>> route = RouteConfig(
        ...     token_a="USDC", token_b="USDT",
        ...     default_plugin="uniswap", second_plugin="curve",
        ...     limit_usd=Decimal("10000"),
        ... )
    """

    token_a: str
    token_b: str
    default_plugin: str
    second_plugin: Optional[str] = None
    limit_usd: Decimal = Field(
        default=Decimal("0"),
        ge=Decimal("0"),
        description="USD notional at or above which second_plugin is used",
    )
    custom_slippage_in_bps: Optional[int] = Field(
        default=None,
        ge=0,
        description="Pair-specific deviation cap overriding the global one",
    )

    @field_validator("limit_usd", mode="before")
    @classmethod
    def coerce_to_decimal(cls, v):
        return coerce_decimal(v)

    @field_validator("custom_slippage_in_bps")
    @classmethod
    def check_slippage(cls, v: Optional[int]) -> Optional[int]:
        return _check_bps(v, "custom_slippage_in_bps")

    @model_validator(mode="after")
    def check_pair(self) -> "RouteConfig":
        if self.token_a == self.token_b:
            raise PydanticCustomError("IdenticalTokens", "route tokens must differ")
        return self


class ExchangeConfig(BaseConfig):
    """Exchange routing configuration."""

    max_stablecoin_slippage_in_bps: int = Field(
        default=200,
        ge=0,
        description="Global cap on oracle vs realized swap deviation",
    )
    routes: list[RouteConfig] = Field(default_factory=list)

    @field_validator("max_stablecoin_slippage_in_bps")
    @classmethod
    def check_slippage(cls, v: int) -> int:
        return _check_bps(v, "max_stablecoin_slippage_in_bps")


class OracleConfig(BaseConfig):
    """Manual price oracle configuration."""

    freshness_window_seconds: int = Field(
        default=86400,
        ge=1,
        description="Prices older than this are rejected as stale",
    )
    price_decimals: int = Field(default=PRICE_DECIMALS, ge=0, le=36)
    prices: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Initial USD price per token symbol",
    )

    @field_validator("prices", mode="before")
    @classmethod
    def coerce_prices(cls, v):
        if isinstance(v, dict):
            return {k: coerce_decimal(p) for k, p in v.items()}
        return v
