"""
Router Configuration Model.

Allocation cycle parameters of the strategy router and the deposit batch.
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from ...core.constants import MAX_BPS
from .base import BaseConfig, coerce_decimal
from .fees import FeeSettings


class RouterConfig(BaseConfig):
    """
    Strategy router configuration.

    Example:
        >>> config = RouterConfig(
        ...     allocation_window_seconds=3600,
        ...     min_usd_per_cycle=Decimal("100"),
        ...     protocol_fee_bps=1000,
        ...     fee_collector="treasury",
        ... )
    """

    allocation_window_seconds: int = Field(
        default=0,
        ge=0,
        description="Seconds after the first deposit of a cycle before it may be allocated",
    )
    min_usd_per_cycle: Decimal = Field(
        default=Decimal("0"),
        ge=Decimal("0"),
        description="Minimum batch value in USD required to close a cycle",
    )
    min_deposit_usd: Decimal = Field(
        default=Decimal("0"),
        ge=Decimal("0"),
        description="Minimum single deposit value in USD",
    )
    dust_threshold_usd: Decimal = Field(
        default=Decimal("0.1"),
        ge=Decimal("0"),
        description="Swaps and rebalance deltas below this USD value are skipped",
    )
    protocol_fee_bps: int = Field(
        default=0,
        ge=0,
        description="Share of positive yield taken as protocol fee, in basis points",
    )
    fee_collector: Optional[str] = Field(
        default=None,
        description="Account receiving protocol fee shares",
    )
    deposit_fee: FeeSettings = Field(
        default_factory=FeeSettings,
        description="Deposit fee settings",
    )

    @field_validator("min_usd_per_cycle", "min_deposit_usd", "dust_threshold_usd", mode="before")
    @classmethod
    def coerce_to_decimal(cls, v):
        return coerce_decimal(v)

    @field_validator("protocol_fee_bps")
    @classmethod
    def check_protocol_fee(cls, v: int) -> int:
        if v > MAX_BPS:
            raise PydanticCustomError(
                "NewValueIsAboveMaxBps",
                "protocol_fee_bps {value} exceeds {limit}",
                {"value": v, "limit": MAX_BPS},
            )
        return v

    @model_validator(mode="after")
    def check_fee_collector(self) -> "RouterConfig":
        if self.protocol_fee_bps > 0 and not self.fee_collector:
            raise PydanticCustomError(
                "FeeCollectorNotSet",
                "protocol_fee_bps > 0 requires a fee_collector",
            )
        return self


class BatchOutConfig(BaseConfig):
    """
    Deferred withdrawal queue configuration.

    Example:
        >>> config = BatchOutConfig(withdrawal_window_seconds=86400)
    """

    withdrawal_window_seconds: int = Field(
        default=0,
        ge=0,
        description="Seconds after the first request before a withdrawal cycle may be executed",
    )
    max_slippage_to_withdraw_in_bps: int = Field(
        default=100,
        ge=0,
        description="Maximum per-token shortfall against the oracle value on settlement",
    )
    withdrawal_fee: FeeSettings = Field(
        default_factory=FeeSettings,
        description="Withdrawal fee settings",
    )

    @field_validator("max_slippage_to_withdraw_in_bps")
    @classmethod
    def check_slippage(cls, v: int) -> int:
        if v > MAX_BPS:
            raise PydanticCustomError(
                "NewValueIsAboveMaxBps",
                "max_slippage_to_withdraw_in_bps {value} exceeds {limit}",
                {"value": v, "limit": MAX_BPS},
            )
        return v
