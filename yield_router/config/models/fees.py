"""
Fee Configuration Model.

USD-bounded fee charged on deposits and scheduled withdrawals, paid in the
native side currency.
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from ...core.constants import MAX_FEE_BPS_THRESHOLD, MAX_FEE_IN_USD_THRESHOLD
from .base import BaseConfig, coerce_decimal


class FeeSettings(BaseConfig):
    """
    Fee settings: ``min(max(amount_usd * bps, min_fee), max_fee)``.

    Example:
        >>> fees = FeeSettings(
        ...     fee_in_bps=25,
        ...     min_fee_in_usd=Decimal("0.15"),
        ...     max_fee_in_usd=Decimal("1"),
        ...     fee_treasury="treasury",
        ... )
    """

    fee_in_bps: int = Field(
        default=0,
        ge=0,
        description="Fee in basis points of the USD amount",
    )
    min_fee_in_usd: Decimal = Field(
        default=Decimal("0"),
        ge=Decimal("0"),
        description="Lower bound of the fee in USD",
    )
    max_fee_in_usd: Decimal = Field(
        default=Decimal("0"),
        ge=Decimal("0"),
        description="Upper bound of the fee in USD",
    )
    fee_treasury: Optional[str] = Field(
        default=None,
        description="Account receiving fees",
    )

    @field_validator("min_fee_in_usd", "max_fee_in_usd", mode="before")
    @classmethod
    def coerce_to_decimal(cls, v):
        return coerce_decimal(v)

    @field_validator("fee_in_bps")
    @classmethod
    def check_bps(cls, v: int) -> int:
        if v > MAX_FEE_BPS_THRESHOLD:
            raise PydanticCustomError(
                "FeePercentExceedsMaximum",
                "fee_in_bps {value} exceeds {limit}",
                {"value": v, "limit": MAX_FEE_BPS_THRESHOLD},
            )
        return v

    @field_validator("max_fee_in_usd")
    @classmethod
    def check_max_fee(cls, v: Decimal) -> Decimal:
        if v > MAX_FEE_IN_USD_THRESHOLD:
            raise PydanticCustomError(
                "MaxFeeExceedsThreshold",
                "max_fee_in_usd {value} exceeds {limit} USD",
                {"value": str(v), "limit": str(MAX_FEE_IN_USD_THRESHOLD)},
            )
        return v

    @model_validator(mode="after")
    def check_consistency(self) -> "FeeSettings":
        if self.min_fee_in_usd > self.max_fee_in_usd:
            raise PydanticCustomError(
                "MinFeeExceedsMaxFee",
                "min_fee_in_usd must not exceed max_fee_in_usd",
            )
        if self.fee_in_bps > 0 and self.max_fee_in_usd == 0:
            raise PydanticCustomError(
                "MaxFeeRequiredForBps",
                "fee_in_bps > 0 requires max_fee_in_usd > 0",
            )
        if self.charges_fee and not self.fee_treasury:
            raise PydanticCustomError(
                "FeeTreasuryNotSet",
                "a non-zero fee requires a fee treasury",
            )
        return self

    @property
    def charges_fee(self) -> bool:
        return self.fee_in_bps > 0 or self.min_fee_in_usd > 0
