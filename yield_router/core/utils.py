"""
Utility functions for Yield Router.

Decimal arithmetic with explicit rounding direction, basis point helpers and
time helpers.
"""

import time
from decimal import ROUND_DOWN, ROUND_UP, Decimal, localcontext
from typing import Any

from .constants import MAX_BPS, USD_DECIMALS

# Working precision for intermediate products, wide enough that only the
# final quantize step ever rounds
WORKING_PRECISION = 60


# =============================================================================
# Time-related functions
# =============================================================================


def now_timestamp() -> float:
    """Current unix time in seconds."""
    return time.time()


# =============================================================================
# Numeric functions
# =============================================================================


def to_decimal(value: Any) -> Decimal:
    """
    Convert a value to Decimal without float artifacts.

    Example:
        >>> to_decimal(0.1)
        Decimal('0.1')
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_decimal(
    value: Decimal,
    precision: int,
    rounding: str = ROUND_DOWN,
) -> Decimal:
    """
    Round a Decimal to specified precision.

    Args:
        value: Decimal value to round
        precision: Number of decimal places
        rounding: Rounding mode (default ROUND_DOWN)

    Returns:
        Rounded Decimal

    Example:
        >>> round_decimal(Decimal("123.456"), 2)
        Decimal('123.45')
        >>> round_decimal(Decimal("123.451"), 2, ROUND_UP)
        Decimal('123.46')
    """
    if precision < 0:
        precision = 0

    quantize_str = "1." + "0" * precision if precision > 0 else "1"
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        return value.quantize(Decimal(quantize_str), rounding=rounding)


def mul_div(
    a: Decimal,
    b: Decimal,
    denominator: Decimal,
    precision: int = USD_DECIMALS,
    rounding: str = ROUND_DOWN,
) -> Decimal:
    """
    Compute ``a * b / denominator`` and round once at ``precision``.

    Example:
        >>> mul_div(Decimal("1"), Decimal("2"), Decimal("3"), 4)
        Decimal('0.6666')
        >>> mul_div(Decimal("1"), Decimal("2"), Decimal("3"), 4, ROUND_UP)
        Decimal('0.6667')
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        result = a * b / denominator
    return round_decimal(result, precision, rounding)


def div_up(a: Decimal, b: Decimal, precision: int = USD_DECIMALS) -> Decimal:
    """Divide rounding away from zero at ``precision``."""
    return mul_div(a, Decimal(1), b, precision, ROUND_UP)


def div_down(a: Decimal, b: Decimal, precision: int = USD_DECIMALS) -> Decimal:
    """Divide rounding toward zero at ``precision``."""
    return mul_div(a, Decimal(1), b, precision, ROUND_DOWN)


def apply_bps(
    amount: Decimal,
    bps: int | Decimal,
    precision: int = USD_DECIMALS,
    rounding: str = ROUND_DOWN,
) -> Decimal:
    """
    Take ``bps`` basis points of ``amount``.

    Example:
        >>> apply_bps(Decimal("1000"), 25, 2)
        Decimal('2.50')
    """
    return mul_div(amount, Decimal(bps), Decimal(MAX_BPS), precision, rounding)


def deviation_bps(expected: Decimal, received: Decimal) -> Decimal:
    """
    Absolute deviation of ``received`` from ``expected`` in basis points.

    Example:
        >>> deviation_bps(Decimal("100"), Decimal("95"))
        Decimal('500')
    """
    if expected == 0:
        return Decimal(0) if received == 0 else Decimal(MAX_BPS)
    with localcontext() as ctx:
        ctx.prec = WORKING_PRECISION
        return abs(received - expected) * MAX_BPS / expected
