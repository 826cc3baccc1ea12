# Mock classes for testing
"""Test doubles for swap venues, yield strategies and time."""

from .clock_mock import FakeClock
from .strategy_mock import MockYieldStrategy
from .swap_mock import MockSwapPlugin

__all__ = [
    "MockSwapPlugin",
    "MockYieldStrategy",
    "FakeClock",
]
