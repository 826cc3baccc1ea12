"""
Yield Router.

Cycle-based allocation and accounting engine for pooled stablecoin deposits.
"""

__version__ = "0.1.0"
