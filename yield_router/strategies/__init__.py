from .base import Strategy
from .idle import IdleStrategy

__all__ = ["Strategy", "IdleStrategy"]
