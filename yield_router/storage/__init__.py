from .repository import CycleRepository

__all__ = ["CycleRepository"]
