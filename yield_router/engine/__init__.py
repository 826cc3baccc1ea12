from .batch import Batch, calculate_fee_in_usd, fee_in_native
from .batch_out import BatchOut
from .models import (
    Cycle,
    RebalanceMove,
    StrategyInfo,
    SupportedToken,
    WithdrawalCycle,
    WithdrawalRequest,
)
from .planner import Demand, PlannedTransfer, plan_transfers
from .registry import StrategyRegistry
from .router import StrategyRouter

__all__ = [
    "Batch",
    "BatchOut",
    "StrategyRouter",
    "StrategyRegistry",
    "Cycle",
    "RebalanceMove",
    "StrategyInfo",
    "SupportedToken",
    "WithdrawalCycle",
    "WithdrawalRequest",
    "Demand",
    "PlannedTransfer",
    "plan_transfers",
    "calculate_fee_in_usd",
    "fee_in_native",
]
