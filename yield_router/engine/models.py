"""
Engine data models.

Cycles, strategy registrations, supported tokens and withdrawal requests.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..strategies import Strategy


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class Cycle:
    """
    Closed deposit cycle.

    Attributes:
        id: Cycle id (monotonic, never reused)
        total_deposited_in_usd: Batch value at oracle prices when allocated
        received_by_strategies_in_usd: USD value strategies actually gained
        strategies_balance_with_compound_and_batch_deposits_in_usd: Strategy
            value right after allocation; baseline for the next cycle's yield,
            reduced by later withdrawals
        price_per_share: USD per share used to mint this cycle's shares
        closed_at: Unix time of allocation
        prices: Oracle price of every deposited token at close
    """

    id: int
    total_deposited_in_usd: Decimal
    received_by_strategies_in_usd: Decimal
    strategies_balance_with_compound_and_batch_deposits_in_usd: Decimal
    price_per_share: Decimal
    closed_at: float
    prices: Dict[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Convert values to Decimal if necessary."""
        self.total_deposited_in_usd = _dec(self.total_deposited_in_usd)
        self.received_by_strategies_in_usd = _dec(self.received_by_strategies_in_usd)
        self.strategies_balance_with_compound_and_batch_deposits_in_usd = _dec(
            self.strategies_balance_with_compound_and_batch_deposits_in_usd
        )
        self.price_per_share = _dec(self.price_per_share)
        self.prices = {k: _dec(v) for k, v in self.prices.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "total_deposited_in_usd": str(self.total_deposited_in_usd),
            "received_by_strategies_in_usd": str(self.received_by_strategies_in_usd),
            "strategies_balance_with_compound_and_batch_deposits_in_usd": str(
                self.strategies_balance_with_compound_and_batch_deposits_in_usd
            ),
            "price_per_share": str(self.price_per_share),
            "closed_at": self.closed_at,
            "prices": {k: str(v) for k, v in self.prices.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cycle":
        return cls(
            id=int(data["id"]),
            total_deposited_in_usd=data["total_deposited_in_usd"],
            received_by_strategies_in_usd=data["received_by_strategies_in_usd"],
            strategies_balance_with_compound_and_batch_deposits_in_usd=data[
                "strategies_balance_with_compound_and_batch_deposits_in_usd"
            ],
            price_per_share=data["price_per_share"],
            closed_at=float(data["closed_at"]),
            prices=data.get("prices", {}),
        )


@dataclass
class StrategyInfo:
    """Registered strategy with its relative weight."""

    strategy: Strategy
    deposit_token: str
    weight: int

    @property
    def address(self) -> str:
        return self.strategy.address

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "deposit_token": self.deposit_token,
            "weight": self.weight,
        }


@dataclass
class SupportedToken:
    """Token accepted by the batch, with its idle strategy."""

    token: str
    idle_strategy: Strategy
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "idle_strategy": self.idle_strategy.address,
            "enabled": self.enabled,
        }


@dataclass
class WithdrawalRequest:
    """Pending deferred withdrawal; settled exactly once."""

    cycle_id: int
    owner: str
    shares: Decimal
    token: str
    settled: bool = False
    amount_out: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "owner": self.owner,
            "shares": str(self.shares),
            "token": self.token,
            "settled": self.settled,
            "amount_out": str(self.amount_out) if self.amount_out is not None else None,
        }


@dataclass
class WithdrawalCycle:
    """
    Withdrawal cycle of the deferred queue.

    Lifecycle: open -> executed (funds pulled into the queue) -> fulfilled
    (funds paid out).
    """

    id: int
    requests: List[WithdrawalRequest] = field(default_factory=list)
    started_at: Optional[float] = None
    executed_at: Optional[float] = None
    fulfilled_at: Optional[float] = None
    usd_per_share: Optional[Decimal] = None
    withdrawn_usd: Decimal = Decimal("0")
    received: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def pending_shares(self) -> Decimal:
        return sum((r.shares for r in self.requests), Decimal(0))

    @property
    def is_executed(self) -> bool:
        return self.executed_at is not None

    @property
    def is_fulfilled(self) -> bool:
        return self.fulfilled_at is not None

    def shares_by_token(self) -> Dict[str, Decimal]:
        result: Dict[str, Decimal] = {}
        for request in self.requests:
            result[request.token] = result.get(request.token, Decimal(0)) + request.shares
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "requests": [r.to_dict() for r in self.requests],
            "started_at": self.started_at,
            "executed_at": self.executed_at,
            "fulfilled_at": self.fulfilled_at,
            "usd_per_share": str(self.usd_per_share) if self.usd_per_share is not None else None,
            "withdrawn_usd": str(self.withdrawn_usd),
            "received": {k: str(v) for k, v in self.received.items()},
        }


@dataclass(frozen=True)
class RebalanceMove:
    """One executed transfer or swap of a rebalance or allocation."""

    from_token: str
    to_token: str
    destination: str
    amount_in: Decimal
    amount_out: Decimal

    @property
    def is_swap(self) -> bool:
        return self.from_token != self.to_token
