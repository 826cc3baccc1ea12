"""
Transfer planning between token balances and token demands.

Same-token demand is served first so that swaps happen only where a demand
cannot be met from its own token; cross-token transfers below the dust
threshold are skipped.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Sequence


@dataclass(frozen=True)
class Demand:
    """USD amount wanted in ``token`` by ``destination``."""

    destination: str
    token: str
    usd: Decimal


@dataclass(frozen=True)
class PlannedTransfer:
    from_token: str
    to_token: str
    destination: str
    usd: Decimal

    @property
    def is_swap(self) -> bool:
        return self.from_token != self.to_token


def plan_transfers(
    supply: Dict[str, Decimal],
    demand: Sequence[Demand],
    dust_usd: Decimal = Decimal("0"),
) -> List[PlannedTransfer]:
    """
    Match USD supply per token against demands.

    With supply USDC=100, USDT=50 and demands s1:USDC=75, s2:USDT=75 the plan
    is USDC->s1 75, USDT->s2 50, then a single USDC->USDT swap of 25 for s2.
    """
    remaining_supply = {token: usd for token, usd in supply.items() if usd > 0}
    remaining_demand = [d.usd for d in demand]
    transfers: List[PlannedTransfer] = []

    for i, wanted in enumerate(demand):
        available = remaining_supply.get(wanted.token, Decimal(0))
        take = min(available, remaining_demand[i])
        if take > 0:
            transfers.append(PlannedTransfer(wanted.token, wanted.token, wanted.destination, take))
            remaining_supply[wanted.token] = available - take
            remaining_demand[i] -= take

    for i, wanted in enumerate(demand):
        # Largest remaining balances first keeps the number of swaps low
        for token in sorted(remaining_supply, key=lambda t: (-remaining_supply[t], t)):
            if remaining_demand[i] <= 0:
                break
            if token == wanted.token:
                continue
            take = min(remaining_supply[token], remaining_demand[i])
            if take <= 0 or take < dust_usd:
                continue
            transfers.append(PlannedTransfer(token, wanted.token, wanted.destination, take))
            remaining_supply[token] -= take
            remaining_demand[i] -= take

    return transfers
