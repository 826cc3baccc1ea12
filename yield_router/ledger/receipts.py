"""
Deposit receipts.

One receipt per batch deposit. The amount can only decrease; the holder,
not necessarily the depositor, redeems it.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, List

from ..access import AccessControl, Role
from ..core.exceptions import (
    InvalidRangeError,
    InvariantError,
    NotFoundError,
    NotReceiptOwnerError,
    ReceiptAmountCannotIncreaseError,
)


@dataclass(frozen=True)
class Receipt:
    """Claim ticket for a deposit, amount in the deposited token's units."""

    id: int
    cycle_id: int
    token: str
    amount: Decimal
    owner: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "cycle_id": self.cycle_id,
            "token": self.token,
            "amount": str(self.amount),
            "owner": self.owner,
        }


class ReceiptRegistry:
    """
    Receipt store with monotonic ids.

    Mint, burn and amount updates require the operator role (batch and
    router); holders transfer their own receipts.
    """

    def __init__(self, access: AccessControl):
        self._access = access
        self._receipts: Dict[int, Receipt] = {}
        self._next_id = 0

    @property
    def next_id(self) -> int:
        return self._next_id

    def exists(self, receipt_id: int) -> bool:
        return receipt_id in self._receipts

    def get(self, receipt_id: int) -> Receipt:
        try:
            return self._receipts[receipt_id]
        except KeyError:
            raise NotFoundError(
                f"Receipt {receipt_id} does not exist",
                code="NonExistingToken",
                details={"receipt_id": receipt_id},
            )

    def owner_of(self, receipt_id: int) -> str:
        return self.get(receipt_id).owner

    def mint(self, caller: str, cycle_id: int, amount: Decimal, token: str, owner: str) -> Receipt:
        self._access.require(caller, Role.OPERATOR)
        if amount <= 0:
            raise InvariantError("Receipt amount must be positive")
        receipt = Receipt(
            id=self._next_id,
            cycle_id=cycle_id,
            token=token,
            amount=amount,
            owner=owner,
        )
        self._receipts[receipt.id] = receipt
        self._next_id += 1
        return receipt

    def set_amount(self, caller: str, receipt_id: int, amount: Decimal) -> Receipt:
        """Decrease a receipt's amount; increases are rejected."""
        self._access.require(caller, Role.OPERATOR)
        receipt = self.get(receipt_id)
        if amount > receipt.amount:
            raise ReceiptAmountCannotIncreaseError(
                details={"receipt_id": receipt_id, "current": str(receipt.amount), "requested": str(amount)}
            )
        if amount < 0:
            raise InvariantError("Receipt amount cannot be negative")
        updated = replace(receipt, amount=amount)
        self._receipts[receipt_id] = updated
        return updated

    def burn(self, caller: str, receipt_id: int) -> None:
        self._access.require(caller, Role.OPERATOR)
        self.get(receipt_id)
        del self._receipts[receipt_id]

    def transfer(self, sender: str, recipient: str, receipt_id: int) -> Receipt:
        receipt = self.get(receipt_id)
        if receipt.owner != sender:
            raise NotReceiptOwnerError(details={"receipt_id": receipt_id, "account": sender})
        updated = replace(receipt, owner=recipient)
        self._receipts[receipt_id] = updated
        return updated

    def receipts_of(self, owner: str) -> List[int]:
        return sorted(rid for rid, r in self._receipts.items() if r.owner == owner)

    def receipt_ids_of_owner_in(self, owner: str, start: int, stop: int) -> List[int]:
        """Ids in ``[start, stop)`` held by ``owner``."""
        if start >= stop:
            raise InvalidRangeError(details={"start": start, "stop": stop})
        return [
            rid for rid in range(start, min(stop, self._next_id))
            if rid in self._receipts and self._receipts[rid].owner == owner
        ]

    def snapshot(self) -> Dict[str, Any]:
        return {"receipts": dict(self._receipts), "next_id": self._next_id}

    def restore(self, state: Dict[str, Any]) -> None:
        self._receipts = dict(state["receipts"])
        self._next_id = state["next_id"]
