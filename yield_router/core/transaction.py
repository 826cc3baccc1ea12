"""
Atomic operation boundaries.

Every state-mutating engine operation runs inside ``TransactionManager.atomic``:
participants are snapshotted on entry and restored if anything raises, so a
failed operation leaves no trace. Nested calls join the outer transaction.
"""

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, runtime_checkable

from .logger import get_logger
from .structured_logging import EventType, get_accounting_logger, operation_context

logger = get_logger(__name__)


@runtime_checkable
class Snapshotable(Protocol):
    """State holder that can be captured and restored."""

    def snapshot(self) -> Any: ...

    def restore(self, state: Any) -> None: ...


class TransactionStatus(Enum):
    """
    Status of an engine transaction.

    Lifecycle: EXECUTING -> COMMITTED or ROLLED_BACK or FAILED
    """

    EXECUTING = "executing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"  # Restoring a participant raised


@dataclass
class Transaction:
    """One atomic engine operation."""

    operation: str
    transaction_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: Optional[str] = None
    status: TransactionStatus = TransactionStatus.EXECUTING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    pre_state_snapshot: Dict[str, Any] = field(default_factory=dict, repr=False)
    error_message: Optional[str] = None
    _on_commit: List[Callable[[], None]] = field(default_factory=list, repr=False)

    @property
    def is_completed(self) -> bool:
        return self.status != TransactionStatus.EXECUTING

    @property
    def is_successful(self) -> bool:
        return self.status == TransactionStatus.COMMITTED

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the outermost operation commits."""
        self._on_commit.append(callback)

    def mark_committed(self) -> None:
        self.status = TransactionStatus.COMMITTED
        self.completed_at = datetime.now(timezone.utc)
        self.pre_state_snapshot = {}

    def mark_rolled_back(self, reason: str) -> None:
        self.status = TransactionStatus.ROLLED_BACK
        self.completed_at = datetime.now(timezone.utc)
        self.error_message = reason
        self.pre_state_snapshot = {}

    def mark_failed(self, reason: str) -> None:
        self.status = TransactionStatus.FAILED
        self.completed_at = datetime.now(timezone.utc)
        self.error_message = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "operation": self.operation,
            "correlation_id": self.correlation_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
        }


class TransactionManager:
    """
    Snapshot/restore coordinator for engine state.

    Example:
        >>> tm = TransactionManager()
        >>> tm.register("tokens", ledger)
        >>> with tm.atomic("deposit") as tx:
        ...     ledger.transfer("USDC", "alice", "batch", amount)
        ...     tx.on_commit(lambda: print("done"))
    """

    def __init__(self, max_history: int = 100):
        self._participants: Dict[str, Snapshotable] = {}
        self._current: Optional[Transaction] = None
        self._transaction_history: List[Transaction] = []
        self._max_history = max_history
        self._accounting = get_accounting_logger("transactions")

    def register(self, name: str, participant: Snapshotable) -> None:
        if self._current is not None:
            raise RuntimeError("Cannot register participants inside a transaction")
        self._participants[name] = participant

    def unregister(self, name: str) -> None:
        self._participants.pop(name, None)

    @property
    def participants(self) -> List[str]:
        return list(self._participants)

    @property
    def in_transaction(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> Optional[Transaction]:
        return self._current

    @contextmanager
    def atomic(self, operation: str) -> Iterator[Transaction]:
        """Run the block as one all-or-nothing unit."""
        if self._current is not None:
            yield self._current
            return

        with operation_context(operation) as correlation_id:
            tx = Transaction(
                operation=operation,
                correlation_id=correlation_id,
                pre_state_snapshot={
                    name: participant.snapshot() for name, participant in self._participants.items()
                },
            )
            self._current = tx
            try:
                yield tx
            except BaseException as e:
                self._rollback(tx, e)
                raise
            else:
                tx_callbacks = list(tx._on_commit)
                tx.mark_committed()
                self._current = None
                self._finish(tx)
                logger.debug(f"Transaction {tx.transaction_id[:8]} ({operation}) committed")
                for callback in tx_callbacks:
                    callback()
            finally:
                self._current = None

    def _rollback(self, tx: Transaction, error: BaseException) -> None:
        reason = f"{type(error).__name__}: {error}"
        try:
            for name, participant in self._participants.items():
                if name in tx.pre_state_snapshot:
                    participant.restore(tx.pre_state_snapshot[name])
        except Exception as restore_error:
            logger.error(f"Rollback failed for {tx.transaction_id[:8]}: {restore_error}")
            tx.mark_failed(f"Rollback failed: {restore_error}")
            self._finish(tx)
            raise
        tx.mark_rolled_back(reason)
        self._finish(tx)
        logger.warning(f"Transaction {tx.transaction_id[:8]} ({tx.operation}) rolled back: {reason}")
        self._accounting.warning(
            EventType.TRANSACTION_ROLLED_BACK,
            f"{tx.operation} rolled back",
            transaction_id=tx.transaction_id,
            operation=tx.operation,
            reason=reason,
        )

    def _finish(self, tx: Transaction) -> None:
        self._transaction_history.append(tx)
        if len(self._transaction_history) > self._max_history:
            self._transaction_history = self._transaction_history[-self._max_history:]

    # =========================================================================
    # Query Methods
    # =========================================================================

    def get_transaction_history(
        self,
        limit: int = 50,
        status: Optional[TransactionStatus] = None,
    ) -> List[Transaction]:
        """Transactions newest first, optionally filtered by status."""
        history = self._transaction_history
        if status:
            history = [tx for tx in history if tx.status == status]
        return history[-limit:][::-1]

    def get_status(self) -> Dict[str, Any]:
        return {
            "in_transaction": self.in_transaction,
            "participants": self.participants,
            "history_count": len(self._transaction_history),
        }
