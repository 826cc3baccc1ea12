"""
Cycle persistence.

SQLite history of closed deposit cycles and fulfilled withdrawal cycles.
Records are written after the enclosing operation committed; apart from the
strategies balance that later withdrawals reduce, they are never changed.
"""

import json
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from ..core import get_logger
from ..core.exceptions import DuplicateError, InvalidRangeError
from ..engine.models import Cycle, WithdrawalCycle

logger = get_logger(__name__)


class CycleRepository:
    """
    SQLite-based cycle history.

    Example:
        >>> repo = CycleRepository(Path("data/cycles.db"))
        >>> repo.save_cycle(cycle)
        >>> repo.get_cycles(0, 10)
    """

    def __init__(self, db_path: Optional[Path] = None):
        self._db_path = Path(db_path) if db_path else Path("data/cycles.db")
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cycles (
                    id INTEGER PRIMARY KEY,
                    closed_at REAL NOT NULL,
                    total_deposited_in_usd TEXT NOT NULL,
                    received_by_strategies_in_usd TEXT NOT NULL,
                    price_per_share TEXT NOT NULL,
                    data_json TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS withdrawal_cycles (
                    id INTEGER PRIMARY KEY,
                    fulfilled_at REAL,
                    withdrawn_usd TEXT NOT NULL,
                    data_json TEXT NOT NULL
                )
            """)
            conn.commit()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # =========================================================================
    # Deposit cycles
    # =========================================================================

    def save_cycle(self, cycle: Cycle) -> None:
        """
        Append a closed cycle.

        Raises:
            DuplicateError: the cycle id is already stored
        """
        with self._get_connection() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO cycles (
                        id, closed_at, total_deposited_in_usd,
                        received_by_strategies_in_usd, price_per_share, data_json
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        cycle.id,
                        cycle.closed_at,
                        str(cycle.total_deposited_in_usd),
                        str(cycle.received_by_strategies_in_usd),
                        str(cycle.price_per_share),
                        json.dumps(cycle.to_dict()),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateError(f"Cycle {cycle.id} already stored", details={"cycle_id": cycle.id}) from e
            conn.commit()
        logger.debug(f"Cycle {cycle.id} saved")

    def update_cycle_balance(self, cycle_id: int, balance: Decimal) -> bool:
        """
        Store the strategies balance of a closed cycle after withdrawals
        reduced it. The other fields of a cycle never change.

        Returns:
            False if the cycle is not stored
        """
        cycle = self.get_cycle(cycle_id)
        if cycle is None:
            logger.warning(f"Cycle {cycle_id} is not stored, balance update skipped")
            return False
        cycle.strategies_balance_with_compound_and_batch_deposits_in_usd = balance
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE cycles SET data_json = ? WHERE id = ?",
                (json.dumps(cycle.to_dict()), cycle_id),
            )
            conn.commit()
        return True

    def get_cycle(self, cycle_id: int) -> Optional[Cycle]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT data_json FROM cycles WHERE id = ?", (cycle_id,)).fetchone()
        return Cycle.from_dict(json.loads(row["data_json"])) if row else None

    def get_cycles(self, start: int, stop: int) -> List[Cycle]:
        """Cycles with id in ``[start, stop)``."""
        if start >= stop:
            raise InvalidRangeError(details={"start": start, "stop": stop})
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT data_json FROM cycles WHERE id >= ? AND id < ? ORDER BY id",
                (start, stop),
            ).fetchall()
        return [Cycle.from_dict(json.loads(row["data_json"])) for row in rows]

    def latest_cycle(self) -> Optional[Cycle]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT data_json FROM cycles ORDER BY id DESC LIMIT 1").fetchone()
        return Cycle.from_dict(json.loads(row["data_json"])) if row else None

    def count_cycles(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM cycles").fetchone()[0]

    # =========================================================================
    # Withdrawal cycles
    # =========================================================================

    def save_withdrawal_cycle(self, cycle: WithdrawalCycle) -> None:
        with self._get_connection() as conn:
            try:
                conn.execute(
                    "INSERT INTO withdrawal_cycles (id, fulfilled_at, withdrawn_usd, data_json) VALUES (?, ?, ?, ?)",
                    (cycle.id, cycle.fulfilled_at, str(cycle.withdrawn_usd), json.dumps(cycle.to_dict())),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateError(
                    f"Withdrawal cycle {cycle.id} already stored", details={"withdrawal_cycle_id": cycle.id}
                ) from e
            conn.commit()

    def get_withdrawal_cycles(self, start: int, stop: int) -> List[Dict[str, Any]]:
        """Stored withdrawal cycles with id in ``[start, stop)``, as dicts."""
        if start >= stop:
            raise InvalidRangeError(details={"start": start, "stop": stop})
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT data_json FROM withdrawal_cycles WHERE id >= ? AND id < ? ORDER BY id",
                (start, stop),
            ).fetchall()
        return [json.loads(row["data_json"]) for row in rows]
