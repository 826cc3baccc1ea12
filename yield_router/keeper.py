"""
Upkeep keeper.

Background service that polls the router and the withdrawal queue and
triggers their upkeep once it is due. A failed upkeep is logged and tried
again on the next poll; the engine itself never retries.
"""

import asyncio
from typing import Any, Dict, Optional

from .config.models import KeeperConfig
from .core import get_logger, operation_context
from .core.exceptions import RouterError
from .engine import BatchOut, StrategyRouter

logger = get_logger(__name__)


class UpkeepKeeper:
    """
    Polls ``check_upkeep`` and calls ``perform_upkeep``.

    Example:
        >>> keeper = UpkeepKeeper(router, batch_out, KeeperConfig(poll_interval_seconds=30))
        >>> await keeper.start()
        >>> ...
        >>> await keeper.stop()
    """

    def __init__(
        self,
        router: StrategyRouter,
        batch_out: Optional[BatchOut] = None,
        config: Optional[KeeperConfig] = None,
    ):
        self._router = router
        self._batch_out = batch_out
        self._config = config or KeeperConfig()

        self._running = False
        self._monitor_task: Optional[asyncio.Task] = None
        self._runs = 0
        self._failures = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def config(self) -> KeeperConfig:
        return self._config

    # =========================================================================
    # Lifecycle Methods
    # =========================================================================

    async def start(self) -> None:
        if self._running:
            logger.warning("UpkeepKeeper is already running")
            return

        logger.info(f"Starting UpkeepKeeper (every {self._config.poll_interval_seconds}s)")
        self._running = True
        self._monitor_task = asyncio.create_task(self._monitor_loop())

    async def stop(self) -> None:
        if not self._running:
            logger.warning("UpkeepKeeper is not running")
            return

        self._running = False
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None
        logger.info("UpkeepKeeper stopped")

    async def _monitor_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._config.poll_interval_seconds)
                if not self._running:
                    break
                self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in upkeep loop: {e}")

    # =========================================================================
    # Upkeep
    # =========================================================================

    def run_once(self) -> Dict[str, bool]:
        """
        Run every due upkeep once.

        Returns:
            Which upkeeps ran successfully, keyed ``allocation`` and
            ``withdrawals``
        """
        self._runs += 1
        with operation_context("upkeep", account="keeper"):
            return self._run_upkeeps()

    def _run_upkeeps(self) -> Dict[str, bool]:
        result = {"allocation": False, "withdrawals": False}

        try:
            if self._router.check_upkeep():
                cycle = self._router.perform_upkeep()
                logger.info(f"Upkeep allocated cycle {cycle.id}")
                result["allocation"] = True
        except RouterError as e:
            self._failures += 1
            logger.error(f"Allocation upkeep failed: {e}")

        if self._batch_out is not None:
            try:
                if self._batch_out.check_upkeep():
                    fulfilled = self._batch_out.perform_upkeep()
                    logger.info(f"Upkeep settled withdrawal cycles {fulfilled}")
                    result["withdrawals"] = True
            except RouterError as e:
                self._failures += 1
                logger.error(f"Withdrawal upkeep failed: {e}")

        return result

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "poll_interval_seconds": self._config.poll_interval_seconds,
            "runs": self._runs,
            "failures": self._failures,
        }
