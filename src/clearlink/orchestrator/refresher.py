"""Periodic rule refresh task."""

import asyncio
import logging
from typing import Optional

from clearlink.core.constants import DEFAULTS
from clearlink.core.exceptions import RuleError
from clearlink.rules.store import RuleStore


logger = logging.getLogger(__name__)


class RuleRefresher:
    """Single background task that refreshes the rule store on a fixed cadence.

    A failed cycle keeps the active snapshot and is retried on the next
    scheduled cycle, not immediately.
    """

    def __init__(
        self,
        store: RuleStore,
        *,
        interval: float = DEFAULTS["refresh_interval"],
    ) -> None:
        self.store = store
        self.interval = interval
        self._running = False
        self._worker_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._worker_task = asyncio.create_task(self._run(), name="rule-refresher")
        logger.info(f"Rule refresher started (every {self.interval}s)")

    async def stop(self) -> None:
        self._running = False
        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
        logger.info("Rule refresher stopped")

    async def refresh_once(self) -> Optional[int]:
        """Run one refresh cycle.

        Returns:
            New snapshot version, or None if the cycle failed
        """
        try:
            return await self.store.refresh_from_source()
        except RuleError as e:
            logger.error(f"Scheduled rule refresh failed ({type(e).__name__}): {e}")
            return None

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            await self.refresh_once()
