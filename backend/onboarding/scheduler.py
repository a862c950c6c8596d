"""Recurring automation scan owned by the service process.

A tick that fires while the previous pass is still running is skipped, so
scans never overlap.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

from .automation import AutomationEngine, ScanReport
from .locks import HireLockRegistry
from .logging_config import get_automation_logger
from .settings import AUTOMATION_SCAN_INTERVAL

logger = get_automation_logger()


class AutomationScheduler:
    """Runs ``AutomationEngine.scan`` every ``interval`` seconds."""

    def __init__(
        self,
        engine: AutomationEngine,
        interval: float = AUTOMATION_SCAN_INTERVAL,
        locks: Optional[HireLockRegistry] = None,
    ):
        self.engine = engine
        self.interval = interval
        self.locks = locks
        self.last_report: Optional[ScanReport] = None
        self.skipped_ticks = 0
        self._running = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def scan_in_progress(self) -> bool:
        return self._running.locked()

    async def tick(self) -> Optional[ScanReport]:
        """Run one scan, or return None if a scan is already in progress."""
        if self._running.locked():
            self.skipped_ticks += 1
            logger.warning("Automation tick skipped: previous scan still running")
            return None

        async with self._running:
            try:
                report = await self.engine.scan()
            except Exception as e:
                logger.error(f"Automation scan failed: {e}")
                return None
            self.last_report = report
            if self.locks is not None:
                self.locks.discard_idle()
            return report

    async def _loop(self) -> None:
        logger.info(f"Automation scheduler started (interval={self.interval}s)")
        while True:
            # Scan runs as its own task so a slow pass doesn't delay the timer
            tick = asyncio.create_task(self.tick())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        # Let an in-flight scan finish before shutdown
        async with self._running:
            pass
        logger.info("Automation scheduler stopped")
