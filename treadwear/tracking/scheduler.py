"""Background scheduler for session auto-management.

Runs ``AutoManagementController.run_tick`` on a fixed interval inside an
asyncio task.  Ticks run one after another and the controller's run-guard
rejects any overlap, so a slow tick delays the next one rather than running
alongside it.  Scheduling is best-effort and coarse (seconds to minutes).

Usage::

    scheduler = AutoManagementScheduler(controller, interval_seconds=300)
    scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime

from treadwear.tracking.auto_manager import AutoManagementController, TickResult
from treadwear.tracking.clock import Clock, SystemClock

logger = logging.getLogger("treadwear.tracking.scheduler")

DEFAULT_TICK_INTERVAL_SECONDS = 300


class AutoManagementScheduler:
    """Periodically trigger auto-management ticks.

    Args:
        controller:       Controller whose ``run_tick`` is invoked.
        interval_seconds: Delay between the end of one tick and the start of the next.
        clock:            Time source for ``last_tick_at``.
    """

    def __init__(
        self,
        controller: AutoManagementController,
        interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._controller = controller
        self._interval = interval_seconds
        self._clock = clock or SystemClock()
        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()
        self.ticks_run = 0
        self.last_tick_at: datetime | None = None
        self.last_result: TickResult | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the tick loop in the running event loop.  No-op if already running."""
        if self.running:
            logger.debug("Auto-management scheduler already running")
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="treadwear-auto-management")
        logger.info("Auto-management scheduler started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        """Stop scheduling further ticks and wait for the loop to exit."""
        if self._task is None:
            return
        self._stop.set()
        task, self._task = self._task, None
        try:
            await asyncio.wait_for(task, timeout=self._interval)
        except asyncio.TimeoutError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Auto-management scheduler stopped after %d tick(s)", self.ticks_run)

    async def run_once(self) -> TickResult | None:
        """Run one tick now.  Failures are logged and return None."""
        try:
            result = await self._controller.run_tick()
        except Exception:
            logger.exception("Auto-management tick failed")
            return None
        self.ticks_run += 1
        self.last_tick_at = self._clock.now()
        self.last_result = result
        if result.errors:
            logger.warning(
                "Auto-management tick finished with %d error(s): %s",
                len(result.errors),
                "; ".join(result.errors[:3]),
            )
        return result

    async def _loop(self) -> None:
        while not self._stop.is_set():
            await self.run_once()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
