"""Periodic AQI checks with a skip-if-still-running guard."""

from __future__ import annotations

import asyncio

import structlog

from src.monitor.notifier import AqiNotifier
from src.monitor.types import CycleReport

logger = structlog.get_logger(__name__)


class CheckScheduler:
    """Background task that runs ``AqiNotifier.run_cycle`` every interval.

    A tick that arrives while the previous cycle is still running is skipped
    rather than queued, so cycles never overlap within this process.

    Usage::

        scheduler = CheckScheduler(notifier, interval_secs=900)
        await scheduler.start()
        # ...
        await scheduler.stop()
    """

    def __init__(
        self,
        notifier: AqiNotifier,
        interval_secs: float = 900.0,
        city: str | None = None,
        run_on_start: bool = True,
    ) -> None:
        self._notifier = notifier
        self._interval_secs = interval_secs
        self._city = city
        self._run_on_start = run_on_start
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._cycle_tasks: set[asyncio.Task[CycleReport | None]] = set()
        self._running = False
        self._cycles_run = 0
        self._cycles_skipped = 0
        self._last_report: CycleReport | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def cycles_run(self) -> int:
        return self._cycles_run

    @property
    def cycles_skipped(self) -> int:
        return self._cycles_skipped

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "scheduler_started",
            interval_secs=self._interval_secs,
            city=self._city,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for task in list(self._cycle_tasks):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._cycle_tasks.clear()
        logger.info("scheduler_stopped", cycles_run=self._cycles_run)

    async def run_once(self, force: bool = False) -> CycleReport | None:
        """Run a cycle now unless one is already in progress (then return None)."""
        if self._lock.locked():
            self._cycles_skipped += 1
            logger.warning("scheduler_cycle_skipped", reason="previous_cycle_running")
            return None
        async with self._lock:
            report = await self._notifier.run_cycle(city=self._city, force=force)
            self._cycles_run += 1
            self._last_report = report
            return report

    # ── Internal loop ───────────────────────────────────────────

    def _spawn_cycle(self) -> None:
        task = asyncio.create_task(self.run_once())
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)

    async def _loop(self) -> None:
        first = True
        while self._running:
            try:
                if not first or self._run_on_start:
                    self._spawn_cycle()
            except Exception:
                logger.exception("scheduler_loop_error")
            first = False
            try:
                await asyncio.sleep(self._interval_secs)
            except asyncio.CancelledError:
                return
