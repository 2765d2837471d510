"""
PriceWatch - Reconciliation Scheduler

Runs a reconciliation pass once at start and then on a fixed interval.

Passes never overlap: a tick that arrives while a pass is still running is
skipped and logged. Two concurrent passes would race on history appends and
extrema for the same listings.

Shutdown lets the in-flight pass finish instead of cancelling it, so no
listing is abandoned mid-write.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime, timezone
from typing import Any

import structlog

from src.config import settings

logger = structlog.get_logger(__name__)


class Scheduler:
    """
    Process-owned timer for reconciliation passes.

    Usage:
        scheduler = Scheduler(engine)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        engine: Any,
        interval_seconds: float | None = None,
        run_on_start: bool | None = None,
    ) -> None:
        self.engine = engine
        self._interval = (
            interval_seconds if interval_seconds is not None
            else settings.RECONCILE_INTERVAL_MINUTES * 60
        )
        self._run_on_start = run_on_start if run_on_start is not None else settings.RECONCILE_RUN_ON_START
        self._shutdown_event = asyncio.Event()
        self._running = False
        self._current: asyncio.Task | None = None
        self._loop_task: asyncio.Task | None = None

        self.last_run: datetime | None = None
        self.last_report: Any = None
        self.runs_completed = 0
        self.ticks_skipped = 0

    @property
    def is_running(self) -> bool:
        """True while a reconciliation pass is in progress."""
        return self._running

    async def trigger(self) -> Any:
        """
        Run one pass now unless one is already in progress.

        Returns:
            The pass report, or None if skipped or the pass crashed.
        """
        if self._running:
            self.ticks_skipped += 1
            logger.warning(
                "scheduler_tick_skipped",
                reason="reconciliation still running",
                ticks_skipped=self.ticks_skipped,
            )
            return None

        self._running = True
        try:
            report = await self.engine.run_once()
            self.last_report = report
            self.runs_completed += 1
            return report
        except Exception as e:
            logger.error(
                "scheduler_run_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        finally:
            self._running = False
            self.last_run = datetime.now(timezone.utc)

    def _tick(self) -> None:
        """Start a pass in the background so the timer keeps its cadence."""
        if self._running:
            self.ticks_skipped += 1
            logger.warning(
                "scheduler_tick_skipped",
                reason="reconciliation still running",
                ticks_skipped=self.ticks_skipped,
            )
            return
        self._current = asyncio.create_task(self.trigger())

    async def run(self) -> None:
        """
        Main scheduler loop. Runs until stop() is called.

        On exit, waits for the in-flight pass to complete.
        """
        logger.info(
            "scheduler_started",
            interval_seconds=self._interval,
            run_on_start=self._run_on_start,
        )

        if self._run_on_start:
            self._tick()

        try:
            while not self._shutdown_event.is_set():
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    # Interval elapsed without a shutdown signal
                    self._tick()
        except asyncio.CancelledError:
            logger.info("scheduler_cancelled")
            raise
        finally:
            if self._current is not None and not self._current.done():
                logger.info("scheduler_waiting_for_current_run")
                await asyncio.shield(self._current)
            logger.info("scheduler_stopped", runs_completed=self.runs_completed)

    def start(self) -> asyncio.Task:
        """Run the loop as a background task."""
        if self._loop_task is None or self._loop_task.done():
            self._shutdown_event.clear()
            self._loop_task = asyncio.create_task(self.run())
        return self._loop_task

    def request_stop(self) -> None:
        """Ask the loop to exit after the in-flight pass, without waiting."""
        logger.info("scheduler_shutdown_requested")
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Signal shutdown and wait for the loop (and any in-flight pass) to end."""
        self.request_stop()
        if self._loop_task is not None:
            await self._loop_task


async def run_scheduler(engine: Any) -> None:
    """
    Run the scheduler in the foreground with graceful shutdown handling.

    Registers SIGTERM/SIGINT handlers to trigger shutdown.

    Args:
        engine: ReconciliationEngine (anything with `async run_once()`).
    """
    scheduler = Scheduler(engine)

    def handle_signal(_signum: int, _frame: Any) -> None:
        """Called by SIGTERM/SIGINT."""
        logger.info("scheduler_signal_received")
        scheduler.request_stop()

    loop = asyncio.get_running_loop()

    # Platform-dependent signal handling
    try:
        loop.add_signal_handler(signal.SIGTERM, handle_signal, signal.SIGTERM, None)
        loop.add_signal_handler(signal.SIGINT, handle_signal, signal.SIGINT, None)
    except NotImplementedError:
        # Windows doesn't support add_signal_handler for all signals
        logger.warning("signal_handlers_not_supported_on_platform")

    try:
        await scheduler.run()
    except Exception as e:
        logger.error("scheduler_fatal_error", error=str(e), error_type=type(e).__name__)
        raise
