"""Fixed-interval runner that drives poll cycles until asked to stop."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from bods_loki.errors import AllLinesFailedError
from bods_loki.logging import get_logger

if TYPE_CHECKING:
    import structlog

logger = get_logger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Scheduler:
    """Runs ``cycle`` once immediately and then once per interval tick.

    Ticks that pass while a slow cycle is still running are skipped, not
    queued. When the stop event is set during a cycle, the cycle is cancelled
    at once, which reaches its in-flight requests, and is given
    ``grace_period`` to unwind before it is abandoned. Its data is dropped.

    Usage:
        scheduler = Scheduler(pipeline.process_cycle, interval, grace)
        await scheduler.start()   # launches background task
        await scheduler.stop()    # signals stop and waits for shutdown

        # Or drive it with an event you own:
        await scheduler.run(stop_event)
    """

    def __init__(
        self,
        cycle: Callable[[], Awaitable[Any]],
        interval: timedelta,
        grace_period: timedelta,
        *,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._cycle = cycle
        self._interval = interval.total_seconds()
        self._grace = max(grace_period.total_seconds(), 0.0)
        self._log = log or logger

        self._state = PipelineState.IDLE
        self._cycle_count = 0
        self._last_cycle_at: datetime | None = None
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in (PipelineState.RUNNING, PipelineState.STOPPING)

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def last_cycle_at(self) -> datetime | None:
        return self._last_cycle_at

    async def start(self) -> None:
        """Start the polling loop as a background task."""
        if self._task is not None and not self._task.done():
            self._log.warning("Scheduler already running, ignoring start request")
            return

        self._stop_event = asyncio.Event()
        self._state = PipelineState.RUNNING
        self._task = asyncio.create_task(self.run(self._stop_event))

    async def stop(self) -> None:
        """Signal the background loop to stop and wait for it to wind down."""
        if self._task is None or self._stop_event is None:
            return

        self._stop_event.set()
        task, self._task = self._task, None
        await task

    async def get_status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "running": self.is_running,
            "cycle_count": self._cycle_count,
            "last_cycle_at": self._last_cycle_at.isoformat() if self._last_cycle_at else None,
            "interval_sec": self._interval,
            "grace_period_sec": self._grace,
        }

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run cycles until ``stop_event`` is set."""
        if self._interval <= 0:
            msg = f"poll interval must be positive, got {self._interval}s"
            raise ValueError(msg)

        loop = asyncio.get_running_loop()
        self._state = PipelineState.RUNNING
        self._log.info("Scheduler started", interval_sec=self._interval)

        next_tick = loop.time()
        try:
            while not stop_event.is_set():
                if not await self._run_cycle(stop_event):
                    break

                next_tick += self._interval
                now = loop.time()
                if next_tick <= now:
                    skipped = int((now - next_tick) // self._interval) + 1
                    next_tick += skipped * self._interval
                    self._log.warning("Cycle overran interval, skipping ticks", skipped=skipped)

                if await self._wait_for_stop(stop_event, next_tick - now):
                    break
        finally:
            self._state = PipelineState.STOPPED
            self._log.info("Scheduler stopped", cycle_count=self._cycle_count)

    async def _run_cycle(self, stop_event: asyncio.Event) -> bool:
        """Run one cycle; returns False if a stop cut it short."""
        self._cycle_count += 1
        self._last_cycle_at = datetime.now(timezone.utc)

        cycle = asyncio.create_task(self._guarded_cycle())
        stopper = asyncio.create_task(stop_event.wait())
        try:
            done, _ = await asyncio.wait({cycle, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            cycle.cancel()
            raise
        finally:
            stopper.cancel()

        if cycle in done:
            return True

        self._state = PipelineState.STOPPING
        self._log.info("Stop requested, cancelling in-flight cycle", grace_period_sec=self._grace)
        cycle.cancel()
        done, _ = await asyncio.wait({cycle}, timeout=self._grace)
        if not done:
            self._log.warning(
                "In-flight cycle did not unwind within grace period, abandoning it",
                grace_period_sec=self._grace,
            )
        return False

    async def _guarded_cycle(self) -> None:
        try:
            await self._cycle()
        except AllLinesFailedError as exc:
            self._log.error("Poll cycle failed", error=str(exc))
        except Exception as exc:
            self._log.error("Poll cycle failed unexpectedly", exc_info=exc)

    @staticmethod
    async def _wait_for_stop(stop_event: asyncio.Event, delay: float) -> bool:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=max(delay, 0.0))
        except asyncio.TimeoutError:
            return False
        return True
