"""
Interval Scheduler for Monitoring Cycles

Provides ScheduledLoop, which fires an async callback every interval,
accounting for callback execution time so cycles don't drift.

Stopping never interrupts a callback that is already running: the timer
is halted and the in-flight cycle is allowed to finish.

Usage:
    async def run_cycle():
        ...

    loop = ScheduledLoop(120.0, run_cycle, name="offline-detector")
    await loop.start()

    # Later:
    loop.stop()
    await loop.wait_stopped()
"""

import asyncio
import time
from typing import Awaitable, Callable, Iterable, TypeVar

from .logging_setup import get_service_logger

logger = get_service_logger("scheduler")

T = TypeVar("T")
R = TypeVar("R")


class ScheduledLoop:
    """
    Interval scheduler that accounts for execution time.

    The next run is scheduled relative to the original schedule, not
    relative to when the callback finished. Missed intervals are skipped,
    never queued.

    Attributes:
        interval: The interval in seconds between executions
        callback: Async function to call each interval
        run_immediately: Fire the first cycle at start instead of after one interval
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[object]],
        name: str = "unnamed",
        run_immediately: bool = True,
    ):
        self.interval = interval_seconds
        self.callback = callback
        self.name = name
        self.run_immediately = run_immediately

        self._next_run: float = 0
        self._running = False
        self._in_callback = False
        self._task: asyncio.Task | None = None

        # Observability metrics
        self._skipped_count: int = 0
        self._execution_count: int = 0
        self._error_count: int = 0
        self._last_execution_time: float = 0
        self._last_drift_ms: float = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def interval_active(self) -> bool:
        """True while the timer task exists (it may be finishing a cycle)."""
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the loop in a background task. No-op if already running."""
        if self._running:
            return

        self._running = True
        if self.interval_active:
            # Stopped mid-cycle and restarted before the cycle finished
            return
        self._task = asyncio.create_task(self._run(), name=f"scheduled-{self.name}")
        logger.info(f"Scheduler '{self.name}' started (interval: {self.interval}s)")

    def stop(self) -> None:
        """
        Stop the loop.

        If the callback is mid-flight it runs to completion and the loop
        exits afterwards; otherwise the pending sleep is cancelled.
        """
        if not self._running:
            return

        self._running = False
        if self._task and not self._in_callback:
            self._task.cancel()
        logger.info(f"Scheduler '{self.name}' stopped")

    async def wait_stopped(self) -> None:
        """Wait for the background task to exit after stop()."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        finally:
            if self._task is task:
                self._task = None

    async def _run(self) -> None:
        """Main loop that fires callback at fixed intervals."""
        now = time.monotonic()
        self._next_run = now if self.run_immediately else now + self.interval

        while self._running:
            sleep_duration = self._next_run - time.monotonic()
            if sleep_duration > 0:
                await asyncio.sleep(sleep_duration)

            if not self._running:
                break

            self._last_drift_ms = max(0.0, time.monotonic() - self._next_run) * 1000

            self._in_callback = True
            start = time.monotonic()
            try:
                await self.callback()
                self._execution_count += 1
            except Exception as e:
                self._error_count += 1
                logger.error(
                    f"Scheduled callback '{self.name}' error: {e}",
                    exc_info=True,
                )
            finally:
                self._in_callback = False
                self._last_execution_time = time.monotonic() - start

            # Skip missed intervals to catch up
            now = time.monotonic()
            skipped = 0
            while self._next_run <= now:
                self._next_run += self.interval
                skipped += 1

            # First skip is expected (the one we just executed)
            if skipped > 1:
                self._skipped_count += skipped - 1
                logger.warning(
                    f"Scheduler '{self.name}' skipped {skipped - 1} intervals "
                    f"(execution took {self._last_execution_time:.3f}s)"
                )

    @property
    def execution_count(self) -> int:
        """Total number of successful executions."""
        return self._execution_count

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "running": self._running,
            "execution_count": self._execution_count,
            "error_count": self._error_count,
            "drift_last_ms": round(self._last_drift_ms, 1),
            "skipped_count": self._skipped_count,
            "last_execution_s": round(self._last_execution_time, 3),
        }


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    max_concurrency: int,
) -> list[tuple[T, R | Exception]]:
    """
    Run worker over items with at most max_concurrency in flight.

    A failing item yields its exception in place of a result; it never
    cancels or fails its siblings.

    Returns:
        (item, result or exception) pairs in input order
    """
    items = list(items)
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def guarded(item: T) -> R:
        async with semaphore:
            return await worker(item)

    results = await asyncio.gather(*(guarded(item) for item in items), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
    return list(zip(items, results))
