"""Periodic task runner with cancellation, re-entrancy guard and cycle budget.

``PeriodicTask`` wraps an async callable and drives it on a fixed cadence.
At most one run is in flight at a time: a tick that fires while the
previous run is still executing is skipped rather than queued. Each run
is raced against a wall-clock budget; a run that exceeds it is cancelled
and reported as failed, and the next tick proceeds independently.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class TickOutcome(str, Enum):
    """Result of a single tick."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


@dataclass
class TaskStats:
    """Counters for a periodic task."""

    runs_started: int = 0
    runs_completed: int = 0
    runs_failed: int = 0
    runs_timed_out: int = 0
    ticks_skipped: int = 0
    last_duration_seconds: float = 0.0
    last_error: str | None = None


class PeriodicTask:
    """Run an async job every ``interval_seconds``.

    Example:
        ```python
        task = PeriodicTask("collection", collector.collect_all_snapshots, interval_seconds=300)
        await task.start()
        ...
        await task.stop()
        ```

    Tests drive the job directly through ``tick()`` without waiting on
    the wall clock.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[object]],
        *,
        interval_seconds: float,
        initial_delay_seconds: float = 0.0,
        timeout_seconds: float | None = None,
        on_outcome: Callable[[TickOutcome], None] | None = None,
    ) -> None:
        self.name = name
        self._func = func
        self._on_outcome = on_outcome
        self._interval = interval_seconds
        self._initial_delay = initial_delay_seconds
        self._timeout = timeout_seconds

        self._running = False
        self._stats = TaskStats()
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._inflight: set[asyncio.Task[TickOutcome]] = set()

    @property
    def stats(self) -> TaskStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        """True while a run of the job is in flight."""
        return self._running

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> TickOutcome:
        """Run the job once, honouring the re-entrancy guard and budget.

        Returns:
            How the run ended. Exceptions from the job are logged and
            counted, never propagated.
        """
        outcome = await self._run_once()
        if self._on_outcome is not None:
            try:
                self._on_outcome(outcome)
            except Exception as e:
                logger.warning("%s outcome callback failed: %s", self.name, e)
        return outcome

    async def _run_once(self) -> TickOutcome:
        if self._running:
            self._stats.ticks_skipped += 1
            logger.warning("Skipping %s tick: previous run still in progress", self.name)
            return TickOutcome.SKIPPED

        self._running = True
        self._stats.runs_started += 1
        started = time.monotonic()
        try:
            if self._timeout is not None:
                await asyncio.wait_for(self._func(), timeout=self._timeout)
            else:
                await self._func()
        except TimeoutError:
            self._stats.runs_timed_out += 1
            self._stats.runs_failed += 1
            self._stats.last_error = f"exceeded {self._timeout:g}s budget"
            logger.error("%s run exceeded its %.1fs budget and was abandoned", self.name, self._timeout)
            return TickOutcome.TIMED_OUT
        except Exception as e:
            self._stats.runs_failed += 1
            self._stats.last_error = str(e)
            logger.error("%s run failed: %s", self.name, e)
            return TickOutcome.FAILED
        finally:
            self._stats.last_duration_seconds = time.monotonic() - started
            self._running = False

        self._stats.runs_completed += 1
        self._stats.last_error = None
        return TickOutcome.COMPLETED

    async def start(self) -> None:
        """Start the background ticker."""
        if self.is_started:
            logger.warning("Cannot start %s: already running", self.name)
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("%s scheduled every %.1fs", self.name, self._interval)

    async def stop(self, *, drain: bool = True) -> None:
        """Stop the ticker.

        Args:
            drain: Wait for an in-flight run to finish instead of cancelling it.
        """
        self._stop_event.set()
        if self._inflight:
            if drain:
                await asyncio.gather(*self._inflight, return_exceptions=True)
            else:
                for task in self._inflight:
                    task.cancel()
                await asyncio.gather(*self._inflight, return_exceptions=True)
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("%s stopped", self.name)

    async def _wait(self, seconds: float) -> bool:
        """Sleep unless stopped. Returns True when the stop event fired."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except TimeoutError:
            return False

    async def _loop(self) -> None:
        if self._initial_delay > 0 and await self._wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            # Runs are spawned rather than awaited so a slow run does not
            # delay the cadence; overlapping ticks hit the guard and skip.
            task = asyncio.create_task(self.tick())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            if await self._wait(self._interval):
                break
