"""
Fixed-interval scheduler that runs at most one collection cycle at a time.

A tick fires every ``interval_s`` seconds regardless of how long the
previous cycle took. Each tick tries to take a single-slot gate: if a cycle
is still running, the tick is dropped (logged as a warning), not queued and
not run late. A failing cycle is logged and the scheduler returns to idle;
nothing a cycle raises can stop the loop.

States::

    IDLE -> RUNNING -> IDLE ... -> STOPPED

``STOPPED`` is entered only after the shutdown event is set and the
in-flight cycle (if any) has been cancelled and has unwound. Cancellation
lands on the awaited HTTP or database call, so a hung request is aborted
promptly; the synchronous steps between awaits are never interrupted.

CHANGELOG:
- 2025-03-16: Abort the in-flight cycle on shutdown
- 2025-03-09: Drop overlapping ticks instead of delaying them
- 2025-03-02: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class CycleScheduler:
    """Run *cycle* every *interval_s* seconds with acquire-or-skip semantics.

    Args:
        cycle: Zero-argument coroutine function performing one cycle.
        interval_s: Seconds between ticks.
        shutdown_event: Event that stops the loop when set.
        run_immediately: Fire the first tick at start instead of after one
            interval.
        on_skip: Optional callback receiving the running count of skipped
            ticks (used to update the health file).
    """

    def __init__(
        self,
        cycle: Callable[[], Awaitable[object]],
        *,
        interval_s: float,
        shutdown_event: asyncio.Event,
        run_immediately: bool = True,
        on_skip: Callable[[int], None] | None = None,
    ) -> None:
        self._cycle = cycle
        self._interval_s = interval_s
        self._shutdown_event = shutdown_event
        self._run_immediately = run_immediately
        self._on_skip = on_skip
        self._gate = asyncio.Lock()
        self._state = SchedulerState.IDLE
        self._skipped_ticks = 0
        self._in_flight: set[asyncio.Task[bool]] = set()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def skipped_ticks(self) -> int:
        """Number of ticks dropped because a cycle was still running."""
        return self._skipped_ticks

    async def tick(self) -> bool:
        """Run one cycle unless another is in progress.

        Returns:
            ``True`` if a cycle ran (successfully or not), ``False`` if the
            tick was skipped.
        """
        # Lock.acquire() on a free lock completes without yielding, so the
        # check and the acquire below cannot interleave with another tick.
        if self._gate.locked():
            self._skipped_ticks += 1
            logger.warning(
                "Previous cycle still running, skipping tick (%d skipped so far)",
                self._skipped_ticks,
            )
            if self._on_skip is not None:
                self._on_skip(self._skipped_ticks)
            return False

        async with self._gate:
            self._state = SchedulerState.RUNNING
            try:
                await self._cycle()
            except asyncio.CancelledError:
                logger.warning("Collection cycle aborted by shutdown")
                raise
            except Exception:
                logger.error("Collection cycle failed", exc_info=True)
            finally:
                self._state = SchedulerState.IDLE
        return True

    async def run(self) -> None:
        """Tick until the shutdown event is set, then abort the running cycle."""
        logger.info("Scheduler started (interval=%ss)", self._interval_s)

        if not self._run_immediately:
            await self._wait_interval()

        while not self._shutdown_event.is_set():
            self._spawn_tick()
            await self._wait_interval()

        if self._in_flight:
            logger.info("Cancelling in-flight cycle before stopping")
            pending = list(self._in_flight)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self._state = SchedulerState.STOPPED
        logger.info("Scheduler stopped (%d ticks skipped)", self._skipped_ticks)

    def _spawn_tick(self) -> None:
        """Start a tick as a background task so the loop keeps its cadence."""
        task = asyncio.create_task(self.tick())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _wait_interval(self) -> None:
        # Use wait with timeout so shutdown interrupts the sleep
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._interval_s)
