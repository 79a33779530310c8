"""
Interview Coach: Interval Timers

asyncio implementation of the Scheduler protocol.  Each timer is one task
that sleeps until its next deadline on a fixed grid (start + n * interval),
then fires its callback; coroutine callbacks are awaited, and the time they
take does not shift later firings.  A callback error is logged and the timer
keeps running.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from .interfaces import TimerCallback

logger = logging.getLogger("coach.timers")


class IntervalTimer:
    """One repeating timer backed by an asyncio.Task, firing on a fixed-rate grid."""

    def __init__(self, interval: float, callback: TimerCallback, name: str, owner: "AsyncioScheduler") -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._owner = owner
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled and self._task is not None and not self._task.done()

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"timer-{self.name}")

    def cancel(self) -> None:
        self._cancelled = True
        # Cancelled from its own callback: the loop exits once the callback returns
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        self._owner._discard(self)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_due = loop.time()
        try:
            while not self._cancelled:
                next_due += self.interval
                await asyncio.sleep(max(0.0, next_due - loop.time()))
                if self._cancelled:
                    break
                try:
                    result = self._callback()
                    if asyncio.iscoroutine(result):
                        await result
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Timer '{self.name}' callback error: {e}", exc_info=True)

                # Overran by whole intervals: skip those firings, keep the phase
                late = loop.time() - next_due
                if late > self.interval:
                    next_due += (late // self.interval) * self.interval
        finally:
            self._owner._discard(self)


class AsyncioScheduler:
    """Scheduler backed by the running event loop's clock."""

    def __init__(self) -> None:
        self._timers: Set[IntervalTimer] = set()

    def time(self) -> float:
        return asyncio.get_running_loop().time()

    def call_every(self, interval: float, callback: TimerCallback, name: str = "") -> IntervalTimer:
        if interval <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval}")
        timer = IntervalTimer(interval, callback, name or "timer", self)
        self._timers.add(timer)
        timer.start()
        return timer

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._timers if t.active)

    def _discard(self, timer: IntervalTimer) -> None:
        self._timers.discard(timer)
