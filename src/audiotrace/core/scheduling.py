# src/audiotrace/core/scheduling.py
"""Cancelable deferred callbacks.

The engine never blocks: the only waits are the finalize grace window and
the resume window, both expressed as deferred callbacks that are canceled
the instant contradicting evidence arrives.

- AsyncioScheduler: production, backed by the running event loop's call_later
- ManualScheduler: virtual time on a MockClock, used by tests and trace replay
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Callable
from typing import Protocol

from audiotrace.core.clock import MockClock


class Cancelable(Protocol):
    """Handle to a pending deferred callback."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Schedules a callback after a delay and returns a cancelable handle."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancelable: ...


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop.

    The loop is resolved lazily so the scheduler can be constructed before
    the loop starts; calls must then come from within the running loop.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancelable:
        loop = self._loop if self._loop is not None else asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class ManualHandle:
    """Handle returned by ManualScheduler."""

    __slots__ = ("_callback", "_cancelled", "when")

    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self._callback: Callable[[], None] | None = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        self._callback = None

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        callback = self._callback
        self._callback = None
        if callback is not None and not self._cancelled:
            callback()


class ManualScheduler:
    """Virtual-time scheduler driven explicitly by the caller.

    Callbacks run in due-time order (ties in scheduling order) while the
    clock is advanced; the clock reads the callback's due time while it runs.

    Example:
        clock = MockClock()
        scheduler = ManualScheduler(clock)
        handle = scheduler.call_later(1.0, fire)
        scheduler.advance(0.5)   # nothing runs
        scheduler.advance(0.5)   # fire() runs at t=1.0
    """

    def __init__(self, clock: MockClock) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, ManualHandle]] = []
        self._counter = itertools.count()

    @property
    def clock(self) -> MockClock:
        return self._clock

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self._clock.monotonic() + max(delay, 0.0), callback)
        heapq.heappush(self._heap, (handle.when, next(self._counter), handle))
        return handle

    @property
    def pending(self) -> int:
        """Number of scheduled callbacks that have not been canceled."""
        return sum(1 for _, _, handle in self._heap if not handle.cancelled())

    def advance(self, seconds: float) -> None:
        """Advance virtual time, running every callback that falls due."""
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self.run_until(self._clock.monotonic() + seconds)

    def run_until(self, deadline: float) -> None:
        """Run due callbacks up to ``deadline`` and leave the clock there.

        Callbacks may schedule further callbacks; those also run if due
        before the deadline.
        """
        self._run_due(deadline, inclusive=True)

    def run_before(self, deadline: float) -> None:
        """Run callbacks due strictly before ``deadline`` and leave the clock there.

        Used before delivering evidence stamped ``deadline``: a window that
        closes at the same instant the evidence arrives has not been exceeded.
        """
        self._run_due(deadline, inclusive=False)

    def _run_due(self, deadline: float, *, inclusive: bool) -> None:
        while self._heap:
            due = self._heap[0][0]
            if due > deadline or (due == deadline and not inclusive):
                break
            when, _, handle = heapq.heappop(self._heap)
            if handle.cancelled():
                continue
            if when > self._clock.monotonic():
                self._clock.set(when)
            handle._run()
        if deadline > self._clock.monotonic():
            self._clock.set(deadline)
