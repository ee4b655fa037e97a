# src/audiotrace/core/clock.py
"""Clock abstraction for testable timing logic.

Session timing (finalize grace, resume window, bitrate cadence) reads time
through a Clock so tests and trace replay can drive it deterministically.

Production code uses SystemClock (the default).
Tests and replay inject MockClock to control time advancement.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Abstract clock for timing-based operations.

    Implementations:
    - SystemClock: Uses time.monotonic() (production)
    - MockClock: Returns controllable times (testing, replay)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        ...


class SystemClock:
    """Production clock using time.monotonic()."""

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock(start=0.0)
        clock.advance(0.5)
        assert clock.monotonic() == 0.5
    """

    def __init__(self, start: float = 0.0) -> None:
        self._current = start

    def monotonic(self) -> float:
        """Return current mock time."""
        return self._current

    def advance(self, seconds: float) -> None:
        """Advance mock time by specified seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds

    def set(self, value: float) -> None:
        """Set mock time to an absolute value.

        Unlike advance(), this can move time backwards. Use with caution.
        """
        self._current = value


DEFAULT_CLOCK: Clock = SystemClock()
