# tests/conftest.py
"""Shared test fixtures.

Time never passes on its own in these tests: every engine runs on a MockClock
and a ManualScheduler, and tests advance virtual time explicitly.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from types import SimpleNamespace

import pytest
from hypothesis import Phase, Verbosity, settings

from audiotrace.core.clock import MockClock
from audiotrace.core.config import EngineSettings
from audiotrace.core.events import EventBus
from audiotrace.core.logging import DIAGNOSTIC_MIRROR
from audiotrace.core.scheduling import ManualScheduler
from audiotrace.engine.engine import InspectionEngine
from tests.fixtures.events import EventLog
from tests.fixtures.host import build_host

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


@pytest.fixture(autouse=True)
def _restore_diagnostic_mirror() -> Iterator[None]:
    """Engines toggle the process-wide mirror; put it back after each test."""
    enabled = DIAGNOSTIC_MIRROR.enabled
    yield
    DIAGNOSTIC_MIRROR.enabled = enabled


@pytest.fixture
def clock() -> MockClock:
    return MockClock(start=100.0)


@pytest.fixture
def scheduler(clock: MockClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def event_log(bus: EventBus) -> EventLog:
    return EventLog(bus)


@pytest.fixture
def engine(clock: MockClock, scheduler: ManualScheduler, bus: EventBus) -> InspectionEngine:
    return InspectionEngine(EngineSettings(), clock=clock, scheduler=scheduler, bus=bus)


@pytest.fixture
def host() -> SimpleNamespace:
    return build_host()


@pytest.fixture
def installed(engine: InspectionEngine, host: SimpleNamespace) -> Iterator[InspectionEngine]:
    """Engine installed on a fresh fake host; uninstalled afterwards."""
    engine.install(host)
    yield engine
    engine.uninstall()
