"""Core infrastructure: configuration, logging, clock, scheduling, events, identity."""

from audiotrace.core.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from audiotrace.core.config import EngineSettings, load_settings, resolve_config
from audiotrace.core.events import EventBus, EventBusProtocol, NullEventBus
from audiotrace.core.identity import IdentityResolver
from audiotrace.core.scheduling import AsyncioScheduler, Cancelable, ManualScheduler, Scheduler

__all__ = [
    "DEFAULT_CLOCK",
    "AsyncioScheduler",
    "Cancelable",
    "Clock",
    "EngineSettings",
    "EventBus",
    "EventBusProtocol",
    "IdentityResolver",
    "ManualScheduler",
    "MockClock",
    "NullEventBus",
    "Scheduler",
    "SystemClock",
    "load_settings",
    "resolve_config",
]
