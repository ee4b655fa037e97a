"""Event bus for outbound engine records.

Provides a synchronous event bus that delivers SignatureChange,
RecordingState and DetectedEncoder records to the bridging collaborator.

Unlike a bus between two halves of our own code, subscribers here are
external collaborators running inside the host: a failing subscriber is
logged and skipped, and the remaining subscribers still receive the event.
"""

from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import structlog

from audiotrace.contracts.errors import ObserverError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Protocol for event bus implementations.

    Allows both EventBus and NullEventBus to satisfy the interface
    without inheritance.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type."""
        ...

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers."""
        ...


class EventBus:
    """Synchronous event bus with per-subscriber failure isolation.

    Example:
        bus = EventBus()
        bus.subscribe(RecordingState, lambda e: print(e.active))
        bus.emit(RecordingState(active=True, timestamp=0.0))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}
        self._failures = 0

    @property
    def failures(self) -> int:
        """Number of subscriber calls that raised."""
        return self._failures

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type.

        Args:
            event_type: The event class to subscribe to
            handler: Callable that receives the event instance
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(handler)

    def subscribe_all(self, event_types: tuple[type, ...], handler: Callable[[Any], None]) -> None:
        """Subscribe one handler to several event types."""
        for event_type in event_types:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        handlers = self._subscribers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers in subscription order.

        Events with no subscribers are silently ignored.
        """
        handlers = self._subscribers.get(type(event), [])
        for handler in list(handlers):
            try:
                handler(event)
            except Exception as e:
                self._failures += 1
                error = ObserverError(getattr(handler, "__qualname__", repr(handler)), e)
                logger.error(
                    "Event subscriber failed",
                    event_type=type(event).__name__,
                    error=str(error),
                )


class NullEventBus:
    """No-op event bus for library use where nobody consumes outbound records.

    Does not inherit from EventBus: subscribing to it is a no-op, and the
    Protocol keeps that explicit.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        pass

    def emit(self, event: T) -> None:
        pass
