"""Exceptions raised inside the engine.

None of these may reach the host: the interception layer and event bus catch
them at the call site and log them. They exist to give log entries a precise
type and to let callers of the offline tooling distinguish failure modes.
"""


class InstrumentationError(Exception):
    """Raised when a hook cannot be installed on a host target.

    Attributes:
        operation_name: Operation whose hook was skipped
        reason: Human-readable cause
    """

    def __init__(self, operation_name: str, reason: str) -> None:
        self.operation_name = operation_name
        self.reason = reason
        super().__init__(f"Cannot instrument '{operation_name}': {reason}")


class ObserverError(Exception):
    """Wraps an exception raised by a registered observer or subscriber."""

    def __init__(self, observer: str, original: BaseException) -> None:
        self.observer = observer
        self.original = original
        super().__init__(f"Observer '{observer}' failed: {original!r}")


class TraceFormatError(ValueError):
    """Raised when a recorded call-report trace line cannot be parsed."""

    def __init__(self, line_number: int, message: str) -> None:
        self.line_number = line_number
        super().__init__(f"Trace line {line_number}: {message}")
