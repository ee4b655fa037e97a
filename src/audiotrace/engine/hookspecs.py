"""pluggy hook specifications for call-report observers.

Observers implement these hooks to receive every report produced by the
interception layer.

Usage (implementing an observer):
    from audiotrace.engine.hookspecs import hookimpl

    class MyObserver:
        @hookimpl
        def audiotrace_observe_call(self, report):
            ...

Note: @hookspec defines the hook interface (done here).
      @hookimpl marks observer implementations of those hooks.
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from audiotrace.contracts.records import CallReport

PROJECT_NAME = "audiotrace"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class AudiotraceObserverSpec:
    """Hook specifications for call-report observers."""

    @hookspec
    def audiotrace_observe_call(self, report: "CallReport") -> None:
        """Receive one intercepted call.

        Called synchronously, inside the host's call, after the real
        operation returned. Implementations must not block. Exceptions are
        caught and logged by the interception layer.

        Args:
            report: The call report
        """
