# src/audiotrace/engine/interception.py
"""Interception layer: wrap host constructors and methods without changing them.

Contract for every wrapped call:
1. Perform the real operation with the original arguments (and receiver)
2. Resolve the identity of the observed object
3. Synchronously notify observers with a CallReport
4. Return the untouched result

Constructors are intercepted by replacing ``__init__`` in place, so the class
object, ``type()`` and ``isinstance()`` stay exactly what the host expects.
Methods are replaced by functions that take the receiver explicitly, so
prototype-style binding is preserved for the class and every subclass.
Coroutine methods get coroutine wrappers that await the original.

Failure isolation:
- A target that is absent or cannot be patched raises InstrumentationError
  inside install(); that one hook is skipped and logged.
- An observer that raises is logged and skipped; the host still receives the
  real result.
- When observation is suspended, the real operation runs and nothing is
  recorded, keeping memory flat on surfaces that are not being observed.
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pluggy
import structlog

from audiotrace.contracts.errors import InstrumentationError, ObserverError
from audiotrace.contracts.records import CallReport
from audiotrace.core.clock import DEFAULT_CLOCK, Clock
from audiotrace.core.identity import IdentityResolver
from audiotrace.engine.hooks import DEFAULT_HOOK_TARGETS, CallInfo, HookTarget
from audiotrace.engine.hookspecs import PROJECT_NAME, AudiotraceObserverSpec, hookimpl

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class _Patch:
    """Record of one installed hook, sufficient to restore the original."""

    owner: type
    attribute: str
    original: Any
    had_own_attribute: bool
    operation_name: str


class _CallbackObserver:
    """Adapts a plain callable to the observer hook."""

    def __init__(self, callback: Callable[[CallReport], None]) -> None:
        self.callback = callback

    @hookimpl
    def audiotrace_observe_call(self, report: CallReport) -> None:
        self.callback(report)


class InterceptionLayer:
    """Installs hooks on a host namespace and fans reports out to observers.

    Example:
        layer = InterceptionLayer(IdentityResolver())
        layer.add_callback(reports.append)
        layer.install(host)
        ctx = host.AudioContext()          # reported as AudioContext.construct
        layer.uninstall()                  # host restored exactly
    """

    def __init__(
        self,
        resolver: IdentityResolver,
        *,
        clock: Clock | None = None,
        targets: tuple[HookTarget, ...] = DEFAULT_HOOK_TARGETS,
    ) -> None:
        self._resolver = resolver
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._targets = targets
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(AudiotraceObserverSpec)
        self._patches: list[_Patch] = []
        # identity -> operations already reported for once-per-identity targets
        self._seen: dict[str | None, set[str]] = {}
        resolver.on_release(self._forget_identity)
        self._suspended = False
        self._reports_emitted = 0
        self._observer_failures = 0

    # ------------------------------------------------------------------
    # Observation state
    # ------------------------------------------------------------------

    @property
    def suspended(self) -> bool:
        return self._suspended

    def set_suspended(self, suspended: bool) -> None:
        """Suspend or resume observation; wrapped calls keep forwarding either way."""
        if suspended != self._suspended:
            logger.info("Observation suspension changed", suspended=suspended)
        self._suspended = suspended

    @property
    def installed(self) -> tuple[str, ...]:
        """Operation names whose hooks are currently installed."""
        return tuple(p.operation_name for p in self._patches)

    @property
    def reports_emitted(self) -> int:
        return self._reports_emitted

    @property
    def observer_failures(self) -> int:
        return self._observer_failures

    @property
    def tracked_identities(self) -> int:
        """Live identities holding once-per-identity report state."""
        return len(self._seen)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def register_observer(self, observer: object, name: str | None = None) -> None:
        """Register an object implementing ``audiotrace_observe_call``."""
        self._pm.register(observer, name=name)

    def unregister_observer(self, observer: object) -> None:
        self._pm.unregister(observer)

    def add_callback(self, callback: Callable[[CallReport], None]) -> object:
        """Register a plain callable as an observer; returns the handle for removal."""
        adapter = _CallbackObserver(callback)
        self._pm.register(adapter)
        return adapter

    def notify(self, report: CallReport) -> None:
        """Deliver a report to every observer, isolating failures.

        Observers run in registration order.
        """
        self._reports_emitted += 1
        for impl in self._pm.hook.audiotrace_observe_call.get_hookimpls():
            try:
                impl.function(report)
            except Exception as e:
                self._observer_failures += 1
                error = ObserverError(impl.plugin_name, e)
                logger.error(
                    "Call observer failed",
                    operation=report.operation_name,
                    error=str(error),
                )

    # ------------------------------------------------------------------
    # Install / uninstall
    # ------------------------------------------------------------------

    def install(self, host: Any) -> tuple[str, ...]:
        """Install every target hook available on ``host``.

        Returns:
            Operation names that were installed. Skipped targets are logged.
        """
        if self._patches:
            logger.warning("Interception already installed, ignoring install()", installed=len(self._patches))
            return self.installed

        for target in self._targets:
            try:
                self._install_target(host, target)
            except InstrumentationError as e:
                logger.warning("Hook skipped", operation=e.operation_name, reason=e.reason)

        logger.info("Interception installed", hooks=len(self._patches), skipped=len(self._targets) - len(self._patches))
        return self.installed

    def uninstall(self) -> None:
        """Restore every patched attribute, most recent first."""
        while self._patches:
            patch = self._patches.pop()
            if patch.had_own_attribute:
                setattr(patch.owner, patch.attribute, patch.original)
            else:
                delattr(patch.owner, patch.attribute)
        self._seen.clear()
        logger.info("Interception uninstalled")

    def _forget_identity(self, identity: str) -> None:
        self._seen.pop(identity, None)

    def _install_target(self, host: Any, target: HookTarget) -> None:
        operation = target.operation_name
        owner = getattr(host, target.owner, None)
        if owner is None:
            raise InstrumentationError(operation, f"host has no '{target.owner}'")
        if not isinstance(owner, type):
            raise InstrumentationError(operation, f"'{target.owner}' is not a class")

        attribute = target.method if target.method is not None else "__init__"
        try:
            static = inspect.getattr_static(owner, attribute)
        except AttributeError:
            raise InstrumentationError(operation, f"'{target.owner}' has no '{attribute}'") from None

        if target.is_constructor:
            wrapper = self._wrap_constructor(target, getattr(owner, "__init__"))
        else:
            if not inspect.isfunction(static):
                raise InstrumentationError(operation, f"'{attribute}' is not a plain function")
            wrapper = self._wrap_method(target, static)

        had_own = attribute in owner.__dict__
        original_own = owner.__dict__.get(attribute)
        try:
            setattr(owner, attribute, wrapper)
        except (TypeError, AttributeError) as e:
            raise InstrumentationError(operation, str(e)) from e

        self._patches.append(
            _Patch(
                owner=owner,
                attribute=attribute,
                original=original_own,
                had_own_attribute=had_own,
                operation_name=operation,
            )
        )

    # ------------------------------------------------------------------
    # Wrappers
    # ------------------------------------------------------------------

    def _wrap_constructor(self, target: HookTarget, original_init: Callable[..., None]) -> Callable[..., None]:
        layer = self
        # object.__init__ rejects arguments once __init__ is overridden
        bare_object_init = original_init is object.__init__

        def __init__(instance: Any, *args: Any, **kwargs: Any) -> None:
            if bare_object_init:
                original_init(instance)
            else:
                original_init(instance, *args, **kwargs)
            layer._observe(target, instance, args, kwargs, instance)

        if inspect.isfunction(original_init):
            functools.update_wrapper(__init__, original_init)
        return __init__

    def _wrap_method(self, target: HookTarget, original: Callable[..., Any]) -> Callable[..., Any]:
        layer = self

        if inspect.iscoroutinefunction(original):

            @functools.wraps(original)
            async def async_wrapper(receiver: Any, *args: Any, **kwargs: Any) -> Any:
                result = await original(receiver, *args, **kwargs)
                layer._observe(target, receiver, args, kwargs, result)
                return result

            return async_wrapper

        @functools.wraps(original)
        def wrapper(receiver: Any, *args: Any, **kwargs: Any) -> Any:
            result = original(receiver, *args, **kwargs)
            layer._observe(target, receiver, args, kwargs, result)
            return result

        return wrapper

    def _observe(
        self,
        target: HookTarget,
        receiver: Any,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        result: Any,
    ) -> None:
        """Build and deliver the report for one completed call. Never raises."""
        if self._suspended:
            return
        try:
            summary = target.summarize(CallInfo(receiver, args, kwargs, result, self._resolver))
            if summary is None:
                return
            subject = result if target.identify == "result" else receiver
            identity = None if subject is None else self._resolver.resolve(subject)
            if target.once_per_identity:
                reported = self._seen.setdefault(identity, set())
                if target.operation_name in reported:
                    return
                reported.add(target.operation_name)
            report = CallReport(
                operation_name=target.operation_name,
                identity=identity,
                args_summary=summary,
                timestamp=self._clock.monotonic(),
            )
        except Exception as e:
            logger.error("Call summary failed", operation=target.operation_name, error=str(e))
            return
        self.notify(report)
