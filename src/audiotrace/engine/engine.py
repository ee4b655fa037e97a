# src/audiotrace/engine/engine.py
"""InspectionEngine: owns every component as explicit instance state.

Lifecycle:
    engine = InspectionEngine(settings)
    engine.bus.subscribe(SignatureChange, bridge.forward)
    engine.install(host)        # wrap the host's multimedia APIs
    ...                         # host runs; records flow out on engine.bus
    engine.reset()              # forget everything observed, keep hooks
    engine.uninstall()          # restore the host exactly

Nothing lives in module globals apart from the shared diagnostic mirror, so
several engines (e.g. one per test) never see each other's state.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any

import structlog

from audiotrace.contracts.enums import NodeRole, ResetType
from audiotrace.contracts.records import CallReport, DetectedEncoderRecord, EncodingLocation, GraphSnapshot, PipelineSignature
from audiotrace.core.clock import DEFAULT_CLOCK, Clock
from audiotrace.core.config import EngineSettings
from audiotrace.core.events import EventBus
from audiotrace.core.identity import IdentityResolver
from audiotrace.core.logging import DIAGNOSTIC_MIRROR, DiagnosticMirror
from audiotrace.core.scheduling import AsyncioScheduler, Scheduler
from audiotrace.engine.artifacts import ArtifactTracker
from audiotrace.engine.encoders import EncoderDetector, EncoderRecordStore
from audiotrace.engine.interception import InterceptionLayer
from audiotrace.engine.location import resolve_encoding_location
from audiotrace.engine.router import ReportRouter
from audiotrace.engine.session import Session, SessionStateMachine
from audiotrace.engine.signature import SignatureEngine
from audiotrace.engine.topology import TopologyGraph
from audiotrace.engine.webrtc import PeerConnectionMonitor

logger = structlog.get_logger(__name__)

ROUTER_NAME = "audiotrace.router"


class InspectionEngine:
    """Observation engine for one surface.

    Args:
        settings: Engine configuration (defaults apply when omitted)
        clock: Time source for report timestamps and timers
        scheduler: Deferred-callback scheduler for the grace windows
        bus: Outbound record bus; a fresh EventBus when omitted
        mirror: Diagnostic log mirror toggled by set_enabled()
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        bus: EventBus | None = None,
        mirror: DiagnosticMirror | None = None,
    ) -> None:
        self.settings = settings if settings is not None else EngineSettings()
        self.clock = clock if clock is not None else DEFAULT_CLOCK
        self.scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self.bus = bus if bus is not None else EventBus()
        self._mirror = mirror if mirror is not None else DIAGNOSTIC_MIRROR
        self.resolver = IdentityResolver()
        self.interception = InterceptionLayer(self.resolver, clock=self.clock)
        self._stats_tasks: set[asyncio.Task[Any]] = set()
        self.resolver.on_release(self._identity_released)
        self._enabled = self.settings.enabled
        self._build()
        self._mirror.enabled = self._enabled and self.settings.logging.mirror_diagnostics

    def _build(self) -> None:
        detection = self.settings.detection
        self.topology = TopologyGraph()
        self.signatures = SignatureEngine()
        self.sessions = SessionStateMachine(self.signatures.current, self.bus, self.settings.timing)
        self.detector = EncoderDetector(detection)
        self.store = EncoderRecordStore(self.bus)
        self.artifacts = ArtifactTracker(
            self.sessions,
            self.store,
            self.scheduler,
            self.clock,
            self.settings.timing,
            detection,
            sample_rate=self._graph_sample_rate,
        )
        self.webrtc = PeerConnectionMonitor(
            self.store,
            self.sessions,
            self.scheduler,
            self.settings.timing,
            poll=self._poll_peer_connection,
        )
        self.sessions.on_reset(self._on_reset)
        self.router = ReportRouter(
            topology=self.topology,
            signatures=self.signatures,
            sessions=self.sessions,
            detector=self.detector,
            store=self.store,
            artifacts=self.artifacts,
            webrtc=self.webrtc,
            detection=detection,
        )
        self.router.enabled = self._enabled
        self.interception.register_observer(self.router, name=ROUTER_NAME)

    def _on_reset(self, reset_type: ResetType, ordinal: int) -> None:
        self.store.reset(reset_type, ordinal)
        if reset_type is ResetType.HARD:
            self.detector.forget()

    def _identity_released(self, identity: str) -> None:
        self.webrtc.closed(identity)

    def _graph_sample_rate(self) -> int | None:
        """Sample rate of the first audio context observed."""
        for node in self.topology.nodes(role=NodeRole.CONTEXT):
            rate = node.metadata.get("sampleRate")
            if isinstance(rate, int | float) and not isinstance(rate, bool) and rate > 0:
                return int(rate)
        return None

    def _poll_peer_connection(self, identity: str) -> bool:
        """Request a stats report from a live connection.

        The request goes through the host's (intercepted) ``getStats``; the
        resulting report reaches the router like any other. Coroutine results
        run as tasks on the running loop.
        """
        connection = self.resolver.referent(identity)
        if connection is None or getattr(connection, "connectionState", None) in ("closed", "failed"):
            return False
        get_stats = getattr(connection, "getStats", None)
        if not callable(get_stats):
            return False
        try:
            result = get_stats()
        except Exception as e:
            logger.warning("Stats poll failed", identity=identity, error=str(e))
            return False
        if inspect.iscoroutine(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                result.close()
                logger.warning("Stats poll needs a running event loop", identity=identity)
                return False
            task = loop.create_task(result)
            self._stats_tasks.add(task)
            task.add_done_callback(self._stats_done)
        return True

    def _stats_done(self, task: asyncio.Task[Any]) -> None:
        self._stats_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Stats poll failed", error=str(task.exception()))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def install(self, host: Any) -> tuple[str, ...]:
        """Wrap the host's multimedia APIs. Returns the installed operation names."""
        return self.interception.install(host)

    def uninstall(self) -> None:
        self.artifacts.close()
        self.webrtc.close()
        self.interception.uninstall()

    def reset(self) -> None:
        """Forget all observed state; installed hooks stay in place."""
        self.artifacts.close()
        self.webrtc.close()
        self.interception.unregister_observer(self.router)
        self.resolver.clear()
        self._build()
        logger.info("Engine state reset")

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable processing; also gates diagnostic log mirroring."""
        self._enabled = enabled
        self.router.enabled = enabled
        self._mirror.enabled = enabled and self.settings.logging.mirror_diagnostics
        logger.info("Engine enabled changed", enabled=enabled)

    def set_suspended(self, suspended: bool) -> None:
        """Another surface holds exclusive rights: forward calls without recording."""
        self.interception.set_suspended(suspended)

    def feed(self, report: CallReport) -> bool:
        """Route a report directly (trace replay). Returns False if unhandled."""
        return self.router.route(report)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def signature(self) -> PipelineSignature:
        return self.signatures.current()

    @property
    def session(self) -> Session | None:
        return self.sessions.session

    @property
    def detected_encoder(self) -> DetectedEncoderRecord | None:
        return self.store.record

    def snapshot(self, context: str | None = None) -> GraphSnapshot:
        return self.topology.snapshot(context)

    def resolve_encoding_location(self, context: str | None = None) -> EncodingLocation | None:
        return resolve_encoding_location(self.topology.snapshot(context))
