# src/audiotrace/engine/session.py
"""Recording session lifecycle and reset classification.

Phases cycle ``idle -> starting -> active -> finalizing -> idle``. A session
opens on capture acquisition, an explicit recorder start, or the first
qualifying artifact. It closes on an explicit stop, or on artifact silence
(the artifact tracker drives finalizing/resume/finish for that path).

Every session is classified exactly once, as a HARD reset when its pipeline
signature differs from the previous session's final signature and as a SOFT
reset otherwise. Classification normally happens on ``-> starting``, but
structural evidence of a technology change, or the first link into a
destination while idle, classifies the upcoming session early by reserving
its ordinal. The later start reuses the reservation.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from audiotrace.contracts.enums import ResetType, SessionPhase, SessionTrigger
from audiotrace.contracts.events import RecordingState, SignatureChange
from audiotrace.contracts.records import PipelineSignature
from audiotrace.core.config import TimingSettings
from audiotrace.core.events import EventBusProtocol

logger = structlog.get_logger(__name__)

type ResetListener = Callable[[ResetType, int], None]
type FinalizeListener = Callable[["Session"], None]


@dataclass(slots=True)
class Session:
    """Mutable record of one recording session, owned by the state machine."""

    ordinal: int
    trigger: SessionTrigger
    started_at: float
    phase: SessionPhase = SessionPhase.STARTING
    reset_type: ResetType = ResetType.NONE
    finalizing_at: float | None = None
    ended_at: float | None = None
    duration: float | None = None

    @property
    def active(self) -> bool:
        return self.phase in (SessionPhase.STARTING, SessionPhase.ACTIVE, SessionPhase.FINALIZING)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ordinal": self.ordinal,
            "trigger": self.trigger.value,
            "startedAt": self.started_at,
            "phase": self.phase.value,
            "resetType": self.reset_type.value,
            "active": self.active,
            "endedAt": self.ended_at,
            "duration": self.duration,
        }


class SessionStateMachine:
    """Owns the session ordinal sequence and emits lifecycle records.

    Example:
        machine = SessionStateMachine(signatures.current, bus, TimingSettings())
        machine.start(SessionTrigger.RECORDER_STARTED, timestamp=0.0)
        machine.stop(timestamp=4.0)   # RecordingState(active=False) emitted once
    """

    def __init__(
        self,
        signature: Callable[[], PipelineSignature],
        bus: EventBusProtocol,
        timing: TimingSettings,
    ) -> None:
        self._signature = signature
        self._bus = bus
        self._timing = timing
        self._session: Session | None = None
        self._ordinal = 0
        self._reserved: int | None = None
        self._classified = 0
        self._last_reset = ResetType.NONE
        self._previous_signature: PipelineSignature | None = None
        self._reset_listeners: list[ResetListener] = []
        self._finalize_listeners: list[FinalizeListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        return self._session.phase if self._session is not None else SessionPhase.IDLE

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def ordinal(self) -> int:
        """Ordinal of the current (or most recent) session; 0 before the first."""
        return self._ordinal

    @property
    def reserved_ordinal(self) -> int | None:
        return self._reserved

    @property
    def evidence_ordinal(self) -> int:
        """Ordinal that newly arriving encoder evidence belongs to.

        While a session is open that is the session itself; while idle it is
        the upcoming session.
        """
        if self.phase is not SessionPhase.IDLE:
            return self._ordinal
        return self._reserved if self._reserved is not None else self._ordinal + 1

    @property
    def previous_signature(self) -> PipelineSignature | None:
        return self._previous_signature

    def on_reset(self, listener: ResetListener) -> None:
        self._reset_listeners.append(listener)

    def on_finalized(self, listener: FinalizeListener) -> None:
        self._finalize_listeners.append(listener)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, trigger: SessionTrigger, timestamp: float) -> int:
        """idle -> starting -> active. Joins the open session otherwise.

        Returns:
            Ordinal of the session the trigger belongs to.
        """
        if self.phase is not SessionPhase.IDLE:
            logger.debug("Start joined open session", trigger=trigger.value, ordinal=self._ordinal)
            return self._ordinal

        ordinal = self._reserved if self._reserved is not None else self._ordinal + 1
        self._reserved = None
        self._ordinal = ordinal
        session = Session(ordinal=ordinal, trigger=trigger, started_at=timestamp)
        self._session = session
        logger.info("Recording session starting", ordinal=ordinal, trigger=trigger.value)

        self._classify(ordinal, reason=trigger.value)
        session.phase = SessionPhase.ACTIVE
        self._bus.emit(RecordingState(active=True, timestamp=timestamp))
        return ordinal

    def acquire_capture(self, timestamp: float) -> int:
        """Capture-source acquisition.

        Opens a session while idle. A capture that arrives within the reuse
        window of the open session's start joins it; a later one closes the
        open session and starts a new take.
        """
        session = self._session
        if session is None or session.phase is SessionPhase.IDLE:
            return self.start(SessionTrigger.CAPTURE_ACQUIRED, timestamp)
        if timestamp - session.started_at <= self._timing.capture_reuse_seconds:
            logger.debug("Capture joined recent session", ordinal=session.ordinal)
            return session.ordinal
        if session.phase is SessionPhase.FINALIZING:
            self.finish(timestamp)
        else:
            self.stop(timestamp)
        return self.start(SessionTrigger.CAPTURE_ACQUIRED, timestamp)

    def begin_finalizing(self, timestamp: float) -> bool:
        """active -> finalizing."""
        session = self._session
        if session is None or session.phase is not SessionPhase.ACTIVE:
            return False
        session.phase = SessionPhase.FINALIZING
        session.finalizing_at = timestamp
        session.duration = timestamp - session.started_at
        logger.debug("Recording session finalizing", ordinal=session.ordinal, duration=session.duration)
        return True

    def resume(self, timestamp: float) -> bool:
        """finalizing -> active; the pending finalize is never reported."""
        session = self._session
        if session is None or session.phase is not SessionPhase.FINALIZING:
            return False
        session.phase = SessionPhase.ACTIVE
        session.finalizing_at = None
        session.duration = None
        logger.debug("Recording session resumed", ordinal=session.ordinal)
        return True

    def finish(self, timestamp: float) -> Session | None:
        """finalizing -> idle. Reports the end of the session exactly once."""
        session = self._session
        if session is None or session.phase is not SessionPhase.FINALIZING:
            return None
        session.phase = SessionPhase.IDLE
        session.ended_at = timestamp
        if session.duration is None:
            session.duration = timestamp - session.started_at
        self._previous_signature = self._signature()
        logger.info("Recording session finished", ordinal=session.ordinal, duration=session.duration)

        for listener in list(self._finalize_listeners):
            listener(session)
        self._bus.emit(RecordingState(active=False, timestamp=timestamp))
        return session

    def stop(self, timestamp: float) -> Session | None:
        """Explicit stop: active -> finalizing -> idle, no resume window."""
        if not self.begin_finalizing(timestamp):
            return None
        return self.finish(timestamp)

    # ------------------------------------------------------------------
    # Reset classification
    # ------------------------------------------------------------------

    def note_structural_change(self, changed: tuple[str, ...]) -> None:
        """Structural evidence arrived; classify the upcoming session early if it changes technology."""
        if not changed or self.phase is not SessionPhase.IDLE or self._previous_signature is None:
            return
        if not self._signature().diff(self._previous_signature):
            return
        self._classify_early(reason="structuralChange")

    def note_destination_link(self) -> None:
        """First link into a destination while idle classifies the upcoming session."""
        if self.phase is SessionPhase.IDLE:
            self._classify_early(reason="destinationLink")

    def _classify_early(self, reason: str) -> None:
        ordinal = self._reserved if self._reserved is not None else self._ordinal + 1
        if ordinal <= self._classified:
            logger.info("Upcoming session already classified", ordinal=ordinal, reason=reason)
            return
        self._reserved = ordinal
        self._classify(ordinal, reason=reason)

    def _classify(self, ordinal: int, *, reason: str) -> None:
        if ordinal <= self._classified:
            if self._session is not None and self._session.ordinal == ordinal:
                self._session.reset_type = self._last_reset
            return

        signature = self._signature()
        previous = self._previous_signature
        changed = signature.diff(previous)
        reset_type = ResetType.HARD if changed else ResetType.SOFT
        self._classified = ordinal
        self._last_reset = reset_type
        if self._session is not None and self._session.ordinal == ordinal:
            self._session.reset_type = reset_type

        logger.info(
            "Session reset classified",
            ordinal=ordinal,
            reset_type=reset_type.value,
            changed=list(changed),
            reason=reason,
        )
        for listener in list(self._reset_listeners):
            listener(reset_type, ordinal)
        self._bus.emit(
            SignatureChange(
                reset_type=reset_type,
                signature=signature,
                previous_signature=previous,
                session_ordinal=ordinal,
            )
        )
