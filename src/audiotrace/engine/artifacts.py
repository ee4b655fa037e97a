# src/audiotrace/engine/artifacts.py
"""Artifact-based session tracking.

Some hosts never use a recorder API: they encode off-thread and emit binary
artifacts (in chunks, or as a growing cumulative blob, or as one export at
the end). The timing and growth of those artifacts is the only session
signal. The tracker:

- opens an artifact session on the first qualifying artifact, joining the
  state machine's open session when there is one
- classifies emission on the second artifact: CUMULATIVE when it exceeds
  the previous size by the cumulative ratio, CHUNKED otherwise
- reports a live bitrate estimate at most once per update interval
- starts finalizing after the finalize grace of artifact silence, fixing the
  duration at that moment, and finishes when the resume window (measured
  from the last artifact) expires without another artifact
- treats an artifact that jumps by the cumulative ratio while finalizing as
  the final export and finishes immediately
- attributes a jumping export that trails a finished session to that
  session, once

Only sessions the tracker opened itself end on artifact silence. A session
opened by a recorder or a capture keeps its own end; artifacts only feed
its byte accounting.

Timers go through a Scheduler and are canceled the moment a new artifact
contradicts them.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from audiotrace.contracts.enums import (
    Confidence,
    DetectionPattern,
    EmissionMode,
    EvidenceSource,
    SessionPhase,
    SessionTrigger,
)
from audiotrace.contracts.records import DetectedEncoderRecord, Provenance
from audiotrace.core.clock import Clock
from audiotrace.core.config import DetectionSettings, MediaTypeInfo, TimingSettings
from audiotrace.core.scheduling import Cancelable, Scheduler
from audiotrace.engine.encoders import EncoderRecordStore, media_type_essence, parse_mime_type
from audiotrace.engine.session import Session, SessionStateMachine

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class ArtifactSession:
    """Byte accounting for one artifact-driven session."""

    ordinal: int
    started_at: float
    media_type: str
    info: MediaTypeInfo
    codec: str
    last_artifact_at: float
    owns_session: bool = True
    total_bytes: int = 0
    artifact_count: int = 0
    last_size: int = 0
    mode: EmissionMode = EmissionMode.UNKNOWN
    last_bitrate_at: float | None = None
    bitrate: int | None = None
    duration: float | None = None
    finalized: bool = False

    def bitrate_over(self, seconds: float) -> int | None:
        if seconds <= 0:
            return None
        return round(self.total_bytes * 8 / seconds)


@dataclass(slots=True)
class _EndedSession:
    ordinal: int
    ended_at: float
    duration: float | None
    final_reported: bool
    last_size: int = 0
    export_reported: bool = False


class ArtifactTracker:
    """Drives session boundaries from emitted binary artifacts.

    Args:
        sample_rate: Returns the sample rate of the observed audio graph, if
            one is known; artifact records carry it.
    """

    def __init__(
        self,
        machine: SessionStateMachine,
        store: EncoderRecordStore,
        scheduler: Scheduler,
        clock: Clock,
        timing: TimingSettings,
        detection: DetectionSettings,
        *,
        sample_rate: Callable[[], int | None] | None = None,
    ) -> None:
        self._machine = machine
        self._store = store
        self._scheduler = scheduler
        self._clock = clock
        self._timing = timing
        self._detection = detection
        self._sample_rate = sample_rate
        self._session: ArtifactSession | None = None
        self._ended: _EndedSession | None = None
        self._finalize_handle: Cancelable | None = None
        self._resume_handle: Cancelable | None = None
        self._capture_since = False
        self._last_activity_at: float | None = None
        machine.on_finalized(self._on_session_finished)

    @property
    def session(self) -> ArtifactSession | None:
        return self._session

    def note_capture_acquired(self) -> None:
        self._capture_since = True

    def close(self) -> None:
        """Cancel pending timers (engine reset or uninstall)."""
        self._cancel_timers()

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def observe(self, media_type: str, size: int, timestamp: float) -> bool:
        """Account for one emitted artifact.

        Returns:
            True when the artifact qualified and was accounted for.
        """
        essence = media_type_essence(media_type)
        info = self._detection.media_types.get(essence)
        if info is None:
            return False
        if size <= self._detection.min_artifact_bytes:
            logger.debug("Metadata-sized artifact ignored", media_type=essence, size=size)
            return False

        logger.debug("Audio artifact observed", media_type=media_type, size=size, diagnostic=True)
        session = self._session
        if session is not None and not session.finalized:
            if self._machine.phase is SessionPhase.FINALIZING:
                if session.last_size and size > session.last_size * self._detection.cumulative_ratio:
                    self._accumulate(session, size, timestamp, export=True)
                    logger.info("Final export artifact observed", ordinal=session.ordinal, size=size)
                    self._finalize(timestamp)
                    return True
                self._cancel_timers()
                self._machine.resume(timestamp)
                session.duration = None
            self._accumulate(session, size, timestamp)
            self._after_artifact(session, timestamp)
            return True

        if self._opens_new_session(timestamp):
            session = self._open(media_type, info, timestamp)
            self._accumulate(session, size, timestamp)
            self._after_artifact(session, timestamp)
            return True

        self._trailing(media_type, info, size, timestamp)
        return True

    def _opens_new_session(self, timestamp: float) -> bool:
        if self._capture_since or self._last_activity_at is None:
            return True
        return timestamp - self._last_activity_at > self._timing.new_session_gap_seconds

    def _open(self, media_type: str, info: MediaTypeInfo, timestamp: float) -> ArtifactSession:
        self._cancel_timers()
        owns_session = self._machine.phase is SessionPhase.IDLE
        ordinal = self._machine.start(SessionTrigger.ARTIFACT, timestamp)
        _, codec = parse_mime_type(media_type)
        session = ArtifactSession(
            ordinal=ordinal,
            started_at=timestamp,
            media_type=media_type_essence(media_type),
            info=info,
            codec=codec or info.codec,
            last_artifact_at=timestamp,
            owns_session=owns_session,
        )
        self._session = session
        self._ended = None
        self._capture_since = False
        logger.info(
            "Artifact session opened",
            ordinal=ordinal,
            media_type=session.media_type,
            owns_session=owns_session,
        )
        return session

    def _accumulate(self, session: ArtifactSession, size: int, timestamp: float, *, export: bool = False) -> None:
        session.artifact_count += 1
        if session.artifact_count == 2 and session.mode is EmissionMode.UNKNOWN:
            cumulative = size > session.last_size * self._detection.cumulative_ratio
            session.mode = EmissionMode.CUMULATIVE if cumulative else EmissionMode.CHUNKED
            logger.debug("Artifact emission classified", ordinal=session.ordinal, mode=session.mode.value)

        if session.artifact_count == 1 or export:
            # An export holds the whole recording
            session.total_bytes = size
        elif session.mode is EmissionMode.CUMULATIVE:
            session.total_bytes = max(session.total_bytes, size)
        else:
            session.total_bytes += size
        session.last_size = size
        session.last_artifact_at = timestamp
        self._last_activity_at = timestamp

    def _after_artifact(self, session: ArtifactSession, timestamp: float) -> None:
        self._refresh_live_estimate(session, timestamp)
        self._cancel_timers()
        if not session.owns_session:
            return
        self._finalize_handle = self._scheduler.call_later(
            self._timing.finalize_grace_seconds,
            self._enter_finalizing,
        )

    def _refresh_live_estimate(self, session: ArtifactSession, timestamp: float) -> None:
        due = (
            session.last_bitrate_at is None
            or timestamp - session.last_bitrate_at >= self._timing.bitrate_update_interval_seconds
        )
        if session.artifact_count > 1 and not due:
            return
        bitrate = session.bitrate_over(timestamp - session.started_at)
        if bitrate is not None:
            session.bitrate = bitrate
            session.last_bitrate_at = timestamp
        elif session.artifact_count > 1:
            return
        self._store.offer(self._record(session, live=True), session.ordinal)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _enter_finalizing(self) -> None:
        self._finalize_handle = None
        session = self._session
        if session is None or session.finalized:
            return
        now = self._clock.monotonic()
        if not self._machine.begin_finalizing(now):
            return
        session.duration = now - session.started_at
        remaining = self._timing.resume_grace_seconds - (now - session.last_artifact_at)
        self._resume_handle = self._scheduler.call_later(max(remaining, 0.0), self._resume_window_expired)

    def _resume_window_expired(self) -> None:
        self._resume_handle = None
        self._finalize(self._clock.monotonic())

    def _cancel_timers(self) -> None:
        for handle in (self._finalize_handle, self._resume_handle):
            if handle is not None:
                handle.cancel()
        self._finalize_handle = None
        self._resume_handle = None

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def _finalize(self, timestamp: float) -> None:
        session = self._session
        if session is None or session.finalized:
            return
        self._cancel_timers()
        if self._machine.phase is SessionPhase.ACTIVE:
            self._machine.begin_finalizing(timestamp)
        if session.duration is None:
            session.duration = timestamp - session.started_at
        self._report_final(session)
        self._last_activity_at = timestamp
        self._machine.finish(timestamp)

    def _report_final(self, session: ArtifactSession) -> None:
        session.finalized = True
        if session.duration is not None:
            session.bitrate = session.bitrate_over(session.duration)
        logger.info(
            "Artifact session finalized",
            ordinal=session.ordinal,
            duration=session.duration,
            bitrate=session.bitrate,
            total_bytes=session.total_bytes,
            mode=session.mode.value,
        )
        self._store.offer(self._record(session, live=False), session.ordinal)

    def _on_session_finished(self, finished: Session) -> None:
        """The state machine closed a session (artifact silence, explicit stop, or a new capture)."""
        session = self._session
        reported = False
        last_size = 0
        if session is not None and session.ordinal == finished.ordinal:
            if not session.finalized:
                self._cancel_timers()
                if session.duration is None:
                    session.duration = finished.duration
                self._report_final(session)
            reported = True
            last_size = session.last_size
        self._ended = _EndedSession(
            ordinal=finished.ordinal,
            ended_at=finished.ended_at if finished.ended_at is not None else self._clock.monotonic(),
            duration=finished.duration,
            final_reported=reported,
            last_size=last_size,
        )
        self._last_activity_at = self._ended.ended_at
        # A capture acquired before the end belonged to the finished session
        self._capture_since = False

    def _trailing(self, media_type: str, info: MediaTypeInfo, size: int, timestamp: float) -> None:
        """An artifact shortly after a session ended: its export.

        A session that ended without artifacts takes the first one. A session
        that already reported its artifacts takes one that jumps past its
        last artifact by the cumulative ratio. Either way the export is
        reported as that session's final record over the fixed duration,
        once; later trailing artifacts are ignored.
        """
        ended = self._ended
        if (
            ended is None
            or not ended.duration
            or ended.export_reported
            or timestamp - ended.ended_at > self._timing.new_session_gap_seconds
        ):
            logger.debug("Trailing artifact ignored", media_type=media_type, size=size)
            return
        if ended.final_reported and not (ended.last_size and size > ended.last_size * self._detection.cumulative_ratio):
            logger.debug("Trailing artifact ignored", media_type=media_type, size=size)
            return
        ended.final_reported = True
        ended.export_reported = True
        _, codec = parse_mime_type(media_type)
        export = ArtifactSession(
            ordinal=ended.ordinal,
            started_at=ended.ended_at - ended.duration,
            media_type=media_type_essence(media_type),
            info=info,
            codec=codec or info.codec,
            last_artifact_at=timestamp,
            total_bytes=size,
            artifact_count=1,
            last_size=size,
            duration=ended.duration,
        )
        self._last_activity_at = timestamp
        logger.info("Export artifact attributed to finished session", ordinal=ended.ordinal, size=size)
        self._report_final(export)

    def _record(self, session: ArtifactSession, *, live: bool) -> DetectedEncoderRecord:
        info = session.info
        return DetectedEncoderRecord(
            codec=session.codec,
            container=info.container,
            encoder=info.encoder,
            library=info.library,
            bitrate=session.bitrate,
            sample_rate=self._sample_rate() if self._sample_rate is not None else None,
            channels=None,
            provenance=Provenance(
                source=EvidenceSource.ARTIFACT,
                pattern=DetectionPattern.AUDIO_ARTIFACT,
                confidence=Confidence.LOW if live else Confidence.MEDIUM,
            ),
            media_type=session.media_type,
            live_estimate=live,
            duration=session.duration if not live else None,
        )
