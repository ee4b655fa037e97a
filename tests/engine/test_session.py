# tests/engine/test_session.py
"""Tests for the session state machine and reset classification."""

from __future__ import annotations

import pytest

from audiotrace.contracts.enums import EncodingType, ResetType, SessionPhase, SessionTrigger
from audiotrace.contracts.events import RecordingState, SignatureChange
from audiotrace.core.config import TimingSettings
from audiotrace.core.events import EventBus
from audiotrace.engine.session import Session, SessionStateMachine
from audiotrace.engine.signature import SignatureEngine, SignatureEvidence
from tests.fixtures.events import EventLog


@pytest.fixture
def signatures() -> SignatureEngine:
    return SignatureEngine()


@pytest.fixture
def machine(signatures: SignatureEngine, bus: EventBus) -> SessionStateMachine:
    return SessionStateMachine(signatures.current, bus, TimingSettings())


def _evidence(signatures: SignatureEngine, machine: SessionStateMachine, evidence: SignatureEvidence) -> None:
    machine.note_structural_change(signatures.record(evidence))


class TestLifecycle:
    def test_idle_before_first_session(self, machine: SessionStateMachine) -> None:
        assert machine.phase is SessionPhase.IDLE
        assert machine.session is None
        assert machine.ordinal == 0
        assert machine.evidence_ordinal == 1

    def test_start_classifies_then_activates(self, machine: SessionStateMachine, event_log: EventLog) -> None:
        ordinal = machine.start(SessionTrigger.RECORDER_STARTED, 10.0)

        assert ordinal == 1
        assert machine.phase is SessionPhase.ACTIVE
        assert machine.evidence_ordinal == 1
        change, state = event_log.events
        assert isinstance(change, SignatureChange)
        assert change.reset_type is ResetType.SOFT
        assert change.previous_signature is None
        assert change.session_ordinal == 1
        assert state == RecordingState(active=True, timestamp=10.0)

    def test_start_while_open_joins(self, machine: SessionStateMachine, event_log: EventLog) -> None:
        machine.start(SessionTrigger.CAPTURE_ACQUIRED, 10.0)

        assert machine.start(SessionTrigger.RECORDER_STARTED, 11.0) == 1
        assert len(event_log.recording_states) == 1

    def test_stop_reports_end_once(self, machine: SessionStateMachine, event_log: EventLog) -> None:
        machine.start(SessionTrigger.RECORDER_STARTED, 10.0)

        session = machine.stop(14.0)
        assert machine.stop(15.0) is None

        assert session is not None
        assert session.duration == 4.0
        assert session.ended_at == 14.0
        assert machine.phase is SessionPhase.IDLE
        assert event_log.recording_states == [
            RecordingState(active=True, timestamp=10.0),
            RecordingState(active=False, timestamp=14.0),
        ]

    def test_finalizing_resume_finish(self, machine: SessionStateMachine, event_log: EventLog) -> None:
        machine.start(SessionTrigger.ARTIFACT, 0.0)

        assert machine.begin_finalizing(3.0)
        assert machine.session.duration == 3.0  # type: ignore[union-attr]
        assert machine.resume(3.5)
        assert machine.session.duration is None  # type: ignore[union-attr]
        assert machine.begin_finalizing(6.0)
        session = machine.finish(8.5)

        assert session is not None
        assert session.duration == 6.0
        assert [s.active for s in event_log.recording_states] == [True, False]

    def test_finish_requires_finalizing(self, machine: SessionStateMachine) -> None:
        machine.start(SessionTrigger.ARTIFACT, 0.0)

        assert machine.finish(1.0) is None
        assert not machine.resume(1.0)
        assert machine.phase is SessionPhase.ACTIVE

    def test_ordinals_strictly_increase(self, machine: SessionStateMachine) -> None:
        ordinals = []
        for i in range(3):
            ordinals.append(machine.start(SessionTrigger.RECORDER_STARTED, float(i * 10)))
            machine.stop(float(i * 10 + 5))

        assert ordinals == [1, 2, 3]

    def test_finalize_listener_runs_before_inactive_state(self, machine: SessionStateMachine, bus: EventBus) -> None:
        order: list[str] = []
        machine.on_finalized(lambda session: order.append(f"finalized:{session.ordinal}"))
        bus.subscribe(RecordingState, lambda e: order.append(f"state:{e.active}"))

        machine.start(SessionTrigger.RECORDER_STARTED, 0.0)
        machine.stop(1.0)

        assert order == ["state:True", "finalized:1", "state:False"]

    def test_session_to_dict(self) -> None:
        session = Session(ordinal=2, trigger=SessionTrigger.ARTIFACT, started_at=1.0)

        data = session.to_dict()

        assert data["trigger"] == "artifact"
        assert data["phase"] == "starting"
        assert data["active"] is True


class TestCaptureAcquisition:
    def test_capture_while_idle_opens_session(self, machine: SessionStateMachine) -> None:
        assert machine.acquire_capture(0.0) == 1
        assert machine.session.trigger is SessionTrigger.CAPTURE_ACQUIRED  # type: ignore[union-attr]

    def test_recent_capture_joins(self, machine: SessionStateMachine, event_log: EventLog) -> None:
        machine.acquire_capture(0.0)

        assert machine.acquire_capture(4.0) == 1
        assert len(event_log.recording_states) == 1

    def test_late_capture_starts_new_take(self, machine: SessionStateMachine, event_log: EventLog) -> None:
        machine.acquire_capture(0.0)

        assert machine.acquire_capture(6.0) == 2
        assert event_log.recording_states == [
            RecordingState(active=True, timestamp=0.0),
            RecordingState(active=False, timestamp=6.0),
            RecordingState(active=True, timestamp=6.0),
        ]
        assert [c.session_ordinal for c in event_log.signature_changes] == [1, 2]

    def test_late_capture_while_finalizing_finishes_first(self, machine: SessionStateMachine) -> None:
        machine.start(SessionTrigger.ARTIFACT, 0.0)
        machine.begin_finalizing(8.0)
        finished: list[Session] = []
        machine.on_finalized(finished.append)

        machine.acquire_capture(9.0)

        assert [s.duration for s in finished] == [8.0]
        assert machine.ordinal == 2


class TestResetClassification:
    def test_unchanged_signature_is_soft(self, machine: SessionStateMachine, event_log: EventLog) -> None:
        machine.start(SessionTrigger.RECORDER_STARTED, 0.0)
        machine.stop(1.0)
        machine.start(SessionTrigger.RECORDER_STARTED, 2.0)

        assert [c.reset_type for c in event_log.signature_changes] == [ResetType.SOFT, ResetType.SOFT]
        assert machine.session.reset_type is ResetType.SOFT  # type: ignore[union-attr]

    def test_changed_signature_is_hard(
        self,
        machine: SessionStateMachine,
        signatures: SignatureEngine,
        event_log: EventLog,
    ) -> None:
        machine.start(SessionTrigger.RECORDER_STARTED, 0.0)
        machine.stop(1.0)
        signatures.record(SignatureEvidence.ENCODER_WORKER)
        machine.start(SessionTrigger.ARTIFACT, 2.0)

        change = event_log.signature_changes[-1]
        assert change.reset_type is ResetType.HARD
        assert change.previous_signature is not None
        assert change.previous_signature.encoding_type is EncodingType.BROWSER_NATIVE
        assert change.signature.encoding_type is EncodingType.WORKER_BASED_WASM

    def test_structural_change_while_idle_classifies_early(
        self,
        machine: SessionStateMachine,
        signatures: SignatureEngine,
        event_log: EventLog,
    ) -> None:
        machine.start(SessionTrigger.RECORDER_STARTED, 0.0)
        machine.stop(1.0)

        _evidence(signatures, machine, SignatureEvidence.ENCODER_WORKER)

        assert machine.reserved_ordinal == 2
        assert machine.evidence_ordinal == 2
        assert event_log.signature_changes[-1].reset_type is ResetType.HARD
        assert event_log.signature_changes[-1].session_ordinal == 2

        assert machine.start(SessionTrigger.ARTIFACT, 5.0) == 2
        assert len(event_log.signature_changes) == 2
        assert machine.session.reset_type is ResetType.HARD  # type: ignore[union-attr]
        assert machine.reserved_ordinal is None

    def test_structural_change_without_previous_session_waits(
        self,
        machine: SessionStateMachine,
        signatures: SignatureEngine,
        event_log: EventLog,
    ) -> None:
        _evidence(signatures, machine, SignatureEvidence.SCRIPT_PROCESSOR)

        assert event_log.signature_changes == []
        assert machine.reserved_ordinal is None

    def test_structural_change_during_session_does_not_reclassify(
        self,
        machine: SessionStateMachine,
        signatures: SignatureEngine,
        event_log: EventLog,
    ) -> None:
        machine.start(SessionTrigger.RECORDER_STARTED, 0.0)
        machine.stop(1.0)
        machine.start(SessionTrigger.RECORDER_STARTED, 2.0)

        _evidence(signatures, machine, SignatureEvidence.ENCODER_WORKER)

        assert len(event_log.signature_changes) == 2

    def test_destination_link_while_idle_classifies_once(
        self,
        machine: SessionStateMachine,
        event_log: EventLog,
    ) -> None:
        machine.note_destination_link()
        machine.note_destination_link()

        assert [c.session_ordinal for c in event_log.signature_changes] == [1]
        assert machine.start(SessionTrigger.CAPTURE_ACQUIRED, 1.0) == 1
        assert len(event_log.signature_changes) == 1

    def test_early_triggers_are_idempotent(
        self,
        machine: SessionStateMachine,
        signatures: SignatureEngine,
        event_log: EventLog,
    ) -> None:
        machine.start(SessionTrigger.RECORDER_STARTED, 0.0)
        machine.stop(1.0)

        _evidence(signatures, machine, SignatureEvidence.ENCODER_WORKER)
        machine.note_destination_link()
        _evidence(signatures, machine, SignatureEvidence.SCRIPT_PROCESSOR)

        assert [c.session_ordinal for c in event_log.signature_changes] == [1, 2]

    def test_reset_listener_receives_classification(self, machine: SessionStateMachine) -> None:
        resets: list[tuple[ResetType, int]] = []
        machine.on_reset(lambda reset_type, ordinal: resets.append((reset_type, ordinal)))

        machine.start(SessionTrigger.RECORDER_STARTED, 0.0)
        machine.stop(1.0)
        machine.note_destination_link()

        assert resets == [(ResetType.SOFT, 1), (ResetType.SOFT, 2)]

    def test_previous_signature_recorded_at_finish(
        self,
        machine: SessionStateMachine,
        signatures: SignatureEngine,
    ) -> None:
        signatures.record(SignatureEvidence.SCRIPT_PROCESSOR)
        machine.start(SessionTrigger.RECORDER_STARTED, 0.0)
        machine.stop(1.0)

        assert machine.previous_signature == signatures.current()
