# src/audiotrace/engine/router.py
"""ReportRouter: translate call reports into component evidence.

The router is the only observer the engine registers on the interception
layer. Reports are plain data, so the same router consumes live reports and
reports replayed from a recorded trace.

Dispatch is a table keyed by operation name. Unknown operations are ignored.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from audiotrace.contracts.enums import AnalyserUsage, NodeRole, SessionTrigger
from audiotrace.contracts.records import CallReport, DetectedEncoderRecord
from audiotrace.core.config import DetectionSettings
from audiotrace.engine.artifacts import ArtifactTracker
from audiotrace.engine.encoders import EncoderDetector, EncoderRecordStore
from audiotrace.engine.hookspecs import hookimpl
from audiotrace.engine.session import SessionStateMachine
from audiotrace.engine.signature import SignatureEngine, SignatureEvidence, is_encoder_resource
from audiotrace.engine.topology import TopologyGraph
from audiotrace.engine.webrtc import PeerConnectionMonitor

logger = structlog.get_logger(__name__)

type Handler = Callable[[CallReport], None]


def _summary_int(summary: dict[str, Any], key: str) -> int | None:
    value = summary.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


class ReportRouter:
    """Routes each CallReport to the component that owns its evidence."""

    def __init__(
        self,
        *,
        topology: TopologyGraph,
        signatures: SignatureEngine,
        sessions: SessionStateMachine,
        detector: EncoderDetector,
        store: EncoderRecordStore,
        artifacts: ArtifactTracker,
        webrtc: PeerConnectionMonitor,
        detection: DetectionSettings,
    ) -> None:
        self._topology = topology
        self._signatures = signatures
        self._sessions = sessions
        self._detector = detector
        self._store = store
        self._artifacts = artifacts
        self._webrtc = webrtc
        self._detection = detection
        self.enabled = True
        self._handlers: dict[str, Handler] = {
            "AudioContext.construct": self._context_constructed,
            "AudioContext.createMediaStreamSource": self._node(NodeRole.CAPTURE_SOURCE, "streamId"),
            "AudioContext.createMediaStreamDestination": self._node(NodeRole.CAPTURE_DESTINATION, "stream"),
            "AudioContext.createScriptProcessor": self._script_processor_created,
            "AudioContext.createAnalyser": self._node(NodeRole.ANALYSER, "fftSize"),
            "AudioContext.createGain": self._node(NodeRole.EFFECT, "kind"),
            "AudioContext.createBiquadFilter": self._node(NodeRole.EFFECT, "kind"),
            "AudioContext.createDynamicsCompressor": self._node(NodeRole.EFFECT, "kind"),
            "AudioWorkletNode.construct": self._worklet_constructed,
            "AudioNode.connect": self._connected,
            "AudioNode.disconnect": self._disconnected,
            "AnalyserNode.getByteFrequencyData": self._analyser_read,
            "AnalyserNode.getFloatFrequencyData": self._analyser_read,
            "AnalyserNode.getByteTimeDomainData": self._analyser_read,
            "AnalyserNode.getFloatTimeDomainData": self._analyser_read,
            "MediaDevices.getUserMedia": self._capture_acquired,
            "MediaRecorder.construct": self._recorder_constructed,
            "MediaRecorder.start": self._recorder_started,
            "MediaRecorder.stop": self._recorder_stopped,
            "Worker.construct": self._worker_constructed,
            "Worker.postMessage": self._worker_message,
            "Blob.construct": self._blob_constructed,
            "RTCPeerConnection.construct": self._peer_connection_opened,
            "RTCPeerConnection.getStats": self._peer_connection_stats,
            "RTCPeerConnection.close": self._peer_connection_closed,
        }

    @property
    def operations(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    @hookimpl
    def audiotrace_observe_call(self, report: CallReport) -> None:
        self.route(report)

    def route(self, report: CallReport) -> bool:
        """Dispatch one report. Returns False when it was not handled."""
        if not self.enabled:
            return False
        handler = self._handlers.get(report.operation_name)
        if handler is None:
            logger.debug("Unrouted operation", operation=report.operation_name)
            return False
        handler(report)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _offer(self, record: DetectedEncoderRecord | None) -> None:
        if record is not None:
            self._store.offer(record, self._sessions.evidence_ordinal)

    def _evidence(self, evidence: SignatureEvidence) -> None:
        changed = self._signatures.record(evidence)
        self._sessions.note_structural_change(changed)

    def _node(self, role: NodeRole, *metadata_keys: str) -> Handler:
        def handle(report: CallReport) -> None:
            if report.identity is None:
                return
            summary = report.args_summary
            self._topology.add_node(
                report.identity,
                role,
                context=summary.get("context"),
                timestamp=report.timestamp,
                metadata={k: summary.get(k) for k in metadata_keys},
            )

        return handle

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------

    def _context_constructed(self, report: CallReport) -> None:
        if report.identity is None:
            return
        summary = report.args_summary
        self._topology.add_node(
            report.identity,
            NodeRole.CONTEXT,
            context=report.identity,
            timestamp=report.timestamp,
            metadata={"sampleRate": summary.get("sampleRate")},
        )
        destination = summary.get("destination")
        if destination:
            self._topology.add_node(
                destination,
                NodeRole.SPEAKER_DESTINATION,
                context=report.identity,
                timestamp=report.timestamp,
            )

    def _script_processor_created(self, report: CallReport) -> None:
        self._node(NodeRole.SCRIPT_PROCESSOR, "bufferSize", "inputChannels", "outputChannels")(report)
        self._evidence(SignatureEvidence.SCRIPT_PROCESSOR)

    def _worklet_constructed(self, report: CallReport) -> None:
        summary = report.args_summary
        name = summary.get("processorName") or ""
        encoder_named = is_encoder_resource(name, self._detection.encoder_keywords)
        self._node(NodeRole.WORKLET_PROCESSOR, "processorName")(report)
        if report.identity is not None:
            self._topology.annotate(report.identity, encoderNamed=encoder_named)
        self._evidence(SignatureEvidence.ENCODER_WORKLET if encoder_named else SignatureEvidence.WORKLET_PROCESSOR)
        self._offer(
            self._detector.from_worklet(
                report.identity,
                name,
                summary.get("options") or {},
                encoder_named=encoder_named,
            )
        )

    def _connected(self, report: CallReport) -> None:
        if report.identity is None:
            return
        summary = report.args_summary
        destination = summary.get("destination")
        record = self._topology.link(
            report.identity,
            destination,
            output=_summary_int(summary, "output") or 0,
            input=_summary_int(summary, "input") or 0,
            timestamp=report.timestamp,
        )
        if record is None or destination is None:
            return
        target = self._topology.node(destination)
        if target is None or not target.role.is_destination:
            return
        self._sessions.note_destination_link()
        if target.role is NodeRole.CAPTURE_DESTINATION:
            self._evidence(SignatureEvidence.CAPTURE_LINK)

    def _disconnected(self, report: CallReport) -> None:
        if report.identity is None:
            return
        summary = report.args_summary
        self._topology.unlink(
            report.identity,
            summary.get("destination"),
            output=_summary_int(summary, "output"),
            input=_summary_int(summary, "input"),
            timestamp=report.timestamp,
        )

    def _analyser_read(self, report: CallReport) -> None:
        if report.identity is None:
            return
        usage = report.args_summary.get("usage")
        if usage in {u.value for u in AnalyserUsage}:
            self._topology.annotate(report.identity, usage=usage)

    # ------------------------------------------------------------------
    # Capture and recording
    # ------------------------------------------------------------------

    def _capture_acquired(self, report: CallReport) -> None:
        self._sessions.acquire_capture(report.timestamp)
        self._artifacts.note_capture_acquired()

    def _recorder_constructed(self, report: CallReport) -> None:
        summary = report.args_summary
        if report.identity is not None:
            self._topology.add_node(
                report.identity,
                NodeRole.RECORDER,
                context=None,
                timestamp=report.timestamp,
                metadata={"mimeType": summary.get("mimeType"), "stream": summary.get("stream")},
            )
        self._evidence(SignatureEvidence.RECORDER)
        self._offer(
            self._detector.from_recorder(
                report.identity,
                summary.get("mimeType"),
                _summary_int(summary, "audioBitsPerSecond"),
            )
        )

    def _recorder_started(self, report: CallReport) -> None:
        ordinal = self._sessions.start(SessionTrigger.RECORDER_STARTED, report.timestamp)
        profile = self._detector.recorder_profile(report.identity)
        if profile is not None and not (self._store.record is profile and self._store.ordinal == ordinal):
            self._store.offer(profile, ordinal)

    def _recorder_stopped(self, report: CallReport) -> None:
        self._sessions.stop(report.timestamp)

    # ------------------------------------------------------------------
    # Workers and artifacts
    # ------------------------------------------------------------------

    def _worker_constructed(self, report: CallReport) -> None:
        if report.identity is None:
            return
        url = str(report.args_summary.get("url") or "")
        self._topology.add_node(
            report.identity,
            NodeRole.WORKER,
            context=None,
            timestamp=report.timestamp,
            metadata={"url": url},
        )
        self._detector.note_worker(report.identity, url)
        if is_encoder_resource(url, self._detection.encoder_keywords):
            self._evidence(SignatureEvidence.ENCODER_WORKER)

    def _worker_message(self, report: CallReport) -> None:
        self._offer(self._detector.from_worker_message(report.identity, report.args_summary))

    def _blob_constructed(self, report: CallReport) -> None:
        summary = report.args_summary
        media_type = summary.get("mediaType")
        size = _summary_int(summary, "size")
        if isinstance(media_type, str) and size is not None:
            self._artifacts.observe(media_type, size, report.timestamp)

    # ------------------------------------------------------------------
    # WebRTC
    # ------------------------------------------------------------------

    def _peer_connection_opened(self, report: CallReport) -> None:
        if report.identity is None:
            return
        state = report.args_summary.get("connectionState")
        self._topology.add_node(
            report.identity,
            NodeRole.PEER_CONNECTION,
            context=None,
            timestamp=report.timestamp,
            metadata={"connectionState": state},
        )
        self._webrtc.opened(report.identity, report.timestamp, state)

    def _peer_connection_stats(self, report: CallReport) -> None:
        if report.identity is None:
            return
        if self._topology.node(report.identity) is None:
            self._topology.add_node(report.identity, NodeRole.PEER_CONNECTION, context=None, timestamp=report.timestamp)
        state = self._webrtc.observe_stats(report.identity, report.args_summary, report.timestamp)
        self._topology.annotate(
            report.identity,
            connectionState=state.connection_state,
            sendCodec=state.send_codec,
            sendBitrate=state.send_bitrate,
            recvCodec=state.recv_codec,
            recvBitrate=state.recv_bitrate,
            rtt=state.rtt,
        )

    def _peer_connection_closed(self, report: CallReport) -> None:
        if report.identity is None:
            return
        self._webrtc.closed(report.identity)
        self._topology.annotate(report.identity, connectionState="closed")
