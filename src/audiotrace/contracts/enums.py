"""All status codes, roles, and kinds used across subsystem boundaries.

Values are the exact strings carried in outbound records, so renaming a
member is a wire-format change for the bridging layer.
"""

from enum import StrEnum


class NodeRole(StrEnum):
    """Role of an observed node in an audio pipeline."""

    CONTEXT = "context"
    CAPTURE_SOURCE = "captureSource"
    CAPTURE_DESTINATION = "captureDestination"
    SPEAKER_DESTINATION = "speakerDestination"
    SCRIPT_PROCESSOR = "scriptProcessor"
    WORKLET_PROCESSOR = "workletProcessor"
    ANALYSER = "analyser"
    EFFECT = "effect"
    WORKER = "worker"
    RECORDER = "recorder"
    PEER_CONNECTION = "peerConnection"

    @property
    def is_processor(self) -> bool:
        """Processor nodes are the candidates for in-graph encoding."""
        return self in (NodeRole.SCRIPT_PROCESSOR, NodeRole.WORKLET_PROCESSOR)

    @property
    def is_destination(self) -> bool:
        return self in (NodeRole.CAPTURE_DESTINATION, NodeRole.SPEAKER_DESTINATION)


class LinkKind(StrEnum):
    """Kind of entry in the append-only link log."""

    LINK = "link"
    UNLINK = "unlink"


class ProcessingPath(StrEnum):
    """Which in-graph processing technology carries the audio."""

    NONE = "none"
    LOW_LEVEL_PROCESSOR = "lowLevelProcessor"
    WORKLET_PROCESSOR = "workletProcessor"


class EncodingType(StrEnum):
    """Which technology encodes the audio."""

    BROWSER_NATIVE = "browserNative"
    WORKER_BASED_WASM = "workerBasedWasm"
    WORKLET_BASED_WASM = "workletBasedWasm"


class OutputPath(StrEnum):
    """Where the processed audio leaves the graph."""

    SPEAKERS = "speakers"
    CAPTURED_STREAM = "capturedStream"


class ResetType(StrEnum):
    """Classification of a fingerprint change at session start.

    HARD: processing/encoding/output technology changed, discard everything.
    SOFT: same technology, new take, discard only the encoder record.
    """

    HARD = "hard"
    SOFT = "soft"
    NONE = "none"


class SessionPhase(StrEnum):
    """Lifecycle phase of a recording session (cyclic)."""

    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    FINALIZING = "finalizing"


class SessionTrigger(StrEnum):
    """Evidence that opened a session."""

    CAPTURE_ACQUIRED = "captureAcquired"
    RECORDER_STARTED = "recorderStarted"
    ARTIFACT = "artifact"


class Confidence(StrEnum):
    """Confidence attached to heuristic conclusions."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EmissionMode(StrEnum):
    """How successive artifacts relate to the recording.

    CHUNKED: each artifact is a new slice, sizes are summed.
    CUMULATIVE: each artifact contains everything so far, the larger replaces the total.
    """

    UNKNOWN = "unknown"
    CHUNKED = "chunked"
    CUMULATIVE = "cumulative"


class DetectionPattern(StrEnum):
    """Pattern that produced a Detected Encoder Record.

    Higher priority patterns are never overwritten by lower ones within the
    same session (see ``priority``).
    """

    WORKLET_CONFIG = "audioworklet-config"
    WORKLET_INIT = "audioworklet-init"
    DIRECT = "direct"
    NESTED = "nested"
    WORKER_INIT = "worker-init"
    WORKER_AUDIO_INIT = "worker-audio-init"
    RECORDER = "media-recorder"
    AUDIO_ARTIFACT = "audio-artifact"
    WEBRTC_STATS = "webrtc-stats"
    UNKNOWN = "unknown"

    @property
    def priority(self) -> int:
        return _PATTERN_PRIORITY[self]


_PATTERN_PRIORITY: dict[DetectionPattern, int] = {
    DetectionPattern.WORKLET_CONFIG: 5,
    DetectionPattern.WORKLET_INIT: 4,
    DetectionPattern.DIRECT: 4,
    DetectionPattern.NESTED: 4,
    DetectionPattern.WORKER_INIT: 3,
    DetectionPattern.WORKER_AUDIO_INIT: 3,
    DetectionPattern.RECORDER: 2,
    DetectionPattern.AUDIO_ARTIFACT: 2,
    DetectionPattern.WEBRTC_STATS: 2,
    DetectionPattern.UNKNOWN: 1,
}


class EvidenceSource(StrEnum):
    """Independent evidence channel a record was derived from."""

    WORKER_MESSAGE = "worker-postmessage"
    RECORDER = "media-recorder"
    ARTIFACT = "artifact-creation"
    WORKLET = "audio-worklet"
    WEBRTC = "rtc-stats"


class LocationStrategy(StrEnum):
    """Tag of the encoding-location heuristic that produced a result."""

    SOLE_CAPTURE_LINK = "soleCaptureLink"
    NEWEST_CAPTURE_LINK = "newestCaptureLink"
    SPEAKER_ELIMINATION = "speakerElimination"
    SOLE_PROCESSOR = "soleProcessor"
    NEWEST_REMAINING = "newestRemaining"


class AnalyserUsage(StrEnum):
    """How a monitoring tap is read by the host."""

    SPECTRUM = "spectrum"
    WAVEFORM = "waveform"
