"""Shared contracts: enums, records, outbound events, and errors.

Leaf package: nothing here imports from core/ or engine/.
"""

from audiotrace.contracts.enums import (
    AnalyserUsage,
    Confidence,
    DetectionPattern,
    EmissionMode,
    EncodingType,
    EvidenceSource,
    LinkKind,
    LocationStrategy,
    NodeRole,
    OutputPath,
    ProcessingPath,
    ResetType,
    SessionPhase,
    SessionTrigger,
)
from audiotrace.contracts.errors import InstrumentationError, ObserverError, TraceFormatError
from audiotrace.contracts.events import DetectedEncoder, OutboundEvent, RecordingState, SignatureChange
from audiotrace.contracts.records import (
    CallReport,
    DetectedEncoderRecord,
    EncodingLocation,
    GraphSnapshot,
    LinkRecord,
    LiveEdge,
    ObservedNode,
    PipelineSignature,
    Provenance,
)

__all__ = [
    "AnalyserUsage",
    "CallReport",
    "Confidence",
    "DetectedEncoder",
    "DetectedEncoderRecord",
    "DetectionPattern",
    "EmissionMode",
    "EncodingLocation",
    "EncodingType",
    "EvidenceSource",
    "GraphSnapshot",
    "InstrumentationError",
    "LinkKind",
    "LinkRecord",
    "LiveEdge",
    "LocationStrategy",
    "NodeRole",
    "ObservedNode",
    "ObserverError",
    "OutboundEvent",
    "OutputPath",
    "PipelineSignature",
    "ProcessingPath",
    "Provenance",
    "RecordingState",
    "ResetType",
    "SessionPhase",
    "SessionTrigger",
    "SignatureChange",
    "TraceFormatError",
]
