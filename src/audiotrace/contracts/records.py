"""Structured records exchanged between engine components.

Every record is a frozen dataclass with ``to_dict()`` returning plain
JSON-compatible data, so records can cross a process or context boundary
without carrying behavior.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from audiotrace.contracts.enums import (
    Confidence,
    DetectionPattern,
    EncodingType,
    EvidenceSource,
    LinkKind,
    LocationStrategy,
    NodeRole,
    OutputPath,
    ProcessingPath,
)


@dataclass(frozen=True, slots=True)
class CallReport:
    """One intercepted constructor or method call.

    Attributes:
        operation_name: Fixed operation name, e.g. "AudioNode.connect"
        identity: Identity of the constructed object or method receiver
        args_summary: Small scalar summary of the arguments and result.
            Object references appear as identities, never as live objects.
        timestamp: Clock reading (seconds) when the call returned
    """

    operation_name: str
    identity: str | None
    args_summary: dict[str, Any]
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_name": self.operation_name,
            "identity": self.identity,
            "args_summary": dict(self.args_summary),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CallReport:
        """Rebuild a report from its ``to_dict()`` form (used by trace replay)."""
        return cls(
            operation_name=data["operation_name"],
            identity=data.get("identity"),
            args_summary=dict(data.get("args_summary") or {}),
            timestamp=float(data["timestamp"]),
        )


@dataclass(frozen=True, slots=True)
class ObservedNode:
    """One instrumented object in an audio pipeline.

    Nodes hold identities only; the underlying host object is never
    referenced, so recording a node never extends its lifetime.
    """

    identity: str
    role: NodeRole
    context: str | None
    sequence: int
    created_at: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "role": self.role.value,
            "context": self.context,
            "sequence": self.sequence,
            "created_at": self.created_at,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class LinkRecord:
    """One entry of the append-only link log.

    ``output`` and ``input`` are ``None`` on unlink records that match any slot.
    """

    kind: LinkKind
    source: str
    destination: str | None
    output: int | None
    input: int | None
    context: str | None
    sequence: int
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "source": self.source,
            "destination": self.destination,
            "output": self.output,
            "input": self.input,
            "context": self.context,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class PipelineSignature:
    """Compact fingerprint of processing / encoding / output technology."""

    processing_path: ProcessingPath
    encoding_type: EncodingType
    output_path: OutputPath

    def diff(self, other: PipelineSignature | None) -> tuple[str, ...]:
        """Return the names of fields that differ from ``other``.

        An absent previous signature differs in nothing.
        """
        if other is None:
            return ()
        return tuple(
            name
            for name in ("processing_path", "encoding_type", "output_path")
            if getattr(self, name) != getattr(other, name)
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "processingPath": self.processing_path.value,
            "encodingType": self.encoding_type.value,
            "outputPath": self.output_path.value,
        }


@dataclass(frozen=True, slots=True)
class Provenance:
    """Where a detected encoder record came from and how far to trust it."""

    source: EvidenceSource
    pattern: DetectionPattern
    confidence: Confidence

    def to_dict(self) -> dict[str, str]:
        return {
            "source": self.source.value,
            "pattern": self.pattern.value,
            "confidence": self.confidence.value,
        }


@dataclass(frozen=True, slots=True)
class DetectedEncoderRecord:
    """Best-effort description of the active encoder.

    Attributes:
        codec: Codec name (opus, mp3, aac, vorbis, flac, pcm) or "unknown"
        container: Container format, None when not determinable
        encoder: Process type such as "opus-wasm" or "browser-native"
        library: Underlying encoder library (libopus, LAME, ...)
        bitrate: Bits per second; explicit when the host declared it, derived otherwise
        sample_rate: Hz, None when unknown
        channels: Channel count, None when unknown
        media_type: Declared media type of the artifact or recorder
        live_estimate: True while the values are still being refined
        duration: Seconds, fixed at finalize for artifact-derived records
        provenance: Evidence source, pattern, and confidence
        node: Identity of the emitting worker/recorder/worklet/connection when known
        codec_parameters: Negotiated codec parameters (e.g. Opus fmtp fields)
    """

    codec: str
    container: str | None
    encoder: str | None
    library: str | None
    bitrate: int | None
    sample_rate: int | None
    channels: int | None
    provenance: Provenance
    media_type: str | None = None
    live_estimate: bool = False
    duration: float | None = None
    node: str | None = None
    codec_parameters: dict[str, Any] = field(default_factory=dict)

    def with_values(self, **changes: Any) -> DetectedEncoderRecord:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "codec": self.codec,
            "container": self.container,
            "encoder": self.encoder,
            "library": self.library,
            "bitrate": self.bitrate,
            "sampleRate": self.sample_rate,
            "channels": self.channels,
            "mediaType": self.media_type,
            "liveEstimate": self.live_estimate,
            "duration": self.duration,
            "node": self.node,
            "codecParameters": dict(self.codec_parameters),
            "provenance": self.provenance.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class EncodingLocation:
    """Node most likely producing encoded output, with the strategy that chose it."""

    node: str
    confidence: Confidence
    strategy: LocationStrategy

    def to_dict(self) -> dict[str, str]:
        return {
            "nodeIdentity": self.node,
            "confidence": self.confidence.value,
            "strategy": self.strategy.value,
        }


@dataclass(frozen=True, slots=True)
class LiveEdge:
    """A currently wired edge of the topology graph."""

    source: str
    destination: str
    output: int
    input: int

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "destination": self.destination, "output": self.output, "input": self.input}


@dataclass(frozen=True, slots=True)
class GraphSnapshot:
    """Point-in-time copy of the topology for one pipeline-context (or all)."""

    context: str | None
    nodes: tuple[ObservedNode, ...]
    edges: tuple[LiveEdge, ...]
    log: tuple[LinkRecord, ...]
    main_chain: tuple[str, ...]
    monitors: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "context": self.context,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "log": [r.to_dict() for r in self.log],
            "mainChain": list(self.main_chain),
            "monitors": list(self.monitors),
        }
