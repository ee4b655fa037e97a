"""Outbound records handed to the bridging collaborator.

These cross the engine boundary: the bridge subscribes to them on the
engine's EventBus and owns them once delivered. ``to_dict()`` produces the
plain wire shape, tagged with ``type``.
"""

from dataclasses import dataclass
from typing import Any

from audiotrace.contracts.enums import ResetType
from audiotrace.contracts.records import DetectedEncoderRecord, PipelineSignature


@dataclass(frozen=True, slots=True)
class SignatureChange:
    """Emitted once per session when its reset type is classified.

    Attributes:
        reset_type: HARD when any signature field changed, SOFT otherwise
        signature: Signature computed at classification time
        previous_signature: Final signature of the previous session, if any
        session_ordinal: Ordinal of the session being started
    """

    reset_type: ResetType
    signature: PipelineSignature
    previous_signature: PipelineSignature | None
    session_ordinal: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "SIGNATURE_CHANGE",
            "resetType": self.reset_type.value,
            "signature": self.signature.to_dict(),
            "previousSignature": self.previous_signature.to_dict() if self.previous_signature else None,
            "sessionOrdinal": self.session_ordinal,
        }


@dataclass(frozen=True, slots=True)
class RecordingState:
    """Emitted when recording becomes active or inactive."""

    active: bool
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {"type": "RECORDING_STATE", "active": self.active, "timestamp": self.timestamp}


@dataclass(frozen=True, slots=True)
class DetectedEncoder:
    """Emitted when the stored Detected Encoder Record is replaced."""

    record: DetectedEncoderRecord
    session_ordinal: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": "DETECTED_ENCODER", "record": self.record.to_dict(), "sessionOrdinal": self.session_ordinal}


type OutboundEvent = SignatureChange | RecordingState | DetectedEncoder
