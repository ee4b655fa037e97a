# src/audiotrace/engine/signature.py
"""Pipeline signature: a fingerprint of processing, encoding and output technology.

The signature is a pure function of the accumulated evidence history:

- processing path follows the most recent processor construction
- encoding type follows the most recent encoder evidence (encoder worker,
  encoder-named worklet, recorder); with none, encoding is browser native
- output path is the captured stream once any link into a capture-stream
  destination has been logged, otherwise the speakers

Evaluating it twice with no new evidence yields the same value.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum

import structlog

from audiotrace.contracts.enums import EncodingType, OutputPath, ProcessingPath
from audiotrace.contracts.records import PipelineSignature

logger = structlog.get_logger(__name__)


class SignatureEvidence(StrEnum):
    """Structural evidence that feeds the signature."""

    SCRIPT_PROCESSOR = "scriptProcessor"
    WORKLET_PROCESSOR = "workletProcessor"
    ENCODER_WORKLET = "encoderWorklet"
    ENCODER_WORKER = "encoderWorker"
    RECORDER = "recorder"
    CAPTURE_LINK = "captureLink"


_PROCESSING: dict[SignatureEvidence, ProcessingPath] = {
    SignatureEvidence.SCRIPT_PROCESSOR: ProcessingPath.LOW_LEVEL_PROCESSOR,
    SignatureEvidence.WORKLET_PROCESSOR: ProcessingPath.WORKLET_PROCESSOR,
    SignatureEvidence.ENCODER_WORKLET: ProcessingPath.WORKLET_PROCESSOR,
}

_ENCODING: dict[SignatureEvidence, EncodingType] = {
    SignatureEvidence.ENCODER_WORKER: EncodingType.WORKER_BASED_WASM,
    SignatureEvidence.ENCODER_WORKLET: EncodingType.WORKLET_BASED_WASM,
    SignatureEvidence.RECORDER: EncodingType.BROWSER_NATIVE,
}


def is_encoder_resource(name: str | None, keywords: Sequence[str]) -> bool:
    """Keyword classification of a worker URL or worklet processor name."""
    if not name:
        return False
    lowered = name.lower()
    return any(keyword in lowered for keyword in keywords)


def compute_signature(history: Sequence[SignatureEvidence]) -> PipelineSignature:
    """Derive the signature from an evidence history (oldest first)."""
    processing = ProcessingPath.NONE
    encoding = EncodingType.BROWSER_NATIVE
    output = OutputPath.SPEAKERS
    for evidence in history:
        processing = _PROCESSING.get(evidence, processing)
        encoding = _ENCODING.get(evidence, encoding)
        if evidence is SignatureEvidence.CAPTURE_LINK:
            output = OutputPath.CAPTURED_STREAM
    return PipelineSignature(processing_path=processing, encoding_type=encoding, output_path=output)


class SignatureEngine:
    """Accumulates signature evidence and evaluates the current signature."""

    def __init__(self) -> None:
        self._history: list[SignatureEvidence] = []
        self._current = compute_signature(())

    @property
    def history(self) -> tuple[SignatureEvidence, ...]:
        return tuple(self._history)

    def current(self) -> PipelineSignature:
        return self._current

    def record(self, evidence: SignatureEvidence) -> tuple[str, ...]:
        """Append evidence and return the signature fields it changed."""
        self._history.append(evidence)
        previous = self._current
        self._current = compute_signature(self._history)
        changed = self._current.diff(previous)
        if changed:
            logger.debug(
                "Pipeline signature changed",
                evidence=evidence.value,
                changed=list(changed),
                signature=self._current.to_dict(),
            )
        return changed
