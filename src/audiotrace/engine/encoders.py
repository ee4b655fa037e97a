# src/audiotrace/engine/encoders.py
"""Encoder detection: Detected Encoder Records from independent evidence.

Evidence channels:
- Worker control messages (init/config of an off-thread encoder)
- Worklet construction options (in-graph encoder processors)
- Recorder construction (browser-native encoding)
- Binary artifacts (built by the artifact tracker, stored here)

Records are guarded by the session ordinal they were produced for: a record
for an older session is dropped, and within one session a lower-priority
detection pattern never overwrites a higher one.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from audiotrace.contracts.enums import Confidence, DetectionPattern, EvidenceSource, ResetType
from audiotrace.contracts.events import DetectedEncoder
from audiotrace.contracts.records import DetectedEncoderRecord, Provenance
from audiotrace.core.config import DetectionSettings
from audiotrace.core.events import EventBusProtocol

logger = structlog.get_logger(__name__)

BROWSER_NATIVE_ENCODER = "browser-native"

_DIRECT_CODECS = frozenset({"opus", "pcm", "aac", "mp3", "flac", "vorbis"})

_EXPLICIT_FIELDS = ("bitRate", "kbps", "mp3BitRate", "encoderSampleRate", "encoderBitRate", "mode")

_INIT_COMMANDS = frozenset({"init", "initialize"})

# Codec-specific option names, checked in order
_CODEC_FIELDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("mp3BitRate", "mp3Mode", "lameConfig"), "mp3"),
    (("aacProfile", "aacObjectType"), "aac"),
    (("flacCompression", "flacBlockSize"), "flac"),
    (("vorbisQuality",), "vorbis"),
    (("encoderApplication", "application"), "opus"),
    (("wavFormat",), "pcm"),
)

# Resource-name keywords, checked in order
_NAME_CODECS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("lame", "mp3"), "mp3"),
    (("opus",), "opus"),
    (("aac", "fdk"), "aac"),
    (("vorbis", "ogg"), "vorbis"),
    (("flac",), "flac"),
    (("wav",), "pcm"),
)

_NAME_LIBRARIES: tuple[tuple[str, str], ...] = (
    ("lame", "LAME"),
    ("fdk", "FDK AAC"),
    ("opus", "libopus"),
    ("vorbis", "libvorbis"),
    ("flac", "libFLAC"),
)

_DEFAULT_LIBRARIES: dict[str, str] = {
    "mp3": "LAME",
    "opus": "libopus",
    "aac": "FDK AAC",
    "vorbis": "libvorbis",
    "flac": "libFLAC",
}

_CONTAINER_PATH_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("ogg",), "ogg"),
    (("webm",), "webm"),
    (("mp3", "lame"), "mp3"),
    (("aac", "m4a"), "aac"),
    (("flac",), "flac"),
)


def parse_mime_type(mime_type: str | None) -> tuple[str | None, str | None]:
    """Split a media type into (container, codec).

    Example:
        parse_mime_type("audio/webm;codecs=opus")  # ("webm", "opus")
        parse_mime_type("audio/opus")              # (None, "opus")
    """
    if not mime_type:
        return None, None
    essence, _, parameters = mime_type.partition(";")
    _, _, subtype = essence.strip().lower().partition("/")
    container: str | None = None
    codec: str | None = None
    if subtype in _DIRECT_CODECS:
        codec = subtype
    elif subtype:
        container = subtype
    for parameter in parameters.split(";"):
        key, _, value = parameter.strip().partition("=")
        if key.strip().lower() in ("codecs", "codec") and value:
            codec = value.strip().strip("\"'").split(",")[0].strip().lower() or codec
    return container, codec


def media_type_essence(mime_type: str) -> str:
    """Lower-cased media type without parameters ("audio/webm;codecs=opus" -> "audio/webm")."""
    return mime_type.partition(";")[0].strip().lower()


def _first_match(name: str, table: tuple[tuple[tuple[str, ...], str], ...]) -> str | None:
    lowered = name.lower()
    for keywords, value in table:
        if any(k in lowered for k in keywords):
            return value
    return None


def _codec_from_fields(fields: Mapping[str, Any]) -> str | None:
    for keys, codec in _CODEC_FIELDS:
        if any(fields.get(k) is not None for k in keys):
            return codec
    declared = fields.get("codec") or fields.get("format")
    if isinstance(declared, str) and declared.lower() in _DIRECT_CODECS:
        return declared.lower()
    return None


def _library(codec: str, resource: str | None) -> str | None:
    if resource:
        lowered = resource.lower()
        for keyword, library in _NAME_LIBRARIES:
            if keyword in lowered:
                return library
    return _DEFAULT_LIBRARIES.get(codec)


def _encoder_process(codec: str) -> str:
    if codec == "pcm":
        return "pcm"
    if codec == "unknown":
        return "wasm"
    return f"{codec}-wasm"


def _container(codec: str, fields: Mapping[str, Any]) -> str | None:
    if fields.get("streamPages") is not None or fields.get("maxFramesPerPage") is not None:
        return "ogg"
    path = fields.get("encoderPath")
    if isinstance(path, str):
        from_path = _first_match(path, _CONTAINER_PATH_KEYWORDS)
        if from_path is not None:
            return from_path
    if codec == "pcm":
        return "wav"
    if codec == "unknown":
        return None
    return codec


def _number(fields: Mapping[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = fields.get(key)
        if isinstance(value, bool) or not isinstance(value, int | float):
            continue
        if value > 0:
            return int(value)
    return None


def _bitrate(fields: Mapping[str, Any]) -> int | None:
    value = _number(fields, "encoderBitRate", "bitRate", "bitrate", "mp3BitRate", "kbps")
    if value is None:
        return None
    # lamejs-style configs declare kilobits
    return value * 1000 if value < 1000 else value


class EncoderDetector:
    """Turns worker, worklet and recorder evidence into Detected Encoder Records.

    Remembers each recorder's profile so that a recorder started again in a
    later session re-reports it; hard resets forget those profiles.
    """

    def __init__(self, settings: DetectionSettings) -> None:
        self._settings = settings
        self._worker_urls: dict[str, str] = {}
        self._recorder_profiles: dict[str, DetectedEncoderRecord] = {}

    def note_worker(self, identity: str, url: str) -> None:
        self._worker_urls[identity] = url

    def forget(self) -> None:
        """Discard cached encoder knowledge (hard reset)."""
        self._recorder_profiles.clear()

    def _record(
        self,
        *,
        fields: Mapping[str, Any],
        resource: str | None,
        explicit: bool,
        source: EvidenceSource,
        pattern: DetectionPattern,
        node: str | None,
    ) -> DetectedEncoderRecord:
        codec = _codec_from_fields(fields)
        if codec is None and resource:
            codec = _first_match(resource, _NAME_CODECS)
        if codec is None:
            codec = "mp3" if explicit else "unknown"

        if codec == "unknown":
            confidence = Confidence.LOW
        elif explicit:
            confidence = Confidence.HIGH
        else:
            confidence = Confidence.MEDIUM

        return DetectedEncoderRecord(
            codec=codec,
            container=_container(codec, fields),
            encoder=_encoder_process(codec),
            library=_library(codec, resource),
            bitrate=_bitrate(fields),
            sample_rate=_number(fields, "encoderSampleRate", "sampleRate", "rate") or self._settings.default_sample_rate,
            channels=_number(fields, "numberOfChannels", "channels", "numChannels", "channelCount")
            or self._settings.default_channels,
            provenance=Provenance(source=source, pattern=pattern, confidence=confidence),
            node=node,
        )

    def from_worker_message(self, identity: str | None, summary: Mapping[str, Any]) -> DetectedEncoderRecord | None:
        """Classify one worker control message.

        Patterns:
            nested:            {"type": "message", "message": {"command": "encode-init", "config": {...}}}
            direct:            {"command": "init", "encoderSampleRate": ..., ...}
            worker-init:       init command with explicit encoder fields
            worker-audio-init: init command with sampleRate and bufferSize only
        """
        fields: Mapping[str, Any] = summary.get("fields") or {}
        command = summary.get("command")
        is_init = command in _INIT_COMMANDS or summary.get("init") is True
        explicit = any(fields.get(k) is not None for k in _EXPLICIT_FIELDS)
        has_rate = fields.get("encoderSampleRate") is not None or fields.get("sampleRate") is not None

        if summary.get("nested") and command == "encode-init":
            pattern = DetectionPattern.NESTED
        elif command == "init" and fields.get("encoderSampleRate") is not None:
            pattern = DetectionPattern.DIRECT
        elif is_init and explicit:
            pattern = DetectionPattern.WORKER_INIT
        elif is_init and has_rate and fields.get("bufferSize") is not None:
            pattern = DetectionPattern.WORKER_AUDIO_INIT
        else:
            return None

        resource = self._worker_urls.get(identity) if identity is not None else None
        record = self._record(
            fields=fields,
            resource=resource,
            explicit=pattern is not DetectionPattern.WORKER_AUDIO_INIT,
            source=EvidenceSource.WORKER_MESSAGE,
            pattern=pattern,
            node=identity,
        )
        logger.debug(
            "Worker encoder init detected",
            worker=identity,
            pattern=pattern.value,
            codec=record.codec,
            diagnostic=True,
        )
        return record

    def from_worklet(
        self,
        identity: str | None,
        processor_name: str,
        options: Mapping[str, Any],
        *,
        encoder_named: bool,
    ) -> DetectedEncoderRecord | None:
        """Classify a worklet processor from its construction options.

        A full encoder configuration wins; otherwise an encoder-named
        processor with a sample rate is an initialization.
        """
        if any(options.get(k) is not None for k in ("encoderSampleRate", "encoderBitRate", "encoderApplication")):
            pattern = DetectionPattern.WORKLET_CONFIG
        elif encoder_named and (options.get("sampleRate") is not None or options.get("rate") is not None):
            pattern = DetectionPattern.WORKLET_INIT
        else:
            return None
        return self._record(
            fields=options,
            resource=processor_name,
            explicit=pattern is DetectionPattern.WORKLET_CONFIG,
            source=EvidenceSource.WORKLET,
            pattern=pattern,
            node=identity,
        )

    def from_recorder(
        self,
        identity: str | None,
        mime_type: str | None,
        bits_per_second: int | None,
    ) -> DetectedEncoderRecord:
        """Browser-native record from recorder construction."""
        container, codec = parse_mime_type(mime_type)
        info = self._settings.media_types.get(media_type_essence(mime_type)) if mime_type else None
        if codec is None and info is not None:
            codec = info.codec
        if container is None and info is not None:
            container = info.container
        record = DetectedEncoderRecord(
            codec=codec or "unknown",
            container=container,
            encoder=BROWSER_NATIVE_ENCODER,
            library=None,
            bitrate=bits_per_second if isinstance(bits_per_second, int) and bits_per_second > 0 else None,
            sample_rate=None,
            channels=None,
            provenance=Provenance(
                source=EvidenceSource.RECORDER,
                pattern=DetectionPattern.RECORDER,
                confidence=Confidence.HIGH if codec else Confidence.LOW,
            ),
            media_type=mime_type,
            node=identity,
        )
        if identity is not None:
            self._recorder_profiles[identity] = record
        return record

    def recorder_profile(self, identity: str | None) -> DetectedEncoderRecord | None:
        if identity is None:
            return None
        return self._recorder_profiles.get(identity)


class EncoderRecordStore:
    """Holds the current Detected Encoder Record and emits replacements.

    Replacement rules:
    1. A record for an older session ordinal than the stored one is stale
    2. At equal ordinal, a lower-priority pattern never overwrites a higher one
    3. A final artifact record always replaces a live artifact estimate
    """

    def __init__(self, bus: EventBusProtocol) -> None:
        self._bus = bus
        self._record: DetectedEncoderRecord | None = None
        self._ordinal = 0
        self._floor = 0

    @property
    def record(self) -> DetectedEncoderRecord | None:
        return self._record

    @property
    def ordinal(self) -> int:
        """Session ordinal of the stored record (0 when empty)."""
        return self._ordinal if self._record is not None else 0

    def offer(self, record: DetectedEncoderRecord, ordinal: int) -> bool:
        """Store and emit ``record`` unless a guard rejects it."""
        current = self._record
        if ordinal < self._floor or (current is not None and ordinal < self._ordinal):
            logger.debug("Stale encoder record dropped", ordinal=ordinal, stored_ordinal=self._ordinal)
            return False
        if current is not None and ordinal == self._ordinal:
            replaces_estimate = current.live_estimate and not record.live_estimate
            if record.provenance.pattern.priority < current.provenance.pattern.priority and not replaces_estimate:
                logger.debug(
                    "Lower priority encoder record ignored",
                    pattern=record.provenance.pattern.value,
                    stored_pattern=current.provenance.pattern.value,
                )
                return False

        self._record = record
        self._ordinal = ordinal
        self._bus.emit(DetectedEncoder(record=record, session_ordinal=ordinal))
        return True

    def reset(self, reset_type: ResetType, ordinal: int) -> None:
        """Apply a session reset classified for ``ordinal``.

        Hard resets drop the stored record unconditionally. Soft resets drop
        it only when it belongs to an earlier session, so evidence gathered
        for the upcoming session just before it started survives.
        """
        self._floor = max(self._floor, ordinal)
        if self._record is None:
            return
        if reset_type is ResetType.HARD or self._ordinal < ordinal:
            self._record = None
            self._ordinal = 0

    def clear(self) -> None:
        self._record = None
        self._ordinal = 0
        self._floor = 0
