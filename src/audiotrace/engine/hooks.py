# src/audiotrace/engine/hooks.py
"""The fixed set of host operations the interception layer wraps.

Each HookTarget names one constructor or method on the host namespace and a
summarizer that turns the call into a small, plain ``args_summary``. Object
references in summaries are replaced by identities, so reports never keep a
host object alive.

A summarizer returning None suppresses the report: bulk worker traffic
(encode/data commands every few milliseconds) and non-audio capture requests
are forwarded untouched without being recorded.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from audiotrace.contracts.enums import AnalyserUsage
from audiotrace.core.identity import IdentityResolver


@dataclass(frozen=True, slots=True)
class CallInfo:
    """Everything a summarizer may look at for one completed call."""

    receiver: Any
    args: tuple[Any, ...]
    kwargs: Mapping[str, Any]
    result: Any
    resolver: IdentityResolver

    def arg(self, index: int, name: str, default: Any = None) -> Any:
        """Positional-or-keyword argument lookup."""
        if index < len(self.args):
            return self.args[index]
        return self.kwargs.get(name, default)


type Summarizer = Callable[[CallInfo], dict[str, Any] | None]


@dataclass(frozen=True, slots=True)
class HookTarget:
    """One host operation to intercept.

    Attributes:
        operation_name: Name carried in reports, e.g. "AudioNode.connect"
        owner: Attribute name of the class on the host namespace
        method: Method name, or None to intercept construction
        summarize: Builds args_summary (None suppresses the report)
        identify: Which object the report's identity refers to
        once_per_identity: Report only the first call per identity
    """

    operation_name: str
    owner: str
    method: str | None
    summarize: Summarizer
    identify: Literal["receiver", "result"] = "receiver"
    once_per_identity: bool = False

    @property
    def is_constructor(self) -> bool:
        return self.method is None


def _option(options: Any, key: str, default: Any = None) -> Any:
    """Read an option from a mapping or attribute-style options object."""
    if options is None:
        return default
    if isinstance(options, Mapping):
        return options.get(key, default)
    return getattr(options, key, default)


def _identity_or_none(resolver: IdentityResolver, obj: Any) -> str | None:
    return None if obj is None else resolver.resolve(obj)


def _int_or(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value


def _context_of(call: CallInfo) -> dict[str, Any]:
    return {"context": call.resolver.resolve(call.receiver)}


# =============================================================================
# Audio graph construction
# =============================================================================


def summarize_context(call: CallInfo) -> dict[str, Any]:
    context = call.receiver
    return {
        "sampleRate": getattr(context, "sampleRate", None),
        "destination": _identity_or_none(call.resolver, getattr(context, "destination", None)),
    }


def summarize_stream_source(call: CallInfo) -> dict[str, Any]:
    stream = call.arg(0, "stream")
    return {
        **_context_of(call),
        "stream": _identity_or_none(call.resolver, stream),
        "streamId": getattr(stream, "id", None),
    }


def summarize_stream_destination(call: CallInfo) -> dict[str, Any]:
    return {
        **_context_of(call),
        "stream": _identity_or_none(call.resolver, getattr(call.result, "stream", None)),
    }


def summarize_script_processor(call: CallInfo) -> dict[str, Any]:
    return {
        **_context_of(call),
        "bufferSize": _int_or(call.arg(0, "buffer_size"), 4096) or 4096,
        "inputChannels": _int_or(call.arg(1, "input_channels"), 2) or 2,
        "outputChannels": _int_or(call.arg(2, "output_channels"), 2) or 2,
    }


def summarize_analyser(call: CallInfo) -> dict[str, Any]:
    return {**_context_of(call), "fftSize": getattr(call.result, "fftSize", 2048)}


def _effect(kind: str) -> Summarizer:
    def summarize(call: CallInfo) -> dict[str, Any]:
        return {**_context_of(call), "kind": kind}

    return summarize


def _scalars(source: Any) -> dict[str, Any]:
    if not isinstance(source, Mapping):
        return {}
    return {str(k): v for k, v in source.items() if isinstance(v, str | int | float | bool) or v is None}


def summarize_worklet_node(call: CallInfo) -> dict[str, Any]:
    return {
        "context": _identity_or_none(call.resolver, call.arg(0, "context")),
        "processorName": str(call.arg(1, "name", "") or ""),
        "options": _scalars(_option(call.arg(2, "options"), "processorOptions")),
    }


def _usage(usage: AnalyserUsage) -> Summarizer:
    def summarize(call: CallInfo) -> dict[str, Any]:
        return {"usage": usage.value}

    return summarize


# =============================================================================
# Wiring
# =============================================================================


def summarize_connect(call: CallInfo) -> dict[str, Any]:
    return {
        "destination": _identity_or_none(call.resolver, call.arg(0, "destination")),
        "output": _int_or(call.arg(1, "output"), 0),
        "input": _int_or(call.arg(2, "input"), 0),
    }


def summarize_disconnect(call: CallInfo) -> dict[str, Any]:
    """Normalize the disconnect overloads.

    disconnect()                       -> every outgoing edge
    disconnect(output)                 -> every edge leaving that output
    disconnect(dest[, output[, input]]) -> edges to dest, optionally slot-filtered
    """
    first = call.arg(0, "destination")
    if first is None or (isinstance(first, int) and not isinstance(first, bool)):
        return {"destination": None, "output": first, "input": None}
    output = call.arg(1, "output")
    input_ = call.arg(2, "input")
    return {
        "destination": call.resolver.resolve(first),
        "output": output if isinstance(output, int) else None,
        "input": input_ if isinstance(input_, int) else None,
    }


# =============================================================================
# Capture, recording, workers, artifacts
# =============================================================================


def summarize_user_media(call: CallInfo) -> dict[str, Any] | None:
    constraints = call.arg(0, "constraints")
    if not _option(constraints, "audio"):
        return None
    return {"audio": True, "streamId": getattr(call.result, "id", None)}


def summarize_recorder(call: CallInfo) -> dict[str, Any]:
    recorder = call.receiver
    options = call.arg(1, "options")
    return {
        "stream": _identity_or_none(call.resolver, call.arg(0, "stream")),
        "mimeType": getattr(recorder, "mimeType", None) or _option(options, "mimeType"),
        "audioBitsPerSecond": getattr(recorder, "audioBitsPerSecond", None) or _option(options, "audioBitsPerSecond"),
    }


def summarize_recorder_start(call: CallInfo) -> dict[str, Any]:
    return {"timeslice": call.arg(0, "timeslice")}


def summarize_recorder_stop(call: CallInfo) -> dict[str, Any]:
    return {}


def summarize_worker(call: CallInfo) -> dict[str, Any]:
    url = call.arg(0, "url", "")
    return {"url": str(getattr(url, "href", url))}


_BULK_COMMANDS = frozenset({"encode", "data", "chunk", "process"})


def summarize_worker_message(call: CallInfo) -> dict[str, Any] | None:
    """Keep the scalar fields of control messages; drop bulk traffic unseen.

    Envelopes of the form ``{"type": "message", "message": {...}}`` are
    unwrapped and flagged as nested.
    """
    message = call.arg(0, "message")
    if not isinstance(message, Mapping):
        return None
    nested = message.get("type") == "message" and isinstance(message.get("message"), Mapping)
    if nested:
        message = message["message"]
    command = message.get("cmd") or message.get("command") or message.get("type")
    if command in _BULK_COMMANDS:
        return None
    config = message.get("config")
    fields = {**_scalars(message), **_scalars(config)}
    return {
        "command": command if isinstance(command, str) else None,
        "init": message.get("init") is True,
        "nested": nested,
        "fields": fields,
    }


def summarize_blob(call: CallInfo) -> dict[str, Any] | None:
    options = call.arg(1, "options")
    media_type = _option(options, "type")
    if not media_type:
        return None
    size = getattr(call.result if call.result is not None else call.receiver, "size", None)
    if not isinstance(size, int):
        parts = call.arg(0, "parts") or ()
        size = sum(len(p) for p in parts if isinstance(p, bytes | bytearray | str))
    return {"mediaType": str(media_type).lower(), "size": size}


# =============================================================================
# WebRTC
# =============================================================================

# stats type -> (summary key, byte counter, packet counter)
_RTP_DIRECTIONS = {
    "outbound-rtp": ("send", "bytesSent", "packetsSent"),
    "inbound-rtp": ("recv", "bytesReceived", "packetsReceived"),
}


def summarize_peer_connection(call: CallInfo) -> dict[str, Any]:
    return {"connectionState": getattr(call.receiver, "connectionState", None)}


def summarize_peer_connection_close(call: CallInfo) -> dict[str, Any]:
    return {}


def _stats_entries(report: Any) -> list[Any]:
    """Stats reports are map-like (id -> stat); plain iterables are accepted too."""
    values = report.values() if hasattr(report, "values") else report
    try:
        return list(values)
    except TypeError:
        return []


def summarize_stats(call: CallInfo) -> dict[str, Any] | None:
    """Reduce a stats report to the audio RTP streams and their codecs.

    Only the last audio stream of each direction is kept. Reports with no
    audio RTP stream are suppressed.
    """
    entries = _stats_entries(call.result)
    codecs = {_option(s, "id"): s for s in entries if _option(s, "type") == "codec"}
    summary: dict[str, Any] = {
        "connectionState": getattr(call.receiver, "connectionState", None),
        "send": None,
        "recv": None,
        "rtt": None,
    }
    for stat in entries:
        if _option(stat, "kind") != "audio":
            continue
        kind = _option(stat, "type")
        if kind == "remote-inbound-rtp":
            summary["rtt"] = _option(stat, "roundTripTime")
            continue
        if kind not in _RTP_DIRECTIONS:
            continue
        direction, bytes_key, packets_key = _RTP_DIRECTIONS[kind]
        codec = codecs.get(_option(stat, "codecId"))
        summary[direction] = {
            "codec": _option(codec, "mimeType"),
            "clockRate": _option(codec, "clockRate"),
            "channels": _option(codec, "channels"),
            "sdpFmtpLine": _option(codec, "sdpFmtpLine"),
            "bytes": _int_or(_option(stat, bytes_key), 0),
            "packets": _int_or(_option(stat, packets_key), 0),
            "targetBitrate": _option(stat, "targetBitrate"),
            "packetsLost": _option(stat, "packetsLost"),
            "jitter": _option(stat, "jitter"),
        }
    if summary["send"] is None and summary["recv"] is None:
        return None
    return summary


# =============================================================================
# The fixed target table
# =============================================================================

DEFAULT_HOOK_TARGETS: tuple[HookTarget, ...] = (
    HookTarget("AudioContext.construct", "AudioContext", None, summarize_context),
    HookTarget(
        "AudioContext.createMediaStreamSource",
        "AudioContext",
        "createMediaStreamSource",
        summarize_stream_source,
        identify="result",
    ),
    HookTarget(
        "AudioContext.createMediaStreamDestination",
        "AudioContext",
        "createMediaStreamDestination",
        summarize_stream_destination,
        identify="result",
    ),
    HookTarget(
        "AudioContext.createScriptProcessor",
        "AudioContext",
        "createScriptProcessor",
        summarize_script_processor,
        identify="result",
    ),
    HookTarget("AudioContext.createAnalyser", "AudioContext", "createAnalyser", summarize_analyser, identify="result"),
    HookTarget("AudioContext.createGain", "AudioContext", "createGain", _effect("gain"), identify="result"),
    HookTarget(
        "AudioContext.createBiquadFilter",
        "AudioContext",
        "createBiquadFilter",
        _effect("biquadFilter"),
        identify="result",
    ),
    HookTarget(
        "AudioContext.createDynamicsCompressor",
        "AudioContext",
        "createDynamicsCompressor",
        _effect("dynamicsCompressor"),
        identify="result",
    ),
    HookTarget("AudioWorkletNode.construct", "AudioWorkletNode", None, summarize_worklet_node),
    HookTarget("AudioNode.connect", "AudioNode", "connect", summarize_connect),
    HookTarget("AudioNode.disconnect", "AudioNode", "disconnect", summarize_disconnect),
    HookTarget(
        "AnalyserNode.getByteFrequencyData",
        "AnalyserNode",
        "getByteFrequencyData",
        _usage(AnalyserUsage.SPECTRUM),
        once_per_identity=True,
    ),
    HookTarget(
        "AnalyserNode.getFloatFrequencyData",
        "AnalyserNode",
        "getFloatFrequencyData",
        _usage(AnalyserUsage.SPECTRUM),
        once_per_identity=True,
    ),
    HookTarget(
        "AnalyserNode.getByteTimeDomainData",
        "AnalyserNode",
        "getByteTimeDomainData",
        _usage(AnalyserUsage.WAVEFORM),
        once_per_identity=True,
    ),
    HookTarget(
        "AnalyserNode.getFloatTimeDomainData",
        "AnalyserNode",
        "getFloatTimeDomainData",
        _usage(AnalyserUsage.WAVEFORM),
        once_per_identity=True,
    ),
    HookTarget("MediaDevices.getUserMedia", "MediaDevices", "getUserMedia", summarize_user_media, identify="result"),
    HookTarget("MediaRecorder.construct", "MediaRecorder", None, summarize_recorder),
    HookTarget("MediaRecorder.start", "MediaRecorder", "start", summarize_recorder_start),
    HookTarget("MediaRecorder.stop", "MediaRecorder", "stop", summarize_recorder_stop),
    HookTarget("Worker.construct", "Worker", None, summarize_worker),
    HookTarget("Worker.postMessage", "Worker", "postMessage", summarize_worker_message),
    HookTarget("Blob.construct", "Blob", None, summarize_blob),
    HookTarget("RTCPeerConnection.construct", "RTCPeerConnection", None, summarize_peer_connection),
    HookTarget("RTCPeerConnection.getStats", "RTCPeerConnection", "getStats", summarize_stats),
    HookTarget("RTCPeerConnection.close", "RTCPeerConnection", "close", summarize_peer_connection_close),
)
