# src/audiotrace/engine/webrtc.py
"""WebRTC peer-connection monitoring.

A peer connection encodes outbound audio inside the host, so its encoder is
only visible through the connection's stats report. The monitor:

- tracks every constructed connection until it is closed
- polls each connection's stats on the Scheduler; the poll goes through the
  intercepted ``getStats``, so polled stats arrive as ordinary reports and
  replay like any other
- derives send and receive bitrates from byte-counter deltas between two
  stats reports
- offers a live Detected Encoder Record for the outbound audio stream,
  carrying the negotiated codec and its Opus fmtp parameters

Receive-side figures describe the remote encoder; they are kept on the
connection state (and the topology node) but never become the surface's
Detected Encoder Record.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from audiotrace.contracts.enums import Confidence, DetectionPattern, EvidenceSource
from audiotrace.contracts.records import DetectedEncoderRecord, Provenance
from audiotrace.core.config import TimingSettings
from audiotrace.core.scheduling import Cancelable, Scheduler
from audiotrace.engine.encoders import EncoderRecordStore
from audiotrace.engine.session import SessionStateMachine

logger = structlog.get_logger(__name__)

# Issues one stats poll for a connection; False once the connection is gone
type StatsPoll = Callable[[str], bool]

_INT_PARAMETERS = frozenset({"minptime", "maxptime", "ptime", "maxaveragebitrate", "maxplaybackrate"})
_FLAG_PARAMETERS = frozenset({"stereo", "sprop-stereo", "cbr", "useinbandfec", "usedtx"})


def parse_opus_fmtp(line: str | None) -> dict[str, int | bool]:
    """Parse an Opus SDP fmtp line into typed parameters.

    Numeric parameters become ints, 0/1 switches become bools. Unknown keys
    and malformed pairs are skipped.

    Example:
        parse_opus_fmtp("minptime=10;useinbandfec=1;stereo=0")
        # {"minptime": 10, "useinbandfec": True, "stereo": False}
    """
    params: dict[str, int | bool] = {}
    if not line:
        return params
    for pair in line.split(";"):
        key, sep, value = pair.strip().partition("=")
        key = key.strip().lower()
        if not sep or not key:
            continue
        try:
            number = int(value.strip())
        except ValueError:
            continue
        if key in _INT_PARAMETERS:
            params[key] = number
        elif key in _FLAG_PARAMETERS:
            params[key] = number == 1
    return params


def codec_from_mime_type(mime_type: str | None) -> str | None:
    """RTP codec mime types name the codec directly ("audio/opus" -> "opus")."""
    if not mime_type:
        return None
    _, _, subtype = mime_type.strip().lower().partition("/")
    return subtype or None


def bitrate_from_delta(byte_delta: int, seconds: float) -> int | None:
    """Bits per second over an interval; None when it cannot be measured."""
    if seconds <= 0 or byte_delta < 0:
        return None
    return round(byte_delta * 8 / seconds)


@dataclass(slots=True)
class _Counters:
    bytes_sent: int | None = None
    bytes_received: int | None = None
    timestamp: float | None = None


@dataclass(slots=True)
class PeerConnectionState:
    """What is known about one peer connection."""

    identity: str
    opened_at: float
    connection_state: str | None = None
    send_codec: str | None = None
    send_bitrate: int | None = None
    recv_codec: str | None = None
    recv_bitrate: int | None = None
    rtt: float | None = None
    codec_parameters: dict[str, int | bool] = field(default_factory=dict)
    previous: _Counters = field(default_factory=_Counters)
    offered_at: float | None = None
    offered_ordinal: int | None = None
    offered_key: tuple[Any, ...] | None = None


class PeerConnectionMonitor:
    """Tracks peer connections and turns their stats into encoder evidence.

    Args:
        poll: Issues a stats poll for a connection identity. Without one (or
            with a zero poll interval) only stats the host requests itself
            are observed.
    """

    def __init__(
        self,
        store: EncoderRecordStore,
        sessions: SessionStateMachine,
        scheduler: Scheduler,
        timing: TimingSettings,
        *,
        poll: StatsPoll | None = None,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._scheduler = scheduler
        self._timing = timing
        self._poll = poll
        self._connections: dict[str, PeerConnectionState] = {}
        self._polls: dict[str, Cancelable] = {}

    def connection(self, identity: str) -> PeerConnectionState | None:
        return self._connections.get(identity)

    @property
    def connections(self) -> tuple[str, ...]:
        return tuple(self._connections)

    def opened(self, identity: str, timestamp: float, connection_state: str | None = None) -> PeerConnectionState:
        existing = self._connections.get(identity)
        if existing is not None:
            logger.debug("Peer connection already tracked", identity=identity)
            return existing
        state = PeerConnectionState(identity=identity, opened_at=timestamp, connection_state=connection_state)
        self._connections[identity] = state
        logger.info("Peer connection tracked", identity=identity)
        self._schedule_poll(identity)
        return state

    def closed(self, identity: str) -> None:
        handle = self._polls.pop(identity, None)
        if handle is not None:
            handle.cancel()
        if self._connections.pop(identity, None) is not None:
            logger.info("Peer connection released", identity=identity)

    def close(self) -> None:
        """Cancel every pending poll (engine reset or uninstall)."""
        for handle in self._polls.values():
            handle.cancel()
        self._polls.clear()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _schedule_poll(self, identity: str) -> None:
        interval = self._timing.stats_poll_interval_seconds
        if self._poll is None or interval <= 0:
            return
        self._polls[identity] = self._scheduler.call_later(interval, lambda: self._poll_due(identity))

    def _poll_due(self, identity: str) -> None:
        self._polls.pop(identity, None)
        poll = self._poll
        if poll is None or identity not in self._connections:
            return
        if not poll(identity):
            # Polling stops; reported stats are still accounted for
            logger.debug("Peer connection no longer pollable", identity=identity)
            return
        self._schedule_poll(identity)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def observe_stats(self, identity: str, summary: Mapping[str, Any], timestamp: float) -> PeerConnectionState:
        """Account for one stats report; a connection seen first here is tracked from now on."""
        state = self._connections.get(identity)
        if state is None:
            state = self.opened(identity, timestamp)
        state.connection_state = summary.get("connectionState") or state.connection_state
        rtt = summary.get("rtt")
        state.rtt = rtt if isinstance(rtt, int | float) else state.rtt

        previous = state.previous
        elapsed = timestamp - previous.timestamp if previous.timestamp is not None else 0.0
        send = summary.get("send")
        recv = summary.get("recv")

        if isinstance(send, Mapping):
            sent = send.get("bytes") or 0
            if previous.bytes_sent is not None:
                state.send_bitrate = bitrate_from_delta(sent - previous.bytes_sent, elapsed)
            state.send_codec = codec_from_mime_type(send.get("codec"))
            state.codec_parameters = parse_opus_fmtp(send.get("sdpFmtpLine")) if state.send_codec == "opus" else {}
            previous.bytes_sent = sent

        if isinstance(recv, Mapping):
            received = recv.get("bytes") or 0
            if previous.bytes_received is not None:
                state.recv_bitrate = bitrate_from_delta(received - previous.bytes_received, elapsed)
            state.recv_codec = codec_from_mime_type(recv.get("codec"))
            previous.bytes_received = received

        # Counters missing from this report keep their previous values
        previous.timestamp = timestamp
        logger.debug(
            "Peer connection stats",
            identity=identity,
            send_codec=state.send_codec,
            send_bitrate=state.send_bitrate,
            recv_codec=state.recv_codec,
            recv_bitrate=state.recv_bitrate,
            diagnostic=True,
        )

        if isinstance(send, Mapping) and state.send_codec is not None:
            self._offer(state, send, timestamp)
        return state

    def _offer(self, state: PeerConnectionState, send: Mapping[str, Any], timestamp: float) -> None:
        ordinal = self._sessions.evidence_ordinal
        key = (state.send_codec, tuple(sorted(state.codec_parameters.items())), state.send_bitrate is not None)
        due = (
            state.offered_at is None
            or state.offered_ordinal != ordinal
            or state.offered_key != key
            or timestamp - state.offered_at >= self._timing.bitrate_update_interval_seconds
        )
        if not due:
            return
        if self._store.offer(self._record(state, send), ordinal):
            state.offered_at = timestamp
            state.offered_ordinal = ordinal
            state.offered_key = key

    def _record(self, state: PeerConnectionState, send: Mapping[str, Any]) -> DetectedEncoderRecord:
        measured = state.send_bitrate is not None
        target = send.get("targetBitrate")
        bitrate = state.send_bitrate if measured else (round(target) if isinstance(target, int | float) else None)
        clock_rate = send.get("clockRate")
        channels = send.get("channels")
        return DetectedEncoderRecord(
            codec=state.send_codec or "unknown",
            container="rtp",
            encoder="webrtc",
            library="libopus" if state.send_codec == "opus" else None,
            bitrate=bitrate,
            sample_rate=clock_rate if isinstance(clock_rate, int) else None,
            channels=channels if isinstance(channels, int) else None,
            provenance=Provenance(
                source=EvidenceSource.WEBRTC,
                pattern=DetectionPattern.WEBRTC_STATS,
                confidence=Confidence.HIGH if measured else Confidence.MEDIUM,
            ),
            media_type=send.get("codec"),
            live_estimate=True,
            node=state.identity,
            codec_parameters=dict(state.codec_parameters),
        )
