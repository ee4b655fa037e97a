"""Observation engine: interception, topology, signature, sessions, detection, WebRTC stats."""

from audiotrace.engine.artifacts import ArtifactSession, ArtifactTracker
from audiotrace.engine.encoders import EncoderDetector, EncoderRecordStore, parse_mime_type
from audiotrace.engine.engine import InspectionEngine
from audiotrace.engine.hooks import DEFAULT_HOOK_TARGETS, CallInfo, HookTarget
from audiotrace.engine.hookspecs import hookimpl, hookspec
from audiotrace.engine.interception import InterceptionLayer
from audiotrace.engine.location import resolve_encoding_location
from audiotrace.engine.router import ReportRouter
from audiotrace.engine.session import Session, SessionStateMachine
from audiotrace.engine.signature import SignatureEngine, SignatureEvidence, compute_signature, is_encoder_resource
from audiotrace.engine.topology import TopologyGraph
from audiotrace.engine.webrtc import PeerConnectionMonitor, PeerConnectionState, parse_opus_fmtp

__all__ = [
    "DEFAULT_HOOK_TARGETS",
    "ArtifactSession",
    "ArtifactTracker",
    "CallInfo",
    "EncoderDetector",
    "EncoderRecordStore",
    "HookTarget",
    "InspectionEngine",
    "InterceptionLayer",
    "PeerConnectionMonitor",
    "PeerConnectionState",
    "ReportRouter",
    "Session",
    "SessionStateMachine",
    "SignatureEngine",
    "SignatureEvidence",
    "TopologyGraph",
    "compute_signature",
    "hookimpl",
    "hookspec",
    "is_encoder_resource",
    "parse_mime_type",
    "parse_opus_fmtp",
    "resolve_encoding_location",
]
