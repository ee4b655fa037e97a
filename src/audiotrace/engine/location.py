# src/audiotrace/engine/location.py
"""Encoding location: which processor node most likely produces encoded output.

Strategies are tried in a fixed order and the first that matches wins:

1. SOLE_CAPTURE_LINK    exactly one processor feeds a capture-stream destination (high)
2. NEWEST_CAPTURE_LINK  several do; the most recently created one (high)
3. SPEAKER_ELIMINATION  drop processors feeding the speakers; exactly one remains (medium)
4. SOLE_PROCESSOR       exactly one processor exists (medium)
5. NEWEST_REMAINING     several remain after elimination; the newest (low)

No match means the location is unknown; callers must not guess.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from audiotrace.contracts.enums import Confidence, LocationStrategy, NodeRole
from audiotrace.contracts.records import EncodingLocation, GraphSnapshot, ObservedNode


@dataclass(frozen=True, slots=True)
class _Candidates:
    """Processors of a snapshot, split by what they feed directly."""

    processors: tuple[ObservedNode, ...]
    feeding_capture: tuple[ObservedNode, ...]
    remaining: tuple[ObservedNode, ...]

    @classmethod
    def from_snapshot(cls, snapshot: GraphSnapshot) -> _Candidates:
        roles = {node.identity: node.role for node in snapshot.nodes}
        processors = tuple(n for n in snapshot.nodes if n.role.is_processor)

        def feeds(role: NodeRole) -> set[str]:
            return {edge.source for edge in snapshot.edges if roles.get(edge.destination) == role}

        capture_feeders = feeds(NodeRole.CAPTURE_DESTINATION)
        speaker_feeders = feeds(NodeRole.SPEAKER_DESTINATION)
        return cls(
            processors=processors,
            feeding_capture=tuple(p for p in processors if p.identity in capture_feeders),
            remaining=tuple(p for p in processors if p.identity not in speaker_feeders),
        )


def _newest(nodes: tuple[ObservedNode, ...]) -> ObservedNode:
    return max(nodes, key=lambda n: n.sequence)


def _sole_capture_link(c: _Candidates) -> ObservedNode | None:
    return c.feeding_capture[0] if len(c.feeding_capture) == 1 else None


def _newest_capture_link(c: _Candidates) -> ObservedNode | None:
    return _newest(c.feeding_capture) if len(c.feeding_capture) > 1 else None


def _speaker_elimination(c: _Candidates) -> ObservedNode | None:
    return c.remaining[0] if len(c.remaining) == 1 else None


def _sole_processor(c: _Candidates) -> ObservedNode | None:
    return c.processors[0] if len(c.processors) == 1 else None


def _newest_remaining(c: _Candidates) -> ObservedNode | None:
    return _newest(c.remaining) if len(c.remaining) > 1 else None


STRATEGIES: tuple[tuple[LocationStrategy, Confidence, Callable[[_Candidates], ObservedNode | None]], ...] = (
    (LocationStrategy.SOLE_CAPTURE_LINK, Confidence.HIGH, _sole_capture_link),
    (LocationStrategy.NEWEST_CAPTURE_LINK, Confidence.HIGH, _newest_capture_link),
    (LocationStrategy.SPEAKER_ELIMINATION, Confidence.MEDIUM, _speaker_elimination),
    (LocationStrategy.SOLE_PROCESSOR, Confidence.MEDIUM, _sole_processor),
    (LocationStrategy.NEWEST_REMAINING, Confidence.LOW, _newest_remaining),
)


def resolve_encoding_location(snapshot: GraphSnapshot) -> EncodingLocation | None:
    """Apply the ranked strategies to a graph snapshot."""
    candidates = _Candidates.from_snapshot(snapshot)
    if not candidates.processors:
        return None
    for strategy, confidence, select in STRATEGIES:
        node = select(candidates)
        if node is not None:
            return EncodingLocation(node=node.identity, confidence=confidence, strategy=strategy)
    return None
