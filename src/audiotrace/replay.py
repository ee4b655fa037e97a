# src/audiotrace/replay.py
"""Offline replay of recorded call-report traces.

A trace is JSON Lines: one ``CallReport.to_dict()`` object per line, in
the order the reports were produced. Blank lines and lines starting with
``#`` are skipped.

Replay runs an InspectionEngine on virtual time: before each report the
ManualScheduler runs every timer due strictly before the report's timestamp,
so grace-window timers fire exactly where they would have fired live and a
report landing on a window boundary still counts as inside it.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from audiotrace.contracts.errors import TraceFormatError
from audiotrace.contracts.events import DetectedEncoder, OutboundEvent, RecordingState, SignatureChange
from audiotrace.contracts.records import CallReport
from audiotrace.core.clock import MockClock
from audiotrace.core.config import EngineSettings
from audiotrace.core.scheduling import ManualScheduler
from audiotrace.engine.engine import InspectionEngine

logger = structlog.get_logger(__name__)

OUTBOUND_TYPES = (SignatureChange, RecordingState, DetectedEncoder)


def parse_trace(lines: Iterable[str]) -> Iterator[CallReport]:
    """Parse trace lines into reports.

    Raises:
        TraceFormatError: On malformed JSON or a line missing required keys
    """
    for number, line in enumerate(lines, start=1):
        text = line.strip()
        if not text or text.startswith("#"):
            continue
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise TraceFormatError(number, f"invalid JSON: {e.msg}") from e
        if not isinstance(data, dict):
            raise TraceFormatError(number, "expected a JSON object")
        try:
            yield CallReport.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise TraceFormatError(number, f"not a call report: {e!r}") from e


def read_trace(path: Path) -> list[CallReport]:
    with path.open(encoding="utf-8") as f:
        return list(parse_trace(f))


@dataclass
class ReplayResult:
    """Outbound records produced by a replay, plus the engine for inspection."""

    engine: InspectionEngine
    events: list[OutboundEvent] = field(default_factory=list)
    reports: int = 0


def replay(reports: Iterable[CallReport], settings: EngineSettings | None = None, *, drain: bool = True) -> ReplayResult:
    """Feed reports through a fresh engine on virtual time.

    Args:
        reports: Reports in production order
        settings: Engine settings (defaults when omitted)
        drain: After the last report, advance past every grace window so
            pending finalizations are reported
    """
    settings = settings if settings is not None else EngineSettings()
    clock = MockClock()
    scheduler = ManualScheduler(clock)
    engine = InspectionEngine(settings, clock=clock, scheduler=scheduler)
    result = ReplayResult(engine=engine)
    engine.bus.subscribe_all(OUTBOUND_TYPES, result.events.append)

    for index, report in enumerate(reports):
        if index == 0:
            clock.set(report.timestamp)
        elif report.timestamp < clock.monotonic():
            logger.warning(
                "Out-of-order report timestamp",
                operation=report.operation_name,
                timestamp=report.timestamp,
                clock=clock.monotonic(),
            )
        scheduler.run_before(report.timestamp)
        engine.feed(report)
        result.reports += 1

    if drain:
        timing = settings.timing
        scheduler.advance(timing.finalize_grace_seconds + timing.resume_grace_seconds)
    logger.debug("Trace replayed", reports=result.reports, events=len(result.events))
    return result
