# tests/core/test_logging.py
"""Tests for structured logging configuration."""

import json
import logging

import pytest

from audiotrace.core.logging import DiagnosticMirror, configure_logging, get_logger


def _json_lines(out: str) -> list[dict[str, object]]:
    return [json.loads(line) for line in out.strip().split("\n") if line.strip()]


class TestLoggingConfig:
    """Tests for logging configuration."""

    def test_get_logger_returns_logger(self) -> None:
        """get_logger returns a bound logger."""
        logger = get_logger("test")
        assert hasattr(logger, "info")
        assert hasattr(logger, "error")
        assert hasattr(logger, "bind")

    def test_logger_outputs_structured(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Logger outputs structured JSON."""
        configure_logging(json_output=True, mirror=DiagnosticMirror())
        logger = get_logger("test")

        logger.info("test message", key="value")

        data = _json_lines(capsys.readouterr().out)[-1]
        assert data["event"] == "test message"
        assert data["key"] == "value"
        assert data["level"] == "info"
        assert "timestamp" in data
        assert "_record" not in data

    def test_logger_console_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Logger outputs human-readable in console mode."""
        configure_logging(json_output=False, mirror=DiagnosticMirror())
        logger = get_logger("test")

        logger.info("test message", key="value")

        captured = capsys.readouterr()
        assert "test message" in captured.out

    def test_stdlib_logging_uses_same_format(self, capsys: pytest.CaptureFixture[str]) -> None:
        """stdlib loggers go through the same JSON renderer."""
        configure_logging(json_output=True, mirror=DiagnosticMirror())

        logging.getLogger("audiotrace.stdlib").warning("plain stdlib message")

        data = _json_lines(capsys.readouterr().out)[-1]
        assert data["event"] == "plain stdlib message"
        assert data["level"] == "warning"

    def test_level_filters_lower_levels(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, level="WARNING", mirror=DiagnosticMirror())
        logger = get_logger("test")

        logger.info("hidden")
        logger.warning("shown")

        events = [line["event"] for line in _json_lines(capsys.readouterr().out)]
        assert events == ["shown"]

    def test_noisy_loggers_stay_quiet_at_debug(self) -> None:
        configure_logging(level="DEBUG", mirror=DiagnosticMirror())

        assert logging.getLogger("asyncio").level == logging.WARNING


class TestDiagnosticMirror:
    """Diagnostic side-channel entries follow the mirror switch."""

    def test_diagnostic_events_emitted_while_enabled(self, capsys: pytest.CaptureFixture[str]) -> None:
        mirror = DiagnosticMirror(enabled=True)
        configure_logging(json_output=True, level="DEBUG", mirror=mirror)
        logger = get_logger("test")

        logger.debug("artifact observed", diagnostic=True)

        events = [line["event"] for line in _json_lines(capsys.readouterr().out)]
        assert "artifact observed" in events

    def test_diagnostic_events_dropped_while_disabled(self, capsys: pytest.CaptureFixture[str]) -> None:
        mirror = DiagnosticMirror(enabled=False)
        configure_logging(json_output=True, level="DEBUG", mirror=mirror)
        logger = get_logger("test")

        logger.debug("artifact observed", diagnostic=True)
        logger.warning("hook skipped")

        events = [line["event"] for line in _json_lines(capsys.readouterr().out)]
        assert events == ["hook skipped"]

    def test_toggle_takes_effect_without_reconfiguring(self, capsys: pytest.CaptureFixture[str]) -> None:
        mirror = DiagnosticMirror(enabled=True)
        configure_logging(json_output=True, level="DEBUG", mirror=mirror)
        logger = get_logger("test")

        mirror.enabled = False
        logger.info("first", diagnostic=True)
        mirror.enabled = True
        logger.info("second", diagnostic=True)

        events = [line["event"] for line in _json_lines(capsys.readouterr().out)]
        assert events == ["second"]
