# src/audiotrace/core/logging.py
"""Structured logging configuration for audiotrace.

Uses structlog for structured logging. Both structlog and stdlib logging are
routed through one processor chain (ProcessorFormatter), so modules using
logging.getLogger(__name__) emit the same format (JSON or console) as modules
using structlog.get_logger().

Diagnostic mirroring:
    Engine internals log high-volume side-channel output (every artifact,
    every worker init message) with ``diagnostic=True``. Those entries are
    only mirrored while the engine is enabled; the DiagnosticMirror processor
    drops them otherwise.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Third-party loggers that are noise at DEBUG level.
_NOISY_LOGGERS: tuple[str, ...] = (
    "asyncio",
    "dynaconf",
    "dynaconf.base",
)


class DiagnosticMirror:
    """structlog processor that drops ``diagnostic=True`` events while disabled.

    Example:
        mirror = DiagnosticMirror()
        mirror.enabled = False
        logger.debug("artifact observed", diagnostic=True)  # dropped
        logger.warning("hook skipped")  # still emitted
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def __call__(
        self,
        logger: Any,
        method_name: str,
        event_dict: dict[str, Any],
    ) -> dict[str, Any]:
        if event_dict.get("diagnostic") and not self.enabled:
            raise structlog.DropEvent
        return event_dict


# Process-wide mirror; engines toggle it through set_enabled().
DIAGNOSTIC_MIRROR = DiagnosticMirror()


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove internal structlog fields from output.

    ProcessorFormatter always adds _record and _from_structlog when
    processing log records. They are bookkeeping and must not appear in output.
    """
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    mirror: DiagnosticMirror | None = None,
) -> None:
    """Configure structlog and stdlib logging for audiotrace.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        mirror: Diagnostic mirror to install (defaults to DIAGNOSTIC_MIRROR).
    """
    log_level = getattr(logging, level.upper())
    mirror = mirror if mirror is not None else DIAGNOSTIC_MIRROR

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    # The mirror runs only for structlog-originated events: DropEvent is
    # handled by the bound logger, not by ProcessorFormatter.
    structlog.configure(
        processors=[mirror, *shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Disable caching to allow reconfiguration in tests
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(log_level)

    # Never make noisy loggers less restrictive than the configured root level.
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Bound structlog logger.
    """
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
