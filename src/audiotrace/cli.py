# src/audiotrace/cli.py
"""audiotrace Command Line Interface.

Entry point for the audiotrace CLI tool: offline trace replay and settings
inspection.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
import yaml
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from audiotrace import __version__
from audiotrace.contracts.errors import TraceFormatError
from audiotrace.core.config import EngineSettings, load_settings, resolve_config

__all__ = [
    "app",
]

app = typer.Typer(
    name="audiotrace",
    help="audiotrace: observe multimedia capture and encoding pipelines.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"audiotrace version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """audiotrace: observe multimedia capture and encoding pipelines."""
    from audiotrace.core.logging import configure_logging

    log_level = "DEBUG" if verbose else "WARNING"
    configure_logging(json_output=json_logs, level=log_level)


def _format_error(title: str, message: str, details: list[str] | None = None, hint: str | None = None) -> None:
    """Print a formatted error to stderr."""
    typer.secho(f"Error: {title}", fg=typer.colors.RED, err=True, bold=True)
    typer.echo(f"  {message}", err=True)
    for detail in details or []:
        typer.echo(f"    - {detail}", err=True)
    if hint:
        typer.secho(f"  Hint: {hint}", fg=typer.colors.YELLOW, err=True)


def _load(settings: str | None) -> EngineSettings:
    """Load settings or exit with a formatted error. No path means defaults."""
    if settings is None:
        return EngineSettings()
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        details = [f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()]
        _format_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and value ranges.",
        )
        raise typer.Exit(1) from None


@app.command()
def replay(
    trace: Path = typer.Argument(
        ...,
        help="Recorded call-report trace (JSON Lines).",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    snapshot: bool = typer.Option(
        False,
        "--snapshot",
        help="Also print the final graph snapshot and encoding location.",
    ),
    no_drain: bool = typer.Option(
        False,
        "--no-drain",
        help="Stop at the last report instead of running out pending grace windows.",
    ),
) -> None:
    """Replay a trace on virtual time and print outbound records as JSON lines."""
    from audiotrace.replay import read_trace
    from audiotrace.replay import replay as run_replay

    config = _load(settings)
    try:
        reports = read_trace(trace)
    except TraceFormatError as e:
        _format_error(
            title="Invalid Trace",
            message=str(e),
            hint="Each line must be one JSON call report with operation_name and timestamp.",
        )
        raise typer.Exit(1) from None

    result = run_replay(reports, config, drain=not no_drain)
    for event in result.events:
        typer.echo(json.dumps(event.to_dict(), sort_keys=True))

    if snapshot:
        location = result.engine.resolve_encoding_location()
        typer.echo(
            json.dumps(
                {
                    "type": "SNAPSHOT",
                    "graph": result.engine.snapshot().to_dict(),
                    "signature": result.engine.signature.to_dict(),
                    "encodingLocation": location.to_dict() if location is not None else None,
                },
                sort_keys=True,
            )
        )


@app.command()
def config(
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file (defaults when omitted).",
    ),
) -> None:
    """Print the effective settings as YAML."""
    resolved = resolve_config(_load(settings))
    typer.echo(yaml.safe_dump(resolved, sort_keys=False, default_flow_style=False).rstrip())


if __name__ == "__main__":
    app()
