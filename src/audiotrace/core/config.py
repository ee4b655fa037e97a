# src/audiotrace/core/config.py
"""
Configuration schema and loading for the audiotrace engine.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class MediaTypeInfo(BaseModel):
    """Encoding facts implied by an artifact's declared media type."""

    model_config = {"frozen": True}

    codec: str
    container: str
    encoder: str | None = None
    library: str | None = None


_DEFAULT_MEDIA_TYPES: dict[str, MediaTypeInfo] = {
    "audio/mp3": MediaTypeInfo(codec="mp3", container="mp3", encoder="mp3-wasm", library="LAME"),
    "audio/mpeg": MediaTypeInfo(codec="mp3", container="mp3", encoder="mp3-wasm", library="LAME"),
    "audio/wav": MediaTypeInfo(codec="pcm", container="wav", encoder="pcm"),
    "audio/wave": MediaTypeInfo(codec="pcm", container="wav", encoder="pcm"),
    "audio/ogg": MediaTypeInfo(codec="vorbis", container="ogg", encoder="vorbis-wasm", library="libvorbis"),
    "audio/opus": MediaTypeInfo(codec="opus", container="ogg", encoder="opus-wasm", library="libopus"),
    "audio/webm": MediaTypeInfo(codec="opus", container="webm", encoder="opus-wasm", library="libopus"),
    "audio/aac": MediaTypeInfo(codec="aac", container="aac", encoder="aac-wasm", library="FDK AAC"),
    "audio/flac": MediaTypeInfo(codec="flac", container="flac", encoder="flac-wasm", library="libFLAC"),
}

_DEFAULT_ENCODER_KEYWORDS: tuple[str, ...] = (
    "encoder",
    "opus",
    "ogg",
    "mp3",
    "aac",
    "vorbis",
    "flac",
    "lame",
    "audio",
    "media",
    "wasm",
    "codec",
    "voice",
    "recorder",
)


class TimingSettings(BaseModel):
    """Time windows of the session state machine and artifact tracker (seconds)."""

    model_config = {"frozen": True}

    finalize_grace_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Artifact silence after which an artifact-driven session starts finalizing",
    )
    resume_grace_seconds: float = Field(
        default=2.5,
        gt=0,
        description="Window after the last artifact in which new artifacts resume the session",
    )
    new_session_gap_seconds: float = Field(
        default=2.5,
        gt=0,
        description="Gap after which an artifact on an idle surface opens a new session",
    )
    bitrate_update_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Minimum interval between live bitrate recomputations",
    )
    capture_reuse_seconds: float = Field(
        default=5.0,
        ge=0,
        description="A recorder start or artifact this soon after capture acquisition joins that session",
    )
    stats_poll_interval_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Interval between WebRTC connection stats polls; 0 disables polling",
    )

    @model_validator(mode="after")
    def validate_resume_covers_finalize(self) -> "TimingSettings":
        """The resume window is measured from the last artifact and must outlast the finalize grace."""
        if self.resume_grace_seconds < self.finalize_grace_seconds:
            raise ValueError(
                f"resume_grace_seconds ({self.resume_grace_seconds}) must be >= "
                f"finalize_grace_seconds ({self.finalize_grace_seconds})"
            )
        return self


class DetectionSettings(BaseModel):
    """Thresholds and keyword tables used to classify evidence."""

    model_config = {"frozen": True}

    cumulative_ratio: float = Field(
        default=1.7,
        gt=1.0,
        description="Size ratio over the previous artifact that marks cumulative or export emission",
    )
    min_artifact_bytes: int = Field(
        default=1024,
        ge=0,
        description="Artifacts at or below this size are treated as metadata and ignored",
    )
    default_sample_rate: int = Field(default=44100, gt=0)
    default_channels: int = Field(default=1, gt=0)
    encoder_keywords: tuple[str, ...] = Field(
        default=_DEFAULT_ENCODER_KEYWORDS,
        description="Keywords in a worker/worklet resource name that mark it as an encoder",
    )
    media_types: dict[str, MediaTypeInfo] = Field(
        default_factory=lambda: dict(_DEFAULT_MEDIA_TYPES),
        description="Known audio media types (lower-case, without parameters)",
    )

    @field_validator("encoder_keywords")
    @classmethod
    def normalize_keywords(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        keywords = tuple(k.strip().lower() for k in v if k.strip())
        if not keywords:
            raise ValueError("encoder_keywords must not be empty")
        return keywords

    @field_validator("media_types")
    @classmethod
    def normalize_media_types(cls, v: dict[str, MediaTypeInfo]) -> dict[str, MediaTypeInfo]:
        return {k.strip().lower(): info for k, info in v.items()}


class LoggingSettings(BaseModel):
    """Log output configuration."""

    model_config = {"frozen": True}

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=False, description="Emit JSON lines instead of console output")
    mirror_diagnostics: bool = Field(
        default=True,
        description="Mirror diagnostic side-channel output while the engine is enabled",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class EngineSettings(BaseModel):
    """Top-level engine configuration.

    All settings are validated and frozen after construction; every field
    has a default so ``EngineSettings()`` is a complete configuration.
    """

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Engine enabled at startup")
    timing: TimingSettings = Field(default_factory=TimingSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: Path) -> EngineSettings:
    """Load settings from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (AUDIOTRACE_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Environment variable format: AUDIOTRACE_TIMING__FINALIZE_GRACE_SECONDS for nested keys.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="AUDIOTRACE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; Pydantic fields are lowercase
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    return EngineSettings(**raw_config)


def _lower_keys(value: Any) -> Any:
    """Lower-case nested keys; env overrides arrive upper-cased from Dynaconf."""
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def resolve_config(settings: EngineSettings) -> dict[str, Any]:
    """Convert validated settings to a plain dict (for display and trace headers)."""
    return settings.model_dump(mode="json")
