"""Configuration data models.

This module defines dataclasses for audioflow configuration options.
"""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class ConverterConfig:
    """Configuration for the ffmpeg-based MP3 converter.

    Tool paths are optional. If not specified, tools are looked up in PATH.
    """

    ffmpeg_path: Path | None = None
    ffprobe_path: Path | None = None

    bitrate: str = "192k"
    sample_rate: int = 44100
    channels: int = 2

    # Gain applied during conversion (ffmpeg volume filter)
    volume: float = 1.5

    # Extensions accepted for conversion in addition to .mp3
    input_extensions: tuple[str, ...] = (".wav", ".m4a", ".flac", ".aac", ".ogg")

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels not in (1, 2):
            raise ValueError(f"channels must be 1 or 2, got {self.channels}")
        self.input_extensions = tuple(
            ext.casefold() if ext.startswith(".") else f".{ext.casefold()}"
            for ext in self.input_extensions
        )


@dataclass
class GladiaConfig:
    """Configuration for the Gladia transcription API."""

    api_key: str | None = None
    base_url: str = "https://api.gladia.io"
    timeout_seconds: float = 120.0
    language: str = "en"

    # Speaker diarization for multi-speaker (mix/master) recordings
    diarization: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass
class OpenAIConfig:
    """Configuration for the OpenAI analysis API."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com"
    model: str = "gpt-4o"
    max_output_tokens: int = 4000
    temperature: float = 0.3
    timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(
                f"temperature must be between 0 and 2, got {self.temperature}"
            )


@dataclass
class PollingConfig:
    """Backoff and deadlines for polling remote jobs."""

    initial_interval: float = 2.0
    max_interval: float = 30.0
    multiplier: float = 2.0

    # Random jitter factor (0-1) applied to each interval
    jitter: float = 0.1

    transcription_timeout: float = 1800.0
    ai_timeout: float = 1200.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.initial_interval <= 0 or self.max_interval <= 0:
            raise ValueError("poll intervals must be positive")
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")
        if not 0.0 <= self.jitter < 1.0:
            raise ValueError(f"jitter must be in [0, 1), got {self.jitter}")
        if self.transcription_timeout <= 0 or self.ai_timeout <= 0:
            raise ValueError("poll timeouts must be positive")


@dataclass
class WorkflowConfig:
    """Configuration for the workflow engine."""

    # Bound on files doing external work at once (None = unbounded)
    max_concurrent_files: int | None = None

    # "exclude_failed" or "block_on_failed"
    barrier_policy: str = "exclude_failed"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_concurrent_files is not None and self.max_concurrent_files < 1:
            raise ValueError(
                f"max_concurrent_files must be >= 1, got {self.max_concurrent_files}"
            )
        valid_policies = {"exclude_failed", "block_on_failed"}
        if self.barrier_policy.lower() not in valid_policies:
            raise ValueError(
                f"barrier_policy must be one of {valid_policies}, "
                f"got {self.barrier_policy}"
            )


@dataclass
class LoggingConfig:
    """Configuration for structured logging."""

    # Log level: debug, info, warning, error
    level: str = "info"

    # Log file path (None = stderr only)
    file: Path | None = None

    # Log format: text or json
    format: str = "text"

    # Also log to stderr when file is set
    include_stderr: bool = False

    # Rotation threshold in bytes (default 10MB)
    max_bytes: int = 10_485_760

    # Number of rotated files to keep
    backup_count: int = 5

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_levels = {"debug", "info", "warning", "error"}
        if self.level.lower() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}, got {self.level}")
        valid_formats = {"text", "json"}
        if self.format.lower() not in valid_formats:
            raise ValueError(
                f"format must be one of {valid_formats}, got {self.format}"
            )


@dataclass
class AudioflowConfig:
    """Main configuration container.

    Aggregates all configuration sections.
    """

    converter: ConverterConfig = field(default_factory=ConverterConfig)
    gladia: GladiaConfig = field(default_factory=GladiaConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database path (None = <data dir>/state.db)
    database_path: Path | None = None
