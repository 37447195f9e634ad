"""Configuration loader with precedence handling.

Configuration is loaded with the following precedence (highest to lowest):
1. Explicit overrides (passed directly to get_config)
2. Environment variables (AUDIOFLOW_*)
3. Config file (~/.audioflow/config.toml)
4. Default values

Environment variables:
- AUDIOFLOW_CONFIG_PATH: Path to config file (overrides default location)
- AUDIOFLOW_DATA_DIR: Path to the data directory (overrides ~/.audioflow/)
- AUDIOFLOW_DATABASE_PATH: Path to the state database
- AUDIOFLOW_FFMPEG_PATH / AUDIOFLOW_FFPROBE_PATH: Converter tool paths
- AUDIOFLOW_GLADIA_API_KEY: Gladia API key
- AUDIOFLOW_OPENAI_API_KEY: OpenAI API key (falls back to OPENAI_API_KEY)
- AUDIOFLOW_OPENAI_MODEL: Model used for session analysis
- AUDIOFLOW_MAX_CONCURRENT_FILES: Bound on files doing external work at once
- AUDIOFLOW_BARRIER_POLICY: exclude_failed or block_on_failed
- AUDIOFLOW_TRANSCRIPTION_TIMEOUT / AUDIOFLOW_AI_TIMEOUT: Poll deadlines (s)
- AUDIOFLOW_LOG_LEVEL / AUDIOFLOW_LOG_FORMAT / AUDIOFLOW_LOG_FILE: Logging
- AUDIOFLOW_LOG_STDERR: Also log to stderr when logging to a file
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import tomllib
from pathlib import Path
from typing import Any

from audioflow.config.env import EnvReader
from audioflow.config.models import (
    AudioflowConfig,
    ConverterConfig,
    GladiaConfig,
    LoggingConfig,
    OpenAIConfig,
    PollingConfig,
    WorkflowConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".audioflow"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

_SECTIONS: dict[str, type] = {
    "converter": ConverterConfig,
    "gladia": GladiaConfig,
    "openai": OpenAIConfig,
    "polling": PollingConfig,
    "workflow": WorkflowConfig,
    "logging": LoggingConfig,
}

# Fields holding filesystem paths, converted from strings
_PATH_FIELDS: dict[str, set[str]] = {
    "converter": {"ffmpeg_path", "ffprobe_path"},
    "logging": {"file"},
}

# (section, field, env var, reader method)
_ENV_BINDINGS: tuple[tuple[str, str, str, str], ...] = (
    ("converter", "ffmpeg_path", "AUDIOFLOW_FFMPEG_PATH", "get_path"),
    ("converter", "ffprobe_path", "AUDIOFLOW_FFPROBE_PATH", "get_path"),
    ("gladia", "api_key", "AUDIOFLOW_GLADIA_API_KEY", "get_str"),
    ("gladia", "base_url", "AUDIOFLOW_GLADIA_BASE_URL", "get_str"),
    ("openai", "api_key", "OPENAI_API_KEY", "get_str"),
    ("openai", "api_key", "AUDIOFLOW_OPENAI_API_KEY", "get_str"),
    ("openai", "base_url", "AUDIOFLOW_OPENAI_BASE_URL", "get_str"),
    ("openai", "model", "AUDIOFLOW_OPENAI_MODEL", "get_str"),
    (
        "polling",
        "transcription_timeout",
        "AUDIOFLOW_TRANSCRIPTION_TIMEOUT",
        "get_float",
    ),
    ("polling", "ai_timeout", "AUDIOFLOW_AI_TIMEOUT", "get_float"),
    ("workflow", "max_concurrent_files", "AUDIOFLOW_MAX_CONCURRENT_FILES", "get_int"),
    ("workflow", "barrier_policy", "AUDIOFLOW_BARRIER_POLICY", "get_str"),
    ("logging", "level", "AUDIOFLOW_LOG_LEVEL", "get_str"),
    ("logging", "format", "AUDIOFLOW_LOG_FORMAT", "get_str"),
    ("logging", "file", "AUDIOFLOW_LOG_FILE", "get_path"),
    ("logging", "include_stderr", "AUDIOFLOW_LOG_STDERR", "get_bool"),
)

# Cache for loaded config files (path -> (parsed dict, mtime))
_config_cache: dict[Path, tuple[dict, float]] = {}
_config_cache_lock = threading.Lock()


class TomlParseError(ValueError):
    """Raised when the config file exists but is not valid TOML."""


def get_data_dir(env_reader: EnvReader | None = None) -> Path:
    """Get the audioflow data directory.

    This is the base directory for the state database and the config file.
    Can be overridden by AUDIOFLOW_DATA_DIR.

    Returns:
        Path to the data directory (~/.audioflow/ by default).
    """
    reader = env_reader or EnvReader()
    return reader.get_path("AUDIOFLOW_DATA_DIR") or DEFAULT_CONFIG_DIR


def get_default_config_path(env_reader: EnvReader | None = None) -> Path:
    """Get the config file path, honoring AUDIOFLOW_CONFIG_PATH."""
    reader = env_reader or EnvReader()
    env_path = reader.get_path("AUDIOFLOW_CONFIG_PATH")
    if env_path is not None:
        return env_path
    return get_data_dir(reader) / "config.toml"


def load_config_file(path: Path, *, strict: bool = False) -> dict:
    """Load configuration from TOML file.

    Results are cached with mtime-based invalidation.

    Args:
        path: Path to config file.
        strict: If True, raise TomlParseError on parse failures.
                If False (default), log a warning and return an empty dict.

    Returns:
        Parsed configuration dict. Empty dict if file doesn't exist.

    Raises:
        TomlParseError: When strict=True and the file cannot be parsed.
    """
    try:
        current_mtime = path.stat().st_mtime
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}

    with _config_cache_lock:
        cached = _config_cache.get(path)
        if cached is not None and cached[1] == current_mtime:
            return cached[0]

        try:
            with path.open("rb") as f:
                result = tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as e:
            if strict:
                raise TomlParseError(f"Cannot parse {path}: {e}") from e
            logger.warning("Failed to load config file %s: %s", path, e)
            result = {}

        _config_cache[path] = (result, current_mtime)
        return result


def clear_config_cache() -> None:
    """Clear the config file cache.

    Primarily useful for testing.
    """
    with _config_cache_lock:
        _config_cache.clear()


def _section_values(section: str, raw: dict[str, Any]) -> dict[str, Any]:
    """Keep known fields of a section and convert path strings."""
    known = {f.name for f in dataclasses.fields(_SECTIONS[section])}
    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown config key [%s] %s", section, key)
            continue
        if key in _PATH_FIELDS.get(section, set()) and isinstance(value, str):
            value = Path(value).expanduser()
        elif key == "input_extensions" and isinstance(value, list):
            value = tuple(value)
        values[key] = value
    return values


def get_config(
    config_path: Path | None = None,
    *,
    database_path: Path | None = None,
    env_reader: EnvReader | None = None,
    strict: bool = False,
) -> AudioflowConfig:
    """Get audioflow configuration with full precedence handling.

    Args:
        config_path: Path to config file (overrides AUDIOFLOW_CONFIG_PATH).
        database_path: Explicit override for the database path.
        env_reader: Optional EnvReader for testing (uses os.environ if None).
        strict: If True, raise TomlParseError on config file parse failures.

    Returns:
        AudioflowConfig with merged configuration.

    Raises:
        TomlParseError: When strict=True and the config file cannot be parsed.
        ValueError: If a merged value fails validation.
    """
    reader = env_reader or EnvReader()
    path = config_path or get_default_config_path(reader)
    file_config = load_config_file(path, strict=strict)

    sections: dict[str, dict[str, Any]] = {}
    for name in _SECTIONS:
        raw = file_config.get(name, {})
        sections[name] = _section_values(name, raw if isinstance(raw, dict) else {})

    for section, field_name, var, method in _ENV_BINDINGS:
        value = getattr(reader, method)(var)
        if value is not None:
            sections[section][field_name] = value

    db_path = database_path or reader.get_path("AUDIOFLOW_DATABASE_PATH")
    if db_path is None and file_config.get("database_path"):
        db_path = Path(file_config["database_path"]).expanduser()
    if db_path is None:
        db_path = get_data_dir(reader) / "state.db"

    return AudioflowConfig(
        converter=ConverterConfig(**sections["converter"]),
        gladia=GladiaConfig(**sections["gladia"]),
        openai=OpenAIConfig(**sections["openai"]),
        polling=PollingConfig(**sections["polling"]),
        workflow=WorkflowConfig(**sections["workflow"]),
        logging=LoggingConfig(**sections["logging"]),
        database_path=db_path,
    )


def validate_config(config: AudioflowConfig) -> list[str]:
    """Validate cross-field configuration constraints.

    Args:
        config: The configuration to validate.

    Returns:
        List of error strings. Empty list means configuration is valid.
    """
    errors: list[str] = []
    if not config.gladia.api_key:
        errors.append("Gladia API key is not set (AUDIOFLOW_GLADIA_API_KEY)")
    if not config.openai.api_key:
        errors.append("OpenAI API key is not set (AUDIOFLOW_OPENAI_API_KEY)")
    for tool in (config.converter.ffmpeg_path, config.converter.ffprobe_path):
        if tool is not None and not tool.exists():
            errors.append(f"Configured tool does not exist: {tool}")
    return errors
