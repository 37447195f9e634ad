"""Configuration module for audioflow.

Provides layered configuration (defaults, config file, environment) as
typed dataclasses.
"""

from audioflow.config.env import EnvReader
from audioflow.config.loader import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_FILE,
    TomlParseError,
    clear_config_cache,
    get_config,
    get_data_dir,
    get_default_config_path,
    load_config_file,
    validate_config,
)
from audioflow.config.models import (
    AudioflowConfig,
    ConverterConfig,
    GladiaConfig,
    LoggingConfig,
    OpenAIConfig,
    PollingConfig,
    WorkflowConfig,
)

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
    "AudioflowConfig",
    "ConverterConfig",
    "EnvReader",
    "GladiaConfig",
    "LoggingConfig",
    "OpenAIConfig",
    "PollingConfig",
    "TomlParseError",
    "WorkflowConfig",
    "clear_config_cache",
    "get_config",
    "get_data_dir",
    "get_default_config_path",
    "load_config_file",
    "validate_config",
]
