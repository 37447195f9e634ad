"""Tests for configuration loading and precedence."""

from __future__ import annotations

from pathlib import Path

import pytest

from audioflow.config.env import EnvReader
from audioflow.config.loader import (
    TomlParseError,
    clear_config_cache,
    get_config,
    get_default_config_path,
    load_config_file,
    validate_config,
)
from audioflow.config.models import PollingConfig, WorkflowConfig


@pytest.fixture(autouse=True)
def _clear_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        """
database_path = "~/reviews/state.db"

[gladia]
api_key = "file-gladia"
language = "de"

[openai]
api_key = "file-openai"
model = "gpt-file"

[polling]
ai_timeout = 90.0

[workflow]
barrier_policy = "block_on_failed"

[converter]
ffmpeg_path = "/opt/ffmpeg/bin/ffmpeg"
input_extensions = ["wav", ".FLAC"]
unknown_key = 1
"""
    )
    return path


class TestEnvReader:
    """Tests for EnvReader."""

    def test_typed_getters(self) -> None:
        reader = EnvReader(
            env={"A": "3", "B": "2.5", "C": "yes", "D": "~/x", "E": "", "F": "no"}
        )
        assert reader.get_int("A") == 3
        assert reader.get_float("B") == 2.5
        assert reader.get_bool("C") is True
        assert reader.get_bool("F") is False
        assert reader.get_path("D") == Path("~/x").expanduser()
        assert reader.get_str("E", "fallback") == "fallback"

    def test_invalid_number_falls_back_to_default(self) -> None:
        reader = EnvReader(env={"A": "many"})
        assert reader.get_int("A", 4) == 4
        assert reader.get_float("A") is None


class TestGetConfig:
    """Tests for get_config precedence."""

    def test_defaults_without_file(self, tmp_path: Path) -> None:
        reader = EnvReader(env={"AUDIOFLOW_DATA_DIR": str(tmp_path)})

        config = get_config(env_reader=reader)

        assert config.database_path == tmp_path / "state.db"
        assert config.gladia.api_key is None
        assert config.workflow.barrier_policy == "exclude_failed"
        assert config.polling == PollingConfig()

    def test_file_values_are_applied(self, config_file: Path) -> None:
        config = get_config(config_file, env_reader=EnvReader(env={}))

        assert config.gladia.api_key == "file-gladia"
        assert config.gladia.language == "de"
        assert config.openai.model == "gpt-file"
        assert config.polling.ai_timeout == 90.0
        assert config.workflow.barrier_policy == "block_on_failed"
        assert config.converter.ffmpeg_path == Path("/opt/ffmpeg/bin/ffmpeg")
        assert config.converter.input_extensions == (".wav", ".flac")
        assert config.database_path == Path("~/reviews/state.db").expanduser()

    def test_environment_overrides_file(self, config_file: Path) -> None:
        reader = EnvReader(
            env={
                "AUDIOFLOW_GLADIA_API_KEY": "env-gladia",
                "OPENAI_API_KEY": "generic-openai",
                "AUDIOFLOW_OPENAI_API_KEY": "env-openai",
                "AUDIOFLOW_MAX_CONCURRENT_FILES": "3",
                "AUDIOFLOW_AI_TIMEOUT": "30",
                "AUDIOFLOW_DATABASE_PATH": "/data/audioflow.db",
            }
        )

        config = get_config(config_file, env_reader=reader)

        assert config.gladia.api_key == "env-gladia"
        assert config.openai.api_key == "env-openai"
        assert config.workflow.max_concurrent_files == 3
        assert config.polling.ai_timeout == 30.0
        assert config.database_path == Path("/data/audioflow.db")

    def test_log_stderr_flag(self, tmp_path: Path) -> None:
        reader = EnvReader(
            env={"AUDIOFLOW_LOG_STDERR": "on", "AUDIOFLOW_LOG_FILE": "~/af.log"}
        )
        config = get_config(tmp_path / "missing.toml", env_reader=reader)
        assert config.logging.include_stderr is True
        assert config.logging.file == Path("~/af.log").expanduser()

    def test_generic_openai_key_is_a_fallback(self, tmp_path: Path) -> None:
        reader = EnvReader(env={"OPENAI_API_KEY": "generic"})
        config = get_config(tmp_path / "missing.toml", env_reader=reader)
        assert config.openai.api_key == "generic"

    def test_explicit_database_path_wins(self, config_file: Path) -> None:
        reader = EnvReader(env={"AUDIOFLOW_DATABASE_PATH": "/data/env.db"})
        config = get_config(
            config_file, database_path=Path("/explicit.db"), env_reader=reader
        )
        assert config.database_path == Path("/explicit.db")

    def test_invalid_value_raises(self, tmp_path: Path) -> None:
        reader = EnvReader(env={"AUDIOFLOW_BARRIER_POLICY": "wait_forever"})
        with pytest.raises(ValueError, match="barrier_policy"):
            get_config(tmp_path / "missing.toml", env_reader=reader)

    def test_config_path_from_environment(self, tmp_path: Path) -> None:
        reader = EnvReader(env={"AUDIOFLOW_CONFIG_PATH": str(tmp_path / "c.toml")})
        assert get_default_config_path(reader) == tmp_path / "c.toml"


class TestLoadConfigFile:
    """Tests for load_config_file."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert load_config_file(tmp_path / "missing.toml") == {}

    def test_invalid_toml_is_ignored_unless_strict(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.toml"
        path.write_text("[gladia\napi_key = ")

        assert load_config_file(path) == {}
        clear_config_cache()
        with pytest.raises(TomlParseError):
            load_config_file(path, strict=True)


class TestValidation:
    """Tests for model validation and validate_config."""

    def test_missing_keys_are_reported(self, tmp_path: Path) -> None:
        config = get_config(
            tmp_path / "missing.toml",
            env_reader=EnvReader(env={"AUDIOFLOW_DATA_DIR": str(tmp_path)}),
        )
        errors = validate_config(config)
        assert any("Gladia API key" in e for e in errors)
        assert any("OpenAI API key" in e for e in errors)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"initial_interval": 0},
            {"initial_interval": 10, "max_interval": 5},
            {"multiplier": 0.5},
            {"jitter": 1.0},
            {"ai_timeout": -1},
        ],
    )
    def test_invalid_polling_config(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            PollingConfig(**kwargs)

    def test_invalid_concurrency(self) -> None:
        with pytest.raises(ValueError, match="max_concurrent_files"):
            WorkflowConfig(max_concurrent_files=0)
