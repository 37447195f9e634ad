"""CLI module for audioflow."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

import click

from audioflow.cli.output import ExitCode, error_exit
from audioflow.config import AudioflowConfig, get_config
from audioflow.config.loader import TomlParseError
from audioflow.db.connection import ConnectionPool, ensure_db_directory
from audioflow.db.store import SessionStateStore

logger = logging.getLogger(__name__)


def get_store(ctx: click.Context) -> SessionStateStore:
    """Return the session store for this invocation, opening it on first use.

    Tests inject a store through ctx.obj["store"].
    """
    obj: dict[str, Any] = ctx.ensure_object(dict)
    if "store" not in obj:
        config: AudioflowConfig = obj["config"]
        db_path = config.database_path
        assert db_path is not None
        try:
            ensure_db_directory(db_path)
            pool = ConnectionPool(db_path)
            pool.initialize()
        except (OSError, sqlite3.Error) as e:
            error_exit(f"Cannot open database {db_path}: {e}", ExitCode.DATABASE_ERROR)
        ctx.call_on_close(pool.close)
        obj["store"] = SessionStateStore(pool)
    return obj["store"]


def _configure_logging(
    config: AudioflowConfig,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
) -> None:
    """Apply CLI logging overrides and configure logging."""
    from audioflow.logging import configure_logging

    if log_level:
        config.logging.level = log_level.lower()
    if log_file:
        config.logging.file = log_file
    if log_json:
        config.logging.format = "json"
    configure_logging(config.logging)


@click.group()
@click.version_option(package_name="audioflow")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file (default: ~/.audioflow/config.toml).",
)
@click.option(
    "--db",
    "db_path",
    type=click.Path(path_type=Path),
    default=None,
    help="State database path (default: ~/.audioflow/state.db).",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override log level (default: info).",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Override log file path.",
)
@click.option(
    "--log-json",
    is_flag=True,
    default=False,
    help="Use JSON log format.",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    db_path: Path | None,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
) -> None:
    """audioflow - Transcribe and analyze multi-microphone recordings."""
    ctx.ensure_object(dict)

    # Preserve config and store injected by tests
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = get_config(
                config_path, database_path=db_path, strict=True
            )
        except (TomlParseError, ValueError) as e:
            error_exit(str(e), ExitCode.CONFIG_ERROR)
        _configure_logging(ctx.obj["config"], log_level, log_file, log_json)


# Defer import to avoid circular dependency
def _register_commands() -> None:
    from audioflow.cli.sessions import (
        archive_command,
        create_command,
        restart_command,
        resume_command,
        retry_command,
        run_command,
        sessions_command,
        status_command,
    )

    main.add_command(create_command)
    main.add_command(run_command)
    main.add_command(status_command)
    main.add_command(sessions_command)
    main.add_command(retry_command)
    main.add_command(restart_command)
    main.add_command(resume_command)
    main.add_command(archive_command)


_register_commands()
