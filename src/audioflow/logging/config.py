"""Root logger setup from LoggingConfig."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from audioflow.logging.context import WorkflowContextFilter
from audioflow.logging.handlers import JSONFormatter

if TYPE_CHECKING:
    from audioflow.config.models import LoggingConfig

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(workflow_tag)s%(name)s: %(message)s"


def _formatter(config: LoggingConfig) -> logging.Formatter:
    if config.format.casefold() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")


def _file_handler(config: LoggingConfig) -> logging.Handler | None:
    if config.file is None:
        return None
    path = Path(config.file).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # Logging is not set up yet, so this cannot go through a logger
        print(f"Warning: cannot open log file {path}: {e}", file=sys.stderr)
        return None


def configure_logging(config: LoggingConfig) -> None:
    """Replace the root logger's handlers according to config.

    Records go to the rotating log file when one is configured and can be
    opened, and to stderr otherwise or when include_stderr is set. Every
    handler carries the workflow context filter, so text lines are prefixed
    with the session and file they belong to.
    """
    level = logging.getLevelName(config.level.upper())
    formatter = _formatter(config)

    handlers: list[logging.Handler] = []
    file_handler = _file_handler(config)
    if file_handler is not None:
        handlers.append(file_handler)
    if file_handler is None or config.include_stderr:
        handlers.append(logging.StreamHandler(sys.stderr))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    context_filter = WorkflowContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root.addHandler(handler)
