"""CLI output helpers: exit codes, errors and JSON rendering."""

from __future__ import annotations

import json
import sys
from enum import IntEnum
from typing import Any, NoReturn

import click

from audioflow.workflow.progress import SessionProgress


class ExitCode(IntEnum):
    """Process exit codes of the audioflow CLI."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    CONFIG_ERROR = 2
    NOT_FOUND = 3
    INVALID_STATE = 4
    DATABASE_ERROR = 5


def error_exit(
    message: str,
    code: ExitCode = ExitCode.GENERAL_ERROR,
    json_output: bool = False,
) -> NoReturn:
    """Exit with a formatted error message.

    Args:
        message: Error message to display.
        code: Exit code to use.
        json_output: Whether to format output as JSON.

    Note:
        This function never returns; it always calls sys.exit().
    """
    if json_output:
        click.echo(
            json.dumps(
                {
                    "status": "failed",
                    "error": {"code": code.name, "message": message},
                }
            ),
            err=True,
        )
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(int(code))


json_option = click.option(
    "--json",
    "json_output",
    is_flag=True,
    default=False,
    help="Output in JSON format.",
)


def progress_to_dict(progress: SessionProgress) -> dict[str, Any]:
    """Convert a progress snapshot to a JSON-serializable dict."""
    return {
        "session_id": progress.session_id,
        "overall": round(progress.overall, 2),
        "phase": progress.phase,
        "collective_status": (
            progress.collective_status.value if progress.collective_status else None
        ),
        "excluded_file_ids": progress.excluded_file_ids,
        "error_message": progress.error_message,
        "files": [
            {
                "file_id": f.file_id,
                "filename": f.filename,
                "status": f.status.value,
                "progress": round(f.progress, 2),
                "retry_count": f.retry_count,
                "current_step": f.current_step,
                "error_message": f.error_message,
            }
            for f in progress.files
        ],
    }


_STATUS_COLORS = {
    "complete": "green",
    "failed": "red",
    "failed_mp3": "red",
    "waiting_for_other_files": "cyan",
}


def format_status(value: str) -> str:
    """Color a status value for terminal output."""
    return click.style(value, fg=_STATUS_COLORS.get(value, "yellow"))


def echo_progress(progress: SessionProgress) -> None:
    """Print a human-readable progress view."""
    click.echo(f"\nSession: {progress.session_id}")
    click.echo("-" * 60)
    click.echo(f"  Overall:   {progress.overall:6.2f}%")
    click.echo(f"  Phase:     {progress.phase}")
    if progress.collective_status is not None:
        click.echo(
            f"  Analysis:  {format_status(progress.collective_status.value)}"
        )
    if progress.error_message:
        click.echo(f"  Error:     {progress.error_message}")
    if progress.files:
        click.echo("\n  Files:")
    for f in progress.files:
        excluded = " (excluded)" if f.file_id in progress.excluded_file_ids else ""
        click.echo(
            f"    {f.file_id[:8]}  {f.filename:<20} "
            f"{format_status(f.status.value):<35} {f.progress:6.2f}%{excluded}"
        )
        if f.error_message:
            click.echo(f"              {f.error_message}")
