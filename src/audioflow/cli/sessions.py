"""Session commands: create, run, inspect, retry, restart, resume, archive."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from audioflow.cli import get_store
from audioflow.cli.output import (
    ExitCode,
    echo_progress,
    error_exit,
    format_status,
    json_option,
    progress_to_dict,
)
from audioflow.config import AudioflowConfig
from audioflow.core.datetime_utils import utc_now_iso
from audioflow.db.store import SessionStateStore
from audioflow.exceptions import (
    CollectiveRestartError,
    FileNotInSessionError,
    PersistenceError,
    SessionClosedError,
    SessionNotFoundError,
)
from audioflow.services.factory import Services, build_services
from audioflow.workflow import registry
from audioflow.workflow.progress import snapshot
from audioflow.workflow.supervisor import WorkflowSupervisor

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _resolve_session_id(store: SessionStateStore, prefix: str) -> str:
    """Resolve a full or abbreviated session ID."""
    if store.load_session(prefix) is not None:
        return prefix
    matching = [
        s.id
        for s in store.list_sessions(include_archived=True)
        if s.id.startswith(prefix)
    ]
    if not matching:
        error_exit(f"Session not found: {prefix}", ExitCode.NOT_FOUND)
    if len(matching) > 1:
        error_exit(
            f"Multiple sessions match '{prefix}'. Be more specific.",
            ExitCode.NOT_FOUND,
        )
    return matching[0]


def _resolve_file_id(store: SessionStateStore, session_id: str, prefix: str) -> str:
    """Resolve a full or abbreviated file ID within a session."""
    matching = [
        f.id for f in store.files.list_files(session_id) if f.id.startswith(prefix)
    ]
    if len(matching) != 1:
        error_exit(
            f"File {prefix} not found in session {session_id[:8]}",
            ExitCode.NOT_FOUND,
        )
    return matching[0]


def _services(ctx: click.Context) -> Services:
    obj: dict[str, Any] = ctx.obj
    if "services" not in obj:
        config: AudioflowConfig = obj["config"]
        try:
            obj["services"] = build_services(config)
        except ValueError as e:
            error_exit(str(e), ExitCode.CONFIG_ERROR)
    return obj["services"]


def _run_supervised(
    ctx: click.Context, work: Callable[[WorkflowSupervisor], Awaitable[T]]
) -> T:
    """Run work against a supervisor, wait for its tasks and shut down."""
    config: AudioflowConfig = ctx.obj["config"]
    store = get_store(ctx)
    services = _services(ctx)

    async def runner() -> T:
        supervisor = WorkflowSupervisor(
            store,
            services,
            workflow=config.workflow,
            polling=config.polling,
        )
        try:
            result = await work(supervisor)
            await supervisor.wait_idle()
            return result
        finally:
            await supervisor.shutdown()

    try:
        return asyncio.run(runner())
    except (SessionNotFoundError, FileNotInSessionError) as e:
        error_exit(str(e), ExitCode.NOT_FOUND)
    except (SessionClosedError, CollectiveRestartError) as e:
        error_exit(str(e), ExitCode.INVALID_STATE)
    except PersistenceError as e:
        error_exit(str(e), ExitCode.DATABASE_ERROR)


def _print_progress(
    store: SessionStateStore, session_id: str, json_output: bool
) -> None:
    session = store.load_session(session_id)
    if session is None:
        error_exit(f"Session not found: {session_id}", ExitCode.NOT_FOUND, json_output)
    progress = snapshot(session)
    if json_output:
        click.echo(json.dumps(progress_to_dict(progress), indent=2))
    else:
        echo_progress(progress)


def _parse_mics(values: tuple[str, ...]) -> dict[int, str]:
    mics: dict[int, str] = {}
    for value in values:
        index, sep, name = value.partition("=")
        if not sep or not index.strip().isdigit() or not name.strip():
            raise click.BadParameter(
                f"expected INDEX=NAME, got {value!r}", param_hint="--mic"
            )
        mics[int(index)] = name.strip()
    return mics


@click.command("create")
@click.argument("review_id")
@click.argument(
    "folder", type=click.Path(file_okay=False, path_type=Path, resolve_path=True)
)
@click.argument(
    "files",
    nargs=-1,
    type=click.Path(exists=True, dir_okay=False, path_type=Path, resolve_path=True),
)
@click.option(
    "--mic",
    "mics",
    multiple=True,
    help="Participant on a mic, as INDEX=NAME (0-based, repeatable).",
)
@click.option(
    "--run",
    "run",
    is_flag=True,
    default=False,
    help="Start processing right away.",
)
@json_option
@click.pass_context
def create_command(
    ctx: click.Context,
    review_id: str,
    folder: Path,
    files: tuple[Path, ...],
    mics: tuple[str, ...],
    run: bool,
    json_output: bool,
) -> None:
    """Create a session and register recordings with it.

    Examples:

    \b
        audioflow create movie-night ./session MIC1.WAV MIC2.WAV --mic 0=Ann --mic 1=Bo
    """
    store = get_store(ctx)
    mic_assignments = _parse_mics(mics)

    # Registration only touches the store, so no API keys are needed yet
    try:
        session = registry.create_session(store, review_id, folder, mic_assignments)
        for path in files:
            registry.register_file(store, session.id, path)
    except PersistenceError as e:
        error_exit(str(e), ExitCode.DATABASE_ERROR, json_output)
    except OSError as e:
        error_exit(f"Cannot create {folder}: {e}", ExitCode.GENERAL_ERROR, json_output)

    if json_output:
        click.echo(
            json.dumps({"session_id": session.id, "files": len(files)}, indent=2)
        )
    else:
        click.echo(f"Created session {session.id} with {len(files)} file(s)")

    if run:
        _run_supervised(ctx, lambda supervisor: supervisor.start_session(session.id))
        if not json_output:
            _print_progress(store, session.id, json_output)


@click.command("run")
@click.argument("session_id")
@json_option
@click.pass_context
def run_command(ctx: click.Context, session_id: str, json_output: bool) -> None:
    """Process a session until its files and analysis stop.

    Files resume from their stored status. The command returns once every
    file is at the barrier or failed and the collective run, if it started,
    has completed or failed.
    """
    store = get_store(ctx)
    session_id = _resolve_session_id(store, session_id)
    started = _run_supervised(
        ctx, lambda supervisor: supervisor.start_session(session_id)
    )
    logger.debug("Started %d file task(s) for %s", started, session_id)
    _print_progress(store, session_id, json_output)


@click.command("status")
@click.argument("session_id")
@json_option
@click.pass_context
def status_command(ctx: click.Context, session_id: str, json_output: bool) -> None:
    """Show progress of a session."""
    store = get_store(ctx)
    session_id = _resolve_session_id(store, session_id)
    _print_progress(store, session_id, json_output)


@click.command("sessions")
@click.option(
    "--all",
    "show_all",
    is_flag=True,
    default=False,
    help="Include archived sessions.",
)
@json_option
@click.pass_context
def sessions_command(ctx: click.Context, show_all: bool, json_output: bool) -> None:
    """List sessions with their overall progress."""
    store = get_store(ctx)
    try:
        sessions = store.list_sessions(include_archived=show_all)
    except PersistenceError as e:
        error_exit(str(e), ExitCode.DATABASE_ERROR, json_output)

    rows = []
    for session in sessions:
        progress = snapshot(session)
        rows.append(
            {
                "session_id": session.id,
                "review_id": session.review_id,
                "files": len(session.files),
                "phase": progress.phase,
                "overall": round(progress.overall, 2),
                "created_at": session.created_at,
                "archived": session.archived_at is not None,
            }
        )

    if json_output:
        click.echo(json.dumps({"sessions": rows, "total": len(rows)}, indent=2))
        return

    if not rows:
        click.echo("No sessions found.")
        return

    click.echo(f"{'ID':<10} {'Review':<20} {'Files':>5} {'Phase':<12} {'Progress':>8}")
    click.echo("-" * 60)
    for row in rows:
        archived = " (archived)" if row["archived"] else ""
        click.echo(
            f"{row['session_id'][:8]:<10} {row['review_id'][:20]:<20} "
            f"{row['files']:>5} {format_status(row['phase']):<21} "
            f"{row['overall']:>7.2f}%{archived}"
        )


@click.command("retry")
@click.argument("session_id")
@click.argument("file_id")
@json_option
@click.pass_context
def retry_command(
    ctx: click.Context, session_id: str, file_id: str, json_output: bool
) -> None:
    """Retry a failed file from the step it failed in."""
    store = get_store(ctx)
    session_id = _resolve_session_id(store, session_id)
    file_id = _resolve_file_id(store, session_id, file_id)
    _run_supervised(ctx, lambda supervisor: supervisor.retry_file(session_id, file_id))
    _print_progress(store, session_id, json_output)


@click.command("restart")
@click.argument("session_id")
@json_option
@click.pass_context
def restart_command(ctx: click.Context, session_id: str, json_output: bool) -> None:
    """Restart a failed analysis run from its failed step."""
    store = get_store(ctx)
    session_id = _resolve_session_id(store, session_id)
    _run_supervised(
        ctx, lambda supervisor: supervisor.restart_collective(session_id)
    )
    _print_progress(store, session_id, json_output)


@click.command("resume")
@json_option
@click.pass_context
def resume_command(ctx: click.Context, json_output: bool) -> None:
    """Continue every unarchived session from its stored state."""
    resumed = _run_supervised(ctx, lambda supervisor: supervisor.resume())
    if json_output:
        click.echo(json.dumps({"resumed": resumed}))
    else:
        click.echo(f"Resumed {resumed} session(s)")


@click.command("archive")
@click.argument("session_id")
@json_option
@click.pass_context
def archive_command(ctx: click.Context, session_id: str, json_output: bool) -> None:
    """Archive a session so it is no longer resumed."""
    store = get_store(ctx)
    session_id = _resolve_session_id(store, session_id)
    try:
        archived = store.archive_session(session_id, utc_now_iso())
    except PersistenceError as e:
        error_exit(str(e), ExitCode.DATABASE_ERROR, json_output)

    if json_output:
        click.echo(json.dumps({"session_id": session_id, "archived": archived}))
    elif archived:
        click.echo(f"Archived session {session_id}")
    else:
        click.echo(f"Session {session_id} was already archived")
