"""Progress calculation for files and sessions.

All functions here are pure: they read state records and return numbers,
never touching the store.

Per-file progress interpolates between the base value of the current status
and that of the next status using the file's sub-progress. Failed files
report the base value of the last live status they reached, so a failure
never pulls the session mean down. Once a collective run exists, the
session value switches to the fixed collective scale.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from audioflow.db.types import (
    AudioFileState,
    CollectivePhaseState,
    CollectiveStatus,
    FileStatus,
    ProcessingSession,
)
from audioflow.workflow.states import (
    BASE_PROGRESS,
    BARRIER_STATUS,
    COLLECTIVE_PROGRESS,
    is_failed,
    next_status,
)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def file_progress(
    status: FileStatus,
    sub_progress: float = 0.0,
    last_live_status: FileStatus | None = None,
) -> float:
    """Compute one file's progress on a 0-100 scale.

    Args:
        status: Current file status.
        sub_progress: Fraction (0.0-1.0) of the current step completed.
        last_live_status: Last non-failed status. A failed file holds the
            value it had reached there, sub_progress included.

    Returns:
        Progress percentage.

    Example:
        >>> file_progress(FileStatus.UPLOADING_TO_GLADIA, 0.5)
        35.0
    """
    if status == FileStatus.COMPLETE:
        return 100.0
    if is_failed(status):
        status = last_live_status or FileStatus.PENDING
    if status == BARRIER_STATUS:
        return BASE_PROGRESS[BARRIER_STATUS]

    following = next_status(status)
    base = BASE_PROGRESS[status]
    if following is None:
        return base
    upper = BASE_PROGRESS[following]
    fraction = _clamp(sub_progress, 0.0, 1.0)
    return _clamp(base + (upper - base) * fraction, base, upper)


def file_state_progress(audio_file: AudioFileState) -> float:
    """Compute progress for a stored file record."""
    return file_progress(
        audio_file.status, audio_file.sub_progress, audio_file.last_live_status
    )


def collective_progress(
    status: CollectiveStatus, failed_step: CollectiveStatus | None = None
) -> float:
    """Map a collective status to its fixed session percentage.

    A failed run holds the value of the step it failed in.
    """
    if status == CollectiveStatus.FAILED:
        step = failed_step or CollectiveStatus.PROCESSING_TRANSCRIPTIONS
        return COLLECTIVE_PROGRESS[step]
    return COLLECTIVE_PROGRESS[status]


def session_progress(
    files: Sequence[AudioFileState],
    collective: CollectivePhaseState | None = None,
) -> float:
    """Compute overall session progress.

    Args:
        files: All files of the session, failed ones included.
        collective: The session's collective run, if one was claimed.

    Returns:
        The collective-scale value once a run exists, otherwise the
        arithmetic mean of the files' progress (0.0 for no files).
    """
    if collective is not None:
        return collective_progress(collective.status, collective.failed_step)
    if not files:
        return 0.0
    total = sum(file_state_progress(f) for f in files)
    return total / (len(files) * 100) * 100


@dataclass
class FileProgress:
    """Progress of one file for display."""

    file_id: str
    filename: str
    status: FileStatus
    progress: float
    retry_count: int = 0
    current_step: str | None = None
    error_message: str | None = None


@dataclass
class SessionProgress:
    """Point-in-time progress view of a session."""

    session_id: str
    overall: float
    phase: str  # "phase1", "collective", "complete" or "failed"
    files: list[FileProgress] = field(default_factory=list)
    collective_status: CollectiveStatus | None = None
    excluded_file_ids: list[str] = field(default_factory=list)
    error_message: str | None = None


def snapshot(session: ProcessingSession) -> SessionProgress:
    """Build a progress view of a session.

    Args:
        session: Fully loaded session (files and collective run).

    Returns:
        SessionProgress with the overall value and a per-file breakdown.
    """
    collective = session.collective
    if collective is None:
        phase = "phase1"
    elif collective.status == CollectiveStatus.COMPLETE:
        phase = "complete"
    elif collective.status == CollectiveStatus.FAILED:
        phase = "failed"
    else:
        phase = "collective"

    return SessionProgress(
        session_id=session.id,
        overall=session_progress(session.files, collective),
        phase=phase,
        files=[
            FileProgress(
                file_id=f.id,
                filename=f.original_filename,
                status=f.status,
                progress=file_state_progress(f),
                retry_count=f.retry_count,
                current_step=f.current_step,
                error_message=f.error_message,
            )
            for f in session.files
        ],
        collective_status=collective.status if collective else None,
        excluded_file_ids=list(collective.excluded_file_ids) if collective else [],
        error_message=collective.error_message if collective else None,
    )
