"""State machine definitions for the per-file and collective workflows.

The transition tables are the single authority on which status changes are
legal. Workers and the collective processor validate every change against
them before writing; anything not listed raises IllegalTransitionError.
"""

from __future__ import annotations

from enum import Enum

from audioflow.db.types import CollectiveStatus, FileStatus
from audioflow.exceptions import IllegalTransitionError


class BarrierPolicy(Enum):
    """How failed files are treated when evaluating the barrier."""

    # Failed files are left out; the barrier waits only for live files
    EXCLUDE_FAILED = "exclude_failed"
    # Failed files hold the barrier until they are retried
    BLOCK_ON_FAILED = "block_on_failed"


# Phase-1 order. WaitingForOtherFiles is the barrier and ends Phase 1.
PHASE1_ORDER: tuple[FileStatus, ...] = (
    FileStatus.PENDING,
    FileStatus.UPLOADING,
    FileStatus.CONVERTING_TO_MP3,
    FileStatus.FINISHED_CONVERTING_TO_MP3,
    FileStatus.UPLOADING_TO_GLADIA,
    FileStatus.FINISHED_UPLOADING_TO_GLADIA,
    FileStatus.WAITING_TO_DOWNLOAD_TRANSCRIPTS,
    FileStatus.DOWNLOADING_TRANSCRIPTS,
    FileStatus.TRANSCRIPTS_DOWNLOADED,
    FileStatus.WAITING_FOR_OTHER_FILES,
)

BARRIER_STATUS = FileStatus.WAITING_FOR_OTHER_FILES

FAILED_STATUSES: frozenset[FileStatus] = frozenset(
    {FileStatus.FAILED, FileStatus.FAILED_MP3}
)

TERMINAL_STATUSES: frozenset[FileStatus] = FAILED_STATUSES | {FileStatus.COMPLETE}

BASE_PROGRESS: dict[FileStatus, float] = {
    FileStatus.PENDING: 0.0,
    FileStatus.UPLOADING: 10.0,
    FileStatus.CONVERTING_TO_MP3: 15.0,
    FileStatus.FINISHED_CONVERTING_TO_MP3: 20.0,
    FileStatus.UPLOADING_TO_GLADIA: 30.0,
    FileStatus.FINISHED_UPLOADING_TO_GLADIA: 40.0,
    FileStatus.WAITING_TO_DOWNLOAD_TRANSCRIPTS: 40.0,
    FileStatus.DOWNLOADING_TRANSCRIPTS: 60.0,
    FileStatus.TRANSCRIPTS_DOWNLOADED: 65.0,
    FileStatus.WAITING_FOR_OTHER_FILES: 70.0,
    FileStatus.COMPLETE: 100.0,
}

STEP_DESCRIPTIONS: dict[FileStatus, str] = {
    FileStatus.PENDING: "Waiting to start",
    FileStatus.UPLOADING: "Checking source file...",
    FileStatus.CONVERTING_TO_MP3: "Converting to MP3...",
    FileStatus.FINISHED_CONVERTING_TO_MP3: "Conversion complete",
    FileStatus.UPLOADING_TO_GLADIA: "Uploading to Gladia...",
    FileStatus.FINISHED_UPLOADING_TO_GLADIA: "Upload complete, transcribing...",
    FileStatus.WAITING_TO_DOWNLOAD_TRANSCRIPTS: "Waiting for transcription...",
    FileStatus.DOWNLOADING_TRANSCRIPTS: "Downloading transcripts...",
    FileStatus.TRANSCRIPTS_DOWNLOADED: "Transcripts ready",
    FileStatus.WAITING_FOR_OTHER_FILES: "Waiting for other files",
    FileStatus.COMPLETE: "Complete",
    FileStatus.FAILED: "Processing failed",
    FileStatus.FAILED_MP3: "MP3 conversion failed",
}


def _build_file_transitions() -> dict[FileStatus, frozenset[FileStatus]]:
    transitions: dict[FileStatus, frozenset[FileStatus]] = {}
    for index, status in enumerate(PHASE1_ORDER[:-1]):
        # Forward moves may skip steps (an MP3 source skips conversion)
        transitions[status] = frozenset(PHASE1_ORDER[index + 1 :]) | FAILED_STATUSES
    transitions[BARRIER_STATUS] = frozenset({FileStatus.COMPLETE}) | FAILED_STATUSES
    transitions[FileStatus.COMPLETE] = frozenset()
    # Retry targets depend on the file's last live status; see validate_file_transition
    transitions[FileStatus.FAILED] = frozenset()
    transitions[FileStatus.FAILED_MP3] = frozenset()
    return transitions


FILE_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = _build_file_transitions()


COLLECTIVE_ORDER: tuple[CollectiveStatus, ...] = (
    CollectiveStatus.PROCESSING_TRANSCRIPTIONS,
    CollectiveStatus.SENDING_TO_OPENAI,
    CollectiveStatus.PROCESSING_WITH_AI,
    CollectiveStatus.READY_TO_PROCESS_AI_RESPONSE,
    CollectiveStatus.PROCESSING_AI_RESPONSE,
    CollectiveStatus.COMPLETE,
)

COLLECTIVE_PROGRESS: dict[CollectiveStatus, float] = {
    CollectiveStatus.PROCESSING_TRANSCRIPTIONS: 80.0,
    CollectiveStatus.SENDING_TO_OPENAI: 85.0,
    CollectiveStatus.PROCESSING_WITH_AI: 90.0,
    CollectiveStatus.READY_TO_PROCESS_AI_RESPONSE: 95.0,
    CollectiveStatus.PROCESSING_AI_RESPONSE: 98.0,
    CollectiveStatus.COMPLETE: 100.0,
}

COLLECTIVE_TRANSITIONS: dict[CollectiveStatus, frozenset[CollectiveStatus]] = {
    current: frozenset({following, CollectiveStatus.FAILED})
    for current, following in zip(COLLECTIVE_ORDER, COLLECTIVE_ORDER[1:])
}
COLLECTIVE_TRANSITIONS[CollectiveStatus.COMPLETE] = frozenset()
# Restart targets depend on the recorded failed step
COLLECTIVE_TRANSITIONS[CollectiveStatus.FAILED] = frozenset()


def is_failed(status: FileStatus) -> bool:
    """Return True for Failed and FailedMp3."""
    return status in FAILED_STATUSES


def is_live(status: FileStatus) -> bool:
    """Return True if the file is not in a failed status."""
    return status not in FAILED_STATUSES


def is_terminal(status: FileStatus) -> bool:
    """Return True for Complete, Failed and FailedMp3."""
    return status in TERMINAL_STATUSES


def at_or_past_barrier(status: FileStatus) -> bool:
    """Return True if the file has finished Phase 1."""
    return status in (BARRIER_STATUS, FileStatus.COMPLETE)


def next_status(status: FileStatus) -> FileStatus | None:
    """Return the next status along the Phase-1 order.

    Returns None for the barrier and for terminal statuses, which have no
    Phase-1 successor.
    """
    if status not in PHASE1_ORDER or status == BARRIER_STATUS:
        return None
    return PHASE1_ORDER[PHASE1_ORDER.index(status) + 1]


def validate_file_transition(
    current: FileStatus,
    target: FileStatus,
    last_live_status: FileStatus | None = None,
) -> None:
    """Check a per-file status change against the transition table.

    Args:
        current: Status the file is in.
        target: Requested status.
        last_live_status: The file's last non-failed status. Required to
            validate a retry out of Failed/FailedMp3.

    Raises:
        IllegalTransitionError: If the change is not allowed.
    """
    if current in FAILED_STATUSES:
        if last_live_status is not None and target == last_live_status:
            return
        raise IllegalTransitionError(current, target)
    if target not in FILE_TRANSITIONS[current]:
        raise IllegalTransitionError(current, target)


def validate_collective_transition(
    current: CollectiveStatus,
    target: CollectiveStatus,
    failed_step: CollectiveStatus | None = None,
) -> None:
    """Check a collective status change against the transition table.

    A Failed run may only move back to the step it failed in.

    Raises:
        IllegalTransitionError: If the change is not allowed.
    """
    if current == CollectiveStatus.FAILED:
        if failed_step is not None and target == failed_step:
            return
        raise IllegalTransitionError(current, target)
    if target not in COLLECTIVE_TRANSITIONS[current]:
        raise IllegalTransitionError(current, target)


def next_collective_status(status: CollectiveStatus) -> CollectiveStatus | None:
    """Return the next collective step, or None at Complete and Failed."""
    if status not in COLLECTIVE_ORDER or status == CollectiveStatus.COMPLETE:
        return None
    return COLLECTIVE_ORDER[COLLECTIVE_ORDER.index(status) + 1]
