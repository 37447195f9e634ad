"""Data type definitions for the workflow state database.

This module contains all enums and dataclasses for the persistence layer:
- Status enums for the per-file (Phase 1) and collective (Phase 2) state
  machines
- Records for sessions, audio files and collective runs

The transition rules over these enums live in audioflow.workflow.states.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FileStatus(Enum):
    """Status of one audio file's workflow.

    Declaration order is the Phase-1 order; Complete and the failure
    statuses come last.
    """

    PENDING = "pending"
    UPLOADING = "uploading"
    CONVERTING_TO_MP3 = "converting_to_mp3"
    FINISHED_CONVERTING_TO_MP3 = "finished_converting_to_mp3"
    UPLOADING_TO_GLADIA = "uploading_to_gladia"
    FINISHED_UPLOADING_TO_GLADIA = "finished_uploading_to_gladia"
    WAITING_TO_DOWNLOAD_TRANSCRIPTS = "waiting_to_download_transcripts"
    DOWNLOADING_TRANSCRIPTS = "downloading_transcripts"
    TRANSCRIPTS_DOWNLOADED = "transcripts_downloaded"
    WAITING_FOR_OTHER_FILES = "waiting_for_other_files"  # Barrier
    COMPLETE = "complete"
    FAILED = "failed"
    FAILED_MP3 = "failed_mp3"


class CollectiveStatus(Enum):
    """Status of a session's collective (Phase 2) run."""

    PROCESSING_TRANSCRIPTIONS = "processing_transcriptions"
    SENDING_TO_OPENAI = "sending_to_openai"
    PROCESSING_WITH_AI = "processing_with_ai"
    READY_TO_PROCESS_AI_RESPONSE = "ready_to_process_ai_response"
    PROCESSING_AI_RESPONSE = "processing_ai_response"
    COMPLETE = "complete"
    FAILED = "failed"


class ErrorKind(Enum):
    """Classification of a recorded failure."""

    CONVERSION = "conversion"  # Format/codec error
    REMOTE_SERVICE = "remote_service"  # Transcription/AI error or bad response
    TIMEOUT = "timeout"  # Poll exceeded its deadline
    RESPONSE_PARSE = "response_parse"  # Local interpretation of AI output
    UNEXPECTED = "unexpected"


@dataclass
class AudioFileState:
    """Database record for audio_files table."""

    id: str  # UUID v4
    session_id: str  # FK to sessions.id
    position: int  # Registration order within the session
    original_filename: str
    source_path: str
    status: FileStatus
    sub_progress: float  # 0.0 - 1.0, meaning depends on status
    last_updated: str  # ISO-8601 UTC

    # Last non-failed status; retry resets to it, failed progress freezes on it
    last_live_status: FileStatus = FileStatus.PENDING
    retry_count: int = 0
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    current_step: str | None = None  # Human-readable step description

    # Artifacts
    converted_path: str | None = None
    remote_audio_ref: str | None = None  # URL returned by the upload
    transcription_job_id: str | None = None
    transcript_path: str | None = None


@dataclass
class CollectivePhaseState:
    """Database record for collective_runs table.

    The row is inserted when the barrier fires; its presence is the
    persisted claim that Phase 2 started for the session.
    """

    session_id: str  # PK, FK to sessions.id
    run_id: str  # UUID v4
    status: CollectiveStatus
    started_at: str  # ISO-8601 UTC
    last_updated: str  # ISO-8601 UTC

    failed_step: CollectiveStatus | None = None
    combined_transcript_path: str | None = None
    excluded_file_ids: list[str] = field(default_factory=list)
    ai_job_id: str | None = None
    ai_response_path: str | None = None
    insights_json: str | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None


@dataclass
class ProcessingSession:
    """Database record for sessions table, with its files and collective run."""

    id: str  # UUID v4
    review_id: str  # Parent review/event reference
    folder_path: str  # Working directory for derived artifacts
    created_at: str  # ISO-8601 UTC
    last_updated: str  # ISO-8601 UTC
    mic_assignments: dict[int, str] = field(default_factory=dict)
    archived_at: str | None = None
    files: list[AudioFileState] = field(default_factory=list)
    collective: CollectivePhaseState | None = None

    def get_file(self, file_id: str) -> AudioFileState | None:
        """Return the file with the given ID, or None."""
        for audio_file in self.files:
            if audio_file.id == file_id:
                return audio_file
        return None
