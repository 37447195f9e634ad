"""State stores for sessions, audio files and collective runs.

Both stores sit on a shared ConnectionPool. Every write is a single
statement or a single BEGIN IMMEDIATE transaction, so a failed write leaves
the stored state unchanged. sqlite3 errors are translated into
PersistenceError at this boundary; callers never see raw driver errors.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

from audioflow.db.connection import ConnectionPool
from audioflow.db.types import (
    AudioFileState,
    CollectivePhaseState,
    CollectiveStatus,
    ErrorKind,
    FileStatus,
    ProcessingSession,
)
from audioflow.exceptions import PersistenceError

logger = logging.getLogger(__name__)

_FILE_COLUMNS = (
    "id, session_id, position, original_filename, source_path, status, "
    "sub_progress, last_live_status, retry_count, error_kind, error_message, "
    "current_step, converted_path, remote_audio_ref, transcription_job_id, "
    "transcript_path, last_updated"
)

_COLLECTIVE_COLUMNS = (
    "session_id, run_id, status, failed_step, combined_transcript_path, "
    "excluded_file_ids_json, ai_job_id, ai_response_path, insights_json, "
    "error_kind, error_message, started_at, last_updated"
)


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Re-raise sqlite3 errors as PersistenceError."""
    try:
        yield
    except sqlite3.Error as e:
        logger.error("State store %s failed: %s", operation, e)
        raise PersistenceError(f"State store {operation} failed: {e}") from e


def _row_to_file(row: sqlite3.Row) -> AudioFileState:
    """Convert a database row to AudioFileState using named columns.

    Args:
        row: sqlite3.Row from a SELECT query on the audio_files table.

    Returns:
        AudioFileState instance populated from the row.
    """
    return AudioFileState(
        id=row["id"],
        session_id=row["session_id"],
        position=row["position"],
        original_filename=row["original_filename"],
        source_path=row["source_path"],
        status=FileStatus(row["status"]),
        sub_progress=row["sub_progress"],
        last_updated=row["last_updated"],
        last_live_status=FileStatus(row["last_live_status"]),
        retry_count=row["retry_count"],
        error_kind=ErrorKind(row["error_kind"]) if row["error_kind"] else None,
        error_message=row["error_message"],
        current_step=row["current_step"],
        converted_path=row["converted_path"],
        remote_audio_ref=row["remote_audio_ref"],
        transcription_job_id=row["transcription_job_id"],
        transcript_path=row["transcript_path"],
    )


def _file_params(audio_file: AudioFileState) -> tuple:
    return (
        audio_file.status.value,
        audio_file.sub_progress,
        audio_file.last_live_status.value,
        audio_file.retry_count,
        audio_file.error_kind.value if audio_file.error_kind else None,
        audio_file.error_message,
        audio_file.current_step,
        audio_file.converted_path,
        audio_file.remote_audio_ref,
        audio_file.transcription_job_id,
        audio_file.transcript_path,
        audio_file.last_updated,
    )


def _row_to_collective(row: sqlite3.Row) -> CollectivePhaseState:
    """Convert a database row to CollectivePhaseState."""
    excluded = row["excluded_file_ids_json"]
    return CollectivePhaseState(
        session_id=row["session_id"],
        run_id=row["run_id"],
        status=CollectiveStatus(row["status"]),
        started_at=row["started_at"],
        last_updated=row["last_updated"],
        failed_step=(
            CollectiveStatus(row["failed_step"]) if row["failed_step"] else None
        ),
        combined_transcript_path=row["combined_transcript_path"],
        excluded_file_ids=json.loads(excluded) if excluded else [],
        ai_job_id=row["ai_job_id"],
        ai_response_path=row["ai_response_path"],
        insights_json=row["insights_json"],
        error_kind=ErrorKind(row["error_kind"]) if row["error_kind"] else None,
        error_message=row["error_message"],
    )


def _row_to_session(row: sqlite3.Row) -> ProcessingSession:
    """Convert a sessions row to ProcessingSession (without files)."""
    raw_mics = json.loads(row["mic_assignments_json"] or "{}")
    return ProcessingSession(
        id=row["id"],
        review_id=row["review_id"],
        folder_path=row["folder_path"],
        created_at=row["created_at"],
        last_updated=row["last_updated"],
        # JSON object keys are strings; mic numbers are ints in memory
        mic_assignments={int(k): v for k, v in raw_mics.items()},
        archived_at=row["archived_at"],
    )


class FileStateStore:
    """Persists the state of individual audio files.

    Each save touches exactly one audio_files row, so concurrent workers
    writing different files of the same session never rewrite each other.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def insert_file(self, audio_file: AudioFileState) -> None:
        """Insert a newly registered file.

        Args:
            audio_file: File state to insert (normally Pending).

        Raises:
            PersistenceError: If the row cannot be written.
        """
        with _translate_errors("insert_file"):
            self._pool.execute_write(
                f"INSERT INTO audio_files ({_FILE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    audio_file.id,
                    audio_file.session_id,
                    audio_file.position,
                    audio_file.original_filename,
                    audio_file.source_path,
                    *_file_params(audio_file),
                ),
            )

    def save_file(self, audio_file: AudioFileState) -> None:
        """Write one file's mutable state in a single row update.

        Status and sub-progress are written together by the same statement.

        Args:
            audio_file: File state to persist.

        Raises:
            PersistenceError: If the write fails or the row does not exist.
        """
        with _translate_errors("save_file"):
            affected = self._pool.execute_write(
                """
                UPDATE audio_files SET
                    status = ?, sub_progress = ?, last_live_status = ?,
                    retry_count = ?, error_kind = ?, error_message = ?,
                    current_step = ?, converted_path = ?, remote_audio_ref = ?,
                    transcription_job_id = ?, transcript_path = ?,
                    last_updated = ?
                WHERE id = ? AND session_id = ?
                """,
                (*_file_params(audio_file), audio_file.id, audio_file.session_id),
            )
        if affected == 0:
            raise PersistenceError(
                f"File {audio_file.id} does not exist in session "
                f"{audio_file.session_id}"
            )

    def load_file(self, session_id: str, file_id: str) -> AudioFileState | None:
        """Load one file's state.

        Args:
            session_id: Session the file belongs to.
            file_id: ID of the file.

        Returns:
            AudioFileState if found, None otherwise.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        with _translate_errors("load_file"):
            rows = self._pool.execute_read(
                f"SELECT {_FILE_COLUMNS} FROM audio_files "
                "WHERE session_id = ? AND id = ?",
                (session_id, file_id),
            )
        return _row_to_file(rows[0]) if rows else None

    def list_files(self, session_id: str) -> list[AudioFileState]:
        """Return all files of a session in registration order."""
        with _translate_errors("list_files"):
            rows = self._pool.execute_read(
                f"SELECT {_FILE_COLUMNS} FROM audio_files "
                "WHERE session_id = ? ORDER BY position",
                (session_id,),
            )
        return [_row_to_file(row) for row in rows]


class SessionStateStore:
    """Persists sessions and their collective (Phase 2) runs."""

    def __init__(
        self, pool: ConnectionPool, file_store: FileStateStore | None = None
    ) -> None:
        self._pool = pool
        self.files = file_store or FileStateStore(pool)

    def create_session(self, session: ProcessingSession) -> None:
        """Insert a new session row.

        Files are registered separately through FileStateStore.insert_file.

        Raises:
            PersistenceError: If the row cannot be written.
        """
        with _translate_errors("create_session"):
            self._pool.execute_write(
                "INSERT INTO sessions (id, review_id, folder_path, "
                "mic_assignments_json, created_at, last_updated, archived_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.review_id,
                    session.folder_path,
                    json.dumps({str(k): v for k, v in session.mic_assignments.items()}),
                    session.created_at,
                    session.last_updated,
                    session.archived_at,
                ),
            )

    def load_session(self, session_id: str) -> ProcessingSession | None:
        """Load a session with its files and collective run.

        Args:
            session_id: ID of the session.

        Returns:
            ProcessingSession if found, None otherwise.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        with _translate_errors("load_session"):
            with self._pool.read_connection() as conn:
                # One connection gives a consistent snapshot across tables
                row = conn.execute(
                    "SELECT * FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()
                if row is None:
                    return None
                session = _row_to_session(row)
                file_rows = conn.execute(
                    f"SELECT {_FILE_COLUMNS} FROM audio_files "
                    "WHERE session_id = ? ORDER BY position",
                    (session_id,),
                ).fetchall()
                collective_row = conn.execute(
                    f"SELECT {_COLLECTIVE_COLUMNS} FROM collective_runs "
                    "WHERE session_id = ?",
                    (session_id,),
                ).fetchone()

        session.files = [_row_to_file(r) for r in file_rows]
        session.collective = (
            _row_to_collective(collective_row) if collective_row else None
        )
        return session

    def save_session(self, session: ProcessingSession) -> None:
        """Write a session, all its files and its collective run atomically.

        Raises:
            PersistenceError: If the transaction fails; nothing is written.
        """
        with _translate_errors("save_session"):
            with self._pool.transaction() as conn:
                conn.execute(
                    "UPDATE sessions SET review_id = ?, folder_path = ?, "
                    "mic_assignments_json = ?, last_updated = ?, archived_at = ? "
                    "WHERE id = ?",
                    (
                        session.review_id,
                        session.folder_path,
                        json.dumps(
                            {str(k): v for k, v in session.mic_assignments.items()}
                        ),
                        session.last_updated,
                        session.archived_at,
                        session.id,
                    ),
                )
                for audio_file in session.files:
                    conn.execute(
                        """
                        UPDATE audio_files SET
                            status = ?, sub_progress = ?, last_live_status = ?,
                            retry_count = ?, error_kind = ?, error_message = ?,
                            current_step = ?, converted_path = ?,
                            remote_audio_ref = ?, transcription_job_id = ?,
                            transcript_path = ?, last_updated = ?
                        WHERE id = ?
                        """,
                        (*_file_params(audio_file), audio_file.id),
                    )
                if session.collective is not None:
                    self._update_collective(conn, session.collective)

    def list_sessions(self, include_archived: bool = False) -> list[ProcessingSession]:
        """List sessions with their files, newest first.

        Args:
            include_archived: Include archived sessions.

        Returns:
            List of fully loaded sessions.
        """
        query = "SELECT id FROM sessions"
        if not include_archived:
            query += " WHERE archived_at IS NULL"
        query += " ORDER BY created_at DESC"
        with _translate_errors("list_sessions"):
            rows = self._pool.execute_read(query)
        sessions = []
        for row in rows:
            session = self.load_session(row["id"])
            if session is not None:
                sessions.append(session)
        return sessions

    def list_active_sessions(self) -> list[ProcessingSession]:
        """Return every session that has not been archived."""
        return self.list_sessions(include_archived=False)

    def archive_session(self, session_id: str, archived_at: str) -> bool:
        """Mark a session as archived.

        Returns:
            True if the session was archived, False if it does not exist or
            was already archived.
        """
        with _translate_errors("archive_session"):
            affected = self._pool.execute_write(
                "UPDATE sessions SET archived_at = ?, last_updated = ? "
                "WHERE id = ? AND archived_at IS NULL",
                (archived_at, archived_at, session_id),
            )
        return affected > 0

    def claim_collective_run(self, state: CollectivePhaseState) -> bool:
        """Atomically record the start of a session's collective run.

        The insert is a no-op when a run already exists, so at most one
        caller ever observes True for a given session.

        Args:
            state: Initial collective state (ProcessingTranscriptions).

        Returns:
            True if this call created the run, False if one already existed.

        Raises:
            PersistenceError: If the insert fails.
        """
        with _translate_errors("claim_collective_run"):
            affected = self._pool.execute_write(
                f"INSERT INTO collective_runs ({_COLLECTIVE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(session_id) DO NOTHING",
                (
                    state.session_id,
                    state.run_id,
                    state.status.value,
                    state.failed_step.value if state.failed_step else None,
                    state.combined_transcript_path,
                    json.dumps(state.excluded_file_ids),
                    state.ai_job_id,
                    state.ai_response_path,
                    state.insights_json,
                    state.error_kind.value if state.error_kind else None,
                    state.error_message,
                    state.started_at,
                    state.last_updated,
                ),
            )
        return affected == 1

    def load_collective(self, session_id: str) -> CollectivePhaseState | None:
        """Load the collective run for a session, if one was claimed."""
        with _translate_errors("load_collective"):
            rows = self._pool.execute_read(
                f"SELECT {_COLLECTIVE_COLUMNS} FROM collective_runs "
                "WHERE session_id = ?",
                (session_id,),
            )
        return _row_to_collective(rows[0]) if rows else None

    def save_collective(self, state: CollectivePhaseState) -> None:
        """Persist the collective run state and refresh the session timestamp.

        Raises:
            PersistenceError: If the write fails or no run with this run_id
                exists for the session.
        """
        with _translate_errors("save_collective"):
            with self._pool.transaction() as conn:
                if self._update_collective(conn, state) == 0:
                    # Rolls back the transaction
                    raise PersistenceError(
                        f"Collective run {state.run_id} does not exist for "
                        f"session {state.session_id}"
                    )
                conn.execute(
                    "UPDATE sessions SET last_updated = ? WHERE id = ?",
                    (state.last_updated, state.session_id),
                )

    def touch_session(self, session_id: str, timestamp: str) -> None:
        """Refresh a session's last_updated timestamp."""
        with _translate_errors("touch_session"):
            self._pool.execute_write(
                "UPDATE sessions SET last_updated = ? WHERE id = ?",
                (timestamp, session_id),
            )

    @staticmethod
    def _update_collective(
        conn: sqlite3.Connection, state: CollectivePhaseState
    ) -> int:
        cursor = conn.execute(
            """
            UPDATE collective_runs SET
                status = ?, failed_step = ?, combined_transcript_path = ?,
                excluded_file_ids_json = ?, ai_job_id = ?, ai_response_path = ?,
                insights_json = ?, error_kind = ?, error_message = ?,
                last_updated = ?
            WHERE session_id = ? AND run_id = ?
            """,
            (
                state.status.value,
                state.failed_step.value if state.failed_step else None,
                state.combined_transcript_path,
                json.dumps(state.excluded_file_ids),
                state.ai_job_id,
                state.ai_response_path,
                state.insights_json,
                state.error_kind.value if state.error_kind else None,
                state.error_message,
                state.last_updated,
                state.session_id,
                state.run_id,
            ),
        )
        return cursor.rowcount
