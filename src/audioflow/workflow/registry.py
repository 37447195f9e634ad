"""Session creation and file registration.

These only touch the store, so they are usable without the remote
collaborators (for example by the CLI before any API key is configured).
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from audioflow.core.datetime_utils import utc_now_iso
from audioflow.db.store import SessionStateStore
from audioflow.db.types import AudioFileState, FileStatus, ProcessingSession
from audioflow.exceptions import SessionClosedError, SessionNotFoundError
from audioflow.workflow.states import STEP_DESCRIPTIONS

logger = logging.getLogger(__name__)


def create_session(
    store: SessionStateStore,
    review_id: str,
    folder_path: Path,
    mic_assignments: dict[int, str] | None = None,
) -> ProcessingSession:
    """Create and persist an empty session.

    Args:
        store: Session store.
        review_id: Reference to the parent review or event.
        folder_path: Working directory for converted audio and artifacts.
        mic_assignments: 0-based mic index to participant name.

    Returns:
        The new session.

    Raises:
        PersistenceError: If the session cannot be written.
    """
    now = utc_now_iso()
    session = ProcessingSession(
        id=str(uuid.uuid4()),
        review_id=review_id,
        folder_path=str(folder_path),
        created_at=now,
        last_updated=now,
        mic_assignments=dict(mic_assignments or {}),
    )
    Path(folder_path).mkdir(parents=True, exist_ok=True)
    store.create_session(session)
    logger.info("Created session %s for review %s", session.id, review_id)
    return session


def open_session(store: SessionStateStore, session_id: str) -> ProcessingSession:
    """Load a session that still accepts file changes.

    Raises:
        SessionNotFoundError: If the session does not exist.
        SessionClosedError: If the session is archived or its collective
            phase has started.
    """
    session = store.load_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    if session.archived_at is not None:
        raise SessionClosedError(f"Session {session_id} is archived")
    if session.collective is not None:
        raise SessionClosedError(
            f"Session {session_id} has started its collective phase"
        )
    return session


def register_file(
    store: SessionStateStore,
    session_id: str,
    source_path: Path,
    original_filename: str | None = None,
) -> AudioFileState:
    """Add a file to a session in the Pending status.

    Args:
        store: Session store.
        session_id: Session to add the file to.
        source_path: Location of the uploaded recording.
        original_filename: Name as uploaded (defaults to the path name).

    Returns:
        The persisted file state.

    Raises:
        SessionNotFoundError: If the session does not exist.
        SessionClosedError: If the session is archived or its collective
            phase has started.
        PersistenceError: If the file cannot be written.
    """
    session = open_session(store, session_id)
    now = utc_now_iso()
    audio_file = AudioFileState(
        id=str(uuid.uuid4()),
        session_id=session_id,
        position=len(session.files),
        original_filename=original_filename or Path(source_path).name,
        source_path=str(source_path),
        status=FileStatus.PENDING,
        sub_progress=0.0,
        last_updated=now,
        current_step=STEP_DESCRIPTIONS[FileStatus.PENDING],
    )
    store.files.insert_file(audio_file)
    store.touch_session(session_id, now)
    logger.debug(
        "Registered %s in session %s", audio_file.original_filename, session_id
    )
    return audio_file
