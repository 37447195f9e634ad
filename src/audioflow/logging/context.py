"""Session and file IDs attached to log records.

The supervisor runs one asyncio task per file. Each task gets its own copy
of these context variables when it is created, so a log line always names
the file that produced it, even with many files converting at once.
"""

from __future__ import annotations

import contextvars
import logging
from collections.abc import Iterator
from contextlib import contextmanager

_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "audioflow_session_id", default=None
)
_file_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "audioflow_file_id", default=None
)


@contextmanager
def workflow_context(session_id: str, file_id: str | None = None) -> Iterator[None]:
    """Tag log records emitted inside the block with a session and file.

    The previous values are restored on exit, so blocks nest.

    Example:
        with workflow_context(session.id, audio_file.id):
            logger.info("Converting")
    """
    session_token = _session_id.set(session_id)
    file_token = _file_id.set(file_id)
    try:
        yield
    finally:
        _file_id.reset(file_token)
        _session_id.reset(session_token)


def get_workflow_context() -> tuple[str | None, str | None]:
    """Return the current (session_id, file_id)."""
    return _session_id.get(), _file_id.get()


def _tag(session_id: str | None, file_id: str | None) -> str:
    if not session_id:
        return ""
    ids = [session_id[:8]] + ([file_id[:8]] if file_id else [])
    return "[" + ":".join(ids) + "] "


class WorkflowContextFilter(logging.Filter):
    """Copy the workflow context onto each record.

    Sets session_id and file_id, and workflow_tag: a short prefix such as
    "[3f2a9c1d:77b0e412] " for the text format, empty outside a session.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        session_id, file_id = get_workflow_context()
        record.session_id = session_id
        record.file_id = file_id
        record.workflow_tag = _tag(session_id, file_id)
        return True
