"""Custom exceptions for the audio workflow engine.

This module provides specific exception types for workflow operations,
enabling callers to handle different error conditions appropriately:

- ConversionError, RemoteServiceError, PollTimeoutError, ResponseParseError:
  failures of an external collaborator, recorded on the file or collective
  run.
- PersistenceError: the state store is unavailable. Fatal to the current
  operation and never recorded as a workflow failure.
- IllegalTransitionError and the lookup errors: programming or operator
  errors raised before any state is changed.
"""

from __future__ import annotations

from audioflow.db.types import ErrorKind


class WorkflowError(Exception):
    """Base exception for workflow errors.

    All workflow exceptions inherit from this class, allowing callers
    to catch all workflow errors with a single except clause if desired.
    """


class CollaboratorError(WorkflowError):
    """Base class for failures reported by an external collaborator.

    Attributes:
        kind: ErrorKind recorded on the failed file or collective run.
    """

    kind: ErrorKind = ErrorKind.UNEXPECTED


class ConversionError(CollaboratorError):
    """Raised when an audio file cannot be converted (format or codec error)."""

    kind = ErrorKind.CONVERSION


class RemoteServiceError(CollaboratorError):
    """Raised when a remote service returns an error or a malformed response.

    Attributes:
        service: Name of the remote service (e.g., "gladia", "openai").
        status_code: HTTP status code, if the failure came from a response.
    """

    kind = ErrorKind.REMOTE_SERVICE

    def __init__(
        self,
        message: str,
        *,
        service: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable description of the failure.
            service: Name of the remote service.
            status_code: HTTP status code, if any.
        """
        self.service = service
        self.status_code = status_code
        super().__init__(message)


class PollTimeoutError(CollaboratorError):
    """Raised when polling a remote job exceeds its deadline.

    Attributes:
        job_id: ID of the remote job that did not finish.
        timeout: The deadline that was exceeded, in seconds.
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, job_id: str, timeout: float) -> None:
        """Initialize the exception.

        Args:
            job_id: ID of the remote job.
            timeout: Deadline in seconds.
        """
        self.job_id = job_id
        self.timeout = timeout
        super().__init__(f"Remote job {job_id} did not finish within {timeout:.0f}s")


class RemoteJobFailedError(RemoteServiceError):
    """Raised when a remote job finishes in a failed state.

    Unlike other remote errors the job itself is dead, so polling it again
    cannot succeed.

    Attributes:
        job_id: ID of the failed remote job.
    """

    def __init__(
        self, job_id: str, message: str, *, service: str | None = None
    ) -> None:
        self.job_id = job_id
        super().__init__(message, service=service)


class ResponseParseError(CollaboratorError):
    """Raised when a finished AI response cannot be interpreted locally.

    The remote call succeeded; only the local parse failed, so the response
    is kept and the remote call is never re-issued.
    """

    kind = ErrorKind.RESPONSE_PARSE


class PersistenceError(WorkflowError):
    """Raised when the state store cannot be read or written.

    A transition whose write raised this error is considered not to have
    happened: callers keep their previous in-memory state.
    """


class IllegalTransitionError(WorkflowError):
    """Raised when a status change is not allowed by the transition table.

    Attributes:
        current: Status the entity is in.
        target: Status that was requested.
    """

    def __init__(self, current: object, target: object) -> None:
        """Initialize the exception.

        Args:
            current: Current status.
            target: Requested status.
        """
        self.current = current
        self.target = target
        current_name = getattr(current, "value", current)
        target_name = getattr(target, "value", target)
        super().__init__(f"Cannot transition from '{current_name}' to '{target_name}'")


class SessionNotFoundError(WorkflowError):
    """Raised when a session doesn't exist in the store.

    Attributes:
        session_id: The ID of the session that was not found.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class FileNotInSessionError(WorkflowError):
    """Raised when a file ID is not registered with the given session.

    Attributes:
        session_id: Session that was searched.
        file_id: The file ID that was not found.
    """

    def __init__(self, session_id: str, file_id: str) -> None:
        self.session_id = session_id
        self.file_id = file_id
        super().__init__(f"File {file_id} is not part of session {session_id}")


class SessionClosedError(WorkflowError):
    """Raised when a session no longer accepts the requested change.

    This covers registering files after the collective phase started and
    any mutation of an archived session.
    """


class CollectiveRestartError(WorkflowError):
    """Raised when the collective phase cannot be restarted.

    Restart is only valid for a session whose collective run is Failed.
    """
