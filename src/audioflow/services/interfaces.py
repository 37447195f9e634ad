"""Interfaces for the external collaborators of the workflow engine.

The engine depends only on these protocols. The shipped adapters
(FFmpegConverter, GladiaClient, OpenAIAnalysisClient) implement them, and
tests substitute in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

ProgressCallback = Callable[[float], None]
"""Receives a completion fraction between 0.0 and 1.0."""


class RemoteJobState(Enum):
    """Coarse state of a remote asynchronous job."""

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RemoteJobStatus:
    """Result of polling a remote job.

    Attributes:
        state: Pending, done or failed.
        result: Service payload when done (transcript JSON or AI text).
        error: Human-readable error when failed.
    """

    state: RemoteJobState
    result: Any = None
    error: str | None = None

    @classmethod
    def pending(cls) -> RemoteJobStatus:
        return cls(RemoteJobState.PENDING)

    @classmethod
    def done(cls, result: Any) -> RemoteJobStatus:
        return cls(RemoteJobState.DONE, result=result)

    @classmethod
    def failed(cls, error: str) -> RemoteJobStatus:
        return cls(RemoteJobState.FAILED, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.state != RemoteJobState.PENDING


@runtime_checkable
class Converter(Protocol):
    """Converts a source recording to MP3."""

    input_extensions: frozenset[str]

    async def convert(
        self,
        source: Path,
        destination: Path,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Convert source into destination.

        Args:
            source: Recording to convert.
            destination: Path of the MP3 to write.
            on_progress: Optional callback receiving a 0.0-1.0 fraction.

        Returns:
            Path of the written MP3.

        Raises:
            ConversionError: If the input cannot be decoded or encoded.
        """
        ...


@runtime_checkable
class TranscriptionService(Protocol):
    """Remote speech-to-text service with polling completion."""

    async def upload(self, path: Path) -> str:
        """Upload an audio file and return its remote reference (URL).

        Raises:
            RemoteServiceError: If the upload fails.
        """
        ...

    async def submit(self, audio_ref: str, *, speakers: int = 1) -> str:
        """Start a transcription job and return its job ID.

        Args:
            audio_ref: Remote reference returned by upload.
            speakers: Expected number of speakers; 1 disables diarization.

        Raises:
            RemoteServiceError: If the job cannot be created.
        """
        ...

    async def poll_status(self, job_id: str) -> RemoteJobStatus:
        """Return the current state of a transcription job.

        Raises:
            RemoteServiceError: If the status cannot be retrieved.
        """
        ...


@runtime_checkable
class AIAnalysisService(Protocol):
    """Remote language-model analysis with polling completion."""

    async def submit(self, prompt: str) -> str:
        """Submit a prompt and return the job ID.

        Raises:
            RemoteServiceError: If the request is rejected.
        """
        ...

    async def poll_status(self, job_id: str) -> RemoteJobStatus:
        """Return the current state of an analysis job.

        The result, when done, is the model's response text.

        Raises:
            RemoteServiceError: If the status cannot be retrieved.
        """
        ...
