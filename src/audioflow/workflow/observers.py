"""Transition notifications for the workflow engine.

Observers are notified only after the new state has been persisted, so an
observer never sees a state that the store does not also hold.
"""

from __future__ import annotations

import logging
from typing import Protocol

from audioflow.core.datetime_utils import calculate_duration_seconds
from audioflow.db.types import (
    AudioFileState,
    CollectivePhaseState,
    CollectiveStatus,
    FileStatus,
)

logger = logging.getLogger(__name__)


class WorkflowObserver(Protocol):
    """Protocol for receiving workflow transition events.

    Implementations provide context-specific handling:
    - Logging: structured log lines per transition
    - UI/API layers: push updates to clients
    - Tests: record events for assertions
    """

    def on_file_transition(
        self, audio_file: AudioFileState, previous: FileStatus
    ) -> None:
        """Called after a file's new status has been saved.

        Args:
            audio_file: The file state as persisted.
            previous: Status the file was in before the change.
        """
        ...

    def on_barrier_fired(self, session_id: str, run_id: str) -> None:
        """Called once per session when the collective run is claimed.

        Args:
            session_id: Session whose barrier fired.
            run_id: ID of the claimed collective run.
        """
        ...

    def on_collective_transition(
        self, state: CollectivePhaseState, previous: CollectiveStatus
    ) -> None:
        """Called after the collective run's new status has been saved.

        Args:
            state: The collective state as persisted.
            previous: Status before the change.
        """
        ...


class LoggingObserver:
    """Observer that writes one log line per transition."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def on_file_transition(
        self, audio_file: AudioFileState, previous: FileStatus
    ) -> None:
        """Log a file transition."""
        if audio_file.error_message:
            logger.log(
                self.level,
                "File %s (%s): %s -> %s: %s",
                audio_file.id,
                audio_file.original_filename,
                previous.value,
                audio_file.status.value,
                audio_file.error_message,
            )
        else:
            logger.log(
                self.level,
                "File %s (%s): %s -> %s",
                audio_file.id,
                audio_file.original_filename,
                previous.value,
                audio_file.status.value,
            )

    def on_barrier_fired(self, session_id: str, run_id: str) -> None:
        """Log the barrier firing."""
        logger.log(
            self.level, "Session %s reached the barrier (run %s)", session_id, run_id
        )

    def on_collective_transition(
        self, state: CollectivePhaseState, previous: CollectiveStatus
    ) -> None:
        """Log a collective transition, with the run duration once it ends."""
        if state.status in (CollectiveStatus.COMPLETE, CollectiveStatus.FAILED):
            duration = calculate_duration_seconds(state.started_at, state.last_updated)
            logger.log(
                self.level,
                "Session %s collective: %s -> %s after %ss",
                state.session_id,
                previous.value,
                state.status.value,
                duration if duration is not None else "?",
            )
            return
        logger.log(
            self.level,
            "Session %s collective: %s -> %s",
            state.session_id,
            previous.value,
            state.status.value,
        )


class NullObserver:
    """No-op observer for contexts where notifications are not needed."""

    def on_file_transition(
        self, audio_file: AudioFileState, previous: FileStatus
    ) -> None:
        """No-op."""
        pass

    def on_barrier_fired(self, session_id: str, run_id: str) -> None:
        """No-op."""
        pass

    def on_collective_transition(
        self, state: CollectivePhaseState, previous: CollectiveStatus
    ) -> None:
        """No-op."""
        pass


class CompositeObserver:
    """Observer that delegates to multiple observers.

    A failing observer is logged and skipped; the transition it reports has
    already been persisted and other observers still receive it.
    """

    def __init__(self, observers: list[WorkflowObserver]) -> None:
        """Initialize with list of observers.

        Args:
            observers: Observers to delegate to, in order.
        """
        self.observers = observers

    def on_file_transition(
        self, audio_file: AudioFileState, previous: FileStatus
    ) -> None:
        """Delegate to all observers."""
        for observer in self.observers:
            try:
                observer.on_file_transition(audio_file, previous)
            except Exception:
                logger.exception("Observer %r failed on file transition", observer)

    def on_barrier_fired(self, session_id: str, run_id: str) -> None:
        """Delegate to all observers."""
        for observer in self.observers:
            try:
                observer.on_barrier_fired(session_id, run_id)
            except Exception:
                logger.exception("Observer %r failed on barrier fire", observer)

    def on_collective_transition(
        self, state: CollectivePhaseState, previous: CollectiveStatus
    ) -> None:
        """Delegate to all observers."""
        for observer in self.observers:
            try:
                observer.on_collective_transition(state, previous)
            except Exception:
                logger.exception(
                    "Observer %r failed on collective transition", observer
                )
