"""Top-level orchestration of processing sessions.

The WorkflowSupervisor owns the asyncio tasks of the engine: one task per
file doing Phase-1 work and one task per session running the collective
phase. Tasks are keyed so that a file or a session never has two live
tasks, which is what keeps every state record single-writer.

After each persisted file transition the supervisor asks the
BarrierCoordinator whether the session can enter the collective phase; the
coordinator's persisted claim guarantees the run is started at most once,
including after a crash and resume().
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

from audioflow.config.models import PollingConfig, WorkflowConfig
from audioflow.core.datetime_utils import utc_now_iso
from audioflow.db.store import SessionStateStore
from audioflow.db.types import (
    AudioFileState,
    CollectivePhaseState,
    CollectiveStatus,
    FileStatus,
    ProcessingSession,
)
from audioflow.exceptions import (
    FileNotInSessionError,
    SessionClosedError,
    SessionNotFoundError,
)
from audioflow.logging.context import workflow_context
from audioflow.services.factory import Services
from audioflow.workflow import registry
from audioflow.workflow.barrier import BarrierCoordinator
from audioflow.workflow.collective import CollectiveProcessor
from audioflow.workflow.observers import LoggingObserver, WorkflowObserver
from audioflow.workflow.progress import SessionProgress, snapshot
from audioflow.workflow.states import (
    BARRIER_STATUS,
    BarrierPolicy,
    is_live,
)
from audioflow.workflow.worker import FileWorker

logger = logging.getLogger(__name__)

_ACTIVE_COLLECTIVE = frozenset(
    {
        CollectiveStatus.PROCESSING_TRANSCRIPTIONS,
        CollectiveStatus.SENDING_TO_OPENAI,
        CollectiveStatus.PROCESSING_WITH_AI,
        CollectiveStatus.READY_TO_PROCESS_AI_RESPONSE,
        CollectiveStatus.PROCESSING_AI_RESPONSE,
    }
)


class WorkflowSupervisor:
    """Creates sessions, runs their files and drives the collective phase.

    All methods must be called from the event loop that runs the tasks.
    """

    def __init__(
        self,
        store: SessionStateStore,
        services: Services,
        *,
        workflow: WorkflowConfig | None = None,
        polling: PollingConfig | None = None,
        observer: WorkflowObserver | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            store: Session store (its .files store is used for file records).
            services: Converter, transcription and AI analysis collaborators.
            workflow: Concurrency bound and barrier policy.
            polling: Backoff and deadlines for remote jobs.
            observer: Receives persisted transitions. Defaults to logging.
        """
        workflow = workflow or WorkflowConfig()
        self._store = store
        self._services = services
        self._observer = observer or LoggingObserver()
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._closed = False

        semaphore = (
            asyncio.Semaphore(workflow.max_concurrent_files)
            if workflow.max_concurrent_files
            else None
        )
        self.barrier = BarrierCoordinator(
            store,
            BarrierPolicy(workflow.barrier_policy.lower()),
            self._observer,
        )
        self.worker = FileWorker(
            store.files,
            services.converter,
            services.transcription,
            polling=polling,
            observer=self._observer,
            on_transition=self._after_file_transition,
            semaphore=semaphore,
        )
        self.collective = CollectiveProcessor(
            store,
            services.analysis,
            polling=polling,
            observer=self._observer,
        )

    # Session and file registration

    def create_session(
        self,
        review_id: str,
        folder_path: Path,
        mic_assignments: dict[int, str] | None = None,
    ) -> ProcessingSession:
        """Create and persist an empty session (see registry.create_session)."""
        return registry.create_session(
            self._store, review_id, folder_path, mic_assignments
        )

    def register_file(
        self,
        session_id: str,
        source_path: Path,
        original_filename: str | None = None,
    ) -> AudioFileState:
        """Add a file to a session in the Pending status.

        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionClosedError: If the session is archived or its collective
                phase has started.
        """
        return registry.register_file(
            self._store, session_id, source_path, original_filename
        )

    # Running

    async def start_session(self, session_id: str) -> int:
        """Start Phase-1 tasks for every live file of a session.

        Files already running, at the barrier or failed are left alone.

        Returns:
            Number of file tasks started.

        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionClosedError: If the session is archived.
        """
        session = self._load(session_id)
        if session.archived_at is not None:
            raise SessionClosedError(f"Session {session_id} is archived")
        started = await self._start_files(session)
        if session.collective is None:
            await self._check_barrier(session_id)
        return started

    async def retry_file(self, session_id: str, file_id: str) -> AudioFileState:
        """Retry a failed file from the status it failed in.

        Retrying a live file changes nothing and starts nothing.

        Returns:
            The file state after the retry.

        Raises:
            SessionNotFoundError: If the session does not exist.
            FileNotInSessionError: If the file is not part of the session.
            SessionClosedError: If the session is archived or its collective
                phase has started.
        """
        session = registry.open_session(self._store, session_id)
        audio_file = session.get_file(file_id)
        if audio_file is None:
            raise FileNotInSessionError(session_id, file_id)

        running = self._tasks.get(file_id)
        if running is not None and not running.done():
            # The task may still be unwinding from the failure it recorded
            await asyncio.wait([running])
            audio_file = self._store.files.load_file(session_id, file_id) or audio_file

        new_state = await self.worker.retry(audio_file)
        if new_state is not audio_file:
            self._spawn_file(new_state, session)
        return new_state

    async def restart_collective(self, session_id: str) -> CollectivePhaseState:
        """Restart a failed collective run from its failed step.

        Returns:
            The collective state as reset; the run continues in the
            background.

        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionClosedError: If the session is archived.
            CollectiveRestartError: If there is no failed run to restart.
        """
        session = self._load(session_id)
        if session.archived_at is not None:
            raise SessionClosedError(f"Session {session_id} is archived")
        state = self.collective.restart(session_id)
        self._spawn_collective(state)
        return state

    async def resume(self) -> int:
        """Reload every unarchived session and continue its work.

        Phase-1 files resume from their persisted status. A session whose
        files all reached the barrier before a crash fires its collective
        run now; a recorded in-progress run continues from its step.

        Returns:
            Number of sessions with work resumed.
        """
        resumed = 0
        for session in self._store.list_active_sessions():
            with workflow_context(session.id):
                collective = session.collective
                if collective is None:
                    started = await self._start_files(session)
                    fired = await self._check_barrier(session.id)
                    if started or fired:
                        resumed += 1
                elif collective.status in _ACTIVE_COLLECTIVE:
                    logger.info(
                        "Resuming collective run for %s at %s",
                        session.id,
                        collective.status.value,
                    )
                    self._spawn_collective(collective)
                    resumed += 1
                elif collective.status == CollectiveStatus.COMPLETE:
                    if any(f.status == BARRIER_STATUS for f in session.files):
                        await self._finalize_files(session.id)
                        resumed += 1
        logger.info("Resumed %d session(s)", resumed)
        return resumed

    def archive_session(self, session_id: str) -> bool:
        """Archive a session, cancelling any of its running tasks.

        Returns:
            True if the session was archived, False if it already was.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        session = self._load(session_id)
        keys = [f.id for f in session.files] + [self._collective_key(session_id)]
        for key in keys:
            task = self._tasks.get(key)
            if task is not None and not task.done():
                task.cancel()
        archived = self._store.archive_session(session_id, utc_now_iso())
        self.barrier.forget(session_id)
        if archived:
            logger.info("Archived session %s", session_id)
        return archived

    def get_progress(self, session_id: str) -> SessionProgress:
        """Return a progress snapshot of a session.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        return snapshot(self._load(session_id))

    async def wait_idle(self) -> None:
        """Wait until no task is running, including tasks spawned meanwhile."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    async def shutdown(self) -> None:
        """Cancel all tasks and close the collaborators.

        Persisted state is left as is; resume() continues from it.
        """
        self._closed = True
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        await self._services.aclose()
        logger.info("Supervisor stopped (%d task(s) cancelled)", len(tasks))

    # Internals

    def _load(self, session_id: str) -> ProcessingSession:
        session = self._store.load_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def _start_files(self, session: ProcessingSession) -> int:
        started = 0
        for audio_file in session.files:
            if not is_live(audio_file.status):
                continue
            if audio_file.status in (BARRIER_STATUS, FileStatus.COMPLETE):
                continue
            if self._spawn_file(audio_file, session):
                started += 1
        return started

    def _spawn(
        self,
        key: str,
        work: Callable[[], Coroutine[Any, Any, Any]],
        session_id: str,
        file_id: str | None = None,
    ) -> bool:
        existing = self._tasks.get(key)
        if self._closed or (existing is not None and not existing.done()):
            return False

        async def runner() -> Any:
            with workflow_context(session_id, file_id):
                return await work()

        task = asyncio.create_task(runner(), name=f"audioflow:{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda t: self._task_done(key, t))
        return True

    def _task_done(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            logger.debug("Task %s cancelled", key)
            return
        error = task.exception()
        if error is not None:
            # Persisted state is unchanged by the failed write; resume()
            # picks the work up again
            logger.error("Task %s stopped: %s", key, error, exc_info=error)

    def _spawn_file(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> bool:
        return self._spawn(
            audio_file.id,
            lambda: self.worker.run(audio_file, session),
            session.id,
            audio_file.id,
        )

    @staticmethod
    def _collective_key(session_id: str) -> str:
        return f"collective:{session_id}"

    def _spawn_collective(self, state: CollectivePhaseState) -> bool:
        return self._spawn(
            self._collective_key(state.session_id),
            lambda: self._run_collective(state),
            state.session_id,
        )

    async def _run_collective(self, state: CollectivePhaseState) -> None:
        final = await self.collective.run(state)
        if final.status == CollectiveStatus.COMPLETE:
            await self._finalize_files(final.session_id)

    async def _finalize_files(self, session_id: str) -> None:
        for audio_file in self._store.files.list_files(session_id):
            await self.worker.finalize(audio_file)

    async def _after_file_transition(self, audio_file: AudioFileState) -> None:
        if audio_file.status == FileStatus.COMPLETE:
            return
        await self._check_barrier(audio_file.session_id)

    async def _check_barrier(self, session_id: str) -> bool:
        state = await self.barrier.check(session_id)
        if state is None:
            return False
        self._spawn_collective(state)
        return True
