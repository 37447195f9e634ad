"""Barrier between the per-file phase and the collective phase.

The coordinator is asked after every file transition whether the session
can enter the collective phase. The check reads all files under a
session-scoped asyncio.Lock and fires by inserting the collective run row;
the insert succeeds for exactly one caller, even across process restarts,
because the row is keyed by session ID.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence

from audioflow.core.datetime_utils import utc_now_iso
from audioflow.db.store import SessionStateStore
from audioflow.db.types import AudioFileState, CollectivePhaseState, CollectiveStatus
from audioflow.exceptions import SessionNotFoundError
from audioflow.workflow.observers import NullObserver, WorkflowObserver
from audioflow.workflow.states import BarrierPolicy, at_or_past_barrier, is_failed

logger = logging.getLogger(__name__)


def barrier_ready(
    files: Sequence[AudioFileState],
    policy: BarrierPolicy = BarrierPolicy.EXCLUDE_FAILED,
) -> bool:
    """Return True if the files allow the collective phase to start.

    Every live file must be at or past the barrier and at least one live
    file must exist. Under BLOCK_ON_FAILED any failed file holds the
    barrier until it is retried.
    """
    live = [f for f in files if not is_failed(f.status)]
    if not live:
        return False
    if policy == BarrierPolicy.BLOCK_ON_FAILED and len(live) != len(files):
        return False
    return all(at_or_past_barrier(f.status) for f in live)


class BarrierCoordinator:
    """Fires a session's collective run exactly once."""

    def __init__(
        self,
        store: SessionStateStore,
        policy: BarrierPolicy = BarrierPolicy.EXCLUDE_FAILED,
        observer: WorkflowObserver | None = None,
    ) -> None:
        self._store = store
        self.policy = policy
        self._observer = observer or NullObserver()
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def check(self, session_id: str) -> CollectivePhaseState | None:
        """Evaluate the barrier and claim the collective run if it is ready.

        Args:
            session_id: Session to evaluate.

        Returns:
            The newly claimed collective state if this call fired the
            barrier, None otherwise (not ready, archived, or already fired).

        Raises:
            SessionNotFoundError: If the session does not exist.
            PersistenceError: If the store cannot be read or written.
        """
        async with self._lock_for(session_id):
            session = self._store.load_session(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if session.archived_at is not None or session.collective is not None:
                return None
            if not barrier_ready(session.files, self.policy):
                return None

            now = utc_now_iso()
            state = CollectivePhaseState(
                session_id=session_id,
                run_id=str(uuid.uuid4()),
                status=CollectiveStatus.PROCESSING_TRANSCRIPTIONS,
                started_at=now,
                last_updated=now,
                excluded_file_ids=[f.id for f in session.files if is_failed(f.status)],
            )
            if not self._store.claim_collective_run(state):
                # Claimed by another process sharing the database
                logger.debug("Collective run for %s already claimed", session_id)
                return None

        logger.info(
            "Barrier fired for session %s: %d file(s), %d excluded",
            session_id,
            len(session.files),
            len(state.excluded_file_ids),
        )
        self._observer.on_barrier_fired(session_id, state.run_id)
        return state

    def forget(self, session_id: str) -> None:
        """Drop the lock of a session that will not be checked again."""
        self._locks.pop(session_id, None)
