"""Collective (Phase 2) processing of a session.

Runs the shared pipeline once per session, one status per step:

ProcessingTranscriptions -> SendingToOpenAI -> ProcessingWithAI ->
ReadyToProcessAIResponse -> ProcessingAIResponse -> Complete

Artifacts are written to the session folder as they are produced
(combined_transcript.txt, ai_response.txt, insights.json) and referenced
from the persisted state, so a failed run keeps them for inspection. A
failure stops the run at its step; restart() re-enters that step and never
repeats earlier ones.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from audioflow.analysis.insights import build_analysis_prompt, parse_insights
from audioflow.analysis.transcripts import (
    ExcludedFile,
    TranscriptDocument,
    combine_transcripts,
    load_transcript,
)
from audioflow.config.models import PollingConfig
from audioflow.core.datetime_utils import utc_now_iso
from audioflow.db.store import SessionStateStore
from audioflow.db.types import (
    CollectivePhaseState,
    CollectiveStatus,
    ErrorKind,
    ProcessingSession,
)
from audioflow.exceptions import (
    CollaboratorError,
    CollectiveRestartError,
    IllegalTransitionError,
    PersistenceError,
    RemoteJobFailedError,
    RemoteServiceError,
    SessionNotFoundError,
)
from audioflow.services.interfaces import AIAnalysisService
from audioflow.workflow.observers import NullObserver, WorkflowObserver
from audioflow.workflow.polling import PollSchedule, poll_until_done
from audioflow.workflow.states import (
    at_or_past_barrier,
    is_failed,
    next_collective_status,
    validate_collective_transition,
)

logger = logging.getLogger(__name__)

COMBINED_TRANSCRIPT_FILE = "combined_transcript.txt"
AI_RESPONSE_FILE = "ai_response.txt"
INSIGHTS_FILE = "insights.json"


def participants_of(session: ProcessingSession) -> list[str]:
    """Return participant names in mic order."""
    return [name for _, name in sorted(session.mic_assignments.items()) if name]


class CollectiveProcessor:
    """Runs the collective phase of a session."""

    def __init__(
        self,
        store: SessionStateStore,
        analysis: AIAnalysisService,
        *,
        polling: PollingConfig | None = None,
        observer: WorkflowObserver | None = None,
        title_for: Callable[[ProcessingSession], str | None] | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            store: Session store holding the collective run.
            analysis: Remote AI analysis service.
            polling: Backoff and deadline settings for AI polls.
            observer: Receives each persisted transition.
            title_for: Optional lookup of the reviewed work's title for the
                analysis prompt.
        """
        self._store = store
        self._analysis = analysis
        self._schedule = PollSchedule.for_analysis(polling or PollingConfig())
        self._observer = observer or NullObserver()
        self._title_for = title_for

    async def run(self, state: CollectivePhaseState) -> CollectivePhaseState:
        """Run the pipeline from the state's current step to the end.

        Args:
            state: Persisted collective state (normally as just claimed, or
                as reloaded after a restart).

        Returns:
            The final persisted state: Complete or Failed.

        Raises:
            SessionNotFoundError: If the session no longer exists.
            PersistenceError: If a transition cannot be saved.
        """
        session = self._store.load_session(state.session_id)
        if session is None:
            raise SessionNotFoundError(state.session_id)

        current = state
        terminal = (CollectiveStatus.COMPLETE, CollectiveStatus.FAILED)
        while current.status not in terminal:
            current = await self.advance(current, session)
        return current

    async def advance(
        self, state: CollectivePhaseState, session: ProcessingSession
    ) -> CollectivePhaseState:
        """Perform the current step and move to the next status.

        Returns:
            The new persisted state (next status, or Failed at this step).

        Raises:
            PersistenceError: If the transition cannot be saved.
        """
        if state.status in (CollectiveStatus.COMPLETE, CollectiveStatus.FAILED):
            return state

        handler = self._handlers[state.status]
        try:
            changes = await handler(self, state, session)
        except (PersistenceError, IllegalTransitionError):
            raise
        except CollaboratorError as e:
            logger.warning(
                "Collective run for %s failed in %s: %s",
                state.session_id,
                state.status.value,
                e,
            )
            return self._fail(state, e.kind, str(e), e)
        except Exception as e:
            logger.exception(
                "Unexpected error in collective step %s for %s",
                state.status.value,
                state.session_id,
            )
            return self._fail(state, ErrorKind.UNEXPECTED, str(e), e)

        target = next_collective_status(state.status)
        assert target is not None
        return self._transition(state, target, **changes)

    def restart(self, session_id: str) -> CollectivePhaseState:
        """Reset a failed run to the step it failed in.

        The caller runs the returned state with run() afterwards.

        Returns:
            The persisted state at the failed step.

        Raises:
            CollectiveRestartError: If the session has no failed run.
            PersistenceError: If the reset cannot be saved.
        """
        state = self._store.load_collective(session_id)
        if state is None:
            raise CollectiveRestartError(
                f"Session {session_id} has no collective run to restart"
            )
        if state.status != CollectiveStatus.FAILED or state.failed_step is None:
            raise CollectiveRestartError(
                f"Collective run for {session_id} is {state.status.value}, "
                "only failed runs can be restarted"
            )

        logger.info(
            "Restarting collective run for %s at %s",
            session_id,
            state.failed_step.value,
        )
        return self._transition(
            state,
            state.failed_step,
            failed_step=None,
            error_kind=None,
            error_message=None,
        )

    def _transition(
        self, state: CollectivePhaseState, target: CollectiveStatus, **changes: Any
    ) -> CollectivePhaseState:
        """Validate, persist and announce a collective status change."""
        validate_collective_transition(state.status, target, state.failed_step)
        new_state = dataclasses.replace(
            state, status=target, last_updated=utc_now_iso(), **changes
        )
        self._store.save_collective(new_state)
        self._observer.on_collective_transition(new_state, state.status)
        return new_state

    def _fail(
        self,
        state: CollectivePhaseState,
        kind: ErrorKind,
        message: str,
        error: Exception,
    ) -> CollectivePhaseState:
        changes: dict[str, Any] = {
            "failed_step": state.status,
            "error_kind": kind,
            "error_message": message,
        }
        # A job the service reported as failed cannot be polled back to
        # life; dropping it makes a restart submit a new one
        if state.status == CollectiveStatus.PROCESSING_WITH_AI and isinstance(
            error, RemoteJobFailedError
        ):
            changes["ai_job_id"] = None
        return self._transition(state, CollectiveStatus.FAILED, **changes)

    # Step handlers. Each returns the field changes to store with the
    # transition to the next status.

    async def _combine(
        self, state: CollectivePhaseState, session: ProcessingSession
    ) -> dict[str, Any]:
        documents: list[TranscriptDocument] = []
        excluded: list[ExcludedFile] = []
        for audio_file in session.files:
            if is_failed(audio_file.status):
                excluded.append(
                    ExcludedFile(
                        file_id=audio_file.id,
                        filename=audio_file.original_filename,
                        reason=audio_file.error_message or audio_file.status.value,
                    )
                )
                continue
            ready = at_or_past_barrier(audio_file.status)
            if not ready or not audio_file.transcript_path:
                raise CollaboratorError(
                    f"{audio_file.original_filename} has no transcript "
                    f"({audio_file.status.value})"
                )
            try:
                documents.append(load_transcript(Path(audio_file.transcript_path)))
            except (OSError, ValueError) as e:
                raise CollaboratorError(
                    f"Cannot read transcript of {audio_file.original_filename}: {e}"
                ) from e

        combined = combine_transcripts(documents, excluded, participants_of(session))
        path = Path(session.folder_path) / COMBINED_TRANSCRIPT_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(combined, encoding="utf-8")
        logger.info(
            "Combined %d transcript(s) for session %s (%d excluded)",
            len(documents),
            session.id,
            len(excluded),
        )
        return {
            "combined_transcript_path": str(path),
            "excluded_file_ids": [item.file_id for item in excluded],
        }

    def _prompt(self, state: CollectivePhaseState, session: ProcessingSession) -> str:
        if not state.combined_transcript_path:
            raise CollaboratorError("No combined transcript recorded")
        combined = Path(state.combined_transcript_path).read_text(encoding="utf-8")
        title = self._title_for(session) if self._title_for else None
        return build_analysis_prompt(combined, participants_of(session), title=title)

    async def _submit(
        self, state: CollectivePhaseState, session: ProcessingSession
    ) -> dict[str, Any]:
        job_id = await self._analysis.submit(self._prompt(state, session))
        return {"ai_job_id": job_id}

    async def _await_response(
        self, state: CollectivePhaseState, session: ProcessingSession
    ) -> dict[str, Any]:
        if not state.ai_job_id:
            # Restarted after the service failed the previous job
            job_id = await self._analysis.submit(self._prompt(state, session))
            state = dataclasses.replace(
                state, ai_job_id=job_id, last_updated=utc_now_iso()
            )
            self._store.save_collective(state)

        assert state.ai_job_id is not None
        status = await poll_until_done(
            self._analysis.poll_status, state.ai_job_id, self._schedule, service="ai"
        )
        if not isinstance(status.result, str):
            raise RemoteServiceError("AI response is not text", service="ai")

        path = Path(session.folder_path) / AI_RESPONSE_FILE
        path.write_text(status.result, encoding="utf-8")
        return {"ai_job_id": state.ai_job_id, "ai_response_path": str(path)}

    async def _ready(
        self, state: CollectivePhaseState, session: ProcessingSession
    ) -> dict[str, Any]:
        if not state.ai_response_path or not Path(state.ai_response_path).exists():
            raise CollaboratorError("AI response file is missing")
        return {}

    async def _interpret(
        self, state: CollectivePhaseState, session: ProcessingSession
    ) -> dict[str, Any]:
        text = Path(state.ai_response_path or "").read_text(encoding="utf-8")
        insights = parse_insights(text)
        insights_json = insights.model_dump_json(indent=2)
        (Path(session.folder_path) / INSIGHTS_FILE).write_text(
            insights_json, encoding="utf-8"
        )
        return {"insights_json": insights_json}

    _handlers: dict[
        CollectiveStatus,
        Callable[
            [CollectiveProcessor, CollectivePhaseState, ProcessingSession],
            Awaitable[dict[str, Any]],
        ],
    ] = {
        CollectiveStatus.PROCESSING_TRANSCRIPTIONS: _combine,
        CollectiveStatus.SENDING_TO_OPENAI: _submit,
        CollectiveStatus.PROCESSING_WITH_AI: _await_response,
        CollectiveStatus.READY_TO_PROCESS_AI_RESPONSE: _ready,
        CollectiveStatus.PROCESSING_AI_RESPONSE: _interpret,
    }
