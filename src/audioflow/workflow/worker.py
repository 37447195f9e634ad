"""Per-file Phase-1 worker.

The FileWorker drives one audio file from Pending to the barrier
(WaitingForOtherFiles), one status per advance() call:

- Pending: source file checks
- Uploading: route MP3 sources past conversion
- ConvertingToMp3: ffmpeg conversion with progress
- UploadingToGladia / FinishedUploadingToGladia: upload, then job creation
- WaitingToDownloadTranscripts: bounded polling of the transcription job
- DownloadingTranscripts: transcript attribution and write

Every transition is copy-on-write: the new state is built with
dataclasses.replace(), persisted, and only then returned and announced.
If the write raises PersistenceError the caller still holds the previous
state, which matches what the store holds.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from audioflow.analysis.transcripts import (
    build_transcript_document,
    expected_speaker_count,
    transcript_path_for,
    write_transcript,
)
from audioflow.config.models import PollingConfig
from audioflow.core.datetime_utils import utc_now_iso
from audioflow.db.store import FileStateStore
from audioflow.db.types import AudioFileState, ErrorKind, FileStatus, ProcessingSession
from audioflow.exceptions import (
    CollaboratorError,
    ConversionError,
    IllegalTransitionError,
    PersistenceError,
    RemoteJobFailedError,
    RemoteServiceError,
)
from audioflow.services.interfaces import (
    Converter,
    RemoteJobState,
    TranscriptionService,
)
from audioflow.workflow.observers import NullObserver, WorkflowObserver
from audioflow.workflow.polling import PollSchedule, poll_until_done
from audioflow.workflow.states import (
    BARRIER_STATUS,
    STEP_DESCRIPTIONS,
    is_failed,
    is_live,
    is_terminal,
    validate_file_transition,
)

logger = logging.getLogger(__name__)

MP3_EXTENSION = ".mp3"

# Minimum sub-progress change worth a write during a long step
PROGRESS_WRITE_STEP = 0.05

TransitionHook = Callable[[AudioFileState], Awaitable[None]]


class FileWorker:
    """Drives individual audio files through the Phase-1 state machine.

    One FileWorker serves all files of all sessions; the single-writer rule
    per file is enforced by the supervisor, which never runs two tasks for
    the same file.
    """

    def __init__(
        self,
        store: FileStateStore,
        converter: Converter,
        transcription: TranscriptionService,
        *,
        polling: PollingConfig | None = None,
        observer: WorkflowObserver | None = None,
        on_transition: TransitionHook | None = None,
        semaphore: asyncio.Semaphore | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            store: Store for per-file state.
            converter: MP3 converter.
            transcription: Remote transcription service.
            polling: Backoff and deadline settings for transcription polls.
            observer: Receives each persisted transition.
            on_transition: Awaited after each persisted transition; the
                supervisor uses it to evaluate the barrier.
            semaphore: Optional bound on files doing external work at once.
        """
        self._store = store
        self._converter = converter
        self._transcription = transcription
        self._schedule = PollSchedule.for_transcription(polling or PollingConfig())
        self._observer = observer or NullObserver()
        self._on_transition = on_transition
        self._semaphore = semaphore
        # Finished transcription results, keyed by file ID, so the download
        # step does not poll again within the same process
        self._results: dict[str, Any] = {}

    async def run(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        """Advance a file until it reaches the barrier or fails.

        Args:
            audio_file: Current persisted state of the file.
            session: Owning session (folder and mic assignments).

        Returns:
            The file's final persisted state for this run.

        Raises:
            PersistenceError: If a transition cannot be saved.
        """
        if self._semaphore is None:
            return await self._run(audio_file, session)
        async with self._semaphore:
            return await self._run(audio_file, session)

    async def _run(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        current = audio_file
        while is_live(current.status) and current.status not in (
            BARRIER_STATUS,
            FileStatus.COMPLETE,
        ):
            current = await self.advance(current, session)
        return current

    async def advance(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        """Perform the work of the file's current status and move it on.

        Re-running advance() in the same status re-attempts the same step.
        Files at the barrier or in a terminal status are returned unchanged.

        Args:
            audio_file: Current persisted state of the file.
            session: Owning session.

        Returns:
            The new persisted state (next status, or Failed/FailedMp3).

        Raises:
            PersistenceError: If the transition cannot be saved.
        """
        if audio_file.status == BARRIER_STATUS or is_terminal(audio_file.status):
            return audio_file

        handler = self._handlers[audio_file.status]
        try:
            return await handler(self, audio_file, session)
        except (PersistenceError, IllegalTransitionError):
            raise
        except CollaboratorError as e:
            target = (
                FileStatus.FAILED_MP3
                if isinstance(e, ConversionError)
                else FileStatus.FAILED
            )
            logger.warning(
                "File %s failed in %s: %s",
                audio_file.original_filename,
                audio_file.status.value,
                e,
            )
            changes: dict[str, Any] = {}
            if isinstance(e, RemoteJobFailedError):
                # A dead job cannot be polled again
                changes["transcription_job_id"] = None
            return await self._fail(audio_file, target, e.kind, str(e), **changes)
        except Exception as e:
            logger.exception(
                "Unexpected error processing %s in %s",
                audio_file.original_filename,
                audio_file.status.value,
            )
            return await self._fail(
                audio_file, FileStatus.FAILED, ErrorKind.UNEXPECTED, str(e)
            )

    async def retry(self, audio_file: AudioFileState) -> AudioFileState:
        """Reset a failed file to the last status it reached before failing.

        Retrying a live file is a no-op: the same object is returned and
        nothing is written.

        Returns:
            The reset state, or the input unchanged for a live file.

        Raises:
            PersistenceError: If the reset cannot be saved.
        """
        if not is_failed(audio_file.status):
            logger.debug(
                "Retry of %s ignored: status is %s",
                audio_file.original_filename,
                audio_file.status.value,
            )
            return audio_file

        target = audio_file.last_live_status
        source = audio_file
        if (
            target == FileStatus.WAITING_TO_DOWNLOAD_TRANSCRIPTS
            and not audio_file.transcription_job_id
        ):
            # No job left to poll: step back so a new one is submitted
            target = FileStatus.FINISHED_UPLOADING_TO_GLADIA
            source = dataclasses.replace(audio_file, last_live_status=target)
        new_state = await self._transition(
            source,
            target,
            retry_count=audio_file.retry_count + 1,
            error_kind=None,
            error_message=None,
        )
        logger.info(
            "Retrying %s from %s (attempt %d)",
            audio_file.original_filename,
            target.value,
            new_state.retry_count,
        )
        return new_state

    async def finalize(self, audio_file: AudioFileState) -> AudioFileState:
        """Mark a file at the barrier Complete once the collective run is done."""
        if audio_file.status != BARRIER_STATUS:
            return audio_file
        return await self._transition(audio_file, FileStatus.COMPLETE, sub_progress=1.0)

    async def _transition(
        self, audio_file: AudioFileState, target: FileStatus, **changes: Any
    ) -> AudioFileState:
        """Validate, persist and announce a status change."""
        validate_file_transition(
            audio_file.status, target, audio_file.last_live_status
        )
        changes.setdefault("sub_progress", 0.0)
        new_state = dataclasses.replace(
            audio_file,
            status=target,
            last_live_status=target if is_live(target) else audio_file.last_live_status,
            current_step=STEP_DESCRIPTIONS[target],
            last_updated=utc_now_iso(),
            **changes,
        )
        self._store.save_file(new_state)

        self._observer.on_file_transition(new_state, audio_file.status)
        if self._on_transition is not None:
            await self._on_transition(new_state)
        return new_state

    async def _fail(
        self,
        audio_file: AudioFileState,
        target: FileStatus,
        kind: ErrorKind,
        message: str,
        **changes: Any,
    ) -> AudioFileState:
        return await self._transition(
            audio_file,
            target,
            sub_progress=audio_file.sub_progress,
            error_kind=kind,
            error_message=message,
            **changes,
        )

    def _save_progress(
        self, audio_file: AudioFileState, fraction: float
    ) -> AudioFileState:
        """Persist a higher sub-progress within the current status."""
        fraction = max(0.0, min(1.0, fraction))
        if fraction - audio_file.sub_progress < PROGRESS_WRITE_STEP and fraction < 1.0:
            return audio_file
        new_state = dataclasses.replace(
            audio_file, sub_progress=fraction, last_updated=utc_now_iso()
        )
        self._store.save_file(new_state)
        return new_state

    # Step handlers, one per Phase-1 status

    async def _check_source(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        source = Path(audio_file.source_path)
        if not source.is_file():
            raise CollaboratorError(f"Source file not found: {source}")
        extension = source.suffix.casefold()
        supported = self._converter.input_extensions | {MP3_EXTENSION}
        if extension not in supported:
            raise ConversionError(
                f"Unsupported audio format: {source.suffix or '(none)'}"
            )
        return await self._transition(audio_file, FileStatus.UPLOADING)

    async def _route_source(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        source = Path(audio_file.source_path)
        if source.suffix.casefold() == MP3_EXTENSION:
            logger.debug("%s is already MP3, skipping conversion", source.name)
            return await self._transition(
                audio_file,
                FileStatus.FINISHED_CONVERTING_TO_MP3,
                converted_path=str(source),
            )
        return await self._transition(audio_file, FileStatus.CONVERTING_TO_MP3)

    async def _convert(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        source = Path(audio_file.source_path)
        destination = Path(session.folder_path) / f"{source.stem}{MP3_EXTENSION}"
        current = audio_file

        def on_progress(fraction: float) -> None:
            nonlocal current
            current = self._save_progress(current, fraction)

        converted = await self._converter.convert(source, destination, on_progress)
        return await self._transition(
            current,
            FileStatus.FINISHED_CONVERTING_TO_MP3,
            converted_path=str(converted),
        )

    async def _start_upload(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        return await self._transition(audio_file, FileStatus.UPLOADING_TO_GLADIA)

    async def _upload(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        path = Path(audio_file.converted_path or audio_file.source_path)
        audio_ref = await self._transcription.upload(path)
        return await self._transition(
            audio_file,
            FileStatus.FINISHED_UPLOADING_TO_GLADIA,
            remote_audio_ref=audio_ref,
        )

    async def _submit(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        if not audio_file.remote_audio_ref:
            raise RemoteServiceError("No uploaded audio reference to transcribe")
        speakers = expected_speaker_count(
            audio_file.original_filename, session.mic_assignments
        )
        job_id = await self._transcription.submit(
            audio_file.remote_audio_ref, speakers=speakers
        )
        return await self._transition(
            audio_file,
            FileStatus.WAITING_TO_DOWNLOAD_TRANSCRIPTS,
            transcription_job_id=job_id,
        )

    async def _await_transcription(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        job_id = self._require_job_id(audio_file)
        current = audio_file

        def on_wait(fraction: float) -> None:
            nonlocal current
            current = self._save_progress(current, fraction)

        status = await poll_until_done(
            self._transcription.poll_status,
            job_id,
            self._schedule,
            service="transcription",
            on_wait=on_wait,
        )
        self._results[audio_file.id] = status.result
        return await self._transition(current, FileStatus.DOWNLOADING_TRANSCRIPTS)

    async def _download(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        result = self._results.pop(audio_file.id, None)
        if result is None:
            # Resumed after a restart: fetch the finished job again
            job_id = self._require_job_id(audio_file)
            status = await self._transcription.poll_status(job_id)
            if status.state != RemoteJobState.DONE:
                raise RemoteServiceError(
                    f"Transcription job {job_id} is no longer done "
                    f"({status.state.value})"
                )
            result = status.result
        if not isinstance(result, dict):
            raise RemoteServiceError("Transcription result is not an object")

        document = build_transcript_document(
            result,
            file_id=audio_file.id,
            filename=audio_file.original_filename,
            mic_assignments=session.mic_assignments,
        )
        path = write_transcript(
            transcript_path_for(
                Path(session.folder_path), audio_file.original_filename
            ),
            document,
        )
        logger.info(
            "Wrote transcript for %s (%d utterances)",
            audio_file.original_filename,
            len(document.utterances),
        )
        return await self._transition(
            audio_file, FileStatus.TRANSCRIPTS_DOWNLOADED, transcript_path=str(path)
        )

    async def _arrive(
        self, audio_file: AudioFileState, session: ProcessingSession
    ) -> AudioFileState:
        transcript = audio_file.transcript_path
        if not transcript or not Path(transcript).exists():
            raise CollaboratorError("Transcript file is missing")
        return await self._transition(audio_file, BARRIER_STATUS)

    @staticmethod
    def _require_job_id(audio_file: AudioFileState) -> str:
        if not audio_file.transcription_job_id:
            raise RemoteServiceError("No transcription job recorded for file")
        return audio_file.transcription_job_id

    _handlers: dict[
        FileStatus,
        Callable[
            [FileWorker, AudioFileState, ProcessingSession],
            Awaitable[AudioFileState],
        ],
    ] = {
        FileStatus.PENDING: _check_source,
        FileStatus.UPLOADING: _route_source,
        FileStatus.CONVERTING_TO_MP3: _convert,
        FileStatus.FINISHED_CONVERTING_TO_MP3: _start_upload,
        FileStatus.UPLOADING_TO_GLADIA: _upload,
        FileStatus.FINISHED_UPLOADING_TO_GLADIA: _submit,
        FileStatus.WAITING_TO_DOWNLOAD_TRANSCRIPTS: _await_transcription,
        FileStatus.DOWNLOADING_TRANSCRIPTS: _download,
        FileStatus.TRANSCRIPTS_DOWNLOADED: _arrive,
    }
