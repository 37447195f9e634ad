"""Shared test fixtures for audioflow."""

from __future__ import annotations

import asyncio
import dataclasses
import json
from pathlib import Path

import pytest

from audioflow.analysis.transcripts import (
    build_transcript_document,
    transcript_path_for,
    write_transcript,
)
from audioflow.config.models import PollingConfig
from audioflow.core.datetime_utils import utc_now_iso
from audioflow.db.connection import ConnectionPool
from audioflow.db.store import SessionStateStore
from audioflow.db.types import AudioFileState, FileStatus, ProcessingSession
from audioflow.exceptions import ConversionError, RemoteServiceError
from audioflow.services.factory import Services
from audioflow.services.interfaces import RemoteJobStatus
from audioflow.workflow.states import is_live

VALID_AI_RESPONSE = json.dumps(
    {
        "MostOffensiveTake": {
            "speaker": "Ann",
            "timestamp": "12:03",
            "quote": "The sequel was better.",
            "setup": "Talking about the franchise",
            "groupReaction": "Outrage",
            "whyItsGreat": "Nobody agreed",
            "entertainmentScore": 8,
            "audioQuality": "clear",
        },
        "BestJoke": {
            "speaker": "Bo",
            "quote": "That plot had more holes than my socks.",
            "entertainmentScore": 9,
        },
        "Top5FunniestSentences": [
            {"speaker": "Bo", "quote": "More holes than my socks.", "score": 9},
        ],
        "OpeningQuestions": [
            {"question": "Rate it?", "speaker": "Ann", "answer": "Seven"},
        ],
    }
)


class FakeConverter:
    """In-memory Converter that writes a small MP3 placeholder."""

    def __init__(self) -> None:
        self.input_extensions = frozenset({".wav", ".m4a", ".flac"})
        self.calls: list[Path] = []
        self.fail_names: set[str] = set()

    async def convert(self, source, destination, on_progress=None):
        self.calls.append(source)
        if source.name in self.fail_names:
            raise ConversionError(f"Cannot decode {source.name}")
        if on_progress is not None:
            on_progress(0.5)
            on_progress(1.0)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"ID3fake")
        return destination


class FakeTranscription:
    """In-memory TranscriptionService with scripted job outcomes."""

    def __init__(self) -> None:
        self.uploads: list[str] = []
        self.submissions: list[tuple[str, int]] = []
        self.poll_counts: dict[str, int] = {}
        self.pending_polls = 1
        self.fail_upload_names: set[str] = set()
        self.failed_jobs: set[str] = set()
        self.upload_gate: asyncio.Event | None = None
        self.upload_gates: dict[str, asyncio.Event] = {}
        self._jobs: dict[str, str] = {}

    async def upload(self, path):
        if self.upload_gate is not None:
            await self.upload_gate.wait()
        gate = self.upload_gates.get(path.name)
        if gate is not None:
            await gate.wait()
        if path.name in self.fail_upload_names:
            raise RemoteServiceError(f"Upload of {path.name} rejected", service="fake")
        self.uploads.append(path.name)
        return f"https://audio.example/{path.name}"

    async def submit(self, audio_ref, *, speakers=1):
        job_id = f"job-{len(self.submissions) + 1}"
        self.submissions.append((audio_ref, speakers))
        self._jobs[job_id] = audio_ref.rsplit("/", 1)[-1]
        return job_id

    async def poll_status(self, job_id):
        count = self.poll_counts.get(job_id, 0) + 1
        self.poll_counts[job_id] = count
        if job_id in self.failed_jobs:
            return RemoteJobStatus.failed("audio could not be processed")
        if count <= self.pending_polls:
            return RemoteJobStatus.pending()
        name = self._jobs.get(job_id, "unknown")
        return RemoteJobStatus.done(
            {
                "transcription": {
                    "full_transcript": f"hello from {name}",
                    "utterances": [
                        {"speaker": 0, "text": f"hello from {name}", "start": 0.0},
                    ],
                }
            }
        )


class FakeAnalysis:
    """In-memory AIAnalysisService returning a fixed response."""

    def __init__(self) -> None:
        self.prompts: list[str] = []
        self.response = VALID_AI_RESPONSE
        self.fail_jobs = False
        self.submit_error: Exception | None = None

    async def submit(self, prompt):
        if self.submit_error is not None:
            raise self.submit_error
        self.prompts.append(prompt)
        return f"resp-{len(self.prompts)}"

    async def poll_status(self, job_id):
        if self.fail_jobs:
            return RemoteJobStatus.failed("model overloaded")
        return RemoteJobStatus.done(self.response)


@pytest.fixture
def pool(tmp_path: Path):
    """Create an initialized connection pool on a temporary database."""
    pool = ConnectionPool(tmp_path / "state.db")
    pool.initialize()
    yield pool
    pool.close()


@pytest.fixture
def store(pool: ConnectionPool) -> SessionStateStore:
    """Return a session store on the temporary database."""
    return SessionStateStore(pool)


@pytest.fixture
def fast_polling() -> PollingConfig:
    """Polling settings that keep tests fast."""
    return PollingConfig(
        initial_interval=0.001,
        max_interval=0.001,
        jitter=0.0,
        transcription_timeout=5.0,
        ai_timeout=5.0,
    )


@pytest.fixture
def converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture
def transcription() -> FakeTranscription:
    return FakeTranscription()


@pytest.fixture
def analysis() -> FakeAnalysis:
    return FakeAnalysis()


@pytest.fixture
def services(converter, transcription, analysis) -> Services:
    """Bundle of in-memory collaborators."""
    return Services(converter=converter, transcription=transcription, analysis=analysis)


@pytest.fixture
def recordings(tmp_path: Path):
    """Return a factory creating source recordings in a temp directory."""
    source_dir = tmp_path / "uploads"
    source_dir.mkdir()

    def make(*names: str) -> list[Path]:
        paths = []
        for name in names:
            path = source_dir / name
            path.write_bytes(b"RIFFfake")
            paths.append(path)
        return paths

    return make


@pytest.fixture
def make_session(store: SessionStateStore, tmp_path: Path):
    """Return a factory persisting a session with files in given statuses."""

    def make(
        statuses: list[FileStatus],
        session_id: str = "session-1",
        mic_assignments: dict[int, str] | None = None,
    ) -> ProcessingSession:
        now = utc_now_iso()
        folder = tmp_path / session_id
        folder.mkdir(exist_ok=True)
        session = ProcessingSession(
            id=session_id,
            review_id="review-1",
            folder_path=str(folder),
            created_at=now,
            last_updated=now,
            mic_assignments=mic_assignments or {0: "Ann", 1: "Bo"},
        )
        store.create_session(session)
        for position, status in enumerate(statuses):
            store.files.insert_file(
                AudioFileState(
                    id=f"{session_id}-file-{position}",
                    session_id=session_id,
                    position=position,
                    original_filename=f"MIC{position + 1}.WAV",
                    source_path=str(folder / f"MIC{position + 1}.WAV"),
                    status=status,
                    sub_progress=0.0,
                    last_updated=now,
                    last_live_status=status if is_live(status) else FileStatus.PENDING,
                )
            )
        loaded = store.load_session(session_id)
        assert loaded is not None
        return loaded

    return make


@pytest.fixture
def ready_session(make_session, store: SessionStateStore):
    """Return a factory for a session whose live files sit at the barrier.

    Each file at the barrier gets a transcript document on disk.
    """

    def make(
        statuses: list[FileStatus],
        session_id: str = "session-1",
    ) -> ProcessingSession:
        session = make_session(statuses, session_id=session_id)
        folder = Path(session.folder_path)
        for audio_file in session.files:
            if not is_live(audio_file.status):
                store.files.save_file(
                    dataclasses.replace(audio_file, error_message="upload rejected")
                )
                continue
            document = build_transcript_document(
                {
                    "transcription": {
                        "utterances": [
                            {"speaker": 0, "text": f"line from {audio_file.id}"}
                        ]
                    }
                },
                file_id=audio_file.id,
                filename=audio_file.original_filename,
                mic_assignments=session.mic_assignments,
            )
            path = write_transcript(
                transcript_path_for(folder, audio_file.original_filename), document
            )
            store.files.save_file(
                dataclasses.replace(audio_file, transcript_path=str(path))
            )
        loaded = store.load_session(session_id)
        assert loaded is not None
        return loaded

    return make
