"""Tests for the collective (Phase 2) processor."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from audioflow.db.types import CollectiveStatus, ErrorKind, FileStatus
from audioflow.exceptions import CollectiveRestartError, RemoteServiceError
from audioflow.workflow.barrier import BarrierCoordinator
from audioflow.workflow.collective import (
    AI_RESPONSE_FILE,
    COMBINED_TRANSCRIPT_FILE,
    INSIGHTS_FILE,
    CollectiveProcessor,
)
from audioflow.workflow.states import BARRIER_STATUS


@pytest.fixture
def processor(store, analysis, fast_polling) -> CollectiveProcessor:
    return CollectiveProcessor(store, analysis, polling=fast_polling)


@pytest.fixture
def claimed(store, ready_session):
    """Return a factory claiming the collective run of a ready session."""

    async def make(statuses):
        session = ready_session(statuses)
        state = await BarrierCoordinator(store).check(session.id)
        assert state is not None
        return session, state

    return make


class TestCollectiveRun:
    """Tests for CollectiveProcessor.run."""

    @pytest.mark.asyncio
    async def test_completes_and_writes_artifacts(
        self, processor, claimed, analysis
    ) -> None:
        session, state = await claimed([BARRIER_STATUS, BARRIER_STATUS])

        final = await processor.run(state)

        assert final.status == CollectiveStatus.COMPLETE
        folder = Path(session.folder_path)
        combined = (folder / COMBINED_TRANSCRIPT_FILE).read_text()
        assert "Ann: line from session-1-file-0" in combined
        assert "Bo: line from session-1-file-1" in combined
        assert (folder / AI_RESPONSE_FILE).exists()
        insights = json.loads((folder / INSIGHTS_FILE).read_text())
        assert insights["categories"]["best_joke"]["speaker"] == "Bo"
        assert final.insights_json is not None
        assert final.ai_job_id == "resp-1"
        assert len(analysis.prompts) == 1

    @pytest.mark.asyncio
    async def test_failed_file_is_left_out(self, processor, claimed) -> None:
        session, state = await claimed([BARRIER_STATUS, FileStatus.FAILED])

        final = await processor.run(state)

        assert final.status == CollectiveStatus.COMPLETE
        assert final.excluded_file_ids == [session.files[1].id]
        combined = Path(final.combined_transcript_path).read_text()
        assert "session-1-file-1" not in combined
        assert "MIC2.WAV (upload rejected)" in combined

    @pytest.mark.asyncio
    async def test_unparseable_response_fails_at_interpretation(
        self, processor, claimed, analysis
    ) -> None:
        _, state = await claimed([BARRIER_STATUS])
        analysis.response = "Sorry, I cannot help with that."

        final = await processor.run(state)

        assert final.status == CollectiveStatus.FAILED
        assert final.failed_step == CollectiveStatus.PROCESSING_AI_RESPONSE
        assert final.error_kind == ErrorKind.RESPONSE_PARSE
        # The raw response is kept for inspection
        assert Path(final.ai_response_path).exists()

    @pytest.mark.asyncio
    async def test_submit_error_fails_at_sending(
        self, processor, claimed, analysis
    ) -> None:
        _, state = await claimed([BARRIER_STATUS])
        analysis.submit_error = RemoteServiceError("HTTP 503", service="ai")

        final = await processor.run(state)

        assert final.status == CollectiveStatus.FAILED
        assert final.failed_step == CollectiveStatus.SENDING_TO_OPENAI
        assert final.error_kind == ErrorKind.REMOTE_SERVICE
        assert final.combined_transcript_path is not None


class TestCollectiveRestart:
    """Tests for CollectiveProcessor.restart."""

    @pytest.mark.asyncio
    async def test_failed_ai_job_is_resubmitted(
        self, processor, claimed, analysis, store
    ) -> None:
        """A job the service failed is dropped, so a restart submits anew."""
        _, state = await claimed([BARRIER_STATUS])
        analysis.fail_jobs = True
        failed = await processor.run(state)
        assert failed.failed_step == CollectiveStatus.PROCESSING_WITH_AI
        assert failed.ai_job_id is None

        analysis.fail_jobs = False
        restarted = processor.restart(failed.session_id)
        assert restarted.status == CollectiveStatus.PROCESSING_WITH_AI
        assert restarted.error_message is None
        final = await processor.run(restarted)

        assert final.status == CollectiveStatus.COMPLETE
        assert final.ai_job_id == "resp-2"
        assert len(analysis.prompts) == 2
        assert store.load_collective(final.session_id) == final

    @pytest.mark.asyncio
    async def test_restart_resumes_at_failed_step_only(
        self, processor, claimed, analysis
    ) -> None:
        """Earlier steps are not repeated after a restart."""
        _, state = await claimed([BARRIER_STATUS])
        analysis.submit_error = RemoteServiceError("HTTP 503", service="ai")
        failed = await processor.run(state)
        combined_path = Path(failed.combined_transcript_path)
        combined_path.write_text("Ann: kept", encoding="utf-8")

        analysis.submit_error = None
        final = await processor.run(processor.restart(failed.session_id))

        assert final.status == CollectiveStatus.COMPLETE
        assert combined_path.read_text(encoding="utf-8") == "Ann: kept"
        assert "Ann: kept" in analysis.prompts[0]

    @pytest.mark.asyncio
    async def test_restart_of_running_collective_is_rejected(
        self, processor, claimed
    ) -> None:
        _, state = await claimed([BARRIER_STATUS])

        with pytest.raises(CollectiveRestartError):
            processor.restart(state.session_id)

    def test_restart_without_collective_is_rejected(
        self, processor, make_session
    ) -> None:
        session = make_session([FileStatus.PENDING])

        with pytest.raises(CollectiveRestartError):
            processor.restart(session.id)
