"""Tests for the session CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from audioflow.cli import main
from audioflow.cli.output import ExitCode
from audioflow.config.models import AudioflowConfig
from audioflow.db.types import CollectiveStatus, FileStatus


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def invoke(runner, tmp_path: Path, store, services, fast_polling):
    """Invoke the CLI with an injected store and in-memory services."""
    config = AudioflowConfig(polling=fast_polling, database_path=tmp_path / "x.db")

    def run(*args: str):
        obj = {"config": config, "store": store, "services": services}
        return runner.invoke(main, list(args), obj=obj, catch_exceptions=False)

    return run


@pytest.fixture
def created(invoke, recordings, tmp_path: Path, store):
    """Create a session with two recordings and return its ID."""

    def make(*extra: str) -> str:
        paths = recordings("MIC1.WAV", "MIC2.WAV")
        result = invoke(
            "create",
            "review-7",
            str(tmp_path / "session"),
            *(str(p) for p in paths),
            "--mic",
            "0=Ann",
            "--mic",
            "1=Bo",
            "--json",
            *extra,
        )
        assert result.exit_code == 0, result.output
        session_id = json.loads(result.output)["session_id"]
        assert store.load_session(session_id) is not None
        return session_id

    return make


class TestCreateCommand:
    """Tests for the create command."""

    def test_registers_files_and_mics(self, invoke, recordings, tmp_path, store):
        paths = recordings("MIC1.WAV", "PHONE.WAV")

        result = invoke(
            "create",
            "review-1",
            str(tmp_path / "s"),
            *(str(p) for p in paths),
            "--mic",
            "0=Ann",
        )

        assert result.exit_code == 0, result.output
        assert "with 2 file(s)" in result.output
        (session,) = store.list_sessions()
        assert session.review_id == "review-1"
        assert session.mic_assignments == {0: "Ann"}
        assert [f.original_filename for f in session.files] == [
            "MIC1.WAV",
            "PHONE.WAV",
        ]
        assert {f.status for f in session.files} == {FileStatus.PENDING}
        assert (tmp_path / "s").is_dir()

    def test_json_output(self, invoke, tmp_path) -> None:
        result = invoke("create", "review-1", str(tmp_path / "s"), "--json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["files"] == 0
        assert data["session_id"]

    def test_bad_mic_assignment_is_usage_error(self, invoke, tmp_path) -> None:
        result = invoke("create", "review-1", str(tmp_path / "s"), "--mic", "Ann")

        assert result.exit_code == 2
        assert "INDEX=NAME" in result.output

    def test_run_flag_processes_session(self, created, store) -> None:
        session_id = created("--run")

        session = store.load_session(session_id)
        assert session.collective.status == CollectiveStatus.COMPLETE
        assert {f.status for f in session.files} == {FileStatus.COMPLETE}


class TestRunAndStatus:
    """Tests for the run and status commands."""

    def test_run_then_status_by_prefix(self, invoke, created) -> None:
        session_id = created()

        result = invoke("run", session_id[:8])
        assert result.exit_code == 0, result.output
        assert "Overall:   100.00%" in result.output

        result = invoke("status", session_id[:8], "--json")
        data = json.loads(result.output)
        assert data["session_id"] == session_id
        assert data["phase"] == "complete"
        assert data["overall"] == 100.0
        assert [f["status"] for f in data["files"]] == ["complete", "complete"]

    def test_failed_file_is_shown_as_excluded(self, invoke, created, converter):
        converter.fail_names.add("MIC2.WAV")
        session_id = created()

        result = invoke("run", session_id)

        assert result.exit_code == 0, result.output
        assert "(excluded)" in result.output
        assert "Cannot decode MIC2.WAV" in result.output

    def test_unknown_session_is_not_found(self, invoke) -> None:
        result = invoke("status", "nope")
        assert result.exit_code == ExitCode.NOT_FOUND
        assert "Session not found: nope" in result.output


class TestSessionsCommand:
    """Tests for the sessions command."""

    def test_empty(self, invoke) -> None:
        result = invoke("sessions")
        assert result.exit_code == 0
        assert "No sessions found." in result.output

    def test_lists_active_sessions(self, invoke, created) -> None:
        session_id = created()
        invoke("archive", created())

        result = invoke("sessions", "--json")
        data = json.loads(result.output)
        assert data["total"] == 1
        assert data["sessions"][0]["session_id"] == session_id
        assert data["sessions"][0]["phase"] == "phase1"

        result = invoke("sessions", "--all", "--json")
        assert json.loads(result.output)["total"] == 2


class TestRecoveryCommands:
    """Tests for retry, restart, resume and archive."""

    def test_retry_after_analysis_is_invalid_state(
        self, invoke, created, converter, store
    ) -> None:
        converter.fail_names.add("MIC2.WAV")
        session_id = created("--run")
        failed = next(
            f
            for f in store.files.list_files(session_id)
            if f.status == FileStatus.FAILED_MP3
        )

        result = invoke("retry", session_id, failed.id[:8])

        assert result.exit_code == ExitCode.INVALID_STATE
        assert "collective phase" in result.output

    def test_retry_unknown_file_is_not_found(self, invoke, created) -> None:
        session_id = created()
        result = invoke("retry", session_id, "zzz")
        assert result.exit_code == ExitCode.NOT_FOUND

    def test_restart_requires_failed_analysis(self, invoke, created) -> None:
        session_id = created("--run")

        result = invoke("restart", session_id)

        assert result.exit_code == ExitCode.INVALID_STATE
        assert "only failed runs can be restarted" in result.output

    def test_restart_failed_analysis(self, invoke, created, analysis, store):
        analysis.fail_jobs = True
        session_id = created("--run")
        assert store.load_collective(session_id).status == CollectiveStatus.FAILED

        analysis.fail_jobs = False
        result = invoke("restart", session_id)

        assert result.exit_code == 0, result.output
        assert store.load_collective(session_id).status == CollectiveStatus.COMPLETE

    def test_resume_processes_pending_sessions(self, invoke, created, store):
        session_id = created()

        result = invoke("resume")

        assert result.exit_code == 0
        assert "Resumed 1 session(s)" in result.output
        assert store.load_collective(session_id).status == CollectiveStatus.COMPLETE
        assert json.loads(invoke("resume", "--json").output) == {"resumed": 0}

    def test_archive_twice(self, invoke, created) -> None:
        session_id = created()

        first = invoke("archive", session_id)
        second = invoke("archive", session_id, "--json")

        assert f"Archived session {session_id}" in first.output
        assert json.loads(second.output) == {
            "session_id": session_id,
            "archived": False,
        }
