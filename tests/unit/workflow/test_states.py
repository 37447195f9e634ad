"""Tests for the per-file and collective state machines."""

from __future__ import annotations

import itertools

import pytest

from audioflow.db.types import CollectiveStatus, FileStatus
from audioflow.exceptions import IllegalTransitionError
from audioflow.workflow.states import (
    BARRIER_STATUS,
    PHASE1_ORDER,
    at_or_past_barrier,
    is_failed,
    is_live,
    next_collective_status,
    next_status,
    validate_collective_transition,
    validate_file_transition,
)

FAILED = (FileStatus.FAILED, FileStatus.FAILED_MP3)


def _rank(status: FileStatus) -> int:
    return PHASE1_ORDER.index(status)


class TestFileTransitions:
    """Tests for validate_file_transition."""

    def test_forward_to_next_status_is_allowed(self) -> None:
        """Each Phase-1 status may move to its successor."""
        for current, target in zip(PHASE1_ORDER, PHASE1_ORDER[1:]):
            validate_file_transition(current, target)

    def test_mp3_source_may_skip_conversion(self) -> None:
        """Uploading may jump straight to FinishedConvertingToMp3."""
        validate_file_transition(
            FileStatus.UPLOADING, FileStatus.FINISHED_CONVERTING_TO_MP3
        )

    def test_backward_moves_are_rejected(self) -> None:
        """No Phase-1 status may move to an earlier one."""
        for current, target in itertools.permutations(PHASE1_ORDER, 2):
            if _rank(target) < _rank(current):
                with pytest.raises(IllegalTransitionError):
                    validate_file_transition(current, target)

    def test_only_forward_failed_or_retry_moves_are_legal(self) -> None:
        """Every accepted transition is forward, to a failure, or a retry."""
        statuses = list(FileStatus)
        for current, target in itertools.product(statuses, statuses):
            for last_live in PHASE1_ORDER:
                try:
                    validate_file_transition(current, target, last_live)
                except IllegalTransitionError:
                    continue
                if is_failed(current):
                    assert target == last_live
                elif is_failed(target):
                    assert current != FileStatus.COMPLETE
                elif target == FileStatus.COMPLETE:
                    assert current == BARRIER_STATUS
                else:
                    assert _rank(target) > _rank(current)

    @pytest.mark.parametrize("status", PHASE1_ORDER)
    @pytest.mark.parametrize("failed", FAILED)
    def test_any_live_status_may_fail(
        self, status: FileStatus, failed: FileStatus
    ) -> None:
        """Failures are reachable from every Phase-1 status."""
        validate_file_transition(status, failed)

    def test_barrier_only_moves_to_complete(self) -> None:
        """The barrier status cannot re-enter Phase 1."""
        validate_file_transition(BARRIER_STATUS, FileStatus.COMPLETE)
        with pytest.raises(IllegalTransitionError):
            validate_file_transition(BARRIER_STATUS, FileStatus.PENDING)

    def test_complete_is_terminal(self) -> None:
        """Complete has no outgoing transitions."""
        for target in FileStatus:
            with pytest.raises(IllegalTransitionError):
                validate_file_transition(FileStatus.COMPLETE, target)

    def test_retry_returns_only_to_last_live_status(self) -> None:
        """A failed file may only go back to the status it failed in."""
        validate_file_transition(
            FileStatus.FAILED,
            FileStatus.UPLOADING_TO_GLADIA,
            FileStatus.UPLOADING_TO_GLADIA,
        )
        with pytest.raises(IllegalTransitionError):
            validate_file_transition(
                FileStatus.FAILED, FileStatus.PENDING, FileStatus.UPLOADING_TO_GLADIA
            )

    def test_retry_without_last_live_status_is_rejected(self) -> None:
        """Retry validation needs the last live status."""
        with pytest.raises(IllegalTransitionError):
            validate_file_transition(FileStatus.FAILED_MP3, FileStatus.PENDING)

    def test_error_names_both_statuses(self) -> None:
        """The error message mentions the current and requested status."""
        with pytest.raises(IllegalTransitionError) as exc_info:
            validate_file_transition(FileStatus.COMPLETE, FileStatus.PENDING)
        assert exc_info.value.current == FileStatus.COMPLETE
        assert exc_info.value.target == FileStatus.PENDING


class TestStatusHelpers:
    """Tests for the status classification helpers."""

    def test_next_status_follows_phase1_order(self) -> None:
        assert next_status(FileStatus.PENDING) == FileStatus.UPLOADING
        assert next_status(FileStatus.TRANSCRIPTS_DOWNLOADED) == BARRIER_STATUS

    def test_next_status_stops_at_barrier_and_terminals(self) -> None:
        assert next_status(BARRIER_STATUS) is None
        assert next_status(FileStatus.COMPLETE) is None
        assert next_status(FileStatus.FAILED) is None

    def test_live_and_failed_are_complementary(self) -> None:
        for status in FileStatus:
            assert is_live(status) != is_failed(status)

    def test_at_or_past_barrier(self) -> None:
        assert at_or_past_barrier(BARRIER_STATUS)
        assert at_or_past_barrier(FileStatus.COMPLETE)
        assert not at_or_past_barrier(FileStatus.TRANSCRIPTS_DOWNLOADED)
        assert not at_or_past_barrier(FileStatus.FAILED)


class TestCollectiveTransitions:
    """Tests for validate_collective_transition."""

    def test_steps_run_in_order(self) -> None:
        status = CollectiveStatus.PROCESSING_TRANSCRIPTIONS
        seen = [status]
        while (following := next_collective_status(status)) is not None:
            validate_collective_transition(status, following)
            status = following
            seen.append(status)
        assert seen[-1] == CollectiveStatus.COMPLETE
        assert len(seen) == 6

    def test_skipping_a_step_is_rejected(self) -> None:
        with pytest.raises(IllegalTransitionError):
            validate_collective_transition(
                CollectiveStatus.PROCESSING_TRANSCRIPTIONS,
                CollectiveStatus.PROCESSING_WITH_AI,
            )

    def test_failed_restarts_only_at_failed_step(self) -> None:
        validate_collective_transition(
            CollectiveStatus.FAILED,
            CollectiveStatus.PROCESSING_WITH_AI,
            CollectiveStatus.PROCESSING_WITH_AI,
        )
        with pytest.raises(IllegalTransitionError):
            validate_collective_transition(
                CollectiveStatus.FAILED,
                CollectiveStatus.PROCESSING_TRANSCRIPTIONS,
                CollectiveStatus.PROCESSING_WITH_AI,
            )

    def test_complete_is_terminal(self) -> None:
        with pytest.raises(IllegalTransitionError):
            validate_collective_transition(
                CollectiveStatus.COMPLETE, CollectiveStatus.FAILED
            )
