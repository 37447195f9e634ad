"""Tests for bounded-backoff polling."""

from __future__ import annotations

import pytest

from audioflow.config.models import PollingConfig
from audioflow.exceptions import PollTimeoutError, RemoteJobFailedError
from audioflow.services.interfaces import RemoteJobStatus
from audioflow.workflow.polling import PollSchedule, poll_until_done


class FakeClock:
    """Manual clock advanced by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


def _scripted(*statuses: RemoteJobStatus):
    remaining = list(statuses)
    polled: list[str] = []

    async def poll(job_id: str) -> RemoteJobStatus:
        polled.append(job_id)
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    return poll, polled


SCHEDULE = PollSchedule(
    timeout=100.0, initial_interval=1.0, max_interval=8.0, multiplier=2.0, jitter=0.0
)


class TestPollUntilDone:
    """Tests for poll_until_done."""

    @pytest.mark.asyncio
    async def test_returns_done_status(self) -> None:
        clock = FakeClock()
        poll, polled = _scripted(
            RemoteJobStatus.pending(),
            RemoteJobStatus.pending(),
            RemoteJobStatus.done({"ok": True}),
        )

        status = await poll_until_done(
            poll, "job-1", SCHEDULE, clock=clock, sleep=clock.sleep
        )

        assert status.result == {"ok": True}
        assert polled == ["job-1"] * 3

    @pytest.mark.asyncio
    async def test_backoff_grows_and_is_capped(self) -> None:
        clock = FakeClock()
        poll, _ = _scripted(*[RemoteJobStatus.pending()] * 6, RemoteJobStatus.done(1))

        await poll_until_done(poll, "job-1", SCHEDULE, clock=clock, sleep=clock.sleep)

        assert clock.sleeps == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]

    @pytest.mark.asyncio
    async def test_failed_job_raises(self) -> None:
        clock = FakeClock()
        poll, _ = _scripted(RemoteJobStatus.failed("bad audio"))

        with pytest.raises(RemoteJobFailedError, match="bad audio") as exc_info:
            await poll_until_done(
                poll,
                "job-9",
                SCHEDULE,
                service="transcription",
                clock=clock,
                sleep=clock.sleep,
            )
        assert exc_info.value.job_id == "job-9"
        assert exc_info.value.service == "transcription"

    @pytest.mark.asyncio
    async def test_deadline_raises_timeout(self) -> None:
        """A job that never finishes stops at the deadline."""
        clock = FakeClock()
        poll, polled = _scripted(RemoteJobStatus.pending())
        schedule = PollSchedule(timeout=10.0, initial_interval=4.0, jitter=0.0)

        with pytest.raises(PollTimeoutError) as exc_info:
            await poll_until_done(
                poll, "job-1", schedule, clock=clock, sleep=clock.sleep
            )

        assert exc_info.value.job_id == "job-1"
        assert clock.now == pytest.approx(10.0)
        # Sleeps never run past the deadline
        assert clock.sleeps == [4.0, 6.0]
        assert len(polled) == 3

    @pytest.mark.asyncio
    async def test_reports_elapsed_fraction(self) -> None:
        clock = FakeClock()
        poll, _ = _scripted(
            RemoteJobStatus.pending(),
            RemoteJobStatus.pending(),
            RemoteJobStatus.done("text"),
        )
        fractions: list[float] = []

        await poll_until_done(
            poll,
            "job-1",
            SCHEDULE,
            on_wait=fractions.append,
            clock=clock,
            sleep=clock.sleep,
        )

        assert fractions == [0.0, pytest.approx(0.01)]


class TestPollSchedule:
    """Tests for PollSchedule construction from config."""

    def test_uses_service_specific_timeouts(self) -> None:
        config = PollingConfig(transcription_timeout=30.0, ai_timeout=60.0)
        assert PollSchedule.for_transcription(config).timeout == 30.0
        assert PollSchedule.for_analysis(config).timeout == 60.0
        assert PollSchedule.for_analysis(config).initial_interval == 2.0
