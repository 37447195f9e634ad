"""Bounded-backoff polling of remote jobs.

Remote services signal completion only through polling. Each poll loop has
an explicit deadline and sleeps with exponential backoff and jitter between
attempts; cancelling the awaiting task stops the loop at the next sleep.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from audioflow.config.models import PollingConfig
from audioflow.exceptions import PollTimeoutError, RemoteJobFailedError
from audioflow.services.interfaces import RemoteJobState, RemoteJobStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollSchedule:
    """Backoff parameters and deadline for one poll loop."""

    timeout: float
    initial_interval: float = 2.0
    max_interval: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.1

    @classmethod
    def for_transcription(cls, config: PollingConfig) -> PollSchedule:
        return cls(
            timeout=config.transcription_timeout,
            initial_interval=config.initial_interval,
            max_interval=config.max_interval,
            multiplier=config.multiplier,
            jitter=config.jitter,
        )

    @classmethod
    def for_analysis(cls, config: PollingConfig) -> PollSchedule:
        return cls(
            timeout=config.ai_timeout,
            initial_interval=config.initial_interval,
            max_interval=config.max_interval,
            multiplier=config.multiplier,
            jitter=config.jitter,
        )


async def poll_until_done(
    poll: Callable[[str], Awaitable[RemoteJobStatus]],
    job_id: str,
    schedule: PollSchedule,
    *,
    service: str | None = None,
    on_wait: Callable[[float], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RemoteJobStatus:
    """Poll a remote job until it finishes.

    Args:
        poll: Status function of the remote service.
        job_id: ID of the job to poll.
        schedule: Backoff parameters and deadline.
        service: Service name used in error messages.
        on_wait: Optional callback receiving the elapsed fraction of the
            deadline (0.0-1.0) after each pending poll.
        clock: Monotonic clock, injectable for tests.
        sleep: Async sleep, injectable for tests.

    Returns:
        The done status carrying the job result.

    Raises:
        RemoteJobFailedError: If the job reports failure.
        PollTimeoutError: If the deadline passes before the job finishes.
    """
    started = clock()
    deadline = started + schedule.timeout
    interval = schedule.initial_interval
    attempt = 0

    while True:
        attempt += 1
        status = await poll(job_id)

        if status.state == RemoteJobState.DONE:
            logger.debug("Job %s done after %d poll(s)", job_id, attempt)
            return status
        if status.state == RemoteJobState.FAILED:
            raise RemoteJobFailedError(
                job_id,
                f"Remote job {job_id} failed: {status.error or 'unknown error'}",
                service=service,
            )

        now = clock()
        if now >= deadline:
            raise PollTimeoutError(job_id, schedule.timeout)
        if on_wait is not None:
            on_wait(min(1.0, (now - started) / schedule.timeout))

        jitter = random.uniform(-schedule.jitter, schedule.jitter)  # nosec B311
        delay = interval * (1 + jitter)
        # Never sleep past the deadline; the next poll is the last chance
        delay = max(0.0, min(delay, deadline - now))
        logger.debug(
            "Job %s pending (attempt %d), polling again in %.1fs",
            job_id,
            attempt,
            delay,
        )
        await sleep(delay)
        interval = min(interval * schedule.multiplier, schedule.max_interval)
