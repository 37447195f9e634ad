"""Workflow engine: state machines, workers, barrier and supervisor.

Usage:
    from audioflow.workflow import WorkflowSupervisor

    supervisor = WorkflowSupervisor(store, build_services(config))
    session = supervisor.create_session("review-1", folder)
    supervisor.register_file(session.id, folder / "MIC1.WAV")
    await supervisor.start_session(session.id)
    await supervisor.wait_idle()
"""

from audioflow.workflow.barrier import BarrierCoordinator, barrier_ready
from audioflow.workflow.collective import CollectiveProcessor
from audioflow.workflow.observers import (
    CompositeObserver,
    LoggingObserver,
    NullObserver,
    WorkflowObserver,
)
from audioflow.workflow.polling import PollSchedule, poll_until_done
from audioflow.workflow.progress import (
    FileProgress,
    SessionProgress,
    collective_progress,
    file_progress,
    session_progress,
    snapshot,
)
from audioflow.workflow.states import (
    BarrierPolicy,
    validate_collective_transition,
    validate_file_transition,
)
from audioflow.workflow.supervisor import WorkflowSupervisor
from audioflow.workflow.worker import FileWorker

__all__ = [
    "BarrierCoordinator",
    "BarrierPolicy",
    "CollectiveProcessor",
    "CompositeObserver",
    "FileProgress",
    "FileWorker",
    "LoggingObserver",
    "NullObserver",
    "PollSchedule",
    "SessionProgress",
    "WorkflowObserver",
    "WorkflowSupervisor",
    "barrier_ready",
    "collective_progress",
    "file_progress",
    "poll_until_done",
    "session_progress",
    "snapshot",
    "validate_collective_transition",
    "validate_file_transition",
]
