"""Structured logging module for audioflow.

Provides configurable logging with JSON format support and file rotation,
plus session/file context for concurrent workflow tasks.
"""

from audioflow.logging.config import configure_logging
from audioflow.logging.context import (
    WorkflowContextFilter,
    get_workflow_context,
    workflow_context,
)
from audioflow.logging.handlers import JSONFormatter

__all__ = [
    "JSONFormatter",
    "WorkflowContextFilter",
    "configure_logging",
    "get_workflow_context",
    "workflow_context",
]
