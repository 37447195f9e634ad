"""Database module for the audio workflow engine.

Module organization:
- types.py: Status enums and state records
- schema.py: Schema creation
- connection.py: Connections, the connection pool and lock retries
- store.py: FileStateStore and SessionStateStore

The stores are imported from audioflow.db.store directly; they depend on
audioflow.exceptions, which itself depends on the types exported here.

Usage:
    from audioflow.db import FileStatus, ConnectionPool
    from audioflow.db.store import SessionStateStore
"""

from .connection import ConnectionPool, ensure_db_directory, retry_when_locked
from .schema import SCHEMA_VERSION, create_schema, get_schema_version
from .types import (
    AudioFileState,
    CollectivePhaseState,
    CollectiveStatus,
    ErrorKind,
    FileStatus,
    ProcessingSession,
)

__all__ = [
    "SCHEMA_VERSION",
    "AudioFileState",
    "CollectivePhaseState",
    "CollectiveStatus",
    "ConnectionPool",
    "ErrorKind",
    "FileStatus",
    "ProcessingSession",
    "create_schema",
    "ensure_db_directory",
    "get_schema_version",
    "retry_when_locked",
]
