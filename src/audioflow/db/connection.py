"""SQLite access for the workflow state database.

Many file tasks save their state at the same time, so every write goes
through one shared connection behind a lock while reads open their own
short-lived connections. WAL mode lets those readers proceed while a write
is in flight.
"""

from __future__ import annotations

import logging
import random
import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from audioflow.db.schema import create_schema

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA busy_timeout = 10000",
)

# Attempts made by retry_when_locked before the lock error is raised
LOCK_RETRY_ATTEMPTS = 6


def ensure_db_directory(db_path: Path) -> None:
    """Create the directory holding the database file."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).casefold()
    return "locked" in message or "busy" in message


def retry_when_locked(
    operation: Callable[[], T],
    *,
    attempts: int = LOCK_RETRY_ATTEMPTS,
    first_delay: float = 0.05,
    max_delay: float = 2.0,
) -> T:
    """Run a database operation, retrying while another process holds the lock.

    busy_timeout already waits inside SQLite; this covers the cases where
    SQLite gives up immediately (for example a lock upgrade in WAL mode).

    Args:
        operation: Callable performing the write.
        attempts: Total attempts, including the first.
        first_delay: Sleep before the second attempt, in seconds.
        max_delay: Upper bound on the sleep between attempts.

    Returns:
        The operation's return value.

    Raises:
        sqlite3.OperationalError: If the database stays locked, or the error
            is not a lock error.
    """
    delay = first_delay
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except sqlite3.OperationalError as e:
            if not _is_lock_error(e) or attempt == attempts:
                raise
            pause = delay * random.uniform(0.9, 1.1)  # nosec B311
            logger.info(
                "State database locked (attempt %d/%d), waiting %.2fs",
                attempt,
                attempts,
                pause,
            )
            time.sleep(pause)
            delay = min(delay * 2, max_delay)
    raise AssertionError("unreachable")


def _open(db_path: Path, timeout: float) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=timeout, check_same_thread=False)
    for pragma in _PRAGMAS:
        conn.execute(pragma)
    conn.row_factory = sqlite3.Row
    return conn


class ConnectionPool:
    """Connections to the state database shared by the stores.

    Reads get a fresh connection each, so a slow listing never holds up a
    file task saving its status. Writes share one connection guarded by a
    lock; the first write (or initialize()) creates the schema.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0) -> None:
        self.db_path = db_path
        self.timeout = timeout
        self._writer: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Connection pool is closed")

    def _writer_connection(self) -> sqlite3.Connection:
        # Caller holds self._lock
        self._check_open()
        if self._writer is None:
            ensure_db_directory(self.db_path)
            self._writer = _open(self.db_path, self.timeout)
            create_schema(self._writer)
        return self._writer

    def initialize(self) -> None:
        """Create the database file and its schema if missing."""
        with self._lock:
            self._writer_connection()

    @contextmanager
    def read_connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a new connection for reading, closed afterwards.

        Raises:
            RuntimeError: If the pool has been closed.
        """
        self._check_open()
        conn = _open(self.db_path, self.timeout)
        try:
            yield conn
        finally:
            conn.close()

    def execute_read(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Run a SELECT and return all rows."""
        with self.read_connection() as conn:
            return conn.execute(query, params).fetchall()

    def execute_write(self, query: str, params: tuple = ()) -> int:
        """Run one INSERT/UPDATE/DELETE and commit it.

        Returns:
            Number of affected rows.
        """
        with self._lock:
            conn = self._writer_connection()

            def write() -> int:
                try:
                    rowcount = conn.execute(query, params).rowcount
                    conn.commit()
                except sqlite3.Error:
                    conn.rollback()
                    raise
                return rowcount

            return retry_when_locked(write)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield the write connection inside BEGIN IMMEDIATE ... COMMIT.

        The transaction rolls back if the block raises. execute_write()
        must not be called inside it; it would deadlock on the write lock.
        """
        with self._lock:
            conn = self._writer_connection()
            started = time.monotonic()
            retry_when_locked(lambda: conn.execute("BEGIN IMMEDIATE"))
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            elapsed = time.monotonic() - started
            if elapsed > 1.0:
                logger.warning("Slow state transaction: %.2fs", elapsed)

    def close(self) -> None:
        """Close the write connection; the pool cannot be used afterwards."""
        with self._lock:
            self._closed = True
            if self._writer is not None:
                self._writer.close()
                self._writer = None
