"""Database schema definition for the workflow state database.

This module contains the schema DDL and schema creation logic. The schema
defines the sessions, audio_files and collective_runs tables used by the
state stores.
"""

import sqlite3

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS _meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Processing sessions (one batch of recordings for a review/event)
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    review_id TEXT NOT NULL,
    folder_path TEXT NOT NULL,
    mic_assignments_json TEXT,  -- JSON object: mic number -> participant name
    created_at TEXT NOT NULL,   -- ISO 8601 UTC timestamp
    last_updated TEXT NOT NULL, -- ISO 8601 UTC timestamp
    archived_at TEXT            -- NULL while the session is active
);

CREATE INDEX IF NOT EXISTS idx_sessions_review_id ON sessions(review_id);
CREATE INDEX IF NOT EXISTS idx_sessions_archived_at ON sessions(archived_at);

-- Per-file workflow state. Each row has exactly one writer (its FileWorker).
CREATE TABLE IF NOT EXISTS audio_files (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    original_filename TEXT NOT NULL,
    source_path TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    sub_progress REAL NOT NULL DEFAULT 0.0,
    last_live_status TEXT NOT NULL DEFAULT 'pending',
    retry_count INTEGER NOT NULL DEFAULT 0,
    error_kind TEXT,
    error_message TEXT,
    current_step TEXT,
    converted_path TEXT,
    remote_audio_ref TEXT,
    transcription_job_id TEXT,
    transcript_path TEXT,
    last_updated TEXT NOT NULL,  -- ISO 8601 UTC timestamp
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
    UNIQUE(session_id, position)
);

CREATE INDEX IF NOT EXISTS idx_audio_files_session ON audio_files(session_id);
CREATE INDEX IF NOT EXISTS idx_audio_files_status ON audio_files(status);

-- Collective (Phase 2) run per session. Inserting the row claims the run.
CREATE TABLE IF NOT EXISTS collective_runs (
    session_id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL UNIQUE,
    status TEXT NOT NULL,
    failed_step TEXT,
    combined_transcript_path TEXT,
    excluded_file_ids_json TEXT,  -- JSON array of file IDs
    ai_job_id TEXT,
    ai_response_path TEXT,
    insights_json TEXT,
    error_kind TEXT,
    error_message TEXT,
    started_at TEXT NOT NULL,   -- ISO 8601 UTC timestamp
    last_updated TEXT NOT NULL, -- ISO 8601 UTC timestamp
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create the database schema if it doesn't exist.

    Args:
        conn: An open database connection.
    """
    conn.executescript(SCHEMA_SQL)

    # Set schema version if not already set
    conn.execute(
        "INSERT OR IGNORE INTO _meta (key, value) VALUES ('schema_version', ?)",
        (str(SCHEMA_VERSION),),
    )
    # executescript() commits implicitly; the INSERT above opens a new
    # implicit transaction that must be closed before BEGIN IMMEDIATE.
    conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """Get the current schema version from the database.

    Args:
        conn: An open database connection.

    Returns:
        The schema version number, or None if not set.
    """
    try:
        cursor = conn.execute("SELECT value FROM _meta WHERE key = 'schema_version'")
        row = cursor.fetchone()
        return int(row[0]) if row else None
    except sqlite3.OperationalError:
        # Table doesn't exist
        return None
