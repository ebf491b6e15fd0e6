"""
SQLite connection and schema for aclapi.

This module owns the single database connection shared by the rule store
and the sync-lock store. All statements go through one re-entrant lock so
worker threads can share the connection, and writes that must be atomic
run inside BEGIN IMMEDIATE transactions so other processes on the same
file are serialized too.

Design Principles:
    - Explicit setup: tables and indexes are created by init_schema(),
      never as a side effect of the first request
    - Atomic lock acquisition: check-and-take happens in one transaction
    - Self-contained: single .db file contains rules and sync history

Tables:
    - rules: Stored access rules (soft-deleted via the removed column)
    - rule_syncs: One lock record per (rule, strategy) with outcome history
"""

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

from aclapi.errors import StorageConnectionError, StorageReadError, StorageWriteError

# Schema version for migrations
SCHEMA_VERSION = 1

# Seconds a connection waits on a file lock held by another process
BUSY_TIMEOUT = 30.0

CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Rules table: rule_name is NULL when unset so uniqueness only binds named rules
CREATE TABLE IF NOT EXISTS rules (
    rule_id TEXT PRIMARY KEY,
    rule_name TEXT UNIQUE,
    source_json TEXT NOT NULL,
    destination_json TEXT NOT NULL,
    source_app TEXT,
    source_job TEXT,
    removed INTEGER NOT NULL DEFAULT 0,
    metadata_json TEXT NOT NULL DEFAULT '{}',
    created TEXT NOT NULL,
    creator TEXT NOT NULL DEFAULT ''
);

-- Sync lock records: one per (rule, strategy)
CREATE TABLE IF NOT EXISTS rule_syncs (
    sync_id TEXT PRIMARY KEY,
    rule_id TEXT NOT NULL,
    engine TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    ping_time TEXT NOT NULL,
    running INTEGER NOT NULL DEFAULT 0,
    syncs_json TEXT NOT NULL DEFAULT '[]',
    UNIQUE (rule_id, engine)
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_rules_source_app ON rules(source_app);
CREATE INDEX IF NOT EXISTS idx_rules_source_job ON rules(source_job);
CREATE INDEX IF NOT EXISTS idx_rule_syncs_start_time ON rule_syncs(start_time DESC);
"""


def generate_id() -> str:
    """Generate a unique ID for rules and sync records."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Get the current UTC time."""
    return datetime.now(UTC)


def to_iso(value: datetime | None) -> str | None:
    """Serialize a datetime as ISO 8601 in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def from_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp written by to_iso()."""
    if not value:
        return None
    return datetime.fromisoformat(value)


class AclDB:
    """
    SQLite database shared by the aclapi stores.

    Usage:
        db = AclDB("acl.db")
        db.init_schema()
        rules = RuleStore(db)
        syncs = SyncStore(db)
        db.close()

    Or use as context manager:
        with AclDB("acl.db") as db:
            ...
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Open the database connection.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
                     The file is created if it doesn't exist, but tables
                     are only created by init_schema().
        """
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            # isolation_level=None: transactions are opened explicitly
            self._conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,
                timeout=BUSY_TIMEOUT,
            )
            self._conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=self.db_path,
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageConnectionError(db_path=self.db_path, operation="connect", message="Database is closed")
        return self._conn

    def init_schema(self) -> None:
        """
        Create tables and indexes if they don't exist.

        Safe to run repeatedly.

        Raises:
            StorageWriteError: If the schema cannot be created
        """
        try:
            with self._lock:
                self.conn.executescript(CREATE_TABLES_SQL)
                with self.transaction() as conn:
                    row = conn.execute(
                        "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
                    ).fetchone()
                    if row is None:
                        conn.execute(
                            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                            (SCHEMA_VERSION, to_iso(utcnow())),
                        )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    def schema_version(self) -> int | None:
        """
        Return the applied schema version, or None before init_schema().

        Raises:
            StorageReadError: If the database cannot be queried
        """
        try:
            with self.reading() as conn:
                table = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
                ).fetchone()
                if table is None:
                    return None
                row = conn.execute(
                    "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
                ).fetchone()
                return row["version"] if row else None
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="schema_version",
                underlying_error=str(e),
            ) from e

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run the block inside a BEGIN IMMEDIATE transaction."""
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    @contextmanager
    def reading(self) -> Generator[sqlite3.Connection, None, None]:
        """Hold the connection lock for a read-only block."""
        with self._lock:
            yield self.conn

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "AclDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()
