"""
Sync lock storage.

Each (rule, strategy) pair owns one lock record. start_sync() takes the
lock when the record is eligible, ping_syncs() keeps held locks fresh and
end_sync() releases the lock while appending the outcome to a bounded
history.

A record is eligible for a new sync when forced, or when either:
    - it is not running and was last pinged more than `after` ago, or
    - it is running but was last pinged more than max(lock_expire, after)
      ago, meaning the previous holder died without releasing it
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import timedelta

from pydantic import TypeAdapter

from aclapi.errors import StorageReadError, StorageWriteError, SyncStorageLockedError
from aclapi.schema import RuleSyncData, RuleSyncInfo
from aclapi.store.db import AclDB, from_iso, generate_id, to_iso, utcnow

DEFAULT_LOCK_EXPIRE = timedelta(minutes=5)

# Outcomes kept per lock record
SYNC_HISTORY_LIMIT = 10

_history_adapter = TypeAdapter(list[RuleSyncData])


@dataclass
class SyncFindOpts:
    """
    Filters for SyncStore.find(). None means "don't filter".

    Attributes:
        rule_ids: Only records of these rules
        engines: Only records of these strategies
        limit: Maximum number of records, 0 for no limit
    """

    rule_ids: list[str] | None = None
    engines: list[str] | None = None
    limit: int = 0


class SyncStore:
    """Persists sync lock records in the rule_syncs table of an AclDB."""

    def __init__(self, db: AclDB, lock_expire: timedelta = DEFAULT_LOCK_EXPIRE) -> None:
        self.db = db
        self._lock_expire = lock_expire

    def set_lock_expire_time(self, timeout: timedelta) -> timedelta:
        """Change how long a running lock survives without pings. Returns the previous value."""
        previous = self._lock_expire
        self._lock_expire = timeout
        return previous

    def start_sync(
        self,
        after: timedelta,
        rule_id: str,
        engine: str,
        force: bool = False,
    ) -> tuple[timedelta, RuleSyncInfo]:
        """
        Take the lock for (rule_id, engine).

        Args:
            after: Minimum time since the last sync before another may start
            rule_id: Rule to lock
            engine: Strategy name
            force: Take the lock regardless of its state

        Returns:
            Tuple of (after, the lock record now marked running)

        Raises:
            SyncStorageLockedError: If the record is held or synced too
                recently; retry_after hints when it becomes eligible
            StorageWriteError: If the database operation fails
        """
        expire = max(self._lock_expire, after)
        now = utcnow()
        try:
            with self.db.transaction() as conn:
                row = conn.execute(
                    "SELECT * FROM rule_syncs WHERE rule_id = ? AND engine = ?",
                    (rule_id, engine),
                ).fetchone()
                if row is None:
                    conn.execute(
                        """
                        INSERT INTO rule_syncs (
                            sync_id, rule_id, engine, start_time, ping_time, running
                        ) VALUES (?, ?, ?, ?, ?, 1)
                        """,
                        (generate_id(), rule_id, engine, to_iso(now), to_iso(now)),
                    )
                else:
                    ping_time = from_iso(row["ping_time"])
                    running = bool(row["running"])
                    eligible = (
                        force
                        or (not running and ping_time < now - after)
                        or (running and ping_time < now - expire)
                    )
                    if not eligible:
                        retry_after = after
                        if not running:
                            retry_after = after - (utcnow() - ping_time)
                        raise SyncStorageLockedError(rule_id=rule_id, engine=engine, retry_after=retry_after)
                    conn.execute(
                        """
                        UPDATE rule_syncs SET start_time = ?, ping_time = ?, running = 1
                        WHERE sync_id = ?
                        """,
                        (to_iso(now), to_iso(now), row["sync_id"]),
                    )
                row = conn.execute(
                    "SELECT * FROM rule_syncs WHERE rule_id = ? AND engine = ?",
                    (rule_id, engine),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageWriteError(operation="start_sync", underlying_error=str(e)) from e
        return after, _row_to_sync_info(row)

    def ping_syncs(self, sync_ids: list[str]) -> None:
        """
        Refresh the ping time of the given lock records.

        Raises:
            StorageWriteError: If the update fails
        """
        if not sync_ids:
            return
        placeholders = ", ".join("?" for _ in sync_ids)
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    f"UPDATE rule_syncs SET ping_time = ? WHERE sync_id IN ({placeholders})",
                    [to_iso(utcnow()), *sync_ids],
                )
        except sqlite3.Error as e:
            raise StorageWriteError(operation="ping_syncs", underlying_error=str(e)) from e

    def end_sync(self, info: RuleSyncInfo, data: RuleSyncData) -> None:
        """
        Release the lock and append an outcome to the history.

        Only the last SYNC_HISTORY_LIMIT outcomes are kept, oldest first.

        Raises:
            StorageWriteError: If the update fails
        """
        now = to_iso(utcnow())
        try:
            with self.db.transaction() as conn:
                row = conn.execute(
                    "SELECT syncs_json FROM rule_syncs WHERE rule_id = ? AND engine = ?",
                    (info.rule_id, info.engine),
                ).fetchone()
                if row is None:
                    return
                history = json.loads(row["syncs_json"])
                history.append(data.model_dump(mode="json"))
                history = history[-SYNC_HISTORY_LIMIT:]
                conn.execute(
                    """
                    UPDATE rule_syncs
                    SET running = 0, ping_time = ?, end_time = ?, syncs_json = ?
                    WHERE rule_id = ? AND engine = ?
                    """,
                    (now, now, json.dumps(history), info.rule_id, info.engine),
                )
        except sqlite3.Error as e:
            raise StorageWriteError(operation="end_sync", underlying_error=str(e)) from e

    def find(self, opts: SyncFindOpts | None = None) -> list[RuleSyncInfo]:
        """
        List lock records, most recently started first.

        Raises:
            StorageReadError: If the query fails
        """
        opts = opts or SyncFindOpts()
        clauses: list[str] = []
        params: list[str | int] = []
        for column, values in (("engine", opts.engines), ("rule_id", opts.rule_ids)):
            if values is None:
                continue
            if not values:
                return []
            clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
            params.extend(values)
        sql = "SELECT * FROM rule_syncs"
        if clauses:
            sql += f" WHERE {' AND '.join(clauses)}"
        sql += " ORDER BY start_time DESC"
        if opts.limit > 0:
            sql += " LIMIT ?"
            params.append(opts.limit)

        try:
            with self.db.reading() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageReadError(operation="find_syncs", underlying_error=str(e)) from e
        return [_row_to_sync_info(row) for row in rows]


def _row_to_sync_info(row: sqlite3.Row) -> RuleSyncInfo:
    return RuleSyncInfo(
        sync_id=row["sync_id"],
        rule_id=row["rule_id"],
        engine=row["engine"],
        start_time=from_iso(row["start_time"]),
        end_time=from_iso(row["end_time"]),
        ping_time=from_iso(row["ping_time"]),
        running=bool(row["running"]),
        syncs=_history_adapter.validate_json(row["syncs_json"]),
    )
