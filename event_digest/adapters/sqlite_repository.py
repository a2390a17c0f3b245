"""SQLite repository adapter for local storage.

Implements EventStoreProtocol and ExecutionReporterProtocol with SQLite.
Events are unique by fingerprint; re-sighting an event touches ``last_seen``
and increments ``times_found`` instead of inserting a duplicate row.
"""

import json
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

import pytz

from event_digest.config.logging_config import get_logger
from event_digest.domain.exceptions import RepositoryError
from event_digest.domain.models import (
    EventRecord,
    ExecutionRecord,
    ExecutionStats,
    ExecutionStatus,
    StoredEvent,
    UpsertOutcome,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(tz=pytz.UTC)


class SQLiteRepository:
    """SQLite-based event store and execution log."""

    def __init__(self, db_path: str, *, clock: Clock | None = None) -> None:
        """Initialize repository and ensure schema.

        Args:
            db_path: Path to SQLite database file (``:memory:`` is not
                supported because every operation opens its own connection)
            clock: Returns the current aware datetime (tests inject a fixed one)
        """
        self.db_path = db_path
        self._clock = clock or _utc_now

        # Ensure data directory exists
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection in autocommit mode.

        Transactions are opened explicitly with ``BEGIN IMMEDIATE``.

        Returns:
            SQLite connection
        """
        conn = sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _now_iso(self) -> str:
        return self._clock().astimezone(pytz.UTC).isoformat()

    def _create_schema(self) -> None:
        """Create database schema if not exists."""
        logger.info("sqlite_schema_creation_started", db_path=str(self.db_path))
        try:
            conn = self._get_connection()
            try:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS events (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        fingerprint TEXT UNIQUE NOT NULL,
                        name TEXT NOT NULL,
                        date TEXT,
                        event_date TEXT,
                        time TEXT,
                        location TEXT,
                        price TEXT,
                        classification TEXT,
                        category TEXT,
                        description TEXT,
                        raw_data TEXT,
                        first_seen TEXT NOT NULL,
                        last_seen TEXT NOT NULL,
                        times_found INTEGER NOT NULL DEFAULT 1
                    );

                    CREATE TABLE IF NOT EXISTS executions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        started_at TEXT NOT NULL,
                        finished_at TEXT,
                        status TEXT NOT NULL,
                        events_found INTEGER DEFAULT 0,
                        events_new INTEGER DEFAULT 0,
                        error_message TEXT
                    );

                    CREATE INDEX IF NOT EXISTS idx_events_event_date ON events(event_date);
                    CREATE INDEX IF NOT EXISTS idx_events_location ON events(location);
                    CREATE INDEX IF NOT EXISTS idx_events_last_seen ON events(last_seen);
                    CREATE INDEX IF NOT EXISTS idx_executions_started ON executions(started_at);
                    """
                )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to create schema: {e}") from e
        logger.info("sqlite_schema_creation_completed", db_path=str(self.db_path))

    # === Events ===

    def upsert_event_by_fingerprint(
        self,
        fingerprint: str,
        record: EventRecord,
        *,
        event_date: date | None = None,
    ) -> UpsertOutcome:
        """Insert a new event or touch an existing one atomically.

        Args:
            fingerprint: Durable event fingerprint
            record: Normalized event
            event_date: First parsed date of the event, stored for range queries

        Returns:
            UpsertOutcome with ``is_new`` True when a row was inserted
        """
        now = self._now_iso()
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO events (
                        fingerprint, name, date, event_date, time, location, price,
                        classification, category, description, raw_data,
                        first_seen, last_seen, times_found
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                    ON CONFLICT(fingerprint) DO NOTHING
                    """,
                    (
                        fingerprint,
                        record.name,
                        record.date,
                        event_date.isoformat() if event_date else None,
                        record.time,
                        record.unit,
                        record.price,
                        record.age,
                        record.category,
                        record.description,
                        json.dumps(record.model_dump(), ensure_ascii=False),
                        now,
                        now,
                    ),
                )
                is_new = cursor.rowcount == 1
                if not is_new:
                    conn.execute(
                        """
                        UPDATE events
                        SET last_seen = ?, times_found = times_found + 1
                        WHERE fingerprint = ?
                        """,
                        (now, fingerprint),
                    )
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to upsert event: {e}") from e

        return UpsertOutcome(fingerprint=fingerprint, is_new=is_new)

    def get_events(
        self,
        *,
        location: str | None = None,
        category: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[StoredEvent]:
        """Query stored events.

        Args:
            location: Case-insensitive substring of the location
            category: Case-insensitive substring of the category
            start_date: Earliest parsed event date (inclusive)
            end_date: Latest parsed event date (inclusive)

        Returns:
            Matching events ordered by date then time
        """
        query = "SELECT * FROM events WHERE 1=1"
        params: list[Any] = []

        if location:
            query += " AND location LIKE ?"
            params.append(f"%{location}%")
        if category:
            query += " AND category LIKE ?"
            params.append(f"%{category}%")
        if start_date:
            query += " AND event_date >= ?"
            params.append(start_date.isoformat())
        if end_date:
            query += " AND event_date <= ?"
            params.append(end_date.isoformat())

        query += " ORDER BY event_date IS NULL, event_date ASC, time ASC, id ASC"

        try:
            conn = self._get_connection()
            try:
                rows = conn.execute(query, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to query events: {e}") from e

        return [self._row_to_event(row) for row in rows]

    def clean_old_events(self, days_old: int) -> int:
        """Delete events not seen for ``days_old`` days.

        Returns:
            Number of deleted rows
        """
        cutoff = (self._clock() - timedelta(days=days_old)).astimezone(pytz.UTC)
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM events WHERE last_seen < ?", (cutoff.isoformat(),)
                )
                deleted = cursor.rowcount
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to clean old events: {e}") from e

        if deleted:
            logger.info("old_events_cleaned", deleted=deleted, days_old=days_old)
        return deleted

    def get_stats(self) -> dict[str, Any]:
        """Return totals and the last execution."""
        try:
            conn = self._get_connection()
            try:
                total_events = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
                total_executions = conn.execute(
                    "SELECT COUNT(*) FROM executions"
                ).fetchone()[0]
                last_row = conn.execute(
                    "SELECT * FROM executions ORDER BY started_at DESC, id DESC LIMIT 1"
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to get stats: {e}") from e

        return {
            "total_events": total_events,
            "total_executions": total_executions,
            "last_execution": self._row_to_execution(last_row) if last_row else None,
        }

    # === Executions ===

    def begin_execution(self) -> int:
        """Record a new running execution and return its id."""
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO executions (started_at, status) VALUES (?, ?)",
                    (self._now_iso(), ExecutionStatus.RUNNING.value),
                )
                execution_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to begin execution: {e}") from e

        if execution_id is None:
            raise RepositoryError("Failed to begin execution: no row id returned")
        return int(execution_id)

    def finish_execution(self, execution_id: int, stats: ExecutionStats) -> None:
        """Close an execution with final counters."""
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    UPDATE executions
                    SET finished_at = ?, status = ?, events_found = ?,
                        events_new = ?, error_message = ?
                    WHERE id = ?
                    """,
                    (
                        self._now_iso(),
                        stats.status.value,
                        stats.events_found,
                        stats.events_new,
                        stats.error_message,
                        execution_id,
                    ),
                )
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to finish execution: {e}") from e

    def has_running_execution(self, stale_after: timedelta) -> bool:
        """Whether an execution started within ``stale_after`` is still running."""
        cutoff = (self._clock() - stale_after).astimezone(pytz.UTC)
        try:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    """
                    SELECT COUNT(*) FROM executions
                    WHERE status = ? AND started_at >= ?
                    """,
                    (ExecutionStatus.RUNNING.value, cutoff.isoformat()),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to check running executions: {e}") from e

        return bool(row[0])

    def get_recent_executions(self, limit: int = 10) -> list[ExecutionRecord]:
        """Most recent executions, newest first."""
        try:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT * FROM executions ORDER BY started_at DESC, id DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to get executions: {e}") from e

        return [self._row_to_execution(row) for row in rows]

    # === Row mapping ===

    def _row_to_event(self, row: sqlite3.Row) -> StoredEvent:
        return StoredEvent(
            fingerprint=row["fingerprint"],
            name=row["name"],
            date=row["date"] or "",
            event_date=date.fromisoformat(row["event_date"]) if row["event_date"] else None,
            time=row["time"] or "",
            location=row["location"] or "",
            price=row["price"] or "",
            classification=row["classification"] or "",
            category=row["category"] or "",
            description=row["description"] or "",
            first_seen=datetime.fromisoformat(row["first_seen"]),
            last_seen=datetime.fromisoformat(row["last_seen"]),
            times_found=row["times_found"],
        )

    def _row_to_execution(self, row: sqlite3.Row) -> ExecutionRecord:
        return ExecutionRecord(
            execution_id=row["id"],
            started_at=datetime.fromisoformat(row["started_at"]),
            finished_at=(
                datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None
            ),
            status=ExecutionStatus(row["status"]),
            events_found=row["events_found"] or 0,
            events_new=row["events_new"] or 0,
            error_message=row["error_message"],
        )
