"""Session record persistence with atomic upserts and append-only history."""

import sqlite3
from datetime import datetime
from typing import Any, Optional

from ..session.models import (
    SessionRecord,
    SessionStatus,
    ValidationEntry,
    ValidationMethod,
)
from ..utils.time import from_micros, to_micros
from .document_store import DocumentStore


class SessionStore(DocumentStore):
    """
    SQLite-based session store.

    ``session_id`` is the primary key, so every write is an atomic upsert of
    one row. Validation history lives in its own table and is only ever
    appended to, so concurrent writers never overwrite each other's entries.
    """

    TARGET = "sessions"
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS sessions (
            session_id TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            is_validated INTEGER NOT NULL DEFAULT 0,
            last_validation_check_us INTEGER NOT NULL,
            last_activity_us INTEGER NOT NULL,
            expires_at_us INTEGER NOT NULL,
            validation_attempts INTEGER NOT NULL DEFAULT 0,
            login_timestamp_us INTEGER
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS session_validation_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            timestamp_us INTEGER NOT NULL,
            success INTEGER NOT NULL,
            message TEXT NOT NULL,
            method TEXT NOT NULL
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_history_session
        ON session_validation_history(session_id, id)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at_us)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_sessions_activity ON sessions(last_activity_us)
        """,
    )

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Load a session with its full validation history."""
        with self._get_connection("get") as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
            if row is None:
                return None
            history = conn.execute("""
                SELECT * FROM session_validation_history
                WHERE session_id = ? ORDER BY id
            """, (session_id,)).fetchall()
        return self._row_to_record(row, history)

    def save(self, record: SessionRecord, entry: Optional[ValidationEntry] = None) -> None:
        """
        Upsert the scalar fields of a record and optionally append one
        history entry, in a single transaction.
        """
        with self._write_lock:
            with self._get_connection("save") as conn:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute("""
                    INSERT INTO sessions (
                        session_id, status, is_validated, last_validation_check_us,
                        last_activity_us, expires_at_us, validation_attempts,
                        login_timestamp_us
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(session_id) DO UPDATE SET
                        status = excluded.status,
                        is_validated = excluded.is_validated,
                        last_validation_check_us = excluded.last_validation_check_us,
                        last_activity_us = excluded.last_activity_us,
                        expires_at_us = excluded.expires_at_us,
                        validation_attempts = excluded.validation_attempts,
                        login_timestamp_us = excluded.login_timestamp_us
                """, (
                    record.session_id,
                    record.status.value,
                    1 if record.is_validated else 0,
                    to_micros(record.last_validation_check),
                    to_micros(record.last_activity),
                    to_micros(record.expires_at),
                    record.validation_attempts,
                    to_micros(record.login_timestamp) if record.login_timestamp else None,
                ))
                if entry is not None:
                    self._insert_entry(conn, record.session_id, entry)
                conn.commit()

    def append_history(self, session_id: str, entry: ValidationEntry) -> None:
        """Append one validation history entry."""
        with self._write_lock:
            with self._get_connection("append_history") as conn:
                self._insert_entry(conn, session_id, entry)
                conn.commit()

    def touch(self, session_id: str, last_activity: datetime, expires_at: datetime) -> bool:
        """
        Extend an active session's TTL and bump its activity.

        Only applies while the row is still active, so a concurrent
        invalidation is never undone by a cache hit.
        """
        with self._write_lock:
            with self._get_connection("touch") as conn:
                cursor = conn.execute("""
                    UPDATE sessions SET last_activity_us = ?, expires_at_us = ?
                    WHERE session_id = ? AND status = ?
                """, (
                    to_micros(last_activity),
                    to_micros(expires_at),
                    session_id,
                    SessionStatus.ACTIVE.value,
                ))
                conn.commit()
                return cursor.rowcount == 1

    def delete_expired(self, now: datetime, idle_cutoff: datetime) -> int:
        """
        Delete sessions past ``expires_at`` or idle since before ``idle_cutoff``
        while not active. Returns the number of sessions removed.
        """
        with self._write_lock:
            with self._get_connection("delete_expired") as conn:
                conn.execute("BEGIN IMMEDIATE")
                params = (to_micros(now), to_micros(idle_cutoff), SessionStatus.ACTIVE.value)
                condition = """
                    expires_at_us < ? OR (last_activity_us < ? AND status != ?)
                """
                conn.execute(f"""
                    DELETE FROM session_validation_history WHERE session_id IN (
                        SELECT session_id FROM sessions WHERE {condition}
                    )
                """, params)
                cursor = conn.execute(f"DELETE FROM sessions WHERE {condition}", params)
                conn.commit()
                return cursor.rowcount

    def list_sessions(self, limit: int = 10) -> list[SessionRecord]:
        """Sessions ordered by most recent activity, without history."""
        with self._get_connection("list") as conn:
            rows = conn.execute("""
                SELECT * FROM sessions ORDER BY last_activity_us DESC LIMIT ?
            """, (limit,)).fetchall()
        return [self._row_to_record(row, []) for row in rows]

    def stats(self) -> dict[str, Any]:
        """Session statistics grouped by status."""
        with self._get_connection("stats") as conn:
            breakdown = {}
            for row in conn.execute("""
                SELECT status, COUNT(*), AVG(validation_attempts), MAX(last_activity_us)
                FROM sessions GROUP BY status
            """):
                breakdown[row[0]] = {
                    "count": row[1],
                    "avg_validation_attempts": round(row[2] or 0.0, 2),
                    "last_activity": from_micros(row[3]),
                }

            total = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
            validated = conn.execute("""
                SELECT COUNT(*) FROM sessions WHERE is_validated = 1 AND status = ?
            """, (SessionStatus.ACTIVE.value,)).fetchone()[0]

        return {
            "total": total,
            "validated": validated,
            "validation_rate": round(validated / total * 100, 1) if total else 0.0,
            "status_breakdown": breakdown,
        }

    def _insert_entry(self, conn: sqlite3.Connection, session_id: str, entry: ValidationEntry) -> None:
        conn.execute("""
            INSERT INTO session_validation_history (
                session_id, timestamp_us, success, message, method
            ) VALUES (?, ?, ?, ?, ?)
        """, (
            session_id,
            to_micros(entry.timestamp),
            1 if entry.success else 0,
            entry.message,
            entry.method.value,
        ))

    def _row_to_record(self, row: sqlite3.Row, history: list[sqlite3.Row]) -> SessionRecord:
        """Convert database rows to SessionRecord."""
        return SessionRecord(
            session_id=row["session_id"],
            status=SessionStatus(row["status"]),
            is_validated=bool(row["is_validated"]),
            last_validation_check=from_micros(row["last_validation_check_us"]),
            last_activity=from_micros(row["last_activity_us"]),
            expires_at=from_micros(row["expires_at_us"]),
            validation_attempts=row["validation_attempts"],
            login_timestamp=from_micros(row["login_timestamp_us"]),
            validation_history=tuple(
                ValidationEntry(
                    timestamp=from_micros(h["timestamp_us"]),
                    success=bool(h["success"]),
                    message=h["message"],
                    method=ValidationMethod(h["method"]),
                )
                for h in history
            ),
        )
