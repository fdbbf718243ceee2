"""Candle observation persistence: append-only, ordered by timestamp per trading pair."""

import json
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Optional

from ..data.models import CandleObservation
from ..errors import DuplicateObservationError, OutOfOrderObservationError
from ..utils.time import Clock, from_micros, to_micros, utc_now
from .document_store import DocumentStore


class ObservationStore(DocumentStore):
    """SQLite-based candle observation store."""

    TARGET = "observations"
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS observations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            trading_pair TEXT NOT NULL,
            session_id TEXT NOT NULL,
            timestamp_us INTEGER NOT NULL,
            timeframe_seconds INTEGER NOT NULL,
            open REAL NOT NULL,
            high REAL NOT NULL,
            low REAL NOT NULL,
            close REAL NOT NULL,
            direction TEXT NOT NULL,
            confidence REAL NOT NULL,
            extraction_method TEXT NOT NULL,
            extraction_errors TEXT NOT NULL DEFAULT '[]',
            pattern_id TEXT,
            similar_patterns TEXT,
            created_at_us INTEGER NOT NULL
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_observations_pair_session_ts
        ON observations(trading_pair, session_id, timestamp_us)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_observations_pair_ts
        ON observations(trading_pair, timestamp_us)
        """,
    )

    def __init__(self, db_path: str = "candlecast.db", clock: Clock = utc_now):
        self.clock = clock
        super().__init__(db_path)

    def insert(
        self,
        observation: CandleObservation,
        duplicate_window_seconds: Optional[float] = None
    ) -> CandleObservation:
        """
        Append an observation.

        The duplicate check, the ordering check and the insert run in one
        write transaction so concurrent capture threads cannot interleave them.

        Args:
            observation: Normalized observation to store
            duplicate_window_seconds: Reject the observation if one already
                exists for the same pair/session within +/- this many seconds

        Returns:
            The stored observation carrying its new id

        Raises:
            DuplicateObservationError: an observation exists inside the window
            OutOfOrderObservationError: a newer observation for the pair exists
            StorageError: the database write failed
        """
        ts_us = to_micros(observation.timestamp)

        with self._write_lock:
            with self._get_connection("insert") as conn:
                conn.execute("BEGIN IMMEDIATE")

                if duplicate_window_seconds is not None:
                    existing = self._find_near(
                        conn, observation.trading_pair, observation.session_id,
                        ts_us, int(duplicate_window_seconds * 1_000_000)
                    )
                    if existing is not None:
                        conn.rollback()
                        raise DuplicateObservationError(
                            "Observation within duplicate window already stored",
                            existing_timestamp=from_micros(existing),
                            candidate_timestamp=observation.timestamp,
                            context={
                                "trading_pair": observation.trading_pair,
                                "session_id": observation.session_id,
                            },
                        )

                latest = conn.execute("""
                    SELECT MAX(timestamp_us) FROM observations WHERE trading_pair = ?
                """, (observation.trading_pair,)).fetchone()[0]
                if latest is not None and ts_us < latest:
                    conn.rollback()
                    raise OutOfOrderObservationError(
                        "Observation older than newest stored for trading pair",
                        timestamp=observation.timestamp,
                        latest_timestamp=from_micros(latest),
                        context={"trading_pair": observation.trading_pair},
                    )

                cursor = conn.execute("""
                    INSERT INTO observations (
                        trading_pair, session_id, timestamp_us, timeframe_seconds,
                        open, high, low, close, direction, confidence,
                        extraction_method, extraction_errors, created_at_us
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    observation.trading_pair,
                    observation.session_id,
                    ts_us,
                    observation.timeframe_seconds,
                    observation.open,
                    observation.high,
                    observation.low,
                    observation.close,
                    observation.direction.value,
                    observation.confidence,
                    observation.extraction_method,
                    json.dumps(list(observation.extraction_errors)),
                    to_micros(self.clock()),
                ))
                conn.commit()
                observation_id = cursor.lastrowid

        self.logger.info(
            "Observation stored",
            observation_id=observation_id,
            trading_pair=observation.trading_pair,
            session_id=observation.session_id,
            direction=observation.direction.value,
            timestamp=observation.timestamp.isoformat(),
        )
        return observation.with_id(observation_id)

    def _find_near(
        self,
        conn: sqlite3.Connection,
        trading_pair: str,
        session_id: str,
        ts_us: int,
        window_us: int
    ) -> Optional[int]:
        row = conn.execute("""
            SELECT timestamp_us FROM observations
            WHERE trading_pair = ? AND session_id = ?
              AND timestamp_us BETWEEN ? AND ?
            ORDER BY ABS(timestamp_us - ?) LIMIT 1
        """, (trading_pair, session_id, ts_us - window_us, ts_us + window_us, ts_us)).fetchone()
        return row[0] if row else None

    def find_duplicate(
        self,
        trading_pair: str,
        session_id: str,
        timestamp: datetime,
        window_seconds: float
    ) -> Optional[datetime]:
        """Timestamp of the closest observation within +/- window, if any."""
        with self._get_connection("find_duplicate") as conn:
            found = self._find_near(
                conn, trading_pair, session_id,
                to_micros(timestamp), int(window_seconds * 1_000_000)
            )
        return from_micros(found)

    def latest(self, trading_pair: str, session_id: Optional[str] = None) -> Optional[CandleObservation]:
        """Newest observation for a pair, optionally restricted to one session."""
        query = "SELECT * FROM observations WHERE trading_pair = ?"
        params: list[Any] = [trading_pair]
        if session_id is not None:
            query += " AND session_id = ?"
            params.append(session_id)
        query += " ORDER BY timestamp_us DESC, id DESC LIMIT 1"

        with self._get_connection("latest") as conn:
            row = conn.execute(query, params).fetchone()
        return self._row_to_observation(row) if row else None

    def recent(
        self,
        session_id: str,
        trading_pair: Optional[str] = None,
        limit: int = 20
    ) -> list[CandleObservation]:
        """Most recent observations for a session in chronological order."""
        query = "SELECT * FROM observations WHERE session_id = ?"
        params: list[Any] = [session_id]
        if trading_pair is not None:
            query += " AND trading_pair = ?"
            params.append(trading_pair)
        query += " ORDER BY timestamp_us DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._get_connection("recent") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_observation(row) for row in reversed(rows)]

    def history(
        self,
        trading_pair: str,
        before: datetime,
        limit: int = 1000
    ) -> list[CandleObservation]:
        """Last ``limit`` observations for a pair strictly before ``before``, oldest first."""
        with self._get_connection("history") as conn:
            rows = conn.execute("""
                SELECT * FROM observations
                WHERE trading_pair = ? AND timestamp_us < ?
                ORDER BY timestamp_us DESC, id DESC LIMIT ?
            """, (trading_pair, to_micros(before), limit)).fetchall()
        return [self._row_to_observation(row) for row in reversed(rows)]

    def window(
        self,
        trading_pair: str,
        start: datetime,
        end: datetime,
        session_id: Optional[str] = None
    ) -> list[CandleObservation]:
        """Observations with start <= timestamp <= end, oldest first."""
        query = """
            SELECT * FROM observations
            WHERE trading_pair = ? AND timestamp_us BETWEEN ? AND ?
        """
        params: list[Any] = [trading_pair, to_micros(start), to_micros(end)]
        if session_id is not None:
            query += " AND session_id = ?"
            params.append(session_id)
        query += " ORDER BY timestamp_us, id"

        with self._get_connection("window") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_observation(row) for row in rows]

    def next_after(
        self,
        trading_pair: str,
        session_id: str,
        after: datetime
    ) -> Optional[CandleObservation]:
        """The observation directly following ``after`` for a pair/session."""
        with self._get_connection("next_after") as conn:
            row = conn.execute("""
                SELECT * FROM observations
                WHERE trading_pair = ? AND session_id = ? AND timestamp_us > ?
                ORDER BY timestamp_us, id LIMIT 1
            """, (trading_pair, session_id, to_micros(after))).fetchone()
        return self._row_to_observation(row) if row else None

    def count(self, session_id: str, trading_pair: Optional[str] = None) -> int:
        """Number of observations stored for a session."""
        query = "SELECT COUNT(*) FROM observations WHERE session_id = ?"
        params: list[Any] = [session_id]
        if trading_pair is not None:
            query += " AND trading_pair = ?"
            params.append(trading_pair)

        with self._get_connection("count") as conn:
            return conn.execute(query, params).fetchone()[0]

    def count_for_pair(self, trading_pair: str) -> int:
        """Number of observations stored for a pair across sessions."""
        with self._get_connection("count_for_pair") as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM observations WHERE trading_pair = ?",
                (trading_pair,)
            ).fetchone()[0]

    def attach_pattern_refs(
        self,
        observation_id: int,
        pattern_id: str,
        similar_timestamps: list[datetime]
    ) -> bool:
        """
        Back-fill pattern-match references on an observation.

        References are written at most once; returns False if the observation
        already carries them or does not exist.
        """
        with self._write_lock:
            with self._get_connection("attach_pattern_refs") as conn:
                cursor = conn.execute("""
                    UPDATE observations SET pattern_id = ?, similar_patterns = ?
                    WHERE id = ? AND pattern_id IS NULL
                """, (
                    pattern_id,
                    json.dumps([to_micros(ts) for ts in similar_timestamps]),
                    observation_id,
                ))
                conn.commit()
                return cursor.rowcount == 1

    def stats(self, session_id: Optional[str] = None) -> dict[str, Any]:
        """Capture statistics: total, average confidence, last capture time."""
        query = """
            SELECT COUNT(*), AVG(confidence), MAX(timestamp_us) FROM observations
        """
        params: list[Any] = []
        if session_id is not None:
            query += " WHERE session_id = ?"
            params.append(session_id)

        with self._get_connection("stats") as conn:
            total, avg_confidence, last_ts = conn.execute(query, params).fetchone()

        return {
            "total_observations": total,
            "average_confidence": round(avg_confidence, 2) if avg_confidence is not None else 0.0,
            "last_capture_time": from_micros(last_ts),
        }

    def purge_older_than(self, days: int) -> int:
        """Retention sweep: delete observations older than ``days``."""
        cutoff = to_micros(self.clock() - timedelta(days=days))

        with self._write_lock:
            with self._get_connection("purge") as conn:
                cursor = conn.execute(
                    "DELETE FROM observations WHERE timestamp_us < ?", (cutoff,)
                )
                conn.commit()
                deleted = cursor.rowcount

        self.logger.info("Purged old observations", deleted=deleted, older_than_days=days)
        return deleted

    def _row_to_observation(self, row: sqlite3.Row) -> CandleObservation:
        """Convert database row to CandleObservation."""
        similar = json.loads(row["similar_patterns"]) if row["similar_patterns"] else []
        return CandleObservation(
            id=row["id"],
            trading_pair=row["trading_pair"],
            session_id=row["session_id"],
            timestamp=from_micros(row["timestamp_us"]),
            timeframe_seconds=row["timeframe_seconds"],
            open=row["open"],
            high=row["high"],
            low=row["low"],
            close=row["close"],
            confidence=row["confidence"],
            extraction_method=row["extraction_method"],
            extraction_errors=tuple(json.loads(row["extraction_errors"])),
            pattern_id=row["pattern_id"],
            similar_pattern_timestamps=tuple(from_micros(v) for v in similar),
        )
