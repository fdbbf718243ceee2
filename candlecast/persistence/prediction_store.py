"""Prediction persistence with set-once grading."""

import json
import sqlite3
from datetime import timedelta
from typing import Any, Optional

from ..data.models import Direction
from ..prediction.models import (
    ActualResult,
    AlgorithmUsed,
    MatchedOutcome,
    PredictionRecord,
)
from ..utils.time import Clock, from_micros, to_micros, utc_now
from .document_store import DocumentStore


class PredictionStore(DocumentStore):
    """SQLite-based prediction store."""

    TARGET = "predictions"
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS predictions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            trading_pair TEXT NOT NULL,
            session_id TEXT NOT NULL,
            timestamp_us INTEGER NOT NULL,
            direction TEXT NOT NULL,
            confidence INTEGER NOT NULL CHECK (confidence BETWEEN 0 AND 100),
            algorithm_used TEXT NOT NULL,
            pattern_signature TEXT NOT NULL,
            matched_outcomes TEXT NOT NULL DEFAULT '[]',
            features TEXT NOT NULL DEFAULT '{}',
            actual_direction TEXT,
            actual_correct INTEGER,
            actual_close REAL,
            verified_at_us INTEGER,
            created_at_us INTEGER NOT NULL,
            UNIQUE(trading_pair, session_id, timestamp_us)
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_predictions_session_ts
        ON predictions(session_id, timestamp_us)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_predictions_verified
        ON predictions(session_id, verified_at_us)
        """,
    )

    def __init__(self, db_path: str = "candlecast.db", clock: Clock = utc_now):
        self.clock = clock
        super().__init__(db_path)

    def store(self, record: PredictionRecord) -> PredictionRecord:
        """
        Persist a new prediction.

        Keyed by (trading_pair, session_id, timestamp): storing a second
        prediction for the same input observation returns the existing one.
        """
        created_at = record.created_at or self.clock()

        with self._write_lock:
            with self._get_connection("store") as conn:
                cursor = conn.execute("""
                    INSERT OR IGNORE INTO predictions (
                        trading_pair, session_id, timestamp_us, direction,
                        confidence, algorithm_used, pattern_signature,
                        matched_outcomes, features, created_at_us
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.trading_pair,
                    record.session_id,
                    to_micros(record.timestamp),
                    record.direction.value,
                    record.confidence,
                    record.algorithm_used.value,
                    record.pattern_signature,
                    json.dumps([
                        [to_micros(m.timestamp), m.outcome_direction.value]
                        for m in record.matched_historical_outcomes
                    ]),
                    json.dumps(record.features, default=str),
                    to_micros(created_at),
                ))
                conn.commit()
                inserted = cursor.rowcount == 1

                row = conn.execute("""
                    SELECT * FROM predictions
                    WHERE trading_pair = ? AND session_id = ? AND timestamp_us = ?
                """, (record.trading_pair, record.session_id, to_micros(record.timestamp))).fetchone()

        stored = self._row_to_record(row)
        if not inserted:
            self.logger.warning(
                "Prediction already stored for input observation",
                prediction_id=stored.id,
                session_id=record.session_id,
                timestamp=record.timestamp.isoformat(),
            )
        return stored

    def get(self, prediction_id: int) -> Optional[PredictionRecord]:
        """Get a prediction by id."""
        with self._get_connection("get") as conn:
            row = conn.execute(
                "SELECT * FROM predictions WHERE id = ?", (prediction_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def record_actual_result(self, prediction_id: int, actual: ActualResult) -> bool:
        """
        Grade a prediction.

        The update only applies to an ungraded row, making grading set-once
        even under concurrent verifiers. Returns True if this call graded it.
        """
        with self._write_lock:
            with self._get_connection("record_actual_result") as conn:
                cursor = conn.execute("""
                    UPDATE predictions SET
                        actual_direction = ?,
                        actual_correct = ?,
                        actual_close = ?,
                        verified_at_us = ?
                    WHERE id = ? AND actual_direction IS NULL
                """, (
                    actual.direction.value,
                    1 if actual.correct else 0,
                    actual.actual_close,
                    to_micros(actual.verified_at),
                    prediction_id,
                ))
                conn.commit()
                return cursor.rowcount == 1

    def latest(self, session_id: str, trading_pair: Optional[str] = None) -> Optional[PredictionRecord]:
        """Newest prediction for a session."""
        predictions = self.recent(session_id, trading_pair, limit=1)
        return predictions[0] if predictions else None

    def recent(
        self,
        session_id: str,
        trading_pair: Optional[str] = None,
        limit: int = 5
    ) -> list[PredictionRecord]:
        """Most recent predictions for a session, newest first."""
        query = "SELECT * FROM predictions WHERE session_id = ?"
        params: list[Any] = [session_id]
        if trading_pair is not None:
            query += " AND trading_pair = ?"
            params.append(trading_pair)
        query += " ORDER BY timestamp_us DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._get_connection("recent") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def unverified(self, session_id: str, trading_pair: str) -> list[PredictionRecord]:
        """Ungraded predictions for a session/pair, oldest first."""
        with self._get_connection("unverified") as conn:
            rows = conn.execute("""
                SELECT * FROM predictions
                WHERE session_id = ? AND trading_pair = ? AND actual_direction IS NULL
                ORDER BY timestamp_us, id
            """, (session_id, trading_pair)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def recent_verified(self, session_id: str, limit: int = 10) -> list[PredictionRecord]:
        """The most recent graded predictions for a session, newest first."""
        with self._get_connection("recent_verified") as conn:
            rows = conn.execute("""
                SELECT * FROM predictions
                WHERE session_id = ? AND actual_direction IS NOT NULL
                ORDER BY timestamp_us DESC, id DESC LIMIT ?
            """, (session_id, limit)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def accuracy_stats(self, hours: int = 24, session_id: Optional[str] = None) -> dict[str, Any]:
        """Accuracy over predictions made in the trailing ``hours``."""
        since = to_micros(self.clock() - timedelta(hours=hours))
        query = """
            SELECT COUNT(*), COALESCE(SUM(actual_correct), 0), AVG(confidence)
            FROM predictions
            WHERE timestamp_us >= ? AND actual_direction IS NOT NULL
        """
        params: list[Any] = [since]
        if session_id is not None:
            query += " AND session_id = ?"
            params.append(session_id)

        with self._get_connection("accuracy_stats") as conn:
            total, correct, avg_confidence = conn.execute(query, params).fetchone()

        return {
            "total_predictions": total,
            "correct_predictions": correct,
            "accuracy": round(correct / total * 100, 2) if total else 0.0,
            "average_confidence": round(avg_confidence, 2) if avg_confidence is not None else 0.0,
        }

    def _row_to_record(self, row: sqlite3.Row) -> PredictionRecord:
        """Convert database row to PredictionRecord."""
        actual = None
        if row["actual_direction"] is not None:
            actual = ActualResult(
                direction=Direction(row["actual_direction"]),
                correct=bool(row["actual_correct"]),
                verified_at=from_micros(row["verified_at_us"]),
                actual_close=row["actual_close"],
            )

        return PredictionRecord(
            id=row["id"],
            timestamp=from_micros(row["timestamp_us"]),
            trading_pair=row["trading_pair"],
            session_id=row["session_id"],
            direction=Direction(row["direction"]),
            confidence=row["confidence"],
            algorithm_used=AlgorithmUsed(row["algorithm_used"]),
            pattern_signature=row["pattern_signature"],
            matched_historical_outcomes=tuple(
                MatchedOutcome(timestamp=from_micros(ts), outcome_direction=Direction(d))
                for ts, d in json.loads(row["matched_outcomes"])
            ),
            features=json.loads(row["features"]),
            actual_result=actual,
            created_at=from_micros(row["created_at_us"]),
        )
