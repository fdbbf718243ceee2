"""SQLite-backed document store base shared by the record stores."""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog

from ..errors import StorageError


class DocumentStore:
    """
    Base class for the SQLite record stores.

    Every operation opens a short-lived connection, so instances are safe to
    share between capture threads. Subclasses provide ``SCHEMA`` statements and
    wrap their queries in ``_get_connection``; sqlite failures surface as
    ``StorageError``.
    """

    SCHEMA: tuple[str, ...] = ()
    TARGET = "documents"

    def __init__(self, db_path: str = "candlecast.db"):
        self.db_path = Path(db_path)
        self.logger = structlog.get_logger(f"candlecast.store.{self.TARGET}")
        self._write_lock = threading.Lock()

        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._get_connection("init") as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in self.SCHEMA:
                conn.execute(statement)
            conn.commit()

    @contextmanager
    def _get_connection(self, operation: str = "query") -> Iterator[sqlite3.Connection]:
        """Get database connection; sqlite errors are re-raised as StorageError."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            self.logger.error(
                "Database error",
                operation=operation,
                target=self.TARGET,
                error=str(e)
            )
            raise StorageError(
                f"{operation} on {self.TARGET} failed: {e}",
                operation=operation,
                target=self.TARGET,
            ) from e
        finally:
            if conn:
                conn.close()
