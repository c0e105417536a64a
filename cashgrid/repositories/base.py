"""
Base repository classes and database connection management.
"""

import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator

from ..services.logging_service import get_structured_logger

logger = get_structured_logger().get_logger(__name__)


class DatabaseConnection:
    """Lock-guarded SQLite connection shared by the repositories of one store."""

    def __init__(self, db_path: str = "cashgrid.db"):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._conn = None

    @staticmethod
    def _dict_factory(cursor, row):
        """Convert row to dictionary"""
        return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
            self._conn.row_factory = self._dict_factory
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection inside a transaction; rolls back on error."""
        with self._lock:
            conn = self._connect()
            try:
                yield conn
            except Exception as e:
                conn.rollback()
                logger.error("Database error", error=str(e), db_path=self.db_path)
                raise
            else:
                conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
