"""SQLite connection pool shared by the request handlers."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator

logger = logging.getLogger(__name__)


class SQLiteConnectionPool:
    """Thread-safe SQLite connection pool.

    FastAPI runs sync endpoints on a worker thread pool, so a pooled
    connection is routinely handed to a different thread than the one that
    opened it. Connections are therefore opened with ``check_same_thread``
    disabled; the pool guarantees a connection is used by one thread at a time.
    """

    def __init__(self, database: str, max_connections: int = 5, timeout: float = 5.0):
        self.database = database
        self.max_connections = max_connections
        self.timeout = float(timeout)
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created_connections = 0

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a connection; it is rolled back and returned on exit."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                if self._created_connections < self.max_connections:
                    connection = self._create_connection()
                    self._created_connections += 1
                    logger.debug("Opened SQLite connection %d/%d for %s",
                                 self._created_connections, self.max_connections, self.database)
            if connection is None:
                connection = self._pool.get(block=True, timeout=self.timeout)

        try:
            yield connection
        finally:
            try:
                connection.rollback()
                self._pool.put(connection)
            except Exception as e:
                logger.error("Error returning connection to pool: %s", e)
                try:
                    connection.close()
                finally:
                    with self._lock:
                        self._created_connections -= 1

    def close_all(self) -> None:
        """Close every idle connection and reset the pool counters."""
        closed = 0
        while True:
            try:
                connection = self._pool.get(block=False)
            except Empty:
                break
            connection.close()
            closed += 1
        with self._lock:
            self._created_connections = max(0, self._created_connections - closed)
        logger.debug("Closed %d pooled connection(s) for %s", closed, self.database)
