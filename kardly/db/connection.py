"""Database connection management."""

import logging
import os
import queue
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from kardly.utils import env_float, get_kardly_home

log = logging.getLogger(__name__)

DEFAULT_DB_TIMEOUT = 10.0

# Global connection cache (CLI use)
_connection: Optional[sqlite3.Connection] = None
_db_path: Optional[str] = None


def get_db_path(override: Optional[str] = None) -> str:
    """
    Get the database path.

    Priority:
    1. Explicit override parameter
    2. KARDLY_DB environment variable
    3. Default: $KARDLY_HOME/kardly.sqlite
    """
    if override:
        return override

    env_path = os.environ.get("KARDLY_DB")
    if env_path:
        return env_path

    return str(get_kardly_home() / "kardly.sqlite")


def _connect(path: str, timeout: float, factory=None, check_same_thread: bool = True) -> sqlite3.Connection:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    kwargs = {"timeout": timeout, "check_same_thread": check_same_thread}
    if factory is not None:
        kwargs["factory"] = factory
    conn = sqlite3.connect(path, **kwargs)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    # WAL: readers do not wait on the writer
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """
    Get or create a database connection.

    Uses a cached connection for the same path.
    """
    global _connection, _db_path

    path = get_db_path(db_path)

    if _connection is not None and _db_path == path:
        return _connection

    if _connection is not None:
        _connection.close()

    _connection = _connect(path, env_float("KARDLY_DB_TIMEOUT", DEFAULT_DB_TIMEOUT))
    _db_path = path

    return _connection


def close_connection():
    """Close the cached connection if one exists."""
    global _connection, _db_path

    if _connection is not None:
        _connection.close()
        _connection = None
        _db_path = None


class PoolTimeout(Exception):
    """No connection became available within the acquire timeout."""


class ConnectionPool:
    """Bounded pool of SQLite connections shared by request threads.

    Connections are opened lazily up to ``size``. A connection is owned by
    exactly one caller between ``acquire()`` and ``release()``. A connection
    handed back while still inside a transaction is discarded instead of
    being reused, so a failed rollback never leaks into the next request.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        size: int = 4,
        timeout: Optional[float] = None,
        factory=None,
    ):
        self.db_path = get_db_path(db_path)
        self.size = size
        self.timeout = timeout if timeout is not None else env_float("KARDLY_DB_TIMEOUT", DEFAULT_DB_TIMEOUT)
        self.factory = factory
        self._idle: "queue.LifoQueue[sqlite3.Connection]" = queue.LifoQueue()
        self._lock = threading.Lock()
        self._opened = 0
        self._closed = False

    def _open(self) -> sqlite3.Connection:
        return _connect(self.db_path, self.timeout, self.factory, check_same_thread=False)

    def acquire(self) -> sqlite3.Connection:
        """Take a connection, opening one if under the size limit."""
        if self._closed:
            raise RuntimeError("Connection pool is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            if self._opened < self.size:
                self._opened += 1
                try:
                    return self._open()
                except Exception:
                    self._opened -= 1
                    raise

        try:
            return self._idle.get(timeout=self.timeout)
        except queue.Empty:
            raise PoolTimeout(f"No database connection available after {self.timeout:.1f}s")

    def release(self, conn: sqlite3.Connection) -> None:
        """Return a connection to the pool."""
        discard = self._closed
        if not discard:
            try:
                discard = conn.in_transaction
            except sqlite3.ProgrammingError:
                # Already closed
                discard = True

        if discard:
            log.warning("Discarding pooled connection (closed pool or open transaction)")
            try:
                conn.close()
            except sqlite3.Error as e:
                log.error("Error closing discarded connection: %s", e)
            with self._lock:
                self._opened -= 1
            return

        self._idle.put(conn)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection; commit on success, roll back on error."""
        conn = self.acquire()
        try:
            yield conn
            if conn.in_transaction:
                conn.commit()
        except BaseException:
            try:
                if conn.in_transaction:
                    conn.rollback()
            except sqlite3.Error as e:
                log.error("Rollback failed: %s", e)
            raise
        finally:
            self.release(conn)

    def close(self) -> None:
        """Close all idle connections; in-use ones close on release."""
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()
            with self._lock:
                self._opened -= 1

    @property
    def idle_count(self) -> int:
        return self._idle.qsize()

    @property
    def open_count(self) -> int:
        return self._opened
