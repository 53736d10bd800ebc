"""Bounded pool of SQLite connections with per-call deadlines.

Connections run in autocommit mode (``isolation_level=None``) so the store
controls transactions explicitly with ``BEGIN IMMEDIATE``. Every checkout
arms a progress handler that interrupts the running statement once the
call's deadline has passed; lock waits are bounded by the busy timeout.
Both conditions surface as ``TransientStorageError``.
"""

from __future__ import annotations

import logging
import queue
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager

from doit.errors import StorageError, TransientStorageError

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 4
DEFAULT_TIMEOUT = 10.0

# Opcodes between deadline checks
_PROGRESS_STEPS = 1000

_TRANSIENT_MARKERS = ("locked", "busy", "interrupted")


def _is_memory(db_path: str) -> bool:
    return db_path == ":memory:" or db_path.startswith("file::memory:")


def translate_error(exc: sqlite3.Error) -> StorageError:
    """Map a sqlite3 exception onto the doit error taxonomy."""
    msg = str(exc)
    if isinstance(exc, sqlite3.OperationalError) and any(
        marker in msg.lower() for marker in _TRANSIENT_MARKERS
    ):
        return TransientStorageError(msg)
    return StorageError(msg)


class ConnectionPool:
    """Fixed-size pool of connections to one database file."""

    def __init__(self, db_path: str, size: int = DEFAULT_POOL_SIZE,
                 timeout: float = DEFAULT_TIMEOUT):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.db_path = db_path
        self.timeout = timeout
        # Each :memory: connection would be a separate database
        self.size = 1 if _is_memory(db_path) else max(1, size)
        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue(maxsize=self.size)
        self._all: list[sqlite3.Connection] = []
        for _ in range(self.size):
            conn = self._connect()
            self._all.append(conn)
            self._idle.put(conn)

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            if not _is_memory(self.db_path):
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)}")
        except sqlite3.Error as e:
            raise translate_error(e) from e
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Check out a connection for the duration of one store call."""
        deadline = time.monotonic() + self.timeout
        try:
            conn = self._idle.get(timeout=self.timeout)
        except queue.Empty:
            logger.warning("connection pool exhausted after %.1fs (size=%d)",
                           self.timeout, self.size)
            raise TransientStorageError(
                f"timed out after {self.timeout:.1f}s waiting for a database connection"
            ) from None

        conn.set_progress_handler(
            lambda: 1 if time.monotonic() > deadline else 0, _PROGRESS_STEPS
        )
        try:
            yield conn
        except sqlite3.Error as e:
            err = translate_error(e)
            if isinstance(err, TransientStorageError):
                logger.warning("transient storage failure: %s", e)
            raise err from e
        finally:
            conn.set_progress_handler(None, _PROGRESS_STEPS)
            if conn.in_transaction:
                # Statement-level failure left a transaction open
                conn.execute("ROLLBACK")
            self._idle.put(conn)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block inside a ``BEGIN IMMEDIATE`` write transaction."""
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.set_progress_handler(None, _PROGRESS_STEPS)
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def close(self) -> None:
        for conn in self._all:
            conn.close()
        self._all.clear()
