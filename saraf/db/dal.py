"""Data access helpers shared by the SQLite-backed stores.

Responsibilities
----------------
- Open short-lived SQLite connections (one per call) with row access by name.
- Provide ``atomic()``: a thread-local unit of work. Every store method called
  on the same thread inside the block joins the same connection and commits
  or rolls back together, which is how a status change and its audit entry
  become one durable write.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
import sqlite3
import threading
from typing import Iterator, Optional


def to_db_ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width ISO timestamps so text ordering equals time ordering."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class Database:
    def __init__(self, db_path: Path, busy_timeout: float = 10.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Connection helpers
    def _open(self) -> sqlite3.Connection:
        # autocommit mode; transactions are opened explicitly by atomic()
        conn = sqlite3.connect(
            self.db_path, timeout=self.busy_timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _active(self) -> Optional[sqlite3.Connection]:
        return getattr(self._local, "conn", None)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        active = self._active()
        if active is not None:
            yield active
            return
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def atomic(self) -> Iterator[sqlite3.Connection]:
        active = self._active()
        if active is not None:  # nested block joins the outer unit
            yield active
            return
        conn = self._open()
        # IMMEDIATE takes the write lock up front so concurrent units queue
        # on busy_timeout instead of failing on lock upgrade.
        conn.execute("BEGIN IMMEDIATE")
        self._local.conn = conn
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        finally:
            self._local.conn = None
            conn.close()

    def ping(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1")
            return True
        except sqlite3.Error:
            return False
