"""Schema migrations for the hawala database.

Each step is keyed by the schema version it produces and runs in its own
transaction; the reached version is recorded under ``schema_version`` in the
metadata table so a step never runs twice. Version 1 is the baseline schema.
Later schema changes are appended as new steps, never edited into old ones.
"""

from __future__ import annotations
from pathlib import Path
import sqlite3
from typing import Callable, Dict, Optional

from . import schema as schema_def

SCHEMA_VERSION_KEY = "schema_version"


def _read_version(conn: sqlite3.Connection) -> Optional[int]:
    try:
        row = conn.execute(
            "SELECT value FROM metadata WHERE key=?", (SCHEMA_VERSION_KEY,)
        ).fetchone()
    except sqlite3.OperationalError:
        # fresh file: metadata table not created yet
        return None
    return int(row[0]) if row else None


def _write_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        "INSERT INTO metadata (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value, "
        f"updated_at=({schema_def.BASIC_UTC_NOW})",
        (SCHEMA_VERSION_KEY, str(version)),
    )


def _baseline(conn: sqlite3.Connection) -> None:
    """Transactions, audit trail, market samples, deliveries, metadata."""
    schema_def.create_all(conn)


# target version -> step producing it
MIGRATIONS: Dict[int, Callable[[sqlite3.Connection], None]] = {
    1: _baseline,
}
CURRENT_SCHEMA_VERSION = max(MIGRATIONS)


def apply_migrations(db_path: Path) -> int:
    """Bring the database at ``db_path`` up to date and return its version."""
    conn = sqlite3.connect(db_path)
    try:
        version = _read_version(conn) or 0
        for target in sorted(v for v in MIGRATIONS if v > version):
            with conn:  # one transaction per step
                MIGRATIONS[target](conn)
                _write_version(conn, target)
            version = target
        return version
    finally:
        conn.close()
