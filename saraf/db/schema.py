"""Database schema DDL definitions and initialization utilities.

Tables:
  - transactions: hawala transfer records (status guarded by CAS updates)
  - audit_entries: append-only status history, one row per mutation
  - market_data: latest observation per (symbol, type) for historical charting
  - notification_deliveries: outcome of each counterparty notification
  - metadata: key/value store (schema version)
"""

from __future__ import annotations
import sqlite3
from typing import Sequence

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

TRANSACTIONS_DDL = """
CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    reference_code TEXT NOT NULL UNIQUE,
    type TEXT NOT NULL DEFAULT 'HAWALA',
    status TEXT NOT NULL DEFAULT 'PENDING'
        CHECK (status IN ('PENDING','COMPLETED','CANCELLED','WITHDRAWN')),
    from_currency TEXT NOT NULL,
    to_currency TEXT NOT NULL,
    from_amount REAL NOT NULL CHECK (from_amount > 0),
    to_amount REAL NOT NULL,
    rate REAL NOT NULL CHECK (rate > 0),
    fee REAL NOT NULL DEFAULT 0,
    sender_name TEXT NOT NULL,
    sender_phone TEXT NOT NULL,
    sender_city TEXT,
    sender_country TEXT NOT NULL,
    receiver_name TEXT NOT NULL,
    receiver_phone TEXT NOT NULL,
    receiver_city TEXT,
    receiver_country TEXT NOT NULL,
    notes TEXT,
    created_by TEXT NOT NULL,
    created_at TEXT NOT NULL, -- ISO timestamp
    completed_at TEXT,
    updated_at TEXT NOT NULL
);
"""

AUDIT_ENTRIES_DDL = """
CREATE TABLE IF NOT EXISTS audit_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    transaction_id TEXT NOT NULL,
    action TEXT NOT NULL, -- 'CREATED' | 'STATUS_CHANGED'
    from_status TEXT,
    to_status TEXT,
    actor_id TEXT NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (transaction_id) REFERENCES transactions(id)
);
"""

MARKET_DATA_DDL = f"""
CREATE TABLE IF NOT EXISTS market_data (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL, -- e.g. 'USDAFN'
    type TEXT NOT NULL, -- 'forex'
    name TEXT NOT NULL,
    price REAL NOT NULL,
    change_24h REAL NOT NULL DEFAULT 0,
    change_percent_24h REAL NOT NULL DEFAULT 0,
    last_update TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    UNIQUE(symbol, type)
);
"""

NOTIFICATION_DELIVERIES_DDL = """
CREATE TABLE IF NOT EXISTS notification_deliveries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    transaction_id TEXT NOT NULL,
    reference_code TEXT NOT NULL,
    event TEXT NOT NULL,
    recipient TEXT NOT NULL,
    channel TEXT NOT NULL,
    success INTEGER NOT NULL, -- 0 | 1
    attempts INTEGER NOT NULL,
    error TEXT,
    created_at TEXT NOT NULL
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

TRANSACTIONS_STATUS_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_transactions_status ON transactions(status);"
)
AUDIT_TXN_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_audit_txn_created "
    "ON audit_entries(transaction_id, created_at, id);"
)
TRANSACTIONS_ACTOR_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_transactions_actor_created "
    "ON transactions(created_by, created_at);"
)
DELIVERIES_TXN_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_deliveries_txn "
    "ON notification_deliveries(transaction_id, id);"
)

DDL_ORDER: Sequence[str] = (
    TRANSACTIONS_DDL,
    AUDIT_ENTRIES_DDL,
    MARKET_DATA_DDL,
    NOTIFICATION_DELIVERIES_DDL,
    METADATA_DDL,
)

INDEX_DDL: Sequence[str] = (
    TRANSACTIONS_STATUS_INDEX_DDL,
    AUDIT_TXN_INDEX_DDL,
    TRANSACTIONS_ACTOR_INDEX_DDL,
    DELIVERIES_TXN_INDEX_DDL,
)


def create_all(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes idempotently on an open connection."""
    for ddl in (*DDL_ORDER, *INDEX_DDL):
        conn.execute(ddl)
