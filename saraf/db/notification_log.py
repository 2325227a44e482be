"""Record of notification deliveries.

Written by the dispatcher's worker threads after the last attempt, outside
any hawala unit of work, so a failed write here never touches a transfer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import sqlite3
from typing import List

from saraf.models import NotificationRecord
from .dal import Database, from_db_ts, to_db_ts
from .memory import MemoryBackend


class DeliveryLog(ABC):
    @abstractmethod
    def record(self, entry: NotificationRecord) -> NotificationRecord:
        """Persist the outcome and return it with its id assigned."""

    @abstractmethod
    def list_for(self, transaction_id: str) -> List[NotificationRecord]:
        """Deliveries for one transaction, oldest first."""


def _row_to_record(row: sqlite3.Row) -> NotificationRecord:
    return NotificationRecord(
        id=row["id"],
        transaction_id=row["transaction_id"],
        reference_code=row["reference_code"],
        event=row["event"],
        recipient=row["recipient"],
        channel=row["channel"],
        success=bool(row["success"]),
        attempts=row["attempts"],
        error=row["error"],
        created_at=from_db_ts(row["created_at"]),
    )


class SqliteDeliveryLog(DeliveryLog):
    def __init__(self, db: Database):
        self._db = db

    def record(self, entry: NotificationRecord) -> NotificationRecord:
        with self._db._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO notification_deliveries (
                    transaction_id, reference_code, event, recipient, channel,
                    success, attempts, error, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.transaction_id,
                    entry.reference_code,
                    entry.event,
                    entry.recipient,
                    entry.channel,
                    int(entry.success),
                    entry.attempts,
                    entry.error,
                    to_db_ts(entry.created_at),
                ),
            )
            return entry.model_copy(update={"id": int(cur.lastrowid)})

    def list_for(self, transaction_id: str) -> List[NotificationRecord]:
        with self._db._connect() as conn:
            cur = conn.execute(
                "SELECT * FROM notification_deliveries WHERE transaction_id = ? ORDER BY id",
                (transaction_id,),
            )
            return [_row_to_record(r) for r in cur.fetchall()]


class MemoryDeliveryLog(DeliveryLog):
    def __init__(self, backend: MemoryBackend):
        self._b = backend

    def record(self, entry: NotificationRecord) -> NotificationRecord:
        with self._b.lock:
            stored = entry.model_copy(update={"id": next(self._b.delivery_ids)})
            self._b.deliveries.setdefault(entry.transaction_id, []).append(stored)
            return stored.model_copy()

    def list_for(self, transaction_id: str) -> List[NotificationRecord]:
        with self._b.lock:
            return [r.model_copy() for r in self._b.deliveries.get(transaction_id, ())]
