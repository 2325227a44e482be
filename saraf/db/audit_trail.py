"""Append-only audit trail of hawala status changes.

``append`` never fails quietly: any storage error becomes AuditWriteFailure
so the enclosing unit of work rolls back. ``list_for`` returns an
``AuditHistory`` that queries lazily each time it is iterated.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import sqlite3
from typing import Callable, Iterable, Iterator, List

from saraf.core.errors import AuditWriteFailure
from saraf.models import AuditAction, AuditEntry, TransactionStatus
from .dal import Database, from_db_ts, to_db_ts
from .memory import MemoryBackend


class AuditHistory(Iterable[AuditEntry]):
    """Finite, restartable view over one transaction's entries."""

    def __init__(self, transaction_id: str, fetch: Callable[[], Iterator[AuditEntry]]):
        self.transaction_id = transaction_id
        self._fetch = fetch

    def __iter__(self) -> Iterator[AuditEntry]:
        return self._fetch()

    def to_list(self) -> List[AuditEntry]:
        return list(self)


class AuditTrail(ABC):
    @abstractmethod
    def append(self, entry: AuditEntry) -> AuditEntry:
        """Persist the entry and return it with its id assigned."""

    @abstractmethod
    def list_for(self, transaction_id: str) -> AuditHistory: ...


def _row_to_entry(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        id=row["id"],
        transaction_id=row["transaction_id"],
        action=AuditAction(row["action"]),
        from_status=TransactionStatus(row["from_status"]) if row["from_status"] else None,
        to_status=TransactionStatus(row["to_status"]) if row["to_status"] else None,
        actor_id=row["actor_id"],
        notes=row["notes"],
        created_at=from_db_ts(row["created_at"]),
    )


class SqliteAuditTrail(AuditTrail):
    PAGE_SIZE = 100

    def __init__(self, db: Database):
        self._db = db

    def append(self, entry: AuditEntry) -> AuditEntry:
        try:
            with self._db._connect() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO audit_entries (
                        transaction_id, action, from_status, to_status,
                        actor_id, notes, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.transaction_id,
                        entry.action.value,
                        entry.from_status.value if entry.from_status else None,
                        entry.to_status.value if entry.to_status else None,
                        entry.actor_id,
                        entry.notes,
                        to_db_ts(entry.created_at),
                    ),
                )
                return entry.model_copy(update={"id": int(cur.lastrowid)})
        except sqlite3.Error as e:
            raise AuditWriteFailure(
                f"could not record audit entry for {entry.transaction_id}: {e}"
            ) from e

    def list_for(self, transaction_id: str) -> AuditHistory:
        def fetch() -> Iterator[AuditEntry]:
            with self._db._connect() as conn:
                cur = conn.execute(
                    """
                    SELECT * FROM audit_entries
                    WHERE transaction_id = ?
                    ORDER BY created_at ASC, id ASC
                    """,
                    (transaction_id,),
                )
                while True:
                    rows = cur.fetchmany(self.PAGE_SIZE)
                    if not rows:
                        break
                    for row in rows:
                        yield _row_to_entry(row)

        return AuditHistory(transaction_id, fetch)


class MemoryAuditTrail(AuditTrail):
    def __init__(self, backend: MemoryBackend):
        self._b = backend

    def append(self, entry: AuditEntry) -> AuditEntry:
        with self._b.atomic():
            if entry.transaction_id not in self._b.transactions:
                raise AuditWriteFailure(
                    f"could not record audit entry: unknown transaction {entry.transaction_id}"
                )
            stored = entry.model_copy(update={"id": next(self._b.audit_ids)})
            self._b.audit.setdefault(entry.transaction_id, []).append(stored)
            return stored.model_copy()

    def list_for(self, transaction_id: str) -> AuditHistory:
        def fetch() -> Iterator[AuditEntry]:
            with self._b.lock:
                entries = list(self._b.audit.get(transaction_id, ()))
            entries.sort(key=lambda e: (e.created_at, e.id or 0))
            for e in entries:
                yield e.model_copy()

        return AuditHistory(transaction_id, fetch)
