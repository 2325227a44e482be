"""Persistence boundary for hawala transactions.

Two interchangeable implementations: SQLite (durable) and in-memory. Status
changes go through ``compare_and_set_status`` only; there is no general
update and no delete.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
import sqlite3
from typing import Any, ContextManager, Dict, List, Optional

from saraf.models import PartyInfo, Transaction, TransactionStatus
from .dal import Database, from_db_ts, to_db_ts
from .memory import MemoryBackend


class DuplicateReference(Exception):
    """Reference code already taken; caller should regenerate."""


class TransactionStore(ABC):
    @abstractmethod
    def atomic(self) -> ContextManager[Any]:
        """Unit of work shared with the AuditTrail on the same backend."""

    @abstractmethod
    def insert(self, txn: Transaction) -> None:
        """Persist a new transaction; DuplicateReference on code collision."""

    @abstractmethod
    def get(self, transaction_id: str) -> Optional[Transaction]: ...

    @abstractmethod
    def get_by_reference(self, reference_code: str) -> Optional[Transaction]: ...

    @abstractmethod
    def reference_exists(self, reference_code: str) -> bool: ...

    @abstractmethod
    def list_for_actor(self, actor_id: str, limit: int) -> List[Transaction]:
        """Transactions created by ``actor_id``, newest first."""

    @abstractmethod
    def compare_and_set_status(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        target: TransactionStatus,
        completed_at: Optional[datetime],
        updated_at: datetime,
    ) -> Optional[Transaction]:
        """Write ``target`` only if the stored status still equals ``expected``.

        Returns the updated transaction, or None when the status moved on.
        """

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]: ...


# ----------------------------------------------------------------------
# SQLite


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        reference_code=row["reference_code"],
        type=row["type"],
        status=TransactionStatus(row["status"]),
        from_currency=row["from_currency"],
        to_currency=row["to_currency"],
        from_amount=row["from_amount"],
        to_amount=row["to_amount"],
        rate=row["rate"],
        fee=row["fee"],
        sender=PartyInfo(
            name=row["sender_name"],
            phone=row["sender_phone"],
            city=row["sender_city"],
            country=row["sender_country"],
        ),
        receiver=PartyInfo(
            name=row["receiver_name"],
            phone=row["receiver_phone"],
            city=row["receiver_city"],
            country=row["receiver_country"],
        ),
        notes=row["notes"],
        created_by=row["created_by"],
        created_at=from_db_ts(row["created_at"]),
        completed_at=from_db_ts(row["completed_at"]),
        updated_at=from_db_ts(row["updated_at"]),
    )


class SqliteTransactionStore(TransactionStore):
    def __init__(self, db: Database):
        self._db = db

    def atomic(self):
        return self._db.atomic()

    def insert(self, txn: Transaction) -> None:
        with self._db._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO transactions (
                        id, reference_code, type, status, from_currency, to_currency,
                        from_amount, to_amount, rate, fee,
                        sender_name, sender_phone, sender_city, sender_country,
                        receiver_name, receiver_phone, receiver_city, receiver_country,
                        notes, created_by, created_at, completed_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        txn.id,
                        txn.reference_code,
                        txn.type,
                        txn.status.value,
                        txn.from_currency,
                        txn.to_currency,
                        txn.from_amount,
                        txn.to_amount,
                        txn.rate,
                        txn.fee,
                        txn.sender.name,
                        txn.sender.phone,
                        txn.sender.city,
                        txn.sender.country,
                        txn.receiver.name,
                        txn.receiver.phone,
                        txn.receiver.city,
                        txn.receiver.country,
                        txn.notes,
                        txn.created_by,
                        to_db_ts(txn.created_at),
                        to_db_ts(txn.completed_at),
                        to_db_ts(txn.updated_at),
                    ),
                )
            except sqlite3.IntegrityError as e:
                if "reference_code" in str(e):
                    raise DuplicateReference(txn.reference_code) from e
                raise

    def get(self, transaction_id: str) -> Optional[Transaction]:
        with self._db._connect() as conn:
            cur = conn.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,))
            row = cur.fetchone()
            return _row_to_transaction(row) if row else None

    def get_by_reference(self, reference_code: str) -> Optional[Transaction]:
        with self._db._connect() as conn:
            cur = conn.execute(
                "SELECT * FROM transactions WHERE reference_code = ?", (reference_code,)
            )
            row = cur.fetchone()
            return _row_to_transaction(row) if row else None

    def reference_exists(self, reference_code: str) -> bool:
        with self._db._connect() as conn:
            cur = conn.execute(
                "SELECT 1 FROM transactions WHERE reference_code = ?", (reference_code,)
            )
            return cur.fetchone() is not None

    def list_for_actor(self, actor_id: str, limit: int) -> List[Transaction]:
        with self._db._connect() as conn:
            cur = conn.execute(
                """
                SELECT * FROM transactions
                WHERE created_by = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (actor_id, limit),
            )
            return [_row_to_transaction(r) for r in cur.fetchall()]

    def compare_and_set_status(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        target: TransactionStatus,
        completed_at: Optional[datetime],
        updated_at: datetime,
    ) -> Optional[Transaction]:
        with self._db._connect() as conn:
            cur = conn.execute(
                """
                UPDATE transactions
                SET status = ?, completed_at = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    target.value,
                    to_db_ts(completed_at),
                    to_db_ts(updated_at),
                    transaction_id,
                    expected.value,
                ),
            )
            if cur.rowcount != 1:
                return None
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
            return _row_to_transaction(row)

    def count_by_status(self) -> Dict[str, int]:
        with self._db._connect() as conn:
            cur = conn.execute(
                "SELECT status, COUNT(*) AS n FROM transactions GROUP BY status"
            )
            return {r["status"]: int(r["n"]) for r in cur.fetchall()}


# ----------------------------------------------------------------------
# In-memory


class MemoryTransactionStore(TransactionStore):
    def __init__(self, backend: MemoryBackend):
        self._b = backend

    def atomic(self):
        return self._b.atomic()

    def insert(self, txn: Transaction) -> None:
        with self._b.atomic():
            if txn.reference_code in self._b.references:
                raise DuplicateReference(txn.reference_code)
            if txn.id in self._b.transactions:
                raise ValueError(f"transaction id {txn.id} already exists")
            self._b.transactions[txn.id] = txn.model_copy(deep=True)
            self._b.references[txn.reference_code] = txn.id

    def get(self, transaction_id: str) -> Optional[Transaction]:
        with self._b.lock:
            txn = self._b.transactions.get(transaction_id)
            return txn.model_copy(deep=True) if txn else None

    def get_by_reference(self, reference_code: str) -> Optional[Transaction]:
        with self._b.lock:
            tid = self._b.references.get(reference_code)
            return self.get(tid) if tid else None

    def reference_exists(self, reference_code: str) -> bool:
        with self._b.lock:
            return reference_code in self._b.references

    def list_for_actor(self, actor_id: str, limit: int) -> List[Transaction]:
        with self._b.lock:
            # dict order is insertion order, the tiebreak for equal timestamps
            mine = [
                (txn.created_at, i, txn)
                for i, txn in enumerate(self._b.transactions.values())
                if txn.created_by == actor_id
            ]
        mine.sort(key=lambda t: (t[0], t[1]), reverse=True)
        return [txn.model_copy(deep=True) for _, _, txn in mine[:limit]]

    def compare_and_set_status(
        self,
        transaction_id: str,
        expected: TransactionStatus,
        target: TransactionStatus,
        completed_at: Optional[datetime],
        updated_at: datetime,
    ) -> Optional[Transaction]:
        with self._b.atomic():
            current = self._b.transactions.get(transaction_id)
            if current is None or current.status != expected:
                return None
            updated = current.model_copy(
                update={
                    "status": target,
                    "completed_at": completed_at,
                    "updated_at": updated_at,
                }
            )
            self._b.transactions[transaction_id] = updated
            return updated.model_copy(deep=True)

    def count_by_status(self) -> Dict[str, int]:
        with self._b.lock:
            counts: Dict[str, int] = {}
            for txn in self._b.transactions.values():
                counts[txn.status.value] = counts.get(txn.status.value, 0) + 1
            return counts
