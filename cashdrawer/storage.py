"""
In-memory persistence for POS instances, the product catalog and the ledger.

The ledger is append-only. Rows, payloads included, are kept as plain data
and every read validates a fresh ``LedgerEntry``, so nothing a caller does to
a returned entry reaches the stored history.

Writers on the same POS instance are serialized by ``LedgerStore.transaction``.
Everything appended or flagged inside a transaction is undone if the block
raises, which is what keeps a sale or a reversal all-or-nothing.
"""

import itertools
import logging
import secrets
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from .errors import (
    AlreadyRevertedError,
    EntryNotFoundError,
    NotRevertibleError,
    StorageError,
)
from .models import EntryType, LedgerEntry, PosInstance, Product, ReversalPayload

logger = logging.getLogger("cashdrawer.storage")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStorage:
    def __init__(self):
        self.pos_instances: dict[str, dict] = {}
        self.products: dict[int, dict] = {}
        self.ledger_entries: dict[int, dict] = {}
        self.rows_lock = threading.Lock()
        self._entry_ids = itertools.count(1)
        self._product_ids = itertools.count(1)

    def next_entry_id(self) -> int:
        with self.rows_lock:
            return next(self._entry_ids)

    def next_product_id(self) -> int:
        with self.rows_lock:
            return next(self._product_ids)


class InstanceStore:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def create(self) -> PosInstance:
        instance_id = secrets.token_hex(12)
        row = {"id": instance_id, "created_at": _now()}
        with self.storage.rows_lock:
            self.storage.pos_instances[instance_id] = row
        return PosInstance(**row)

    def get(self, instance_id: str) -> Optional[PosInstance]:
        row = self.storage.pos_instances.get(instance_id)
        return PosInstance(**row) if row else None


class Catalog:
    """Product master for each POS instance. Deletes are soft."""

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def create_product(
        self,
        instance_id: str,
        name: str,
        price: int,
        seller_name: Optional[str] = None,
        display_order: Optional[int] = None,
    ) -> Product:
        now = _now()
        row = {
            "id": self.storage.next_product_id(),
            "pos_instance_id": instance_id,
            "name": name,
            "price": price,
            "seller_name": seller_name,
            "version": 1,
            "display_order": display_order,
            "is_deleted": False,
            "created_at": now,
            "updated_at": now,
        }
        with self.storage.rows_lock:
            self.storage.products[row["id"]] = row
        return Product(**row)

    def get_product(self, product_id: int) -> Optional[Product]:
        row = self.storage.products.get(product_id)
        return Product(**row) if row else None

    def update_product(
        self,
        product_id: int,
        name: str,
        price: int,
        seller_name: Optional[str] = None,
        display_order: Optional[int] = None,
    ) -> Optional[Product]:
        with self.storage.rows_lock:
            row = self.storage.products.get(product_id)
            if row is None:
                return None
            row.update({
                "name": name,
                "price": price,
                "seller_name": seller_name,
                "display_order": display_order,
                "version": row["version"] + 1,
                "updated_at": _now(),
            })
            return Product(**row)

    def delete_product(self, product_id: int) -> bool:
        with self.storage.rows_lock:
            row = self.storage.products.get(product_id)
            if row is None or row["is_deleted"]:
                return False
            row["is_deleted"] = True
            row["updated_at"] = _now()
            return True

    def list_products(self, instance_id: str) -> list[Product]:
        with self.storage.rows_lock:
            rows = [
                dict(r) for r in self.storage.products.values()
                if r["pos_instance_id"] == instance_id and not r["is_deleted"]
            ]
        # Products without an explicit position go after the ordered ones.
        rows.sort(key=lambda r: (r["display_order"] is None, r["display_order"] or 0, r["name"]))
        return [Product(**r) for r in rows]

    def find_products_by_seller(self, instance_id: str, seller_name: str) -> list[Product]:
        """Every product the seller ever listed, deleted ones included."""
        with self.storage.rows_lock:
            rows = [
                dict(r) for r in self.storage.products.values()
                if r["pos_instance_id"] == instance_id and r["seller_name"] == seller_name
            ]
        return [Product(**r) for r in rows]


class LedgerStore:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._local = threading.local()

    def _lock_for(self, instance_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(instance_id)
            if lock is None:
                lock = self._locks[instance_id] = threading.RLock()
            return lock

    def _undo_logs(self) -> dict[str, list[Callable[[], None]]]:
        logs = getattr(self._local, "undo_logs", None)
        if logs is None:
            logs = self._local.undo_logs = {}
        return logs

    def _record_undo(self, instance_id: str, action: Callable[[], None]) -> None:
        undo_log = self._undo_logs().get(instance_id)
        if undo_log is not None:
            undo_log.append(action)

    @contextmanager
    def transaction(self, instance_id: str) -> Iterator[None]:
        """Serialize writers on one instance and roll back on any exception.

        Re-entering on the same thread joins the transaction already open.
        """
        with self._lock_for(instance_id):
            logs = self._undo_logs()
            if instance_id in logs:
                yield
                return
            undo_log: list[Callable[[], None]] = []
            logs[instance_id] = undo_log
            try:
                yield
            except BaseException as exc:
                for action in reversed(undo_log):
                    action()
                if isinstance(exc, StorageError):
                    logger.error(
                        "Storage failure on instance %s, rolled back %d change(s)",
                        instance_id, len(undo_log), exc_info=True,
                    )
                raise
            finally:
                del logs[instance_id]

    def append(self, instance_id: str, payload) -> LedgerEntry:
        if isinstance(payload, ReversalPayload):
            self._check_reversal_target(instance_id, payload.original_entry_id)

        entry_id = self.storage.next_entry_id()
        row = {
            "id": entry_id,
            "pos_instance_id": instance_id,
            "payload": payload.model_dump(),
            "is_reverted": False,
            "created_at": _now(),
        }
        self._write_row(row)
        self._record_undo(instance_id, lambda: self._delete_row(entry_id))
        return LedgerEntry(**row)

    def _write_row(self, row: dict) -> None:
        with self.storage.rows_lock:
            self.storage.ledger_entries[row["id"]] = row

    def _delete_row(self, entry_id: int) -> None:
        with self.storage.rows_lock:
            self.storage.ledger_entries.pop(entry_id, None)

    def _check_reversal_target(self, instance_id: str, original_entry_id: int) -> None:
        original = self.storage.ledger_entries.get(original_entry_id)
        if original is None or original["pos_instance_id"] != instance_id:
            raise EntryNotFoundError(
                f"Entry {original_entry_id} not found in instance {instance_id}"
            )
        if original["payload"]["entry_type"] == EntryType.REVERSAL.value:
            raise NotRevertibleError(f"Entry {original_entry_id} is a reversal and cannot be reverted")

    def get(self, entry_id: int) -> Optional[LedgerEntry]:
        with self.storage.rows_lock:
            row = self.storage.ledger_entries.get(entry_id)
            return LedgerEntry(**row) if row else None

    def list_all(self, instance_id: str) -> list[LedgerEntry]:
        with self.storage.rows_lock:
            rows = [
                dict(r) for r in self.storage.ledger_entries.values()
                if r["pos_instance_id"] == instance_id
            ]
        rows.sort(key=lambda r: r["id"])
        return [LedgerEntry(**r) for r in rows]

    def mark_reverted(self, entry_id: int) -> None:
        with self.storage.rows_lock:
            row = self.storage.ledger_entries.get(entry_id)
            if row is None:
                raise EntryNotFoundError(f"Entry {entry_id} not found")
            if row["is_reverted"]:
                raise AlreadyRevertedError(f"Entry {entry_id} is already reverted")
            row["is_reverted"] = True

        def undo() -> None:
            with self.storage.rows_lock:
                row["is_reverted"] = False

        self._record_undo(row["pos_instance_id"], undo)
