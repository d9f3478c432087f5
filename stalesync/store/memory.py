# Stalesync Memory Store
# In-process entity store; also the base for the file-backed store

import threading
from typing import Optional

from stalesync.store.cursors import CursorStore
from stalesync.sync.errors import StoreError
from stalesync.sync.records import Cursor, EntityRecord

TableKey = tuple[str, str]


class MemoryEntityStore:
    """
    Entity store keeping one table of records per (owner, entity type).

    Subclasses persist tables by overriding ``_read_table`` and
    ``_write_table``. Every mutation reads the table, builds a new one and
    writes it back whole, so a failed write leaves the old table in place.
    """

    def __init__(self, cursors: Optional[CursorStore] = None):
        self.cursors = cursors or CursorStore()
        self._tables: dict[TableKey, dict[str, EntityRecord]] = {}
        self._lock = threading.RLock()

    def _read_table(self, key: TableKey) -> dict[str, EntityRecord]:
        return dict(self._tables.get(key, {}))

    def _write_table(self, key: TableKey, table: dict[str, EntityRecord]) -> None:
        self._tables[key] = table

    # Reads

    def list_all(self, owner_id: str, entity_type: str, *, include_deleted: bool = False) -> list[EntityRecord]:
        """All records of a table ordered by creation time then id."""
        with self._lock:
            records = self._read_table((owner_id, entity_type)).values()
        selected = [r for r in records if include_deleted or not r.is_deleted]
        return sorted(selected, key=lambda r: (r.created_at, r.id))

    def list_since(self, owner_id: str, entity_type: str, since: Optional[int]) -> list[EntityRecord]:
        """Records with any timestamp after ``since`` (all records for None)."""
        records = self.list_all(owner_id, entity_type, include_deleted=True)
        if since is None:
            return records
        return [
            r
            for r in records
            if r.created_at > since or r.updated_at > since or (r.deleted_at is not None and r.deleted_at > since)
        ]

    def get(self, owner_id: str, entity_type: str, entity_id: str) -> Optional[EntityRecord]:
        """Get a single record, deleted or not."""
        with self._lock:
            return self._read_table((owner_id, entity_type)).get(entity_id)

    # Writes

    def replace_all(self, owner_id: str, entity_type: str, records: list[EntityRecord]) -> None:
        """
        Atomically replace a whole table.

        Raises:
            StoreError: If any record belongs to another owner or ids repeat.
                The existing table is left untouched.
        """
        table: dict[str, EntityRecord] = {}
        for record in records:
            if record.owner_id != owner_id:
                raise StoreError(
                    f"Record {record.id} belongs to '{record.owner_id}', not '{owner_id}'",
                    entity_type=entity_type,
                )
            if record.id in table:
                raise StoreError(f"Duplicate record id {record.id} in snapshot", entity_type=entity_type)
            table[record.id] = record

        with self._lock:
            self._write_table((owner_id, entity_type), table)

    def upsert(self, entity_type: str, record: EntityRecord) -> None:
        """Insert or replace a record by id."""
        key = (record.owner_id, entity_type)
        with self._lock:
            table = self._read_table(key)
            if table.get(record.id) == record:
                return
            table[record.id] = record
            self._write_table(key, table)

    def soft_delete(self, owner_id: str, entity_type: str, entity_id: str, deleted_at: int) -> bool:
        """
        Mark a record deleted.

        Missing or already-deleted records are left as they are, so the
        operation can be re-applied safely.

        Returns:
            True if a live record was marked deleted.
        """
        key = (owner_id, entity_type)
        with self._lock:
            table = self._read_table(key)
            record = table.get(entity_id)
            if record is None or record.is_deleted:
                return False
            table[entity_id] = record.mark_deleted(max(deleted_at, record.updated_at))
            self._write_table(key, table)
            return True

    # Cursors

    def get_cursor(self, owner_id: str, entity_type: str) -> Optional[Cursor]:
        return self.cursors.get(owner_id, entity_type)

    def set_cursor(self, owner_id: str, entity_type: str, timestamp: int) -> Cursor:
        return self.cursors.set(owner_id, entity_type, timestamp)

    def clear_cursor(self, owner_id: str, entity_type: str) -> bool:
        return self.cursors.clear(owner_id, entity_type)
