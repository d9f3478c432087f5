# Stalesync Local Transport
# In-process server: serves snapshots/deltas and applies uploads to a store

import threading
from collections.abc import Iterable
from typing import Optional

from stalesync.sync.conflict import ConflictArbiter
from stalesync.sync.delta import compute_changes
from stalesync.sync.errors import AuthFailure, ValidationFailure
from stalesync.sync.interfaces import Clock, Delta, EntityStore, Snapshot, UploadReceipt
from stalesync.sync.records import ChangeSet, EntityRecord


class LocalTransport:
    """
    Server side of the protocol, running against a local entity store.

    The server clock is authoritative: every accepted write is stamped with
    a server time strictly greater than any time handed out before, and the
    server cursor for the table is moved to that time. Uploads go through
    the conflict arbiter first.
    """

    def __init__(self, store: EntityStore, clock: Clock, *, allowed_owners: Optional[Iterable[str]] = None):
        """
        Initialize transport.

        Args:
            store: Server-side store (records plus server cursors).
            clock: Server clock.
            allowed_owners: If given, any other owner gets AuthFailure.
        """
        self.store = store
        self.clock = clock
        self.arbiter = ConflictArbiter(store)
        self.allowed_owners = set(allowed_owners) if allowed_owners is not None else None
        self._lock = threading.Lock()
        self._last_time = 0

    def _tick(self) -> int:
        now = max(self.clock.now(), self._last_time + 1)
        self._last_time = now
        return now

    def _authorize(self, owner_id: str) -> None:
        if self.allowed_owners is not None and owner_id not in self.allowed_owners:
            raise AuthFailure(f"Owner '{owner_id}' is not authorized")

    def _check_owner(self, owner_id: str, records: Iterable[EntityRecord]) -> None:
        for record in records:
            if record.owner_id != owner_id:
                raise ValidationFailure(f"Record {record.id} belongs to '{record.owner_id}', not '{owner_id}'")

    def _stamp(self, incoming: EntityRecord, existing: Optional[EntityRecord], server_time: int) -> EntityRecord:
        if existing is None or existing.is_deleted:
            return EntityRecord(
                id=incoming.id,
                owner_id=incoming.owner_id,
                created_at=server_time,
                updated_at=server_time,
                payload=dict(incoming.payload),
            )
        return existing.with_payload(incoming.payload, server_time)

    # Downloads

    def download_full(self, owner_id: str, entity_type: str) -> Snapshot:
        """Every live record of the table."""
        self._authorize(owner_id)
        with self._lock:
            server_time = self._tick()
            records = self.store.list_all(owner_id, entity_type)
        return Snapshot(records=records, server_time=server_time)

    def download_changes(self, owner_id: str, entity_type: str, since: int) -> Delta:
        """Changes of the table since ``since``."""
        self._authorize(owner_id)
        with self._lock:
            server_time = self._tick()
            changes = compute_changes(self.store, owner_id, entity_type, since)
        return Delta(changes=changes, server_time=server_time)

    # Uploads

    def upload_delta(
        self, owner_id: str, entity_type: str, changes: ChangeSet, since: Optional[int]
    ) -> UploadReceipt:
        """
        Apply a client change set unless the client is behind.

        Deletes win over updates for the same id. Updates to records the
        server already deleted are dropped.
        """
        self._authorize(owner_id)
        self._check_owner(owner_id, changes.created + changes.updated)

        with self._lock:
            conflict = self.arbiter.check_conflict(owner_id, entity_type, since)
            if conflict is not None:
                return UploadReceipt(conflict=conflict)

            server_time = self._tick()
            deleted = set(changes.deleted)
            applied = 0

            for entity_id in changes.deleted:
                if self.store.soft_delete(owner_id, entity_type, entity_id, server_time):
                    applied += 1

            for record in changes.updated:
                if record.id in deleted:
                    continue
                existing = self.store.get(owner_id, entity_type, record.id)
                if existing is not None and existing.is_deleted:
                    continue
                self.store.upsert(entity_type, self._stamp(record, existing, server_time))
                applied += 1

            for record in changes.created:
                if record.id in deleted:
                    continue
                existing = self.store.get(owner_id, entity_type, record.id)
                self.store.upsert(entity_type, self._stamp(record, existing, server_time))
                applied += 1

            self.store.set_cursor(owner_id, entity_type, server_time)
        return UploadReceipt(server_time=server_time, applied=applied)

    def upload_full(
        self, owner_id: str, entity_type: str, records: list[EntityRecord], since: Optional[int]
    ) -> UploadReceipt:
        """
        Make the table match a client snapshot.

        Server records missing from the snapshot are soft-deleted so other
        clients see the removal in their next delta.
        """
        self._authorize(owner_id)
        self._check_owner(owner_id, records)

        with self._lock:
            conflict = self.arbiter.check_conflict(owner_id, entity_type, since)
            if conflict is not None:
                return UploadReceipt(conflict=conflict)

            server_time = self._tick()
            existing = {r.id: r for r in self.store.list_all(owner_id, entity_type, include_deleted=True)}
            incoming = {r.id: r for r in records if not r.is_deleted}
            table: list[EntityRecord] = []

            for entity_id, current in existing.items():
                if entity_id in incoming:
                    continue
                table.append(current if current.is_deleted else current.mark_deleted(server_time))

            for entity_id, record in incoming.items():
                current = existing.get(entity_id)
                if current is not None and not current.is_deleted and current.payload == record.payload:
                    table.append(current)
                else:
                    table.append(self._stamp(record, current, server_time))

            self.store.replace_all(owner_id, entity_type, table)
            self.store.set_cursor(owner_id, entity_type, server_time)
        return UploadReceipt(server_time=server_time, applied=len(incoming))
