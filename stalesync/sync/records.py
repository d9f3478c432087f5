# Stalesync Records
# Entity records, cursors, change sets and the client-side pending change log

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from stalesync.sync.errors import ValidationFailure


def _require_timestamp(data: dict[str, Any], key: str, *, optional: bool = False) -> Optional[int]:
    value = data.get(key)
    if value is None:
        if optional:
            return None
        raise ValidationFailure(f"Missing timestamp '{key}'")
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailure(f"Timestamp '{key}' must be an integer, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class EntityRecord:
    """
    A single owner-scoped entity (task, list, ...).

    Timestamps are epoch milliseconds. Soft-deleted records keep their
    payload and carry ``deleted_at``.
    """

    id: str
    owner_id: str
    created_at: int
    updated_at: int
    payload: dict[str, Any] = field(default_factory=dict)
    deleted_at: Optional[int] = None

    def __post_init__(self) -> None:
        if self.updated_at < self.created_at:
            raise ValidationFailure(f"Record {self.id}: updated_at precedes created_at")
        if self.deleted_at is not None and self.deleted_at < self.created_at:
            raise ValidationFailure(f"Record {self.id}: deleted_at precedes created_at")

    @property
    def is_deleted(self) -> bool:
        """Check if the record is soft-deleted."""
        return self.deleted_at is not None

    def with_payload(self, payload: dict[str, Any], updated_at: int) -> EntityRecord:
        """Return a copy with a new payload and update time."""
        return replace(self, payload=dict(payload), updated_at=updated_at)

    def mark_deleted(self, deleted_at: int) -> EntityRecord:
        """Return a soft-deleted copy; an existing deletion time is kept."""
        if self.deleted_at is not None:
            return self
        return replace(self, deleted_at=max(deleted_at, self.created_at))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "id": self.id,
            "owner_id": self.owner_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "payload": dict(self.payload),
        }
        if self.deleted_at is not None:
            data["deleted_at"] = self.deleted_at
        return data

    @classmethod
    def from_dict(cls, data: Any) -> EntityRecord:
        """
        Create from dictionary, validating the wire shape.

        Raises:
            ValidationFailure: If fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise ValidationFailure(f"Record must be a mapping, got {type(data).__name__}")

        record_id = data.get("id")
        owner_id = data.get("owner_id")
        if not isinstance(record_id, str) or not record_id:
            raise ValidationFailure("Record is missing a string 'id'")
        if not isinstance(owner_id, str) or not owner_id:
            raise ValidationFailure(f"Record {record_id} is missing a string 'owner_id'")

        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ValidationFailure(f"Record {record_id}: payload must be a mapping")

        return cls(
            id=record_id,
            owner_id=owner_id,
            created_at=_require_timestamp(data, "created_at"),
            updated_at=_require_timestamp(data, "updated_at"),
            payload=dict(payload),
            deleted_at=_require_timestamp(data, "deleted_at", optional=True),
        )


@dataclass(frozen=True)
class Cursor:
    """Last confirmed sync time for an (owner, entity type) pair."""

    owner_id: str
    entity_type: str
    last_sync_time: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "last_sync_time": self.last_sync_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Cursor:
        """Create from dictionary."""
        return cls(
            owner_id=data["owner_id"],
            entity_type=data["entity_type"],
            last_sync_time=int(data["last_sync_time"]),
        )


@dataclass
class ChangeSet:
    """Classified changes since a cursor. Never persisted."""

    created: list[EntityRecord] = field(default_factory=list)
    updated: list[EntityRecord] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of entries across all three lists."""
        return len(self.created) + len(self.updated) + len(self.deleted)

    @property
    def is_empty(self) -> bool:
        """Check if there are no changes."""
        return self.total == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape."""
        return {
            "created": [r.to_dict() for r in self.created],
            "updated": [r.to_dict() for r in self.updated],
            "deleted": list(self.deleted),
        }

    @classmethod
    def from_dict(cls, data: Any) -> ChangeSet:
        """
        Create from the wire shape.

        Raises:
            ValidationFailure: If the payload is malformed.
        """
        if not isinstance(data, dict):
            raise ValidationFailure("Change set must be a mapping")

        deleted = data.get("deleted") or []
        if not isinstance(deleted, list) or not all(isinstance(i, str) for i in deleted):
            raise ValidationFailure("Change set 'deleted' must be a list of ids")

        created = data.get("created") or []
        updated = data.get("updated") or []
        if not isinstance(created, list) or not isinstance(updated, list):
            raise ValidationFailure("Change set 'created' and 'updated' must be lists")

        return cls(
            created=[EntityRecord.from_dict(r) for r in created],
            updated=[EntityRecord.from_dict(r) for r in updated],
            deleted=list(dict.fromkeys(deleted)),
        )


class ChangeOp(str, Enum):
    """Local operation recorded in the pending change log."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class PendingChange:
    """A single local operation awaiting upload."""

    op: ChangeOp
    entity_id: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"op": self.op.value, "entity_id": self.entity_id, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingChange:
        """Create from dictionary."""
        return cls(op=ChangeOp(data["op"]), entity_id=data["entity_id"], timestamp=int(data["timestamp"]))


class PendingChangeLog:
    """
    Ordered local operations accumulated between successful uploads.

    Append-only until flushed. ``flush`` hands the entries over and clears
    the log in one step; ``restore`` puts them back in front of anything
    recorded meanwhile when the upload fails.
    """

    def __init__(self, entries: Optional[list[PendingChange]] = None):
        self._entries: list[PendingChange] = list(entries or [])
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def entries(self) -> list[PendingChange]:
        """Snapshot of the current entries."""
        with self._lock:
            return list(self._entries)

    def record(self, op: ChangeOp | str, entity_id: str, timestamp: int) -> PendingChange:
        """Append an operation."""
        change = PendingChange(op=ChangeOp(op), entity_id=entity_id, timestamp=timestamp)
        with self._lock:
            self._entries.append(change)
        return change

    def flush(self) -> list[PendingChange]:
        """Take all entries and clear the log."""
        with self._lock:
            entries, self._entries = self._entries, []
        return entries

    def restore(self, entries: list[PendingChange]) -> None:
        """Replay entries taken by a failed flush ahead of newer ones."""
        with self._lock:
            self._entries = list(entries) + self._entries

    def to_list(self) -> list[dict[str, Any]]:
        """Convert to a list of dictionaries."""
        return [entry.to_dict() for entry in self.entries]

    @classmethod
    def from_list(cls, data: Optional[list[dict[str, Any]]]) -> PendingChangeLog:
        """Create from a list of dictionaries."""
        return cls([PendingChange.from_dict(item) for item in data or []])


def collapse(entries: list[PendingChange]) -> dict[str, ChangeOp]:
    """
    Reduce pending entries to one operation per entity.

    Precedence is delete > create > update, mirroring delta classification:
    a record created and later edited uploads as a create, anything deleted
    uploads as a delete. Insertion order follows first appearance.
    """
    rank = {ChangeOp.UPDATE: 0, ChangeOp.CREATE: 1, ChangeOp.DELETE: 2}
    result: dict[str, ChangeOp] = {}
    for entry in entries:
        current = result.get(entry.entity_id)
        if current is None or rank[entry.op] > rank[current]:
            result[entry.entity_id] = entry.op
    return result
