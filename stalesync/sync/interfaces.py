# Stalesync Collaborator Interfaces
# Contracts the coordinator needs from storage, transport, clock and observers

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from stalesync.sync.records import ChangeSet, Cursor, EntityRecord

if TYPE_CHECKING:
    from stalesync.sync.conflict import Conflict
    from stalesync.sync.errors import ErrorKind


class SyncMode(str, Enum):
    """How a replica was (or is being) synchronized."""

    FULL = "full"
    DELTA = "delta"
    UPLOAD_DELTA = "upload_delta"
    UPLOAD_FULL = "upload_full"


class Trigger(str, Enum):
    """Source of a sync request. All sources are handled uniformly."""

    TIMER = "timer"
    FOCUS = "focus"
    FOREGROUND = "foreground"
    CONNECTIVITY = "connectivity"
    MANUAL = "manual"
    PRE_UPLOAD = "pre_upload"
    CONFLICT = "conflict"


@runtime_checkable
class Clock(Protocol):
    def now(self) -> int:
        """Current time in epoch milliseconds, non-decreasing."""
        ...


@runtime_checkable
class EntityStore(Protocol):
    """Record storage plus the cursor for each (owner, entity type)."""

    def list_since(self, owner_id: str, entity_type: str, since: Optional[int]) -> list[EntityRecord]: ...

    def list_all(self, owner_id: str, entity_type: str, *, include_deleted: bool = False) -> list[EntityRecord]: ...

    def get(self, owner_id: str, entity_type: str, entity_id: str) -> Optional[EntityRecord]: ...

    def replace_all(self, owner_id: str, entity_type: str, records: list[EntityRecord]) -> None: ...

    def upsert(self, entity_type: str, record: EntityRecord) -> None: ...

    def soft_delete(self, owner_id: str, entity_type: str, entity_id: str, deleted_at: int) -> bool: ...

    def get_cursor(self, owner_id: str, entity_type: str) -> Optional[Cursor]: ...

    def set_cursor(self, owner_id: str, entity_type: str, timestamp: int) -> Cursor: ...

    def clear_cursor(self, owner_id: str, entity_type: str) -> bool: ...


@dataclass
class Snapshot:
    """Full download: every live record plus the server time it reflects."""

    records: list[EntityRecord]
    server_time: int


@dataclass
class Delta:
    """Delta download: classified changes plus the server time they reflect."""

    changes: ChangeSet
    server_time: int


@dataclass
class UploadReceipt:
    """Upload answer: either accepted at ``server_time`` or a conflict."""

    server_time: Optional[int] = None
    conflict: Optional[Conflict] = None
    applied: int = 0

    @property
    def accepted(self) -> bool:
        """Check if the server applied the upload."""
        return self.conflict is None


@runtime_checkable
class Transport(Protocol):
    """
    Request/response exchange with the server.

    Failures are raised as ``TransportFailure``, ``AuthFailure`` or
    ``ValidationFailure``; conflicts come back inside ``UploadReceipt``.
    """

    def download_full(self, owner_id: str, entity_type: str) -> Snapshot: ...

    def download_changes(self, owner_id: str, entity_type: str, since: int) -> Delta: ...

    def upload_full(
        self, owner_id: str, entity_type: str, records: list[EntityRecord], since: Optional[int]
    ) -> UploadReceipt: ...

    def upload_delta(
        self, owner_id: str, entity_type: str, changes: ChangeSet, since: Optional[int]
    ) -> UploadReceipt: ...


class SyncObserver:
    """
    Receives coordinator events. Every hook is a no-op by default.

    Observers feed UI and telemetry; nothing in the sync path depends on them.
    """

    def sync_started(self, entity_type: str, mode: SyncMode) -> None:
        pass

    def sync_completed(self, entity_type: str, mode: SyncMode, change_count: int) -> None:
        pass

    def sync_conflict(self, entity_type: str, server_cursor: int, client_cursor: Optional[int]) -> None:
        pass

    def sync_error(self, entity_type: str, error_kind: ErrorKind) -> None:
        pass


@dataclass
class RecordingObserver(SyncObserver):
    """Keeps every event as a tuple, in order."""

    events: list[tuple] = field(default_factory=list)

    def sync_started(self, entity_type: str, mode: SyncMode) -> None:
        self.events.append(("started", entity_type, mode))

    def sync_completed(self, entity_type: str, mode: SyncMode, change_count: int) -> None:
        self.events.append(("completed", entity_type, mode, change_count))

    def sync_conflict(self, entity_type: str, server_cursor: int, client_cursor: Optional[int]) -> None:
        self.events.append(("conflict", entity_type, server_cursor, client_cursor))

    def sync_error(self, entity_type: str, error_kind: ErrorKind) -> None:
        self.events.append(("error", entity_type, error_kind))

    def names(self) -> list[str]:
        """Event names in order."""
        return [event[0] for event in self.events]
