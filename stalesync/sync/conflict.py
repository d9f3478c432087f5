# Stalesync Conflict Arbiter
# Optimistic-concurrency check of a writer's cursor against the server cursor

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from stalesync.sync.errors import ConflictDetected
from stalesync.sync.interfaces import EntityStore

DISCARD_AND_REFRESH = "discard_and_refresh"


@dataclass(frozen=True)
class Conflict:
    """
    A writer presented a cursor older than the one the server holds.

    The only resolution is to drop the pending write, download what
    changed and try again with fresh knowledge.
    """

    owner_id: str
    entity_type: str
    server_cursor: int
    client_cursor: Optional[int]
    directive: str = DISCARD_AND_REFRESH

    @property
    def lag(self) -> Optional[int]:
        """How far behind the writer is, in milliseconds."""
        if self.client_cursor is None:
            return None
        return self.server_cursor - self.client_cursor

    def to_error(self) -> ConflictDetected:
        """Wrap as an exception for callers that raise."""
        client = "never synced" if self.client_cursor is None else str(self.client_cursor)
        return ConflictDetected(
            f"Server cursor {self.server_cursor} is ahead of client cursor {client}",
            server_cursor=self.server_cursor,
            client_cursor=self.client_cursor,
            entity_type=self.entity_type,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "server_cursor": self.server_cursor,
            "client_cursor": self.client_cursor,
            "directive": self.directive,
        }


class ConflictArbiter:
    """
    Detects stale-write attempts against a store's recorded cursor.

    The recorded cursor is the only trust anchor. The caller's ``since`` is
    advisory: it is what the caller claims to have seen, never proof of
    freshness. This is not a lock; it only stops a writer with old
    knowledge from silently clobbering newer state.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def check_conflict(self, owner_id: str, entity_type: str, caller_since: Optional[int]) -> Optional[Conflict]:
        """
        Compare the caller's cursor with the recorded one.

        Returns:
            Conflict if the caller is behind, otherwise None.
        """
        stored = self.store.get_cursor(owner_id, entity_type)
        if stored is None:
            return None

        if caller_since is None or caller_since < stored.last_sync_time:
            return Conflict(
                owner_id=owner_id,
                entity_type=entity_type,
                server_cursor=stored.last_sync_time,
                client_cursor=caller_since,
            )
        return None
