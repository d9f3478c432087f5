# Stalesync Cursor Store
# Persists the last confirmed sync time per (owner, entity type)

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from stalesync.sync.records import Cursor
from stalesync.utils.paths import atomic_write


def cursor_key(owner_id: str, entity_type: str) -> str:
    """Key under which a cursor is stored."""
    return f"{owner_id}:{entity_type}"


@dataclass
class CursorState:
    """All cursors known to one replica."""

    version: str = "1.0"
    cursors: dict[str, Cursor] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "version": self.version,
            "cursors": {key: cursor.to_dict() for key, cursor in self.cursors.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CursorState":
        """Create from dictionary."""
        cursors = {}
        for key, cursor_data in (data.get("cursors") or {}).items():
            cursors[key] = Cursor.from_dict(cursor_data)
        return cls(version=data.get("version", "1.0"), cursors=cursors)


class CursorStore:
    """
    Cursor persistence.

    Without a path the cursors live in memory only. With a path every change
    is written through to a YAML file with an atomic rename.
    """

    def __init__(self, state_path: Optional[Path] = None):
        """
        Initialize cursor store.

        Args:
            state_path: Optional YAML file backing the cursors.
        """
        self.state_path = state_path
        self._lock = threading.RLock()
        self._state: Optional[CursorState] = None

    @property
    def state(self) -> CursorState:
        """Get current state, loading if necessary."""
        with self._lock:
            if self._state is None:
                self._state = self.load()
            return self._state

    def load(self) -> CursorState:
        """Load state from file."""
        if self.state_path is None or not self.state_path.exists():
            return CursorState()

        with open(self.state_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if data is None:
            return CursorState()
        return CursorState.from_dict(data)

    def save(self) -> None:
        """Save state to file (no-op for in-memory stores)."""
        if self.state_path is None:
            return
        with self._lock:
            content = yaml.dump(self.state.to_dict(), default_flow_style=False, sort_keys=False, allow_unicode=True)
            atomic_write(self.state_path, content)

    def get(self, owner_id: str, entity_type: str) -> Optional[Cursor]:
        """Get the cursor for a pair, if any."""
        with self._lock:
            return self.state.cursors.get(cursor_key(owner_id, entity_type))

    def set(self, owner_id: str, entity_type: str, timestamp: int) -> Cursor:
        """Overwrite the cursor for a pair and save."""
        cursor = Cursor(owner_id=owner_id, entity_type=entity_type, last_sync_time=timestamp)
        with self._lock:
            self.state.cursors[cursor_key(owner_id, entity_type)] = cursor
            self.save()
        return cursor

    def clear(self, owner_id: str, entity_type: str) -> bool:
        """Remove a cursor and save."""
        with self._lock:
            removed = self.state.cursors.pop(cursor_key(owner_id, entity_type), None)
            if removed is not None:
                self.save()
            return removed is not None

    def clear_owner(self, owner_id: str) -> int:
        """Remove all cursors of an owner."""
        with self._lock:
            keys = [key for key, c in self.state.cursors.items() if c.owner_id == owner_id]
            for key in keys:
                del self.state.cursors[key]
            if keys:
                self.save()
            return len(keys)

    def all(self) -> list[Cursor]:
        """All stored cursors."""
        with self._lock:
            return list(self.state.cursors.values())
