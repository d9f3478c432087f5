# Stalesync Store Module
# Cursor persistence and entity stores (in-memory and YAML files)

from stalesync.store.cursors import CursorState, CursorStore
from stalesync.store.files import FileEntityStore, PendingLogStore
from stalesync.store.memory import MemoryEntityStore

__all__ = [
    # Cursors
    "CursorState",
    "CursorStore",
    # Entity stores
    "MemoryEntityStore",
    "FileEntityStore",
    "PendingLogStore",
]
