# Stalesync Sync Log
# Append-only event log written from coordinator events

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from stalesync.sync.errors import ErrorKind
from stalesync.sync.interfaces import SyncMode, SyncObserver
from stalesync.utils.paths import ensure_dir

LOG_HEADER = "# stalesync event log\n\n"


class SyncLogObserver(SyncObserver):
    """
    Appends one line per coordinator event to a log file.

    Lines look like ``2026-01-05T10:00:00Z tasks completed mode=delta changes=3``.
    """

    def __init__(self, log_path: Path):
        self.log_path = Path(log_path)
        self._lock = threading.Lock()

    def _write(self, entity_type: str, event: str, **fields) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        details = " ".join(f"{key}={value}" for key, value in fields.items())
        line = f"{stamp} {entity_type} {event} {details}".rstrip() + "\n"

        with self._lock:
            ensure_dir(self.log_path.parent)
            new_file = not self.log_path.exists()
            with open(self.log_path, "a", encoding="utf-8") as f:
                if new_file:
                    f.write(LOG_HEADER)
                f.write(line)

    def sync_started(self, entity_type: str, mode: SyncMode) -> None:
        self._write(entity_type, "started", mode=mode.value)

    def sync_completed(self, entity_type: str, mode: SyncMode, change_count: int) -> None:
        self._write(entity_type, "completed", mode=mode.value, changes=change_count)

    def sync_conflict(self, entity_type: str, server_cursor: int, client_cursor: Optional[int]) -> None:
        self._write(entity_type, "conflict", server=server_cursor, client=client_cursor)

    def sync_error(self, entity_type: str, error_kind: ErrorKind) -> None:
        self._write(entity_type, "error", kind=error_kind.value)


def read_log_tail(log_path: Path, lines: int = 50) -> list[str]:
    """Last ``lines`` event lines of a log file (header excluded)."""
    if not log_path.exists():
        return []
    content = log_path.read_text(encoding="utf-8")
    entries = [line for line in content.splitlines() if line and not line.startswith("#")]
    return entries[-lines:]
