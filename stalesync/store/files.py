# Stalesync File Store
# YAML-backed entity tables and pending change logs

from pathlib import Path
from typing import Optional

import yaml

from stalesync.store.cursors import CursorStore
from stalesync.store.memory import MemoryEntityStore, TableKey
from stalesync.sync.errors import StoreError, ValidationFailure
from stalesync.sync.records import EntityRecord, PendingChangeLog
from stalesync.utils.paths import atomic_write, safe_name


class FileEntityStore(MemoryEntityStore):
    """
    Entity store writing one YAML document per (owner, entity type).

    Layout::

        <root>/cursors.yaml
        <root>/<owner>/<entity_type>.yaml

    Tables are rewritten whole through ``atomic_write``, which is what makes
    ``replace_all`` all-or-nothing on disk.
    """

    def __init__(self, root: Path, cursors: Optional[CursorStore] = None):
        self.root = Path(root)
        super().__init__(cursors or CursorStore(self.root / "cursors.yaml"))

    def table_path(self, owner_id: str, entity_type: str) -> Path:
        """Path of the YAML document for a table."""
        return self.root / safe_name(owner_id) / f"{safe_name(entity_type)}.yaml"

    def _read_table(self, key: TableKey) -> dict[str, EntityRecord]:
        path = self.table_path(*key)
        if not path.exists():
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise StoreError(f"Corrupt table file {path}: {e}", entity_type=key[1]) from e

        if not data:
            return {}
        try:
            records = [EntityRecord.from_dict(item) for item in data.get("records") or []]
        except ValidationFailure as e:
            raise StoreError(f"Corrupt record in {path}: {e}", entity_type=key[1]) from e
        return {record.id: record for record in records}

    def _write_table(self, key: TableKey, table: dict[str, EntityRecord]) -> None:
        owner_id, entity_type = key
        document = {
            "owner_id": owner_id,
            "entity_type": entity_type,
            "records": [r.to_dict() for r in sorted(table.values(), key=lambda r: (r.created_at, r.id))],
        }
        content = yaml.dump(document, default_flow_style=False, sort_keys=False, allow_unicode=True)
        try:
            atomic_write(self.table_path(owner_id, entity_type), content)
        except OSError as e:
            raise StoreError(f"Could not write table {owner_id}/{entity_type}: {e}", entity_type=entity_type) from e


class PendingLogStore:
    """Persists pending change logs next to a file-backed replica."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def log_path(self, owner_id: str, entity_type: str) -> Path:
        """Path of the pending log for a table."""
        return self.root / safe_name(owner_id) / f"{safe_name(entity_type)}.pending.yaml"

    def load(self, owner_id: str, entity_type: str) -> PendingChangeLog:
        """Load a pending log; missing files give an empty log."""
        path = self.log_path(owner_id, entity_type)
        if not path.exists():
            return PendingChangeLog()
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return PendingChangeLog.from_list((data or {}).get("pending"))

    def save(self, owner_id: str, entity_type: str, log: PendingChangeLog) -> None:
        """Write a pending log; an empty log removes the file."""
        path = self.log_path(owner_id, entity_type)
        entries = log.to_list()
        if not entries:
            path.unlink(missing_ok=True)
            return
        content = yaml.dump({"pending": entries}, default_flow_style=False, sort_keys=False)
        atomic_write(path, content)
