# Tests for stalesync.store
# Cursor persistence, memory store, YAML file store and pending logs

from pathlib import Path

import pytest
import yaml

from stalesync.store.cursors import CursorStore
from stalesync.store.files import FileEntityStore, PendingLogStore
from stalesync.store.memory import MemoryEntityStore
from stalesync.sync.errors import StoreError
from stalesync.sync.interfaces import EntityStore
from stalesync.sync.records import ChangeOp, PendingChangeLog
from stalesync.utils.paths import atomic_write, safe_name


class TestCursorStore:
    """Tests for CursorStore."""

    def test_in_memory(self):
        cursors = CursorStore()
        assert cursors.get("alice", "tasks") is None
        cursors.set("alice", "tasks", 100)
        assert cursors.get("alice", "tasks").last_sync_time == 100

    def test_persists(self, temp_dir: Path):
        path = temp_dir / "cursors.yaml"
        CursorStore(path).set("alice", "tasks", 100)

        reloaded = CursorStore(path)
        assert reloaded.get("alice", "tasks").last_sync_time == 100
        assert yaml.safe_load(path.read_text())["cursors"]["alice:tasks"]["last_sync_time"] == 100

    def test_clear(self, temp_dir: Path):
        cursors = CursorStore(temp_dir / "cursors.yaml")
        cursors.set("alice", "tasks", 100)
        assert cursors.clear("alice", "tasks") is True
        assert cursors.clear("alice", "tasks") is False
        assert CursorStore(temp_dir / "cursors.yaml").get("alice", "tasks") is None

    def test_clear_owner(self):
        cursors = CursorStore()
        cursors.set("alice", "tasks", 1)
        cursors.set("alice", "lists", 2)
        cursors.set("bob", "tasks", 3)
        assert cursors.clear_owner("alice") == 2
        assert [c.owner_id for c in cursors.all()] == ["bob"]


class TestMemoryEntityStore:
    """Tests for MemoryEntityStore."""

    def test_satisfies_protocol(self):
        assert isinstance(MemoryEntityStore(), EntityStore)

    def test_list_all_sorted_and_live_only(self, make_record):
        store = MemoryEntityStore()
        store.upsert("tasks", make_record("b", created=20))
        store.upsert("tasks", make_record("a", created=20))
        store.upsert("tasks", make_record("c", created=10, deleted=30))

        assert [r.id for r in store.list_all("alice", "tasks")] == ["a", "b"]
        assert [r.id for r in store.list_all("alice", "tasks", include_deleted=True)] == ["c", "a", "b"]

    def test_list_since(self, make_record):
        store = MemoryEntityStore()
        store.upsert("tasks", make_record("old", created=10))
        store.upsert("tasks", make_record("edited", created=10, updated=200))
        store.upsert("tasks", make_record("gone", created=10, deleted=200))

        assert {r.id for r in store.list_since("alice", "tasks", 100)} == {"edited", "gone"}
        assert len(store.list_since("alice", "tasks", None)) == 3

    def test_upsert_replaces(self, make_record):
        store = MemoryEntityStore()
        store.upsert("tasks", make_record("a", title="one"))
        store.upsert("tasks", make_record("a", title="two"))
        assert store.get("alice", "tasks", "a").payload == {"title": "two"}
        assert len(store.list_all("alice", "tasks")) == 1

    def test_soft_delete_idempotent(self, make_record):
        store = MemoryEntityStore()
        store.upsert("tasks", make_record("a", created=10))

        assert store.soft_delete("alice", "tasks", "a", 50) is True
        assert store.soft_delete("alice", "tasks", "a", 90) is False
        assert store.get("alice", "tasks", "a").deleted_at == 50
        assert store.soft_delete("alice", "tasks", "missing", 50) is False

    def test_soft_delete_not_before_update(self, make_record):
        store = MemoryEntityStore()
        store.upsert("tasks", make_record("a", created=10, updated=80))
        store.soft_delete("alice", "tasks", "a", 50)
        assert store.get("alice", "tasks", "a").deleted_at == 80

    def test_replace_all(self, make_record):
        store = MemoryEntityStore()
        store.upsert("tasks", make_record("a"))
        store.replace_all("alice", "tasks", [make_record("b"), make_record("c")])
        assert [r.id for r in store.list_all("alice", "tasks", include_deleted=True)] == ["b", "c"]

    def test_replace_all_foreign_owner_leaves_table(self, make_record):
        store = MemoryEntityStore()
        store.upsert("tasks", make_record("a"))

        with pytest.raises(StoreError):
            store.replace_all("alice", "tasks", [make_record("b"), make_record("z", owner="bob")])

        assert [r.id for r in store.list_all("alice", "tasks")] == ["a"]

    def test_replace_all_duplicate_ids_rejected(self, make_record):
        store = MemoryEntityStore()
        with pytest.raises(StoreError):
            store.replace_all("alice", "tasks", [make_record("b"), make_record("b")])

    def test_tables_are_separate(self, make_record):
        store = MemoryEntityStore()
        store.upsert("tasks", make_record("a"))
        store.upsert("lists", make_record("l"))
        store.upsert("tasks", make_record("z", owner="bob"))
        assert [r.id for r in store.list_all("alice", "tasks")] == ["a"]
        assert [r.id for r in store.list_all("alice", "lists")] == ["l"]

    def test_cursor_methods(self):
        store = MemoryEntityStore()
        assert store.get_cursor("alice", "tasks") is None
        store.set_cursor("alice", "tasks", 5)
        assert store.get_cursor("alice", "tasks").last_sync_time == 5
        assert store.clear_cursor("alice", "tasks")


class TestFileEntityStore:
    """Tests for FileEntityStore."""

    def test_persists_across_instances(self, temp_dir: Path, make_record):
        store = FileEntityStore(temp_dir)
        store.upsert("tasks", make_record("a", title="Buy milk"))
        store.set_cursor("alice", "tasks", 123)

        reloaded = FileEntityStore(temp_dir)
        assert reloaded.get("alice", "tasks", "a").payload == {"title": "Buy milk"}
        assert reloaded.get_cursor("alice", "tasks").last_sync_time == 123

    def test_layout(self, temp_dir: Path, make_record):
        store = FileEntityStore(temp_dir)
        store.upsert("tasks", make_record("a"))
        store.set_cursor("alice", "tasks", 1)
        assert (temp_dir / "alice" / "tasks.yaml").exists()
        assert (temp_dir / "cursors.yaml").exists()

    def test_failed_write_keeps_previous_table(self, temp_dir: Path, make_record, monkeypatch):
        store = FileEntityStore(temp_dir)
        store.replace_all("alice", "tasks", [make_record("a"), make_record("b")])

        def broken(path, content, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("stalesync.store.files.atomic_write", broken)
        with pytest.raises(StoreError):
            store.replace_all("alice", "tasks", [make_record("c")])

        monkeypatch.undo()
        assert [r.id for r in FileEntityStore(temp_dir).list_all("alice", "tasks")] == ["a", "b"]

    def test_interrupted_rename_keeps_previous_table(self, temp_dir: Path, make_record, monkeypatch):
        store = FileEntityStore(temp_dir)
        store.replace_all("alice", "tasks", [make_record("a")])

        def broken_replace(src, dst):
            raise OSError("interrupted")

        monkeypatch.setattr("stalesync.utils.paths.os.replace", broken_replace)
        with pytest.raises(StoreError):
            store.replace_all("alice", "tasks", [make_record("c")])
        monkeypatch.undo()

        assert [r.id for r in store.list_all("alice", "tasks")] == ["a"]
        leftovers = [p.name for p in (temp_dir / "alice").iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_corrupt_file_raises_store_error(self, temp_dir: Path):
        store = FileEntityStore(temp_dir)
        path = store.table_path("alice", "tasks")
        path.parent.mkdir(parents=True)
        path.write_text("records: [{id: a}]", encoding="utf-8")
        with pytest.raises(StoreError):
            store.list_all("alice", "tasks")

    def test_empty_file_is_empty_table(self, temp_dir: Path):
        store = FileEntityStore(temp_dir)
        path = store.table_path("alice", "tasks")
        path.parent.mkdir(parents=True)
        path.write_text("", encoding="utf-8")
        assert store.list_all("alice", "tasks") == []


class TestPendingLogStore:
    """Tests for PendingLogStore."""

    def test_roundtrip(self, temp_dir: Path):
        logs = PendingLogStore(temp_dir)
        log = PendingChangeLog()
        log.record(ChangeOp.CREATE, "a", 1)
        log.record(ChangeOp.DELETE, "b", 2)
        logs.save("alice", "tasks", log)

        loaded = logs.load("alice", "tasks")
        assert [(e.op, e.entity_id) for e in loaded.entries] == [(ChangeOp.CREATE, "a"), (ChangeOp.DELETE, "b")]

    def test_missing_is_empty(self, temp_dir: Path):
        assert len(PendingLogStore(temp_dir).load("alice", "tasks")) == 0

    def test_empty_log_removes_file(self, temp_dir: Path):
        logs = PendingLogStore(temp_dir)
        log = PendingChangeLog()
        log.record(ChangeOp.CREATE, "a", 1)
        logs.save("alice", "tasks", log)
        log.flush()
        logs.save("alice", "tasks", log)
        assert not logs.log_path("alice", "tasks").exists()


class TestPathHelpers:
    """Tests for path utilities."""

    def test_atomic_write_creates_parents(self, temp_dir: Path):
        target = temp_dir / "a" / "b" / "file.yaml"
        atomic_write(target, "x: 1\n")
        assert target.read_text() == "x: 1\n"

    def test_atomic_write_bytes(self, temp_dir: Path):
        target = temp_dir / "file.bin"
        atomic_write(target, b"\x00\x01")
        assert target.read_bytes() == b"\x00\x01"

    @pytest.mark.parametrize("name,expected", [("tasks", "tasks"), ("a/b", "a_b"), ("user@example.com", "user_example.com")])
    def test_safe_name(self, name, expected):
        assert safe_name(name) == expected

    @pytest.mark.parametrize("name", ["", ".", ".."])
    def test_safe_name_rejects(self, name):
        with pytest.raises(ValueError):
            safe_name(name)
