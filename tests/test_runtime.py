# Tests for stalesync.runtime
# Replica wiring: local edits, pending logs, push and sync against the file server

from io import StringIO

import pytest
from rich.console import Console as RichConsole

from stalesync.config.schema import StalesyncConfig
from stalesync.output.console import Console
from stalesync.runtime import build_replica
from stalesync.store.files import FileEntityStore
from stalesync.sync.coordinator import OutcomeStatus
from stalesync.sync.interfaces import SyncMode
from stalesync.sync.records import ChangeOp
from stalesync.utils.clock import ManualClock


@pytest.fixture
def config(sample_config: dict) -> StalesyncConfig:
    return StalesyncConfig.model_validate(sample_config)


@pytest.fixture
def replica(config, clock):
    return build_replica(config, clock=clock)


class TestReplica:
    """Tests for Replica operations."""

    def test_status_before_first_sync(self, replica):
        rows = {row.entity_type: row for row in replica.status()}
        assert set(rows) == {"tasks", "lists", "tags"}
        assert rows["tasks"].stale is True
        assert rows["tasks"].last_sync_time is None
        assert rows["tags"].enabled is False
        assert rows["tags"].stale is False

    def test_put_creates_and_logs(self, replica):
        record = replica.put("tasks", "t-1", {"title": "Buy milk"})

        assert record.payload == {"title": "Buy milk"}
        pending = replica.pending.load("alice", "tasks")
        assert [(e.op, e.entity_id) for e in pending.entries] == [(ChangeOp.CREATE, "t-1")]

    def test_put_merges_payload(self, replica, clock):
        replica.put("tasks", "t-1", {"title": "Buy milk", "done": False})
        clock.advance(10)
        record = replica.put("tasks", "t-1", {"done": True})

        assert record.payload == {"title": "Buy milk", "done": True}
        assert record.updated_at == record.created_at + 10
        assert [e.op for e in replica.pending.load("alice", "tasks").entries] == [ChangeOp.CREATE, ChangeOp.UPDATE]

    def test_delete(self, replica):
        replica.put("tasks", "t-1", {"title": "x"})
        assert replica.delete("tasks", "t-1") is True
        assert replica.delete("tasks", "t-1") is False
        assert replica.store.get("alice", "tasks", "t-1").is_deleted

    def test_unknown_type(self, replica):
        with pytest.raises(KeyError):
            replica.put("notes", "n-1", {})
        with pytest.raises(KeyError):
            replica.sync("notes")

    def test_disabled_type_can_be_synced_explicitly(self, replica):
        assert replica.sync("tags")[0].status is OutcomeStatus.SYNCED

    def test_push_requires_fresh_replica(self, replica):
        replica.put("tasks", "t-1", {"title": "x"})

        outcome = replica.push("tasks")[0]

        assert outcome.status is OutcomeStatus.REJECTED_STALE
        assert outcome.refresh.status is OutcomeStatus.SYNCED
        assert len(replica.pending.load("alice", "tasks")) == 1

    def test_sync_then_push(self, replica, config):
        replica.sync()
        replica.put("tasks", "t-1", {"title": "x"})

        outcome = replica.push("tasks")[0]

        assert outcome.status is OutcomeStatus.UPLOADED
        assert not replica.pending.log_path("alice", "tasks").exists()
        server = FileEntityStore(config.server.path)
        assert server.get("alice", "tasks", "t-1").payload == {"title": "x"}

    def test_push_all_types(self, replica):
        replica.sync()
        replica.put("tasks", "t-1", {"title": "x"})

        outcomes = {o.entity_type: o.status for o in replica.push()}
        assert outcomes == {"tasks": OutcomeStatus.UPLOADED, "lists": OutcomeStatus.NOTHING_TO_UPLOAD}

    def test_push_full(self, replica, config):
        replica.sync()
        replica.put("lists", "l-1", {"name": "Groceries"})

        outcome = replica.push("lists", full=True)[0]

        assert outcome.mode is SyncMode.UPLOAD_FULL
        assert FileEntityStore(config.server.path).get("alice", "lists", "l-1") is not None

    def test_second_replica_sees_upload(self, replica, config, clock):
        replica.sync()
        replica.put("tasks", "t-1", {"title": "x"})
        replica.push("tasks")

        other_config = config.model_copy(deep=True)
        other_config.replica.path = str(config.replica.path) + "-other"
        other = build_replica(other_config, clock=clock)

        assert other.sync("tasks")[0].change_count == 1
        assert other.store.get("alice", "tasks", "t-1").payload == {"title": "x"}

    def test_reset(self, replica):
        replica.sync()
        assert replica.reset("tasks") == 1
        assert replica.reset() == 1
        assert replica.store.get_cursor("alice", "lists") is None

    def test_event_log_written(self, replica, config):
        replica.sync("tasks")
        content = open(config.output.log_file, encoding="utf-8").read()
        assert "tasks completed mode=full" in content

    def test_scheduler_uses_enabled_types(self, replica):
        scheduler = replica.scheduler()
        try:
            assert scheduler.entity_types == ["tasks", "lists"]
            assert scheduler.attempt_timeout == 5_000
            assert scheduler.interval.ceiling == 8_000
        finally:
            scheduler.close()

    def test_defaults_to_system_clock(self, config):
        replica = build_replica(config)
        assert not isinstance(replica.clock, ManualClock)
        assert replica.clock.now() > 0

    def test_unwritable_event_log_does_not_break_sync(self, config, clock, temp_dir):
        log_dir = temp_dir / "log-is-a-directory"
        log_dir.mkdir()
        config.output.log_file = str(log_dir)
        out = Console(colored=False, console=RichConsole(file=StringIO(), no_color=True, width=200))
        replica = build_replica(config, console=out, clock=clock)

        outcome = replica.sync("tasks")[0]

        assert outcome.status is OutcomeStatus.SYNCED
        assert replica.store.get_cursor("alice", "tasks") == outcome.cursor
        assert "SyncLogObserver.sync_started failed" in out._console.file.getvalue()
