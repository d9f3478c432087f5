# Stalesync Test Fixtures
# Pytest fixtures for stalesync tests

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Optional

import pytest
import yaml

from stalesync.store.memory import MemoryEntityStore
from stalesync.sync.coordinator import SyncCoordinator
from stalesync.sync.interfaces import Delta, RecordingObserver, Snapshot, UploadReceipt
from stalesync.sync.records import ChangeSet, EntityRecord
from stalesync.sync.staleness import StalenessDetector
from stalesync.sync.transport import LocalTransport
from stalesync.utils.clock import ManualClock

OWNER = "alice"

THRESHOLDS = {"tasks": 180_000, "lists": 1_800_000}


class ScriptedTransport:
    """
    Transport answering from queues filled by the test.

    Each queue holds return values or exceptions; exceptions are raised.
    Every call is recorded in ``calls``.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.full: list = []
        self.deltas: list = []
        self.uploads: list = []

    @staticmethod
    def _next(queue: list, name: str):
        if not queue:
            raise AssertionError(f"Unexpected {name} call")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def download_full(self, owner_id: str, entity_type: str) -> Snapshot:
        self.calls.append(("full", owner_id, entity_type))
        return self._next(self.full, "download_full")

    def download_changes(self, owner_id: str, entity_type: str, since: int) -> Delta:
        self.calls.append(("delta", owner_id, entity_type, since))
        return self._next(self.deltas, "download_changes")

    def upload_full(self, owner_id: str, entity_type: str, records: list, since: Optional[int]) -> UploadReceipt:
        self.calls.append(("upload_full", owner_id, entity_type, since))
        return self._next(self.uploads, "upload_full")

    def upload_delta(self, owner_id: str, entity_type: str, changes: ChangeSet, since: Optional[int]) -> UploadReceipt:
        self.calls.append(("upload_delta", owner_id, entity_type, since))
        return self._next(self.uploads, "upload_delta")

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_home(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a temporary home directory."""
    home = temp_dir / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("STALESYNC_CONFIG", raising=False)
    return home


@pytest.fixture
def make_record() -> Callable[..., EntityRecord]:
    """Factory for records owned by OWNER unless told otherwise."""

    def factory(
        record_id: str,
        created: int = 1_000,
        updated: Optional[int] = None,
        deleted: Optional[int] = None,
        owner: str = OWNER,
        **payload,
    ) -> EntityRecord:
        return EntityRecord(
            id=record_id,
            owner_id=owner,
            created_at=created,
            updated_at=updated if updated is not None else created,
            payload=payload or {"title": record_id},
            deleted_at=deleted,
        )

    return factory


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(1_000_000)


@pytest.fixture
def detector() -> StalenessDetector:
    return StalenessDetector(THRESHOLDS)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def replica_store() -> MemoryEntityStore:
    """Local replica (client side)."""
    return MemoryEntityStore()


@pytest.fixture
def server_store() -> MemoryEntityStore:
    """Authoritative copy (server side)."""
    return MemoryEntityStore()


@pytest.fixture
def transport(server_store: MemoryEntityStore, clock: ManualClock) -> LocalTransport:
    return LocalTransport(server_store, clock)


@pytest.fixture
def coordinator(replica_store, transport, clock, detector, observer) -> SyncCoordinator:
    """Coordinator wired to the in-process server."""
    return SyncCoordinator(replica_store, transport, clock, detector, observers=[observer])


@pytest.fixture
def scripted() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def scripted_coordinator(replica_store, scripted, clock, detector, observer) -> SyncCoordinator:
    """Coordinator whose server answers are scripted by the test."""
    return SyncCoordinator(replica_store, scripted, clock, detector, observers=[observer])


@pytest.fixture
def sample_config(temp_dir: Path) -> dict:
    """Create sample configuration dict."""
    return {
        "owner_id": OWNER,
        "replica": {"path": str(temp_dir / "replica")},
        "server": {"path": str(temp_dir / "server")},
        "entity_types": {
            "tasks": {
                "enabled": True,
                "description": "Test tasks",
                "staleness_threshold_ms": 180_000,
            },
            "lists": {
                "enabled": True,
                "description": "Test lists",
                "staleness_threshold_ms": 1_800_000,
            },
            "tags": {
                "enabled": False,
                "staleness_threshold_ms": 3_600_000,
            },
        },
        "scheduler": {
            "base_interval_ms": 1_000,
            "max_interval_ms": 8_000,
            "adaptive": True,
            "attempt_timeout_ms": 5_000,
        },
        "output": {"verbose": False, "colored": False, "log_file": str(temp_dir / "sync.log")},
    }


@pytest.fixture
def config_file(temp_home: Path, sample_config: dict) -> Path:
    """Create a configuration file."""
    config_dir = temp_home / ".config" / "stalesync"
    config_dir.mkdir(parents=True)
    config_path = config_dir / "config.yaml"

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(sample_config, f, default_flow_style=False)

    return config_path
