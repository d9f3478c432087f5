# Stalesync Runtime
# Builds stores, transport, coordinator and scheduler from configuration

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from rich.console import Console as RichConsole

from stalesync.config.schema import RefreshMode, StalesyncConfig
from stalesync.output.console import Console, ConsoleObserver, TypeStatus
from stalesync.output.log import SyncLogObserver
from stalesync.store.files import FileEntityStore, PendingLogStore
from stalesync.sync.coordinator import SyncCoordinator, SyncOutcome
from stalesync.sync.interfaces import Clock, SyncMode, SyncObserver
from stalesync.sync.records import ChangeOp, EntityRecord
from stalesync.sync.scheduler import SyncScheduler
from stalesync.sync.staleness import StalenessDetector
from stalesync.sync.transport import LocalTransport
from stalesync.utils.clock import SystemClock


@dataclass
class Replica:
    """A configured local replica wired to its server."""

    config: StalesyncConfig
    clock: Clock
    store: FileEntityStore
    pending: PendingLogStore
    transport: LocalTransport
    coordinator: SyncCoordinator
    observers: list[SyncObserver] = field(default_factory=list)

    @property
    def owner_id(self) -> str:
        return self.config.owner_id

    def require_type(self, entity_type: str) -> None:
        """
        Raises:
            KeyError: If the entity type is not configured.
        """
        if self.config.get_entity_type(entity_type) is None:
            raise KeyError(f"Entity type '{entity_type}' not found in configuration")

    def selected_types(self, entity_type: Optional[str] = None) -> list[str]:
        """One configured type, or all enabled ones."""
        if entity_type:
            self.require_type(entity_type)
            return [entity_type]
        return list(self.config.get_enabled_types())

    def status(self, entity_type: Optional[str] = None) -> list[TypeStatus]:
        """Status rows for the selected types."""
        now = self.clock.now()
        detector = self.coordinator.detector
        rows = []
        names = [entity_type] if entity_type else list(self.config.entity_types)
        for name in names:
            self.require_type(name)
            type_config = self.config.entity_types[name]
            cursor = self.store.get_cursor(self.owner_id, name)
            rows.append(
                TypeStatus(
                    entity_type=name,
                    enabled=type_config.enabled,
                    threshold_ms=type_config.staleness_threshold_ms,
                    last_sync_time=cursor.last_sync_time if cursor else None,
                    age_ms=detector.elapsed(cursor, now),
                    stale=detector.is_stale(name, cursor, now) if type_config.enabled else False,
                    records=len(self.store.list_all(self.owner_id, name)),
                    pending=len(self.pending.load(self.owner_id, name)),
                )
            )
        return rows

    def sync(self, entity_type: Optional[str] = None, *, force: bool = False) -> list[SyncOutcome]:
        """Run check_and_sync for the selected types."""
        return [
            self.coordinator.check_and_sync(self.owner_id, name, force=force)
            for name in self.selected_types(entity_type)
        ]

    def put(self, entity_type: str, entity_id: str, fields: dict) -> EntityRecord:
        """Create or update a local record and log it for upload."""
        self.require_type(entity_type)
        now = self.clock.now()
        existing = self.store.get(self.owner_id, entity_type, entity_id)

        if existing is None or existing.is_deleted:
            record = EntityRecord(
                id=entity_id,
                owner_id=self.owner_id,
                created_at=now,
                updated_at=now,
                payload=dict(fields),
            )
            op = ChangeOp.CREATE
        else:
            record = existing.with_payload({**existing.payload, **fields}, max(now, existing.updated_at))
            op = ChangeOp.UPDATE

        self.store.upsert(entity_type, record)
        log = self.pending.load(self.owner_id, entity_type)
        log.record(op, entity_id, now)
        self.pending.save(self.owner_id, entity_type, log)
        return record

    def delete(self, entity_type: str, entity_id: str) -> bool:
        """Soft-delete a local record and log it for upload."""
        self.require_type(entity_type)
        now = self.clock.now()
        if not self.store.soft_delete(self.owner_id, entity_type, entity_id, now):
            return False
        log = self.pending.load(self.owner_id, entity_type)
        log.record(ChangeOp.DELETE, entity_id, now)
        self.pending.save(self.owner_id, entity_type, log)
        return True

    def push(self, entity_type: Optional[str] = None, *, full: bool = False) -> list[SyncOutcome]:
        """Upload pending changes (or full snapshots) for the selected types."""
        outcomes = []
        for name in self.selected_types(entity_type):
            log = self.pending.load(self.owner_id, name)
            if full:
                outcome = self.coordinator.push_full(self.owner_id, name, log)
            else:
                outcome = self.coordinator.push(self.owner_id, name, log)
            self.pending.save(self.owner_id, name, log)
            outcomes.append(outcome)
        return outcomes

    def reset(self, entity_type: Optional[str] = None) -> int:
        """Forget cursors so the next sync downloads a full snapshot."""
        if entity_type:
            self.require_type(entity_type)
            return int(self.store.clear_cursor(self.owner_id, entity_type))
        return self.store.cursors.clear_owner(self.owner_id)

    def scheduler(self, on_report=None) -> SyncScheduler:
        """Scheduler for all enabled types, configured from the config."""
        settings = self.config.scheduler
        return SyncScheduler(
            self.coordinator,
            self.owner_id,
            list(self.config.get_enabled_types()),
            base_interval=settings.base_interval_ms,
            max_interval=settings.max_interval_ms,
            adaptive=settings.adaptive,
            attempt_timeout=settings.attempt_timeout_ms,
            on_report=on_report,
        )


def build_replica(
    config: StalesyncConfig,
    *,
    console: Optional[Console] = None,
    clock: Optional[Clock] = None,
) -> Replica:
    """
    Wire a replica from configuration.

    Args:
        config: Loaded configuration.
        console: If given, coordinator events are echoed to it.
            Observer failures are reported there, or on stderr without one.
        clock: Clock shared by replica and server (system clock by default).

    Returns:
        Replica ready to sync.
    """
    clock = clock or SystemClock()
    replica_root = Path(config.replica.path)
    store = FileEntityStore(replica_root)
    server_store = FileEntityStore(Path(config.server.path))
    transport = LocalTransport(server_store, clock, allowed_owners=config.server.allowed_owners)

    observers: list[SyncObserver] = []
    if console is not None:
        observers.append(ConsoleObserver(console))
    if config.output.log_file:
        observers.append(SyncLogObserver(Path(config.output.log_file)))

    reporter = console or Console(console=RichConsole(stderr=True))
    refresh = SyncMode.FULL if config.sync.conflict_refresh is RefreshMode.FULL else SyncMode.DELTA
    coordinator = SyncCoordinator(
        store=store,
        transport=transport,
        clock=clock,
        detector=StalenessDetector(config.thresholds(include_disabled=True)),
        observers=observers,
        conflict_refresh=refresh,
        refresh_on_stale_write=config.sync.refresh_on_stale_write,
        on_observer_error=reporter.print_observer_failure,
    )

    return Replica(
        config=config,
        clock=clock,
        store=store,
        pending=PendingLogStore(replica_root),
        transport=transport,
        coordinator=coordinator,
        observers=observers,
    )

