# Stalesync Sync Coordinator
# State machine deciding when and how a replica is synchronized

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from stalesync.sync.conflict import Conflict
from stalesync.sync.errors import (
    AttemptAbandoned,
    ErrorKind,
    StaleWriteRejected,
    SyncError,
    SyncTimeout,
    TransportFailure,
    ValidationFailure,
)
from stalesync.sync.interfaces import Clock, EntityStore, SyncMode, SyncObserver, Transport, Trigger, UploadReceipt
from stalesync.sync.locks import AttemptToken, LockKey, LockTable
from stalesync.sync.records import (
    ChangeOp,
    ChangeSet,
    Cursor,
    EntityRecord,
    PendingChange,
    PendingChangeLog,
    collapse,
)
from stalesync.sync.staleness import StalenessDetector


class SyncPhase(str, Enum):
    """Coordinator state for one (owner, entity type)."""

    IDLE = "idle"
    CHECKING_STALENESS = "checking_staleness"
    FULL_SYNC = "full_sync"
    DELTA_SYNC = "delta_sync"
    APPLYING = "applying"
    UPLOADING = "uploading"
    CONFLICT = "conflict"
    ERROR = "error"


class OutcomeStatus(str, Enum):
    """What a coordinator call ended with."""

    FRESH = "fresh"  # replica trusted, nothing done
    BUSY = "busy"  # another attempt holds the lock, request dropped
    SYNCED = "synced"
    UPLOADED = "uploaded"
    NOTHING_TO_UPLOAD = "nothing_to_upload"
    REJECTED_STALE = "rejected_stale"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass
class SyncOutcome:
    """Result of a download or upload attempt."""

    owner_id: str
    entity_type: str
    status: OutcomeStatus
    mode: Optional[SyncMode] = None
    trigger: Trigger = Trigger.MANUAL
    change_count: int = 0
    cursor: Optional[Cursor] = None
    fell_back: bool = False
    error: Optional[SyncError] = None
    conflict: Optional[Conflict] = None
    refresh: Optional[SyncOutcome] = None

    @property
    def success(self) -> bool:
        """Check if the call left the replica in a good state."""
        return self.status in (
            OutcomeStatus.FRESH,
            OutcomeStatus.SYNCED,
            OutcomeStatus.UPLOADED,
            OutcomeStatus.NOTHING_TO_UPLOAD,
        )

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        """Kind of the error, if any."""
        return self.error.kind if self.error is not None else None


class SyncCoordinator:
    """
    Orchestrates staleness checks, locking, full-vs-delta choice, fallback
    and cursor advancement.

    Collaborators are injected, so several independent coordinators can
    run side by side (one per replica, one per test). The coordinator
    never retries on its own; failed attempts are reported and left to the
    scheduler.
    """

    def __init__(
        self,
        store: EntityStore,
        transport: Transport,
        clock: Clock,
        detector: StalenessDetector,
        *,
        observers: Iterable[SyncObserver] = (),
        conflict_refresh: SyncMode = SyncMode.DELTA,
        refresh_on_stale_write: bool = True,
        on_observer_error: Optional[Callable[[SyncObserver, str, Exception], None]] = None,
    ):
        """
        Initialize coordinator.

        Args:
            store: Local replica store (records and cursors).
            transport: Server exchange.
            clock: Local clock used for staleness decisions.
            detector: Staleness thresholds per entity type.
            observers: Event sinks for UI and telemetry.
            conflict_refresh: Mode of the forced refresh after a conflict.
            refresh_on_stale_write: Refresh right away when an upload is
                rejected because the replica is stale.
            on_observer_error: Called with the observer, hook name and
                exception when an observer raises.
        """
        if conflict_refresh not in (SyncMode.DELTA, SyncMode.FULL):
            raise ValueError("conflict_refresh must be DELTA or FULL")
        self.store = store
        self.transport = transport
        self.clock = clock
        self.detector = detector
        self.observers = list(observers)
        self.conflict_refresh = conflict_refresh
        self.refresh_on_stale_write = refresh_on_stale_write
        self.on_observer_error = on_observer_error
        self.last_observer_error: Optional[Exception] = None
        self._locks = LockTable()
        self._phases: dict[LockKey, SyncPhase] = {}
        self._phase_guard = threading.Lock()

    # State

    def phase(self, owner_id: str, entity_type: str) -> SyncPhase:
        """Current phase for a pair."""
        with self._phase_guard:
            return self._phases.get((owner_id, entity_type), SyncPhase.IDLE)

    def is_locked(self, owner_id: str, entity_type: str) -> bool:
        """Check if an attempt is in flight for a pair."""
        return self._locks.is_held((owner_id, entity_type))

    def is_stale(self, owner_id: str, entity_type: str) -> bool:
        """Ask the staleness detector about the stored cursor."""
        cursor = self.store.get_cursor(owner_id, entity_type)
        return self.detector.is_stale(entity_type, cursor, self.clock.now())

    def add_observer(self, observer: SyncObserver) -> None:
        """Register another event sink."""
        self.observers.append(observer)

    def _set_phase(self, key: LockKey, phase: SyncPhase, token: Optional[AttemptToken] = None) -> None:
        # Without a token only an unlocked pair may change; with one only its holder
        with self._phase_guard:
            if self._locks.holder(key) is token:
                self._phases[key] = phase

    def _emit(self, hook: str, *args) -> None:
        for observer in self.observers:
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                # Observers never decide the outcome of an attempt
                self.last_observer_error = e
                if self.on_observer_error is not None:
                    self.on_observer_error(observer, hook, e)

    # Download

    def check_and_sync(
        self,
        owner_id: str,
        entity_type: str,
        *,
        force: bool = False,
        trigger: Trigger = Trigger.MANUAL,
        token: Optional[AttemptToken] = None,
    ) -> SyncOutcome:
        """
        Refresh the replica if it is stale.

        Args:
            owner_id: Owner of the collection.
            entity_type: Entity type to check.
            force: Skip the staleness gate (still takes the lock).
            trigger: What asked for the sync.
            token: Attempt token, supplied by the scheduler for timeouts.

        Returns:
            SyncOutcome. FRESH and BUSY are no-ops.
        """
        key = (owner_id, entity_type)
        token = token or AttemptToken()

        self._set_phase(key, SyncPhase.CHECKING_STALENESS)
        if not force and not self.is_stale(owner_id, entity_type):
            self._set_phase(key, SyncPhase.IDLE)
            return SyncOutcome(owner_id, entity_type, OutcomeStatus.FRESH, trigger=trigger)

        if not self._locks.try_acquire(key, token):
            if token.cancelled:
                return self._abandoned_outcome(key, trigger, None)
            return SyncOutcome(owner_id, entity_type, OutcomeStatus.BUSY, trigger=trigger)

        try:
            self._set_phase(key, SyncPhase.CHECKING_STALENESS, token)
            # Another attempt may have finished between the check and the lock
            if not force and not self.is_stale(owner_id, entity_type):
                self._set_phase(key, SyncPhase.IDLE, token)
                return SyncOutcome(owner_id, entity_type, OutcomeStatus.FRESH, trigger=trigger)
            return self._download(key, token, trigger)
        finally:
            self._locks.release(key, token)

    def _download(
        self,
        key: LockKey,
        token: AttemptToken,
        trigger: Trigger,
        prefer: SyncMode = SyncMode.DELTA,
    ) -> SyncOutcome:
        """Run one download attempt. Caller holds the lock."""
        owner_id, entity_type = key
        cursor = self.store.get_cursor(owner_id, entity_type)
        mode = SyncMode.DELTA if cursor is not None and prefer is SyncMode.DELTA else SyncMode.FULL
        fell_back = False

        try:
            if mode is SyncMode.DELTA:
                self._set_phase(key, SyncPhase.DELTA_SYNC, token)
                self._emit("sync_started", entity_type, mode)
                try:
                    delta = self.transport.download_changes(owner_id, entity_type, cursor.last_sync_time)
                except TransportFailure as e:
                    # One fallback per attempt, and only for transport trouble
                    self._emit("sync_error", entity_type, e.kind)
                    mode = SyncMode.FULL
                    fell_back = True
                else:
                    token.raise_if_cancelled()
                    self._validate_records(owner_id, delta.changes.created + delta.changes.updated)
                    self._validate_server_time(delta.server_time, cursor)
                    change_count = self._apply_delta(key, token, delta.changes, delta.server_time)
                    server_time = delta.server_time

            if mode is SyncMode.FULL:
                self._set_phase(key, SyncPhase.FULL_SYNC, token)
                self._emit("sync_started", entity_type, mode)
                snapshot = self.transport.download_full(owner_id, entity_type)
                token.raise_if_cancelled()
                self._validate_records(owner_id, snapshot.records)
                self._validate_server_time(snapshot.server_time, cursor)
                change_count = self._apply_full(key, token, snapshot.records)
                server_time = snapshot.server_time

            new_cursor = self._advance_cursor(key, token, server_time)
        except AttemptAbandoned:
            return self._abandoned_outcome(key, trigger, mode)
        except SyncError as e:
            return self._fail(key, token, e, trigger, mode, fell_back=fell_back)
        except Exception:
            self._set_phase(key, SyncPhase.ERROR, token)
            raise

        self._set_phase(key, SyncPhase.IDLE, token)
        self._emit("sync_completed", entity_type, mode, change_count)
        return SyncOutcome(
            owner_id,
            entity_type,
            OutcomeStatus.SYNCED,
            mode=mode,
            trigger=trigger,
            change_count=change_count,
            cursor=new_cursor,
            fell_back=fell_back,
        )

    def _apply_delta(self, key: LockKey, token: AttemptToken, changes: ChangeSet, server_time: int) -> int:
        """Apply deletes, then updates, then creates. Each step is idempotent."""
        owner_id, entity_type = key
        self._set_phase(key, SyncPhase.APPLYING, token)

        for entity_id in changes.deleted:
            token.raise_if_cancelled()
            self.store.soft_delete(owner_id, entity_type, entity_id, server_time)
        for record in changes.updated:
            token.raise_if_cancelled()
            self.store.upsert(entity_type, record)
        for record in changes.created:
            token.raise_if_cancelled()
            self.store.upsert(entity_type, record)
        return changes.total

    def _apply_full(self, key: LockKey, token: AttemptToken, records: list[EntityRecord]) -> int:
        """Replace the local table in one atomic step."""
        owner_id, entity_type = key
        self._set_phase(key, SyncPhase.APPLYING, token)
        token.raise_if_cancelled()
        self.store.replace_all(owner_id, entity_type, records)
        return len(records)

    def _validate_records(self, owner_id: str, records: list) -> None:
        for record in records:
            if not isinstance(record, EntityRecord):
                raise ValidationFailure(f"Server sent {type(record).__name__} where a record was expected")
            if record.owner_id != owner_id:
                raise ValidationFailure(f"Server sent record {record.id} owned by '{record.owner_id}'")

    def _validate_server_time(self, server_time: object, cursor: Optional[Cursor]) -> None:
        if isinstance(server_time, bool) or not isinstance(server_time, int):
            raise ValidationFailure(f"Server time must be an integer, got {server_time!r}")
        if cursor is not None and server_time < cursor.last_sync_time:
            raise ValidationFailure(
                f"Server time {server_time} would move cursor back from {cursor.last_sync_time}"
            )

    def _advance_cursor(self, key: LockKey, token: AttemptToken, server_time: int) -> Cursor:
        token.raise_if_cancelled()
        owner_id, entity_type = key
        return self.store.set_cursor(owner_id, entity_type, server_time)

    # Upload

    def push(
        self,
        owner_id: str,
        entity_type: str,
        pending: PendingChangeLog,
        *,
        token: Optional[AttemptToken] = None,
    ) -> SyncOutcome:
        """
        Upload pending local changes as a delta.

        Rejected without contacting the server while the replica is stale.
        A conflict discards the flushed entries and forces a refresh; a
        transport failure puts them back into the log.
        """
        return self._upload(owner_id, entity_type, SyncMode.UPLOAD_DELTA, pending, token)

    def push_full(
        self,
        owner_id: str,
        entity_type: str,
        pending: Optional[PendingChangeLog] = None,
        *,
        token: Optional[AttemptToken] = None,
    ) -> SyncOutcome:
        """Upload the whole local collection as a snapshot."""
        return self._upload(owner_id, entity_type, SyncMode.UPLOAD_FULL, pending, token)

    def _upload(
        self,
        owner_id: str,
        entity_type: str,
        mode: SyncMode,
        pending: Optional[PendingChangeLog],
        token: Optional[AttemptToken],
    ) -> SyncOutcome:
        key = (owner_id, entity_type)
        token = token or AttemptToken()
        trigger = Trigger.PRE_UPLOAD

        if mode is SyncMode.UPLOAD_DELTA and (pending is None or len(pending) == 0):
            return SyncOutcome(owner_id, entity_type, OutcomeStatus.NOTHING_TO_UPLOAD, mode=mode, trigger=trigger)

        if not self._locks.try_acquire(key, token):
            if token.cancelled:
                return self._abandoned_outcome(key, trigger, mode)
            return SyncOutcome(owner_id, entity_type, OutcomeStatus.BUSY, mode=mode, trigger=trigger)

        try:
            self._set_phase(key, SyncPhase.CHECKING_STALENESS, token)
            if self.is_stale(owner_id, entity_type):
                return self._reject_stale(key, token, mode)

            cursor = self.store.get_cursor(owner_id, entity_type)
            entries = pending.flush() if pending is not None else []
            try:
                receipt = self._send(key, token, mode, entries, cursor)
            except SyncError:
                if pending is not None:
                    pending.restore(entries)
                raise

            if receipt.conflict is not None:
                return self._handle_conflict(key, token, receipt.conflict, mode)

            self._validate_server_time(receipt.server_time, cursor)
            new_cursor = self._advance_cursor(key, token, receipt.server_time)
            self._set_phase(key, SyncPhase.IDLE, token)
        except AttemptAbandoned:
            return self._abandoned_outcome(key, trigger, mode)
        except SyncError as e:
            return self._fail(key, token, e, trigger, mode)
        except Exception:
            self._set_phase(key, SyncPhase.ERROR, token)
            raise
        finally:
            self._locks.release(key, token)

        self._emit("sync_completed", entity_type, mode, receipt.applied)
        return SyncOutcome(
            owner_id,
            entity_type,
            OutcomeStatus.UPLOADED,
            mode=mode,
            trigger=trigger,
            change_count=receipt.applied,
            cursor=new_cursor,
        )

    def _send(
        self, key: LockKey, token: AttemptToken, mode: SyncMode, entries: list[PendingChange], cursor: Cursor
    ) -> UploadReceipt:
        owner_id, entity_type = key
        self._set_phase(key, SyncPhase.UPLOADING, token)
        self._emit("sync_started", entity_type, mode)

        if mode is SyncMode.UPLOAD_FULL:
            records = self.store.list_all(owner_id, entity_type)
            return self.transport.upload_full(owner_id, entity_type, records, cursor.last_sync_time)

        changes = self.build_changes(owner_id, entity_type, entries)
        return self.transport.upload_delta(owner_id, entity_type, changes, cursor.last_sync_time)

    def build_changes(self, owner_id: str, entity_type: str, entries: list[PendingChange]) -> ChangeSet:
        """
        Turn pending entries into a change set from the local records.

        Entities are collapsed to one operation each; records that no
        longer exist locally are skipped.
        """
        changes = ChangeSet()
        for entity_id, op in collapse(entries).items():
            record = self.store.get(owner_id, entity_type, entity_id)
            if op is ChangeOp.DELETE or (record is not None and record.is_deleted):
                changes.deleted.append(entity_id)
            elif record is None:
                continue
            elif op is ChangeOp.CREATE:
                changes.created.append(record)
            else:
                changes.updated.append(record)
        return changes

    def _reject_stale(self, key: LockKey, token: AttemptToken, mode: SyncMode) -> SyncOutcome:
        owner_id, entity_type = key
        error = StaleWriteRejected(
            f"Replica for '{entity_type}' is stale; refresh before writing", entity_type=entity_type
        )
        self._emit("sync_error", entity_type, error.kind)

        refresh = None
        if self.refresh_on_stale_write:
            refresh = self._download(key, token, Trigger.PRE_UPLOAD)
        else:
            self._set_phase(key, SyncPhase.IDLE, token)

        return SyncOutcome(
            owner_id,
            entity_type,
            OutcomeStatus.REJECTED_STALE,
            mode=mode,
            trigger=Trigger.PRE_UPLOAD,
            error=error,
            refresh=refresh,
        )

    def _handle_conflict(self, key: LockKey, token: AttemptToken, conflict: Conflict, mode: SyncMode) -> SyncOutcome:
        """Drop the losing write and refresh. The write is never retried here."""
        owner_id, entity_type = key
        self._set_phase(key, SyncPhase.CONFLICT, token)
        self._emit("sync_conflict", entity_type, conflict.server_cursor, conflict.client_cursor)

        refresh = self._download(key, token, Trigger.CONFLICT, prefer=self.conflict_refresh)
        return SyncOutcome(
            owner_id,
            entity_type,
            OutcomeStatus.CONFLICT,
            mode=mode,
            trigger=Trigger.PRE_UPLOAD,
            error=conflict.to_error(),
            conflict=conflict,
            refresh=refresh,
        )

    # Failure paths

    def _fail(
        self,
        key: LockKey,
        token: AttemptToken,
        error: SyncError,
        trigger: Trigger,
        mode: Optional[SyncMode],
        *,
        fell_back: bool = False,
    ) -> SyncOutcome:
        owner_id, entity_type = key
        if error.entity_type is None:
            error.entity_type = entity_type
        self._set_phase(key, SyncPhase.ERROR, token)
        self._emit("sync_error", entity_type, error.kind)
        return SyncOutcome(
            owner_id,
            entity_type,
            OutcomeStatus.FAILED,
            mode=mode,
            trigger=trigger,
            fell_back=fell_back,
            error=error,
        )

    def _abandoned_outcome(self, key: LockKey, trigger: Trigger, mode: Optional[SyncMode]) -> SyncOutcome:
        # The safety timeout already reported this attempt
        owner_id, entity_type = key
        return SyncOutcome(
            owner_id,
            entity_type,
            OutcomeStatus.FAILED,
            mode=mode,
            trigger=trigger,
            error=SyncTimeout("Attempt abandoned by safety timeout", entity_type=entity_type),
        )

    def abandon(self, owner_id: str, entity_type: str, token: AttemptToken) -> bool:
        """
        Cancel an in-flight attempt after its safety timeout.

        Releases the lock held by ``token``, enters ERROR and reports a
        timeout. The worker notices the cancelled token at its next check
        and stops without touching the store or cursor.

        Returns:
            True if the attempt still held the lock and was abandoned.
        """
        key = (owner_id, entity_type)
        token.cancel()
        with self._phase_guard:
            if self._locks.holder(key) is not token:
                return False
            self._phases[key] = SyncPhase.ERROR
            self._locks.release(key, token)
        self._emit("sync_error", entity_type, SyncTimeout.kind)
        return True
