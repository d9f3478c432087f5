# Stalesync Sync Module
# Core synchronization: staleness, deltas, conflicts, coordination, scheduling

from stalesync.sync.conflict import Conflict, ConflictArbiter
from stalesync.sync.coordinator import OutcomeStatus, SyncCoordinator, SyncOutcome, SyncPhase
from stalesync.sync.delta import classify_records, compute_changes
from stalesync.sync.errors import (
    AuthFailure,
    ConflictDetected,
    ErrorKind,
    StaleWriteRejected,
    StoreError,
    SyncError,
    SyncTimeout,
    TransportFailure,
    ValidationFailure,
)
from stalesync.sync.interfaces import (
    Clock,
    Delta,
    EntityStore,
    RecordingObserver,
    Snapshot,
    SyncMode,
    SyncObserver,
    Transport,
    Trigger,
    UploadReceipt,
)
from stalesync.sync.locks import AttemptToken, LockTable
from stalesync.sync.records import ChangeOp, ChangeSet, Cursor, EntityRecord, PendingChange, PendingChangeLog
from stalesync.sync.scheduler import AdaptiveInterval, SyncScheduler, TickReport
from stalesync.sync.staleness import StalenessDetector
from stalesync.sync.transport import LocalTransport

__all__ = [
    # Records
    "EntityRecord",
    "Cursor",
    "ChangeSet",
    "ChangeOp",
    "PendingChange",
    "PendingChangeLog",
    # Interfaces
    "Clock",
    "EntityStore",
    "Transport",
    "Snapshot",
    "Delta",
    "UploadReceipt",
    "SyncObserver",
    "RecordingObserver",
    "SyncMode",
    "Trigger",
    # Errors
    "ErrorKind",
    "SyncError",
    "StaleWriteRejected",
    "ConflictDetected",
    "TransportFailure",
    "SyncTimeout",
    "ValidationFailure",
    "AuthFailure",
    "StoreError",
    # Staleness
    "StalenessDetector",
    # Delta
    "compute_changes",
    "classify_records",
    # Conflict
    "Conflict",
    "ConflictArbiter",
    # Coordinator
    "SyncCoordinator",
    "SyncOutcome",
    "SyncPhase",
    "OutcomeStatus",
    "AttemptToken",
    "LockTable",
    # Scheduler
    "SyncScheduler",
    "AdaptiveInterval",
    "TickReport",
    # Transport
    "LocalTransport",
]
