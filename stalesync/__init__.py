"""stalesync - staleness-driven replica synchronization.

Keeps local replicas of owner-scoped entity collections consistent with a
server copy by tracking per-type sync cursors instead of comparing content.
"""

__version__ = "1.0.0"

__all__ = [
    "__version__",
    "EntityRecord",
    "Cursor",
    "ChangeSet",
    "PendingChangeLog",
    "SyncCoordinator",
    "SyncOutcome",
    "SyncScheduler",
    "StalenessDetector",
    "ConflictArbiter",
    "compute_changes",
]


def __getattr__(name: str):
    """Lazy import to avoid loading dependencies during setup."""
    if name in ("EntityRecord", "Cursor", "ChangeSet", "PendingChangeLog"):
        from stalesync.sync import records

        return getattr(records, name)
    if name in ("SyncCoordinator", "SyncOutcome"):
        from stalesync.sync import coordinator

        return getattr(coordinator, name)
    if name == "SyncScheduler":
        from stalesync.sync.scheduler import SyncScheduler

        return SyncScheduler
    if name == "StalenessDetector":
        from stalesync.sync.staleness import StalenessDetector

        return StalenessDetector
    if name == "ConflictArbiter":
        from stalesync.sync.conflict import ConflictArbiter

        return ConflictArbiter
    if name == "compute_changes":
        from stalesync.sync.delta import compute_changes

        return compute_changes
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
