# Stalesync Errors
# Error taxonomy for synchronization attempts

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Kind of failure reported to observers and callers."""

    STALE_WRITE = "stale_write"
    CONFLICT = "conflict"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    AUTH = "auth"
    STORE = "store"


class SyncError(Exception):
    """Base class for all synchronization failures."""

    kind: ErrorKind = ErrorKind.TRANSPORT
    retryable: bool = False

    def __init__(self, message: str, *, entity_type: Optional[str] = None):
        super().__init__(message)
        self.entity_type = entity_type


class StaleWriteRejected(SyncError):
    """Upload attempted while the replica is known to be stale."""

    kind = ErrorKind.STALE_WRITE
    retryable = True


class ConflictDetected(SyncError):
    """Server cursor is ahead of the cursor presented by the writer."""

    kind = ErrorKind.CONFLICT
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        server_cursor: int,
        client_cursor: Optional[int],
        entity_type: Optional[str] = None,
    ):
        super().__init__(message, entity_type=entity_type)
        self.server_cursor = server_cursor
        self.client_cursor = client_cursor


class TransportFailure(SyncError):
    """Network or server failure; the request may succeed later."""

    kind = ErrorKind.TRANSPORT
    retryable = True


class SyncTimeout(TransportFailure):
    """Attempt abandoned by the safety timeout."""

    kind = ErrorKind.TIMEOUT


class ValidationFailure(SyncError):
    """Malformed server payload or schema violation."""

    kind = ErrorKind.VALIDATION


class AuthFailure(SyncError):
    """Credentials rejected; requires re-authentication."""

    kind = ErrorKind.AUTH


class StoreError(SyncError):
    """Local store refused a mutation (e.g. atomic replace failed)."""

    kind = ErrorKind.STORE
    retryable = True


class AttemptAbandoned(Exception):
    """Raised inside a worker whose attempt token was cancelled."""
