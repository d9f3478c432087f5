# Stalesync Locks
# Non-blocking per-(owner, entity type) locks owned by attempt tokens

import itertools
import threading
from typing import Optional

from stalesync.sync.errors import AttemptAbandoned

LockKey = tuple[str, str]

_token_ids = itertools.count(1)


class AttemptToken:
    """
    Identity and cancellation flag of one sync attempt.

    The safety timeout cancels the token; the worker running the attempt
    checks it at its suspension points and stops.
    """

    def __init__(self):
        self.id = next(_token_ids)
        self._cancelled = threading.Event()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"AttemptToken(id={self.id}, {state})"

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise AttemptAbandoned(f"Attempt {self.id} was abandoned")


class LockTable:
    """
    Exclusive locks keyed by (owner, entity type).

    Acquisition never blocks: a caller finding the lock held gets False and
    is expected to drop its request. Only the token that acquired a lock can
    release it, so an abandoned worker finishing late cannot free a lock
    that a newer attempt holds.
    """

    def __init__(self):
        self._holders: dict[LockKey, AttemptToken] = {}
        self._guard = threading.Lock()

    def try_acquire(self, key: LockKey, token: AttemptToken) -> bool:
        """Take the lock for ``key`` if it is free. Cancelled tokens never get it."""
        with self._guard:
            if token.cancelled or key in self._holders:
                return False
            self._holders[key] = token
            return True

    def release(self, key: LockKey, token: AttemptToken) -> bool:
        """Release the lock if ``token`` holds it."""
        with self._guard:
            if self._holders.get(key) is not token:
                return False
            del self._holders[key]
            return True

    def holder(self, key: LockKey) -> Optional[AttemptToken]:
        """Token currently holding ``key``, if any."""
        with self._guard:
            return self._holders.get(key)

    def is_held(self, key: LockKey) -> bool:
        with self._guard:
            return key in self._holders
