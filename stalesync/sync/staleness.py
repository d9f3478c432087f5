# Stalesync Staleness Detector
# Decides from elapsed time alone whether a replica can be trusted

from collections.abc import Mapping
from typing import Optional

from stalesync.sync.records import Cursor


class StalenessDetector:
    """
    Compares ``now`` against a cursor using per-type thresholds.

    Thresholds are configuration supplied by the caller, in milliseconds.
    """

    def __init__(self, thresholds: Mapping[str, int], *, default_threshold: Optional[int] = None):
        """
        Initialize detector.

        Args:
            thresholds: Entity type to maximum tolerated age in milliseconds.
            default_threshold: Threshold for types missing from the mapping.
                If None, unknown types raise KeyError.
        """
        for entity_type, value in thresholds.items():
            if value < 0:
                raise ValueError(f"Threshold for '{entity_type}' must not be negative")
        self._thresholds = dict(thresholds)
        self._default = default_threshold

    @property
    def entity_types(self) -> list[str]:
        """Entity types with an explicit threshold."""
        return list(self._thresholds)

    def threshold(self, entity_type: str) -> int:
        """Get the threshold for an entity type."""
        if entity_type in self._thresholds:
            return self._thresholds[entity_type]
        if self._default is not None:
            return self._default
        raise KeyError(f"No staleness threshold configured for '{entity_type}'")

    def is_stale(self, entity_type: str, cursor: Optional[Cursor], now: int) -> bool:
        """
        Check whether the replica for a type must be refreshed.

        A missing cursor is maximally stale. An age exactly equal to the
        threshold is still fresh.
        """
        threshold = self.threshold(entity_type)
        if cursor is None:
            return True
        return now - cursor.last_sync_time > threshold

    def elapsed(self, cursor: Optional[Cursor], now: int) -> Optional[int]:
        """Milliseconds since the cursor, or None without one."""
        if cursor is None:
            return None
        return now - cursor.last_sync_time

    def remaining(self, entity_type: str, cursor: Optional[Cursor], now: int) -> int:
        """Milliseconds until the replica turns stale (0 if already stale)."""
        if cursor is None:
            return 0
        return max(0, self.threshold(entity_type) - (now - cursor.last_sync_time))
