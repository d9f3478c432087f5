# Stalesync Utilities Module
# Helper functions for paths, atomic writes and clocks

from stalesync.utils.clock import ManualClock, SystemClock
from stalesync.utils.paths import (
    atomic_write,
    ensure_dir,
    expand_path,
    safe_name,
)

__all__ = [
    # Clock
    "SystemClock",
    "ManualClock",
    # Paths
    "expand_path",
    "ensure_dir",
    "atomic_write",
    "safe_name",
]
