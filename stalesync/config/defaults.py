# Stalesync Default Configuration
# Full default configuration as Python dict and YAML generator

import copy
from typing import Any

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "owner_id": "local-user",
    "replica": {
        "path": "~/.local/share/stalesync/replica",
    },
    "server": {
        "path": "~/.local/share/stalesync/server",
        "allowed_owners": None,
    },
    "entity_types": {
        # Edited all day long, refresh after three minutes
        "tasks": {
            "enabled": True,
            "description": "Individual tasks",
            "staleness_threshold_ms": 180_000,
        },
        # Rarely renamed or reordered
        "lists": {
            "enabled": True,
            "description": "Task lists",
            "staleness_threshold_ms": 1_800_000,
        },
        "tags": {
            "enabled": False,
            "description": "Tags attached to tasks",
            "staleness_threshold_ms": 3_600_000,
        },
    },
    "scheduler": {
        "base_interval_ms": 60_000,
        "max_interval_ms": 900_000,
        "adaptive": True,
        "attempt_timeout_ms": 30_000,
    },
    "sync": {
        "conflict_refresh": "delta",
        "refresh_on_stale_write": True,
    },
    "output": {
        "verbose": False,
        "colored": True,
        "log_file": "~/.config/stalesync/sync.log",
    },
}


def default_config() -> dict[str, Any]:
    """Deep copy of the defaults, safe to mutate."""
    return copy.deepcopy(DEFAULT_CONFIG)


def generate_default_config() -> str:
    """Generate default configuration as YAML string with comments."""
    header = """# stalesync configuration
# Version: 1.0
#
# Each entity type is refreshed once its replica is older than
# staleness_threshold_ms (milliseconds since the last confirmed sync).
#
# Refresh modes after an upload conflict:
#   - delta: download changes since the local cursor
#   - full:  replace the local collection with the server snapshot
#
# The scheduler ticks every base_interval_ms while the user is active and
# doubles the interval on idle ticks, up to max_interval_ms.

"""
    return header + yaml.dump(DEFAULT_CONFIG, default_flow_style=False, sort_keys=False, allow_unicode=True)
