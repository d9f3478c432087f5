# Stalesync Configuration Module
# Handles YAML-based configuration loading, validation, and defaults

from stalesync.config.defaults import DEFAULT_CONFIG, default_config, generate_default_config
from stalesync.config.loader import (
    ensure_config_exists,
    get_config_path,
    load_config,
    save_config,
    validate_config_file,
)
from stalesync.config.schema import (
    EntityTypeConfig,
    OutputConfig,
    RefreshMode,
    ReplicaConfig,
    SchedulerConfig,
    ServerConfig,
    StalesyncConfig,
    SyncBehaviorConfig,
)

__all__ = [
    # Schema
    "StalesyncConfig",
    "ReplicaConfig",
    "ServerConfig",
    "EntityTypeConfig",
    "SchedulerConfig",
    "SyncBehaviorConfig",
    "OutputConfig",
    "RefreshMode",
    # Loader
    "load_config",
    "save_config",
    "get_config_path",
    "ensure_config_exists",
    "validate_config_file",
    # Defaults
    "DEFAULT_CONFIG",
    "default_config",
    "generate_default_config",
]
