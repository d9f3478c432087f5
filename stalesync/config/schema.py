# Stalesync Configuration Schema
# Pydantic models for YAML configuration validation

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator


class RefreshMode(str, Enum):
    """Download mode used for the forced refresh after a conflict."""

    DELTA = "delta"
    FULL = "full"


class ReplicaConfig(BaseModel):
    """Local replica storage."""

    path: str = Field(description="Directory holding the local replica")

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ in path."""
        return str(Path(v).expanduser())


class ServerConfig(BaseModel):
    """Server-side store used by the local transport."""

    path: str = Field(description="Directory holding the server copy (shared between replicas)")
    allowed_owners: list[str] | None = Field(
        default=None, description="Owners the server accepts. None = everyone."
    )

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ in path."""
        return str(Path(v).expanduser())


class EntityTypeConfig(BaseModel):
    """Configuration for a single entity type."""

    enabled: bool = Field(default=True, description="Whether this entity type is synced")
    description: str = Field(default="", description="Human-readable description")
    staleness_threshold_ms: int = Field(
        gt=0, description="Maximum tolerated age of the replica before it must be refreshed"
    )


class SchedulerConfig(BaseModel):
    """Periodic sync and safety timeout settings."""

    base_interval_ms: int = Field(default=60_000, gt=0, description="Tick interval while the user is active")
    max_interval_ms: int = Field(default=900_000, gt=0, description="Ceiling of the adaptive interval")
    adaptive: bool = Field(default=True, description="Double the interval on idle ticks")
    attempt_timeout_ms: int = Field(default=30_000, gt=0, description="Safety timeout per sync attempt")

    @model_validator(mode="after")
    def check_interval_bounds(self) -> "SchedulerConfig":
        """Ceiling must not be below the base interval."""
        if self.max_interval_ms < self.base_interval_ms:
            raise ValueError("max_interval_ms must be >= base_interval_ms")
        return self


class SyncBehaviorConfig(BaseModel):
    """Coordinator behavior."""

    conflict_refresh: RefreshMode = Field(
        default=RefreshMode.DELTA, description="Refresh mode after an upload conflict"
    )
    refresh_on_stale_write: bool = Field(
        default=True, description="Refresh immediately when an upload is rejected as stale"
    )


class OutputConfig(BaseModel):
    """Output and logging configuration."""

    verbose: bool = Field(default=False, description="Enable verbose output")
    colored: bool = Field(default=True, description="Enable colored output")
    log_file: str | None = Field(default=None, description="Path to sync event log")

    @field_validator("log_file")
    @classmethod
    def expand_optional_path(cls, v: str | None) -> str | None:
        """Expand ~ in optional path."""
        if v is None:
            return None
        return str(Path(v).expanduser())


class StalesyncConfig(BaseModel):
    """Root configuration model for stalesync."""

    owner_id: str = Field(min_length=1, description="Owner whose collections are replicated")
    replica: ReplicaConfig = Field(description="Local replica settings")
    server: ServerConfig = Field(description="Server store settings")
    entity_types: dict[str, EntityTypeConfig] = Field(default_factory=dict, description="Entity type definitions")
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig, description="Scheduler settings")
    sync: SyncBehaviorConfig = Field(default_factory=SyncBehaviorConfig, description="Coordinator settings")
    output: OutputConfig = Field(default_factory=OutputConfig, description="Output settings")

    def get_enabled_types(self) -> dict[str, EntityTypeConfig]:
        """Return only enabled entity types."""
        return {name: t for name, t in self.entity_types.items() if t.enabled}

    def get_entity_type(self, name: str) -> EntityTypeConfig | None:
        """Get an entity type by name."""
        return self.entity_types.get(name)

    def thresholds(self, *, include_disabled: bool = False) -> dict[str, int]:
        """Staleness thresholds, by default only for enabled entity types."""
        types = self.entity_types if include_disabled else self.get_enabled_types()
        return {name: t.staleness_threshold_ms for name, t in types.items()}
