"""Configuration models for the transit snapshot service."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from transit_snapshot.source.vocabulary import ScheduleVocabulary


class StoreConfig(BaseModel):
    """Configuration for the on-disk snapshot."""

    data_dir: Path = Field(default=Path("database"), description="Directory holding snapshot and marker")
    snapshot_name: str = Field(default="schedule.db", min_length=1, description="Snapshot file name")
    marker_name: str = Field(
        default="last_update.txt", min_length=1, description="Marker file name"
    )

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / self.snapshot_name

    @property
    def marker_path(self) -> Path:
        return self.data_dir / self.marker_name


class SyncConfig(BaseModel):
    """Configuration for the sync cycle and its timer."""

    interval_seconds: int = Field(
        default=3600, ge=60, le=7 * 24 * 3600, description="Seconds between sync cycles"
    )
    run_on_start: bool = Field(default=True, description="Run one cycle as soon as the timer starts")
    fetch_retries: int = Field(default=3, ge=0, le=10, description="Retries per source call")
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="Initial retry delay in seconds")
    retry_max_delay: float = Field(default=60.0, ge=0.0, description="Maximum retry delay in seconds")


class SourceConfig(BaseModel):
    """Configuration for the schedule source collaborator."""

    factory: str = Field(
        default="transit_snapshot.source.yaml_source:YamlScheduleSource",
        description="Dotted path 'module:callable' building the source",
    )
    options: dict[str, Any] = Field(
        default_factory=dict, description="Keyword arguments passed to the factory"
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    This class uses pydantic-settings to load configuration from environment
    variables with the TRANSIT_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRANSIT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    vocabulary: ScheduleVocabulary = Field(default_factory=ScheduleVocabulary)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
