"""Harvest settings models"""

from typing import Any, Callable, Literal

from pydantic import BaseModel, Field, field_validator

from harvest.utils import data_dir_path, get_version


class Observable(BaseModel):
    class Config:
        arbitrary_types_allowed = True

    _notify_observers: Callable | None = None

    @classmethod
    def set_notify_observers(cls, notify_observers_callable):
        cls._notify_observers = notify_observers_callable

    def __setattr__(self, name, value):
        super().__setattr__(name, value)
        if self.__class__._notify_observers:
            self.__class__._notify_observers()


class SchedulerModel(Observable):
    search_interval: int = Field(
        default=60, ge=1, description="Seconds between search scheduler ticks"
    )
    tracker_interval: int = Field(
        default=30, ge=1, description="Seconds between download progress ticks"
    )
    expiry_interval: int = Field(
        default=60 * 60,
        ge=0,
        description="Seconds between expired request sweeps (0 to disable)",
    )
    search_log_cleanup_interval: int = Field(
        default=60 * 60 * 24,
        ge=0,
        description="Seconds between search log retention sweeps (0 to disable)",
    )
    batch_size: int = Field(
        default=3, ge=1, description="Requests searched concurrently per batch"
    )
    batch_delay: float = Field(
        default=2.0, ge=0, description="Seconds to wait between search batches"
    )
    episode_fallback_count: int = Field(
        default=3,
        ge=1,
        description="Episodes searched individually when no season pack is found",
    )


class RequestDefaultsModel(Observable):
    max_search_attempts: int = Field(
        default=50, ge=1, description="Search attempts before a request fails"
    )
    ongoing_max_search_attempts: int = Field(
        default=1000, ge=1, description="Search attempts for ongoing shows"
    )
    search_interval_mins: int = Field(
        default=30, ge=1, description="Minutes between searches of one request"
    )
    initial_search_delay_mins: int = Field(
        default=1, ge=0, description="Minutes before a new request is first searched"
    )
    expiry_days: int = Field(
        default=30, ge=1, description="Days before an unfulfilled request expires"
    )
    ongoing_expiry_days: int = Field(
        default=365, ge=1, description="Days before an ongoing show request expires"
    )
    search_result_limit: int = Field(
        default=50, ge=1, description="Maximum candidates requested from indexers"
    )
    search_log_retention_days: int = Field(
        default=30, ge=1, description="Days search logs are kept"
    )


class DownloadsModel(Observable):
    download_path: str = Field(
        default="/downloads", description="Root directory for organized downloads"
    )
    metadata_threshold_bytes: int = Field(
        default=100_000,
        ge=0,
        description="Completed torrent handles below this size are metadata only",
    )
    organize_on_complete: bool = Field(
        default=True, description="Organize files when a download completes"
    )


class DatabaseModel(Observable):
    host: str = Field(
        default_factory=lambda: f"sqlite:///{data_dir_path / 'harvest.db'}",
        description="Database connection string",
    )


class LoggingModel(Observable):
    enabled: bool = Field(default=True, description="Enable file logging")
    clean_interval: int = Field(
        default=60 * 60, description="Log cleanup interval in seconds (1 hour default)"
    )
    retention_hours: int = Field(
        default=24, description="Log retention period in hours"
    )
    rotation_mb: int = Field(default=10, description="Log file rotation size in MB")
    compression: Literal["zip", "gz", "bz2", "xz", "disabled"] = Field(
        default="disabled",
        description="Log compression format (empty for no compression)",
    )

    @field_validator("compression", mode="before")
    def check_compression(cls, v):
        if v == "" or not v:
            return "disabled"
        return v


class AppModel(Observable):
    version: str = Field(default_factory=get_version, description="Application version")
    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = (
        Field(default="INFO", description="Logging level")
    )
    scheduler: SchedulerModel = Field(
        default_factory=lambda: SchedulerModel(),
        description="Search scheduler and progress tracker configuration",
    )
    requests: RequestDefaultsModel = Field(
        default_factory=lambda: RequestDefaultsModel(),
        description="Defaults applied to new requests",
    )
    downloads: DownloadsModel = Field(
        default_factory=lambda: DownloadsModel(),
        description="Download and organization configuration",
    )
    database: DatabaseModel = Field(
        default_factory=lambda: DatabaseModel(), description="Database configuration"
    )
    logging: LoggingModel = Field(
        default_factory=lambda: LoggingModel(), description="Logging configuration"
    )

    @field_validator("log_level", mode="before")
    def check_debug(cls, v):
        if v is True:
            return "DEBUG"
        elif v is False:
            return "INFO"
        return v.upper()

    def __init__(self, **data: Any):
        current_version = get_version()
        existing_version = data.get("version", current_version)
        super().__init__(**data)
        if existing_version < current_version:
            self.version = current_version
