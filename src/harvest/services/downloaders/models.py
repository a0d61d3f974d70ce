from enum import Enum

from pydantic import BaseModel, Field


class EngineState(Enum):
    """Download states reported by the engine."""

    ACTIVE = "active"
    WAITING = "waiting"
    PAUSED = "paused"
    ERROR = "error"
    COMPLETE = "complete"
    REMOVED = "removed"


class UnifiedStatus(Enum):
    """Aggregate state of a parent handle and its children."""

    ACTIVE = "active"
    WAITING = "waiting"
    PAUSED = "paused"
    ERROR = "error"
    COMPLETE = "complete"
    REMOVED = "removed"
    UNRESOLVED = "unresolved"

    @classmethod
    def from_engine(cls, state: EngineState) -> "UnifiedStatus":
        return cls(state.value)


class EngineFile(BaseModel):
    path: str
    length: int = 0
    completed_length: int = 0
    selected: bool = True


class EngineStatus(BaseModel):
    """Live status of one engine handle."""

    gid: str
    status: EngineState
    total_length: int = 0
    completed_length: int = 0
    download_speed: int = 0
    upload_speed: int = 0
    followed_by: list[str] = Field(default_factory=list)
    following: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    files: list[EngineFile] = Field(default_factory=list)
    bittorrent: bool = False
    name: str | None = None


class GlobalStats(BaseModel):
    download_speed: int = 0
    upload_speed: int = 0
    num_active: int = 0
    num_waiting: int = 0
    num_stopped: int = 0


class DownloadOptions(BaseModel):
    """Options passed along with a new download."""

    dir: str | None = None
    out: str | None = None
    seed_time: int | None = Field(default=0, description="Minutes to seed after completion")
    pause: bool = False


class DownloadProgress(BaseModel):
    """Unified progress view over a parent handle and its children."""

    gid: str
    status: UnifiedStatus
    total_size: int = 0
    completed_size: int = 0
    download_speed: int = 0
    progress: int = 0
    eta: str = "∞"
    speed: str = "0 B/s"
    child_gids: list[str] = Field(default_factory=list)
    files: list[EngineFile] = Field(default_factory=list)
    error_message: str | None = None
    is_metadata_only: bool = False

    @property
    def is_complete(self) -> bool:
        return self.status == UnifiedStatus.COMPLETE

    @property
    def is_failed(self) -> bool:
        return self.status in (UnifiedStatus.ERROR, UnifiedStatus.REMOVED)


class RequestDownloadStatus(BaseModel):
    request_id: int
    request_status: str
    downloads: list[DownloadProgress] = Field(default_factory=list)
    total_size: int = 0
    completed_size: int = 0
    download_speed: int = 0
    progress: int = 0
    eta: str = "∞"
    speed: str = "0 B/s"


class DownloadSummary(BaseModel):
    total: int = 0
    active: int = 0
    waiting: int = 0
    paused: int = 0
    completed: int = 0
    failed: int = 0
    progress: int = 0
    download_speed: int = 0
    speed: str = "0 B/s"
    engine: GlobalStats | None = None
