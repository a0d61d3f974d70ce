"""
Request lifecycle states.

RequestStatus is the node set of the lifecycle state machine. Seasons and
episodes of ongoing shows track their own coarser status, and every engine
download bound to a request is mirrored by a TorrentDownload status.

Request flow:
    PENDING → SEARCHING → FOUND → DOWNLOADING → COMPLETED
    SEARCHING → PENDING (nothing found, attempts remain)
    SEARCHING / DOWNLOADING → FAILED
    any non-terminal → CANCELLED
    PENDING / FAILED → EXPIRED (administrative)
"""

from enum import Enum


class ContentType(Enum):
    MOVIE = "MOVIE"
    TV_SHOW = "TV_SHOW"
    GAME = "GAME"


class RequestStatus(Enum):
    PENDING = "PENDING"
    SEARCHING = "SEARCHING"
    FOUND = "FOUND"
    DOWNLOADING = "DOWNLOADING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    @property
    def is_soft_terminal(self) -> bool:
        return self in SOFT_TERMINAL_STATUSES

    @property
    def is_cancellable(self) -> bool:
        return self in CANCELLABLE_STATUSES


SOFT_TERMINAL_STATUSES = frozenset(
    {RequestStatus.FAILED, RequestStatus.CANCELLED, RequestStatus.EXPIRED}
)

CANCELLABLE_STATUSES = frozenset(
    {
        RequestStatus.PENDING,
        RequestStatus.SEARCHING,
        RequestStatus.FOUND,
        RequestStatus.DOWNLOADING,
    }
)


class SeasonStatus(Enum):
    PENDING = "PENDING"
    DOWNLOADING = "DOWNLOADING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class EpisodeStatus(Enum):
    PENDING = "PENDING"
    DOWNLOADING = "DOWNLOADING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DownloadStatus(Enum):
    DOWNLOADING = "DOWNLOADING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_final(self) -> bool:
        return self is not DownloadStatus.DOWNLOADING
