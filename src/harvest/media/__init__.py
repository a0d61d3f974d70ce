from .state import (
    ContentType,
    DownloadStatus,
    EpisodeStatus,
    RequestStatus,
    SeasonStatus,
)
from .request import Episode, MediaRequest, Season
from .torrent_download import TorrentDownload
from .search_log import SearchLog
from .models import DownloadHandle, TorrentCandidate

__all__ = [
    "ContentType",
    "DownloadStatus",
    "EpisodeStatus",
    "RequestStatus",
    "SeasonStatus",
    "Episode",
    "MediaRequest",
    "Season",
    "TorrentDownload",
    "SearchLog",
    "DownloadHandle",
    "TorrentCandidate",
]
