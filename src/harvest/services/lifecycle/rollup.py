"""
Season and request roll-up for shows tracked per season/episode.

Pure functions over loaded entities; the orchestrator persists the outcome.
Recomputing over unchanged children yields no changes.
"""

from dataclasses import dataclass, field

from harvest.media.request import MediaRequest, Season
from harvest.media.state import DownloadStatus, EpisodeStatus, RequestStatus, SeasonStatus
from harvest.media.torrent_download import TorrentDownload
from harvest.state_transition import can_transition


@dataclass
class RollupResult:
    changed_seasons: list[Season] = field(default_factory=list)
    request_status: RequestStatus | None = None

    @property
    def changed(self) -> bool:
        return bool(self.changed_seasons) or self.request_status is not None


def compute_season_status(
    season: Season,
    downloads: list[TorrentDownload],
    is_ongoing: bool,
) -> SeasonStatus:
    if season.status == SeasonStatus.COMPLETED:
        return SeasonStatus.COMPLETED

    packs = [d for d in downloads if d.season_id == season.id and d.is_season_pack]
    if any(d.status == DownloadStatus.COMPLETED for d in packs):
        return SeasonStatus.COMPLETED

    episodes = season.episodes
    completed = [e for e in episodes if e.status == EpisodeStatus.COMPLETED]
    if episodes and len(completed) == len(episodes):
        # an ongoing show only knows a season is done once its size is known
        if not is_ongoing or (
            season.total_episodes is not None and len(completed) >= season.total_episodes
        ):
            return SeasonStatus.COMPLETED

    if any(d.status == DownloadStatus.DOWNLOADING for d in packs) or any(
        e.status == EpisodeStatus.DOWNLOADING for e in episodes
    ):
        return SeasonStatus.DOWNLOADING

    if episodes and all(e.status == EpisodeStatus.FAILED for e in episodes):
        return SeasonStatus.FAILED
    if not episodes and packs and all(d.status == DownloadStatus.FAILED for d in packs):
        return SeasonStatus.FAILED

    return SeasonStatus.PENDING


def compute_request_target(request: MediaRequest) -> RequestStatus | None:
    """
    Status the request should roll up to, or None to leave it alone.

    All seasons complete completes the request, except for ongoing shows which
    keep waiting for new seasons. A failed season fails the request only when
    nothing else is pending or downloading and no search budget is left.
    """
    statuses = [s.status for s in request.seasons]
    if not statuses:
        return None

    if all(status == SeasonStatus.COMPLETED for status in statuses):
        return None if request.is_ongoing else RequestStatus.COMPLETED

    has_alternative = any(
        status in (SeasonStatus.PENDING, SeasonStatus.DOWNLOADING) for status in statuses
    )
    if SeasonStatus.FAILED in statuses and not has_alternative:
        if request.is_ongoing and not request.attempts_exhausted:
            return None
        return RequestStatus.FAILED

    return None


def apply_rollup(request: MediaRequest) -> RollupResult:
    """Recompute season statuses, then the request target, mutating in memory."""
    result = RollupResult()

    for season in request.seasons:
        status = compute_season_status(season, request.torrent_downloads, request.is_ongoing)
        if status != season.status:
            season.status = status
            result.changed_seasons.append(season)

    target = compute_request_target(request)
    if target and target != request.status and can_transition(request.status, target):
        result.request_status = target

    return result
