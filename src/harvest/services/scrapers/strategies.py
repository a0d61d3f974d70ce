"""Per content type search behavior, selected once per request."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from harvest.media.models import TorrentCandidate
from harvest.media.request import MediaRequest, Season
from harvest.media.state import ContentType, DownloadStatus, EpisodeStatus, SeasonStatus
from harvest.services.scrapers.shared import IndexerAggregator, SearchCriteria
from harvest.settings import settings_manager

ACQUIRED_DOWNLOAD_STATUSES = (DownloadStatus.DOWNLOADING, DownloadStatus.COMPLETED)
ACQUIRED_EPISODE_STATUSES = (EpisodeStatus.DOWNLOADING, EpisodeStatus.COMPLETED)


def season_tag(season: int, episode: int | None = None) -> str:
    if episode is None:
        return f"S{season:02d}"
    return f"S{season:02d}E{episode:02d}"


@dataclass
class SeasonPlan:
    """What an ongoing show should try to acquire next."""

    season_number: int
    search_pack: bool
    episodes: list[int] = field(default_factory=list)


class ContentStrategy(ABC):
    content_type: ContentType
    folder: str

    def build_query(
        self,
        request: MediaRequest,
        season: int | None = None,
        episode: int | None = None,
    ) -> str:
        return request.title

    def build_criteria(
        self,
        request: MediaRequest,
        season: int | None = None,
        episode: int | None = None,
    ) -> SearchCriteria:
        return SearchCriteria(
            query=self.build_query(request, season, episode),
            year=request.year,
            imdb_id=request.imdb_id,
            tmdb_id=request.tmdb_id,
            tvdb_id=request.tvdb_id,
            igdb_id=request.igdb_id,
            platform=request.platform,
            indexers=request.trusted_indexers,
            min_seeders=request.min_seeders,
            max_size_gb=request.max_size_gb,
            limit=settings_manager.settings.requests.search_result_limit,
        )

    @abstractmethod
    async def search(
        self, indexer: IndexerAggregator, criteria: SearchCriteria
    ) -> list[TorrentCandidate]:
        """Dispatch the query to the matching indexer search"""

    def destination(self, download_path: str | Path | None = None) -> Path:
        """Directory finished downloads of this content type are placed under."""
        base = download_path or settings_manager.settings.downloads.download_path
        return Path(base) / self.folder


class MovieStrategy(ContentStrategy):
    content_type = ContentType.MOVIE
    folder = "movies"

    def build_query(self, request, season=None, episode=None) -> str:
        if request.year:
            return f"{request.title} {request.year}"
        return request.title

    async def search(self, indexer, criteria):
        return await indexer.search_movie(criteria)


class TvShowStrategy(ContentStrategy):
    content_type = ContentType.TV_SHOW
    folder = "tv-shows"

    def build_query(self, request, season=None, episode=None) -> str:
        season = season if season is not None else request.season
        episode = episode if episode is not None else request.episode
        if season is None:
            return request.title
        return f"{request.title} {season_tag(season, episode)}"

    def build_criteria(self, request, season=None, episode=None) -> SearchCriteria:
        criteria = super().build_criteria(request, season, episode)
        criteria.season = season if season is not None else request.season
        criteria.episode = episode if episode is not None else request.episode
        return criteria

    async def search(self, indexer, criteria):
        return await indexer.search_tv(criteria)

    def pending_episodes(self, season: Season | None, count: int) -> list[int]:
        """The first `count` episode numbers not yet downloading or downloaded."""
        taken = set()
        limit = None
        if season:
            taken = {
                e.episode_number
                for e in season.episodes
                if e.status in ACQUIRED_EPISODE_STATUSES
            }
            limit = season.total_episodes

        episodes: list[int] = []
        number = 1
        while len(episodes) < count and (limit is None or number <= limit):
            if number not in taken:
                episodes.append(number)
            number += 1
        return episodes

    def plan_next_acquisition(self, request: MediaRequest, count: int) -> SeasonPlan:
        """
        Pick the season an ongoing show should acquire next.

        The first known season that is neither complete nor covered by a season
        pack wins. A season with no downloads yet gets a season pack search
        first; one already being filled episode by episode skips the pack so
        the two never overlap. Without such a season the show moves on to the
        season after the last known one, or season 1.
        """
        for season in request.seasons:
            if season.status == SeasonStatus.COMPLETED:
                continue

            downloads = [
                d
                for d in request.torrent_downloads
                if d.season_id == season.id and d.status in ACQUIRED_DOWNLOAD_STATUSES
            ]
            if any(d.is_season_pack for d in downloads):
                continue

            episodes = self.pending_episodes(season, count)
            has_episode_downloads = any(d.is_episode for d in downloads)
            if has_episode_downloads and not episodes:
                continue

            return SeasonPlan(
                season_number=season.season_number,
                search_pack=not has_episode_downloads,
                episodes=episodes,
            )

        next_number = request.seasons[-1].season_number + 1 if request.seasons else 1
        return SeasonPlan(
            season_number=next_number,
            search_pack=True,
            episodes=self.pending_episodes(None, count),
        )


class GameStrategy(ContentStrategy):
    content_type = ContentType.GAME
    folder = "games"

    async def search(self, indexer, criteria):
        return await indexer.search_game(criteria)


STRATEGIES: dict[ContentType, ContentStrategy] = {
    strategy.content_type: strategy
    for strategy in (MovieStrategy(), TvShowStrategy(), GameStrategy())
}


def get_strategy(content_type: ContentType) -> ContentStrategy:
    return STRATEGIES[content_type]
