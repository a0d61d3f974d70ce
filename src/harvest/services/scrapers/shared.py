"""Indexer and ranking collaborator interfaces."""

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from harvest.media.models import TorrentCandidate
from harvest.media.request import MediaRequest


class SearchCriteria(BaseModel):
    query: str
    year: int | None = None
    season: int | None = None
    episode: int | None = None
    imdb_id: str | None = None
    tmdb_id: str | None = None
    tvdb_id: str | None = None
    igdb_id: str | None = None
    platform: str | None = None
    indexers: list[str] = Field(default_factory=list)
    min_seeders: int = 0
    max_size_gb: float | None = None
    limit: int = 50


class FilterCriteria(BaseModel):
    min_seeders: int = 0
    max_size_gb: float | None = None
    preferred_qualities: list[str] = Field(default_factory=list)
    preferred_formats: list[str] = Field(default_factory=list)
    blacklisted_words: list[str] = Field(default_factory=list)
    trusted_indexers: list[str] = Field(default_factory=list)

    @classmethod
    def from_request(cls, request: MediaRequest) -> "FilterCriteria":
        return cls(
            min_seeders=request.min_seeders,
            max_size_gb=request.max_size_gb,
            preferred_qualities=request.preferred_qualities,
            preferred_formats=request.preferred_formats,
            blacklisted_words=request.blacklisted_words,
            trusted_indexers=request.trusted_indexers,
        )


class IndexerAggregator(ABC):
    """Fans a query out to torrent indexers and returns unified candidates."""

    @abstractmethod
    async def search_movie(self, criteria: SearchCriteria) -> list[TorrentCandidate]:
        """Search movie candidates"""

    @abstractmethod
    async def search_tv(self, criteria: SearchCriteria) -> list[TorrentCandidate]:
        """Search season pack or episode candidates"""

    @abstractmethod
    async def search_game(self, criteria: SearchCriteria) -> list[TorrentCandidate]:
        """Search game candidates"""


class TorrentRanker(ABC):
    """Filters candidates against a request's preferences and orders them best first."""

    @abstractmethod
    def filter_and_rank(
        self, candidates: list[TorrentCandidate], criteria: FilterCriteria
    ) -> list[TorrentCandidate]:
        """Return the acceptable candidates, best first"""

    def select_best(
        self, candidates: list[TorrentCandidate], criteria: FilterCriteria
    ) -> TorrentCandidate | None:
        ranked = self.filter_and_rank(candidates, criteria)
        return ranked[0] if ranked else None
