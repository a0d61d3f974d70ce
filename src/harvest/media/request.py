"""MediaRequest, Season and Episode models"""

from datetime import datetime
from typing import TYPE_CHECKING

import sqlalchemy
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, MappedAsDataclass, mapped_column, relationship

from harvest.db.base_model import Base
from harvest.media.state import (
    ContentType,
    DownloadStatus,
    EpisodeStatus,
    RequestStatus,
    SeasonStatus,
)

if TYPE_CHECKING:
    from harvest.media.torrent_download import TorrentDownload


class MediaRequest(MappedAsDataclass, Base, kw_only=True, eq=False):
    """A user's intent to acquire a movie, a TV season/episode, a whole show or a game."""

    __tablename__ = "MediaRequest"

    id: Mapped[int] = mapped_column(sqlalchemy.Integer, primary_key=True, init=False)
    content_type: Mapped[ContentType] = mapped_column(sqlalchemy.Enum(ContentType))
    title: Mapped[str]
    year: Mapped[int | None] = mapped_column(default=None)
    imdb_id: Mapped[str | None] = mapped_column(default=None)
    tmdb_id: Mapped[str | None] = mapped_column(default=None)
    tvdb_id: Mapped[str | None] = mapped_column(default=None)
    igdb_id: Mapped[str | None] = mapped_column(default=None)
    platform: Mapped[str | None] = mapped_column(default=None)

    # specific TV requests
    season: Mapped[int | None] = mapped_column(default=None)
    episode: Mapped[int | None] = mapped_column(default=None)
    is_ongoing: Mapped[bool] = mapped_column(sqlalchemy.Boolean, default=False)

    status: Mapped[RequestStatus] = mapped_column(
        sqlalchemy.Enum(RequestStatus), default=RequestStatus.PENDING
    )
    status_reason: Mapped[str | None] = mapped_column(default=None)
    priority: Mapped[int] = mapped_column(sqlalchemy.Integer, default=0)

    search_attempts: Mapped[int] = mapped_column(sqlalchemy.Integer, default=0)
    max_search_attempts: Mapped[int] = mapped_column(sqlalchemy.Integer, default=50)
    search_interval_mins: Mapped[int] = mapped_column(sqlalchemy.Integer, default=30)
    next_search_at: Mapped[datetime | None] = mapped_column(default=None)
    last_search_at: Mapped[datetime | None] = mapped_column(default=None)
    expires_at: Mapped[datetime | None] = mapped_column(default=None)

    preferred_qualities: Mapped[list[str]] = mapped_column(
        sqlalchemy.JSON, default_factory=list
    )
    preferred_formats: Mapped[list[str]] = mapped_column(
        sqlalchemy.JSON, default_factory=list
    )
    blacklisted_words: Mapped[list[str]] = mapped_column(
        sqlalchemy.JSON, default_factory=list
    )
    trusted_indexers: Mapped[list[str]] = mapped_column(
        sqlalchemy.JSON, default_factory=list
    )
    min_seeders: Mapped[int] = mapped_column(sqlalchemy.Integer, default=0)
    max_size_gb: Mapped[float | None] = mapped_column(default=None)

    found_title: Mapped[str | None] = mapped_column(default=None)
    found_link: Mapped[str | None] = mapped_column(default=None)
    found_magnet_uri: Mapped[str | None] = mapped_column(default=None)
    found_size: Mapped[int | None] = mapped_column(sqlalchemy.BigInteger, default=None)
    found_seeders: Mapped[int | None] = mapped_column(default=None)
    found_indexer: Mapped[str | None] = mapped_column(default=None)

    download_job_id: Mapped[str | None] = mapped_column(default=None)
    engine_gid: Mapped[str | None] = mapped_column(default=None)
    child_gids: Mapped[list[str]] = mapped_column(sqlalchemy.JSON, default_factory=list)

    created_at: Mapped[datetime] = mapped_column(
        sqlalchemy.DateTime, default_factory=datetime.now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sqlalchemy.DateTime, default_factory=datetime.now, onupdate=datetime.now
    )
    completed_at: Mapped[datetime | None] = mapped_column(default=None)

    seasons: Mapped[list["Season"]] = relationship(
        back_populates="request",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="Season.season_number",
        default_factory=list,
        repr=False,
    )
    torrent_downloads: Mapped[list["TorrentDownload"]] = relationship(
        back_populates="request",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="TorrentDownload.id",
        default_factory=list,
        repr=False,
    )

    __table_args__ = (
        Index("ix_mediarequest_status_next_search_at", "status", "next_search_at"),
        Index("ix_mediarequest_expires_at", "expires_at"),
        Index("ix_mediarequest_engine_gid", "engine_gid"),
    )

    @property
    def log_string(self) -> str:
        label = self.title
        if self.year:
            label = f"{label} ({self.year})"
        if self.season is not None and self.episode is not None:
            label = f"{label} S{self.season:02d}E{self.episode:02d}"
        elif self.season is not None:
            label = f"{label} S{self.season:02d}"
        return f"{label} [#{self.id}]"

    @property
    def attempts_exhausted(self) -> bool:
        return self.search_attempts >= self.max_search_attempts

    def clear_selection(self) -> None:
        """Forget the previously selected candidate and its download handle."""
        self.found_title = None
        self.found_link = None
        self.found_magnet_uri = None
        self.found_size = None
        self.found_seeders = None
        self.found_indexer = None
        self.download_job_id = None
        self.engine_gid = None
        self.child_gids = []

    def get_season(self, number: int) -> "Season | None":
        return next((s for s in self.seasons if s.season_number == number), None)

    def active_torrent_downloads(self) -> list["TorrentDownload"]:
        return [
            d for d in self.torrent_downloads if d.status == DownloadStatus.DOWNLOADING
        ]

    def tracked_gids(self) -> list[str]:
        """Primary handle first, then any in-flight TorrentDownload handles."""
        gids = [self.engine_gid] if self.engine_gid else []
        for download in self.active_torrent_downloads():
            if download.engine_gid and download.engine_gid not in gids:
                gids.append(download.engine_gid)
        return gids

    def children_of(self, gid: str) -> list[str]:
        """Child handles recorded for `gid` on this request or its downloads."""
        children = list(self.child_gids) if gid == self.engine_gid else []
        for download in self.torrent_downloads:
            if download.engine_gid == gid:
                children.extend(download.child_gids)
        return list(dict.fromkeys(children))


class Season(MappedAsDataclass, Base, kw_only=True, eq=False):
    """Season tracker of an ongoing show"""

    __tablename__ = "Season"

    id: Mapped[int] = mapped_column(sqlalchemy.Integer, primary_key=True, init=False)
    request_id: Mapped[int] = mapped_column(
        sqlalchemy.ForeignKey("MediaRequest.id", ondelete="CASCADE"), init=False
    )
    season_number: Mapped[int] = mapped_column(sqlalchemy.Integer)
    total_episodes: Mapped[int | None] = mapped_column(default=None)
    status: Mapped[SeasonStatus] = mapped_column(
        sqlalchemy.Enum(SeasonStatus), default=SeasonStatus.PENDING
    )
    request: Mapped[MediaRequest] = relationship(
        back_populates="seasons", init=False, repr=False
    )
    episodes: Mapped[list["Episode"]] = relationship(
        back_populates="season",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="Episode.episode_number",
        default_factory=list,
        repr=False,
    )

    __table_args__ = (
        Index("ix_season_request_id_number", "request_id", "season_number", unique=True),
    )

    def get_episode(self, number: int) -> "Episode | None":
        return next((e for e in self.episodes if e.episode_number == number), None)


class Episode(MappedAsDataclass, Base, kw_only=True, eq=False):
    """Episode tracker of an ongoing show"""

    __tablename__ = "Episode"

    id: Mapped[int] = mapped_column(sqlalchemy.Integer, primary_key=True, init=False)
    season_id: Mapped[int] = mapped_column(
        sqlalchemy.ForeignKey("Season.id", ondelete="CASCADE"), init=False
    )
    episode_number: Mapped[int] = mapped_column(sqlalchemy.Integer)
    title: Mapped[str | None] = mapped_column(default=None)
    air_date: Mapped[datetime | None] = mapped_column(default=None)
    status: Mapped[EpisodeStatus] = mapped_column(
        sqlalchemy.Enum(EpisodeStatus), default=EpisodeStatus.PENDING
    )
    season: Mapped[Season] = relationship(
        back_populates="episodes", init=False, repr=False
    )

    __table_args__ = (
        Index("ix_episode_season_id_number", "season_id", "episode_number", unique=True),
    )
