from datetime import datetime
from typing import TYPE_CHECKING

import sqlalchemy
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, MappedAsDataclass, mapped_column, relationship

from harvest.db.base_model import Base
from harvest.media.state import DownloadStatus

if TYPE_CHECKING:
    from harvest.media.request import Episode, MediaRequest, Season


class TorrentDownload(MappedAsDataclass, Base, kw_only=True, eq=False):
    """
    Binds one engine download to a request.

    A download linked to a season but no episode is a season pack; one linked to
    an episode covers that episode only; one linked to neither covers the whole
    request. Once COMPLETED, FAILED or CANCELLED only `completed_at` may change.
    """

    __tablename__ = "TorrentDownload"

    id: Mapped[int] = mapped_column(sqlalchemy.Integer, primary_key=True, init=False)
    request_id: Mapped[int] = mapped_column(
        sqlalchemy.ForeignKey("MediaRequest.id", ondelete="CASCADE"), init=False
    )
    season_id: Mapped[int | None] = mapped_column(
        sqlalchemy.ForeignKey("Season.id", ondelete="SET NULL"), default=None
    )
    episode_id: Mapped[int | None] = mapped_column(
        sqlalchemy.ForeignKey("Episode.id", ondelete="SET NULL"), default=None
    )
    torrent_title: Mapped[str]
    torrent_link: Mapped[str | None] = mapped_column(default=None)
    magnet_uri: Mapped[str | None] = mapped_column(default=None)
    torrent_size: Mapped[int | None] = mapped_column(sqlalchemy.BigInteger, default=None)
    seeders: Mapped[int | None] = mapped_column(default=None)
    indexer: Mapped[str | None] = mapped_column(default=None)
    download_job_id: Mapped[str | None] = mapped_column(default=None)
    engine_gid: Mapped[str | None] = mapped_column(default=None)
    child_gids: Mapped[list[str]] = mapped_column(sqlalchemy.JSON, default_factory=list)
    status: Mapped[DownloadStatus] = mapped_column(
        sqlalchemy.Enum(DownloadStatus), default=DownloadStatus.DOWNLOADING
    )
    created_at: Mapped[datetime] = mapped_column(
        sqlalchemy.DateTime, default_factory=datetime.now
    )
    completed_at: Mapped[datetime | None] = mapped_column(default=None)

    request: Mapped["MediaRequest"] = relationship(
        back_populates="torrent_downloads", init=False, repr=False
    )
    season: Mapped["Season | None"] = relationship(init=False, repr=False)
    episode: Mapped["Episode | None"] = relationship(init=False, repr=False)

    __table_args__ = (
        Index("ix_torrentdownload_engine_gid", "engine_gid"),
        Index("ix_torrentdownload_status", "status"),
    )

    @property
    def is_season_pack(self) -> bool:
        return self.season_id is not None and self.episode_id is None

    @property
    def is_episode(self) -> bool:
        return self.episode_id is not None
