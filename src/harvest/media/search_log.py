from datetime import datetime

import sqlalchemy
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, MappedAsDataclass, mapped_column

from harvest.db.base_model import Base


class SearchLog(MappedAsDataclass, Base, kw_only=True, eq=False):
    """Append-only audit of one search attempt"""

    __tablename__ = "SearchLog"

    id: Mapped[int] = mapped_column(sqlalchemy.Integer, primary_key=True, init=False)
    request_id: Mapped[int] = mapped_column(
        sqlalchemy.ForeignKey("MediaRequest.id", ondelete="CASCADE")
    )
    search_query: Mapped[str]
    indexers_searched: Mapped[list[str]] = mapped_column(
        sqlalchemy.JSON, default_factory=list
    )
    results_found: Mapped[int] = mapped_column(sqlalchemy.Integer, default=0)
    best_result_title: Mapped[str | None] = mapped_column(default=None)
    best_result_seeders: Mapped[int | None] = mapped_column(default=None)
    search_duration_ms: Mapped[int] = mapped_column(sqlalchemy.Integer, default=0)
    searched_at: Mapped[datetime] = mapped_column(
        sqlalchemy.DateTime, default_factory=datetime.now
    )

    __table_args__ = (
        Index("ix_searchlog_request_id", "request_id"),
        Index("ix_searchlog_searched_at", "searched_at"),
    )

    @property
    def is_error(self) -> bool:
        return "error" in self.indexers_searched
