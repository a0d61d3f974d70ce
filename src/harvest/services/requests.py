"""
Caller-facing request operations.

A thin pass-through over the store, the orchestrator and the schedulers that
a hosting application (HTTP controllers, a CLI) calls into.
"""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from harvest.db import db_functions
from harvest.db.db import db_session
from harvest.exceptions import DownloadEngineError, RequestNotFoundError, RequestUpdateError
from harvest.media.request import MediaRequest
from harvest.media.search_log import SearchLog
from harvest.media.state import ContentType, RequestStatus
from harvest.scheduling.search_scheduler import SearchScheduler
from harvest.services.downloaders.models import DownloadSummary, RequestDownloadStatus
from harvest.services.downloaders.shared import DownloadEngine
from harvest.services.lifecycle.orchestrator import LifecycleOrchestrator
from harvest.settings import settings_manager
from harvest.utils.logging import logger


class RequestCreate(BaseModel):
    content_type: ContentType
    title: str = Field(min_length=1)
    year: int | None = None
    imdb_id: str | None = None
    tmdb_id: str | None = None
    tvdb_id: str | None = None
    igdb_id: str | None = None
    platform: str | None = None
    season: int | None = Field(default=None, ge=0)
    episode: int | None = Field(default=None, ge=1)
    is_ongoing: bool = False
    priority: int = 0
    preferred_qualities: list[str] = Field(default_factory=list)
    preferred_formats: list[str] = Field(default_factory=list)
    blacklisted_words: list[str] = Field(default_factory=list)
    trusted_indexers: list[str] = Field(default_factory=list)
    min_seeders: int = Field(default=0, ge=0)
    max_size_gb: float | None = Field(default=None, gt=0)
    max_search_attempts: int | None = Field(default=None, ge=1)
    search_interval_mins: int | None = Field(default=None, ge=1)


class RequestUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    year: int | None = None
    priority: int | None = None
    preferred_qualities: list[str] | None = None
    preferred_formats: list[str] | None = None
    blacklisted_words: list[str] | None = None
    trusted_indexers: list[str] | None = None
    min_seeders: int | None = Field(default=None, ge=0)
    max_size_gb: float | None = Field(default=None, gt=0)
    max_search_attempts: int | None = Field(default=None, ge=1)
    search_interval_mins: int | None = Field(default=None, ge=1)


class RequestService:
    def __init__(
        self,
        orchestrator: LifecycleOrchestrator,
        search_scheduler: SearchScheduler,
        engine: DownloadEngine,
    ):
        self.orchestrator = orchestrator
        self.search_scheduler = search_scheduler
        self.engine = engine

    def create_request(self, data: RequestCreate) -> MediaRequest:
        """Store a new PENDING request with the configured defaults filled in."""
        defaults = settings_manager.settings.requests
        now = datetime.now()
        ongoing = data.is_ongoing and data.content_type == ContentType.TV_SHOW

        max_attempts = data.max_search_attempts or (
            defaults.ongoing_max_search_attempts if ongoing else defaults.max_search_attempts
        )
        expiry_days = defaults.ongoing_expiry_days if ongoing else defaults.expiry_days

        request = MediaRequest(
            **data.model_dump(exclude={"max_search_attempts", "search_interval_mins", "is_ongoing"}),
            is_ongoing=ongoing,
            max_search_attempts=max_attempts,
            search_interval_mins=data.search_interval_mins or defaults.search_interval_mins,
            next_search_at=now + timedelta(minutes=defaults.initial_search_delay_mins),
            expires_at=now + timedelta(days=expiry_days),
        )

        with db_session() as session:
            session.add(request)
            session.commit()
            session.expunge(request)

        logger.log("REQUEST", f"Created request {request.log_string}")
        return request

    def get_request(self, request_id: int) -> MediaRequest:
        request = db_functions.get_request_by_id(request_id)
        if not request:
            raise RequestNotFoundError(request_id)
        return request

    def list_requests(
        self,
        status: RequestStatus | None = None,
        content_type: ContentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[MediaRequest]:
        return db_functions.get_requests(status, content_type, limit, offset)

    def update_request(self, request_id: int, data: RequestUpdate) -> MediaRequest:
        """
        Edit a request's preferences.

        Raises:
            RequestNotFoundError: If the request does not exist
            RequestUpdateError: If the request is no longer PENDING
        """
        changes = data.model_dump(exclude_unset=True)
        if changes.get("title") is None:
            changes.pop("title", None)

        with db_session() as session:
            request = db_functions.get_request_by_id(request_id, session=session)
            if not request:
                raise RequestNotFoundError(request_id)
            if request.status != RequestStatus.PENDING:
                raise RequestUpdateError(
                    f"{request.log_string} is {request.status.value}, only PENDING requests can be updated"
                )

            for key, value in changes.items():
                setattr(request, key, value)

            session.commit()
            session.expunge(request)

        logger.log("REQUEST", f"Updated {request.log_string}: {', '.join(changes) or 'nothing'}")
        return request

    async def delete_request(self, request_id: int) -> bool:
        """Delete a request, cancelling it first if the engine still holds a handle for it."""
        request = self.get_request(request_id)

        if request.status.is_cancellable and request.tracked_gids():
            await self.orchestrator.mark_as_cancelled(request_id, "Request deleted")

        return db_functions.delete_request(request_id)

    async def trigger_search(self, request_id: int) -> MediaRequest:
        return await self.search_scheduler.search_for_specific_request(request_id)

    async def trigger_search_all(self) -> int | None:
        return await self.search_scheduler.search_for_all_requests()

    async def cancel_request(self, request_id: int, reason: str = "Cancelled by user") -> MediaRequest:
        return await self.orchestrator.mark_as_cancelled(request_id, reason)

    def retry_request(self, request_id: int) -> MediaRequest:
        return self.orchestrator.reset_request(request_id)

    async def pause_request(self, request_id: int) -> MediaRequest:
        return await self._toggle(request_id, pause=True)

    async def resume_request(self, request_id: int) -> MediaRequest:
        return await self._toggle(request_id, pause=False)

    async def _toggle(self, request_id: int, pause: bool) -> MediaRequest:
        """
        Pause or resume every handle of a request.

        Failures on a primary handle propagate; children the engine already
        dropped are skipped.
        """
        request = self.get_request(request_id)
        action = self.engine.pause if pause else self.engine.unpause

        for gid in request.tracked_gids():
            await action(gid)
            for child in request.children_of(gid):
                try:
                    await action(child)
                except DownloadEngineError as e:
                    logger.debug(f"Could not {'pause' if pause else 'resume'} child {child}: {e}")

        logger.log("DOWNLOAD", f"{'Paused' if pause else 'Resumed'} {request.log_string}")
        return request

    async def get_download_status(self, request_id: int) -> RequestDownloadStatus:
        return await self.orchestrator.get_request_download_status(request_id)

    async def get_download_summary(self) -> DownloadSummary:
        return await self.orchestrator.get_download_summary()

    def get_search_logs(self, request_id: int, limit: int = 20) -> list[SearchLog]:
        self.get_request(request_id)
        return db_functions.get_search_logs_for_request(request_id, limit)

    def get_recent_search_logs(self, limit: int = 50) -> list[SearchLog]:
        return db_functions.get_recent_search_logs(limit)

    def get_search_stats(self) -> dict[str, Any]:
        return db_functions.get_search_stats()

    def get_status_counts(self) -> dict[str, int]:
        return db_functions.count_requests_by_status()

    def update_season_metadata(
        self, request_id: int, seasons: dict[int, int | None]
    ) -> MediaRequest:
        """Record the known seasons of a show and how many episodes each has."""
        return self.orchestrator.sync_seasons(request_id, seasons)
