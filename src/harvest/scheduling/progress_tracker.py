"""
Download progress tracking.

Polls the engine (through the aggregator) for every request with something
downloading, records new child handles and routes finished or failed
downloads to the orchestrator.
"""

from collections.abc import Sequence

from harvest.db import db_functions
from harvest.media.request import MediaRequest
from harvest.media.state import RequestStatus
from harvest.media.torrent_download import TorrentDownload
from harvest.scheduling.guard import SingleFlight
from harvest.services.downloaders.aggregator import DownloadAggregator
from harvest.services.downloaders.models import DownloadProgress
from harvest.services.lifecycle.orchestrator import LifecycleOrchestrator
from harvest.services.organizer.organize import DownloadOrganizer
from harvest.settings import settings_manager
from harvest.utils import benchmark
from harvest.utils.logging import logger


def locate(request: MediaRequest, download: TorrentDownload) -> tuple[int | None, int | None]:
    """Season and episode numbers a download record is linked to."""
    for season in request.seasons:
        if season.id != download.season_id:
            continue
        for episode in season.episodes:
            if episode.id == download.episode_id:
                return season.season_number, episode.episode_number
        return season.season_number, None
    return None, None


class ProgressTracker:
    def __init__(
        self,
        orchestrator: LifecycleOrchestrator,
        aggregator: DownloadAggregator,
        organizer: DownloadOrganizer | None = None,
    ):
        self.orchestrator = orchestrator
        self.aggregator = aggregator
        self.organizer = organizer
        self.guard = SingleFlight("Progress tracker")

    async def run_tick(self) -> int | None:
        """Check every in-flight request once. Returns None if a tick is already running."""
        with self.guard.acquire() as acquired:
            if not acquired:
                return None

            requests = db_functions.get_downloading_requests()
            if not requests:
                return 0

            with benchmark(log=lambda t: logger.debug(f"Checked {len(requests)} downloads in {t}s")):
                for request in requests:
                    await self.check_request(request)
            return len(requests)

    async def check_request(self, request: MediaRequest) -> None:
        """Check every handle of one request. Never raises."""
        for gid in request.tracked_gids():
            try:
                await self._check_handle(request, gid)
            except Exception as e:
                logger.exception(f"Progress check of {gid} for {request.log_string} failed: {e}")

    async def _check_handle(self, request: MediaRequest, gid: str) -> None:
        known = request.children_of(gid)
        progress = await self.aggregator.get_progress(gid, known)

        new_children = [c for c in progress.child_gids if c not in known]
        if new_children:
            self.orchestrator.attach_child_handles(gid, new_children)

        if progress.is_complete:
            await self._handle_completed(request, gid, progress)
        elif progress.is_failed:
            reason = progress.error_message or f"Download ended as {progress.status.value}"
            self._handle_failed(request, gid, reason)
        else:
            logger.debug(
                f"{request.log_string} {gid}: {progress.progress}% "
                f"at {progress.speed}, eta {progress.eta}"
            )

    def _downloads_for(self, request: MediaRequest, gid: str) -> list[TorrentDownload]:
        return [d for d in request.active_torrent_downloads() if d.engine_gid == gid]

    async def _handle_completed(
        self, request: MediaRequest, gid: str, progress: DownloadProgress
    ) -> None:
        children = progress.child_gids
        downloads = self._downloads_for(request, gid)

        if not downloads:
            await self._organize(request, gid, children)
            if request.status == RequestStatus.DOWNLOADING:
                await self.orchestrator.mark_as_completed(request.id, organize=False)
            return

        for download in downloads:
            self.orchestrator.complete_torrent_download(download.id)
            season, episode = locate(request, download)

            if season is None:
                await self._organize(request, gid, children)
                if request.status == RequestStatus.DOWNLOADING:
                    await self.orchestrator.mark_as_completed(request.id, organize=False)
            elif episode is None:
                await self._organize(request, gid, children, season)
                self.orchestrator.mark_season_pack_completed(request.id, season)
            else:
                await self._organize(request, gid, children, season, episode)
                self.orchestrator.mark_episode_completed(request.id, season, episode)

    def _handle_failed(self, request: MediaRequest, gid: str, reason: str) -> None:
        downloads = self._downloads_for(request, gid)

        if not downloads:
            if request.status == RequestStatus.DOWNLOADING:
                self.orchestrator.mark_as_failed(request.id, reason)
            return

        for download in downloads:
            self.orchestrator.fail_torrent_download(download.id)
            season, episode = locate(request, download)

            if season is None:
                if request.status == RequestStatus.DOWNLOADING:
                    self.orchestrator.mark_as_failed(request.id, reason)
            elif episode is None:
                self.orchestrator.mark_season_pack_failed(request.id, season, reason)
            else:
                self.orchestrator.mark_episode_failed(request.id, season, episode, reason)

    async def _organize(
        self,
        request: MediaRequest,
        gid: str,
        children: Sequence[str],
        season: int | None = None,
        episode: int | None = None,
    ) -> None:
        if not self.organizer or not settings_manager.settings.downloads.organize_on_complete:
            return
        try:
            await self.organizer.organize(request, gid, children, season, episode)
        except Exception as e:
            logger.error(f"Organization failed for {request.log_string}: {e}")
