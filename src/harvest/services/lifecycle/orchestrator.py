"""
Request lifecycle orchestration.

The orchestrator is the only writer of status fields on requests, seasons,
episodes and torrent downloads. Every operation loads the request in its own
session, validates the edge, persists exactly one change and returns the
detached, updated request.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from harvest import state_transition
from harvest.db import db_functions
from harvest.db.db import db_session
from harvest.exceptions import EntityNotFoundError, IllegalTransitionError, RequestNotFoundError
from harvest.media.models import DownloadHandle, TorrentCandidate
from harvest.media.request import Episode, MediaRequest, Season
from harvest.media.state import DownloadStatus, EpisodeStatus, RequestStatus, SeasonStatus
from harvest.media.torrent_download import TorrentDownload
from harvest.services.downloaders.aggregator import DownloadAggregator
from harvest.services.downloaders.models import DownloadSummary, RequestDownloadStatus
from harvest.services.lifecycle.cancellation import CancellationNotifier
from harvest.services.lifecycle.rollup import apply_rollup
from harvest.services.organizer.organize import DownloadOrganizer
from harvest.settings import settings_manager
from harvest.utils.nursery import run_in_background


class LifecycleOrchestrator:
    def __init__(
        self,
        aggregator: DownloadAggregator,
        organizer: DownloadOrganizer | None = None,
        cancellation_notifier: CancellationNotifier | None = None,
    ):
        self.aggregator = aggregator
        self.organizer = organizer
        self.cancellation_notifier = cancellation_notifier

    @contextmanager
    def _request(self, request_id: int) -> Iterator[tuple[Session, MediaRequest]]:
        with db_session() as session:
            request = db_functions.get_request_by_id(request_id, session=session)
            if not request:
                raise RequestNotFoundError(request_id)
            yield session, request

    def _save(self, session: Session, request: MediaRequest) -> MediaRequest:
        session.commit()
        session.expunge(request)
        return request

    # Request level transitions

    def start_search(self, request_id: int) -> MediaRequest:
        """
        Move a request into SEARCHING and spend one search attempt.

        FAILED, CANCELLED and EXPIRED requests are administratively reset first,
        which clears their budget counters and previous selection.
        """
        now = datetime.now()
        with self._request(request_id) as (session, request):
            if request.status.is_soft_terminal:
                state_transition.reset(request, RequestStatus.PENDING)
                logger.log("REQUEST", f"Reset {request.log_string} for a new search")

            state_transition.apply_transition(request, RequestStatus.SEARCHING)
            request.search_attempts += 1
            request.last_search_at = now
            request.next_search_at = now + timedelta(minutes=request.search_interval_mins)

            logger.log(
                "SEARCH",
                f"Searching {request.log_string} "
                f"(attempt {request.search_attempts}/{request.max_search_attempts})",
            )
            return self._save(session, request)

    def return_to_pending(self, request_id: int, progressed: bool = False) -> MediaRequest:
        """
        Nothing found: back to PENDING, or FAILED once the search budget is spent.

        An ongoing show that started a download this round (`progressed`) gets
        its budget back instead.
        """
        with self._request(request_id) as (session, request):
            if progressed:
                request.search_attempts = 0
                state_transition.apply_transition(request, RequestStatus.PENDING)
                request.next_search_at = datetime.now() + timedelta(
                    minutes=request.search_interval_mins
                )
                logger.log("SEARCH", f"{request.log_string} is acquiring, next search at {request.next_search_at:%H:%M}")
            elif request.attempts_exhausted:
                state_transition.apply_transition(request, RequestStatus.FAILED)
                request.status_reason = (
                    f"No result after {request.search_attempts} search attempts"
                )
                request.next_search_at = None
                logger.log("NOT_FOUND", f"Giving up on {request.log_string}: {request.status_reason}")
            else:
                state_transition.apply_transition(request, RequestStatus.PENDING)
                request.next_search_at = datetime.now() + timedelta(
                    minutes=request.search_interval_mins
                )
                logger.log(
                    "NOT_FOUND",
                    f"Nothing found for {request.log_string}, next search at {request.next_search_at:%H:%M}",
                )
            return self._save(session, request)

    def mark_as_found(self, request_id: int, candidate: TorrentCandidate) -> MediaRequest:
        with self._request(request_id) as (session, request):
            state_transition.apply_transition(request, RequestStatus.FOUND)
            request.found_title = candidate.title
            request.found_link = candidate.link
            request.found_magnet_uri = candidate.magnet_uri
            request.found_size = candidate.size
            request.found_seeders = candidate.seeders
            request.found_indexer = candidate.indexer
            request.status_reason = None

            logger.log(
                "SEARCH",
                f"Found {candidate.title} ({candidate.seeders} seeders) for {request.log_string}",
            )
            return self._save(session, request)

    def start_download(self, request_id: int, handle: DownloadHandle) -> MediaRequest:
        """Record the engine handle of the selected candidate and enter DOWNLOADING."""
        with self._request(request_id) as (session, request):
            state_transition.apply_transition(request, RequestStatus.DOWNLOADING)
            request.download_job_id = handle.job_id
            request.engine_gid = handle.gid
            request.next_search_at = None
            request.torrent_downloads.append(
                TorrentDownload(
                    torrent_title=request.found_title or request.title,
                    torrent_link=request.found_link,
                    magnet_uri=request.found_magnet_uri,
                    torrent_size=request.found_size,
                    seeders=request.found_seeders,
                    indexer=request.found_indexer,
                    download_job_id=handle.job_id,
                    engine_gid=handle.gid,
                )
            )

            logger.log("DOWNLOAD", f"Downloading {request.log_string} as {handle.gid}")
            return self._save(session, request)

    def record_handoff_failure(
        self, request_id: int, reason: str, spend_attempt: bool = False
    ) -> MediaRequest:
        """Keep a FOUND request's selection and retry the engine handoff later."""
        with self._request(request_id) as (session, request):
            if request.status != RequestStatus.FOUND:
                raise IllegalTransitionError(request.status, RequestStatus.DOWNLOADING)

            request.status_reason = reason
            if spend_attempt:
                request.search_attempts += 1
            request.next_search_at = datetime.now() + timedelta(
                minutes=request.search_interval_mins
            )
            logger.warning(f"Download handoff failed for {request.log_string}: {reason}")
            return self._save(session, request)

    async def mark_as_completed(self, request_id: int, organize: bool = True) -> MediaRequest:
        """
        Complete a request.

        Unless `organize` is False, file organization is started in the
        background afterwards; its outcome never touches the status.
        """
        with self._request(request_id) as (session, request):
            state_transition.apply_transition(request, RequestStatus.COMPLETED)
            request.completed_at = datetime.now()
            request.status_reason = None
            request = self._save(session, request)

        logger.log("COMPLETED", f"{request.log_string} completed")

        if organize and self._should_organize(request):
            await run_in_background(self._organize_request, request)

        return request

    def mark_as_failed(self, request_id: int, reason: str) -> MediaRequest:
        with self._request(request_id) as (session, request):
            state_transition.apply_transition(request, RequestStatus.FAILED)
            request.status_reason = reason
            request.next_search_at = None
            logger.error(f"{request.log_string} failed: {reason}")
            return self._save(session, request)

    async def mark_as_cancelled(
        self, request_id: int, reason: str = "Cancelled by user"
    ) -> MediaRequest:
        """
        Cancel a request and ask the engine to drop its handles.

        Handle removal is best effort: the request is CANCELLED whether or not
        the engine confirms, and removal errors are only logged.
        """
        now = datetime.now()
        with self._request(request_id) as (session, request):
            state_transition.apply_transition(request, RequestStatus.CANCELLED)
            request.status_reason = reason
            request.next_search_at = None

            gids = [request.engine_gid, *request.child_gids] if request.engine_gid else []
            episodes = {e.id: e for s in request.seasons for e in s.episodes}
            for download in request.active_torrent_downloads():
                download.status = DownloadStatus.CANCELLED
                download.completed_at = now
                if download.engine_gid:
                    gids.extend([download.engine_gid, *download.child_gids])
                # a re-armed show must search these episodes again
                episode = episodes.get(download.episode_id)
                if episode and episode.status == EpisodeStatus.DOWNLOADING:
                    episode.status = EpisodeStatus.PENDING
            self._apply_rollup(request)

            request = self._save(session, request)

        logger.log("REQUEST", f"Cancelled {request.log_string}: {reason}")

        if gids and self.cancellation_notifier:
            try:
                await self.cancellation_notifier.handles_cancelled(request.id, gids)
            except Exception as e:
                logger.debug(f"Handle cleanup for {request.log_string} failed: {e}")

        return request

    def reset_request(self, request_id: int) -> MediaRequest:
        """Re-arm a FAILED, CANCELLED or EXPIRED request so the next tick searches it."""
        with self._request(request_id) as (session, request):
            state_transition.reset(request, RequestStatus.PENDING)
            logger.log("REQUEST", f"Re-armed {request.log_string}")
            return self._save(session, request)

    def expire_request(self, request_id: int) -> MediaRequest:
        with self._request(request_id) as (session, request):
            state_transition.expire(request)
            request.status_reason = "Search window expired"
            logger.log("REQUEST", f"{request.log_string} expired")
            return self._save(session, request)

    # Torrent download records

    def complete_torrent_download(self, download_id: int) -> TorrentDownload:
        return self._finish_torrent_download(download_id, DownloadStatus.COMPLETED)

    def fail_torrent_download(self, download_id: int) -> TorrentDownload:
        return self._finish_torrent_download(download_id, DownloadStatus.FAILED)

    def _finish_torrent_download(
        self, download_id: int, status: DownloadStatus
    ) -> TorrentDownload:
        with db_session() as session:
            download = session.get(TorrentDownload, download_id)
            if not download:
                raise EntityNotFoundError(f"Torrent download {download_id} not found")

            if not download.status.is_final:
                download.status = status
                download.completed_at = datetime.now()
                session.commit()
                logger.log("DOWNLOAD", f"{download.torrent_title} is {status.value.lower()}")

            session.expunge(download)
            return download

    def attach_child_handles(self, gid: str, child_gids: list[str]) -> bool:
        """Persist child handles the engine spawned for `gid`. Returns True if any were new."""
        if not child_gids:
            return False

        with db_session() as session:
            owners: list[MediaRequest | TorrentDownload] = [
                *session.execute(select(MediaRequest).where(MediaRequest.engine_gid == gid)).scalars(),
                *session.execute(select(TorrentDownload).where(TorrentDownload.engine_gid == gid)).scalars(),
            ]

            changed = False
            for owner in owners:
                new = [c for c in child_gids if c not in owner.child_gids]
                if new:
                    owner.child_gids = [*owner.child_gids, *new]
                    changed = True

            if changed:
                session.commit()
                logger.log("ENGINE", f"Attached child handles {child_gids} to {gid}")
            return changed

    # Ongoing shows

    def _ensure_season(self, session: Session, request: MediaRequest, number: int) -> Season:
        season = request.get_season(number)
        if not season:
            season = Season(season_number=number)
            request.seasons.append(season)
            request.seasons.sort(key=lambda s: s.season_number)
            session.flush()
        return season

    def _ensure_episode(self, session: Session, season: Season, number: int) -> Episode:
        episode = season.get_episode(number)
        if not episode:
            episode = Episode(episode_number=number)
            season.episodes.append(episode)
            season.episodes.sort(key=lambda e: e.episode_number)
            session.flush()
        return episode

    def _require_open(self, request: MediaRequest) -> None:
        if not request.status.is_cancellable:
            raise IllegalTransitionError(request.status, RequestStatus.DOWNLOADING)

    def start_season_pack_download(
        self,
        request_id: int,
        season_number: int,
        candidate: TorrentCandidate,
        handle: DownloadHandle,
    ) -> MediaRequest:
        """Track a season pack download; the request's own status is left alone."""
        with self._request(request_id) as (session, request):
            self._require_open(request)
            season = self._ensure_season(session, request, season_number)
            request.torrent_downloads.append(
                self._new_download(candidate, handle, season_id=season.id)
            )
            session.flush()
            self._apply_rollup(request)

            logger.log(
                "DOWNLOAD",
                f"Downloading season pack {candidate.title} for {request.log_string}",
            )
            return self._save(session, request)

    def start_episode_download(
        self,
        request_id: int,
        season_number: int,
        episode_number: int,
        candidate: TorrentCandidate,
        handle: DownloadHandle,
    ) -> MediaRequest:
        """Track a single episode download; the request's own status is left alone."""
        with self._request(request_id) as (session, request):
            self._require_open(request)
            season = self._ensure_season(session, request, season_number)
            episode = self._ensure_episode(session, season, episode_number)
            episode.status = EpisodeStatus.DOWNLOADING
            request.torrent_downloads.append(
                self._new_download(
                    candidate, handle, season_id=season.id, episode_id=episode.id
                )
            )
            session.flush()
            self._apply_rollup(request)

            logger.log(
                "DOWNLOAD",
                f"Downloading {candidate.title} for {request.log_string} "
                f"S{season_number:02d}E{episode_number:02d}",
            )
            return self._save(session, request)

    def _new_download(
        self,
        candidate: TorrentCandidate,
        handle: DownloadHandle,
        season_id: int | None = None,
        episode_id: int | None = None,
    ) -> TorrentDownload:
        return TorrentDownload(
            season_id=season_id,
            episode_id=episode_id,
            torrent_title=candidate.title,
            torrent_link=candidate.link,
            magnet_uri=candidate.magnet_uri,
            torrent_size=candidate.size,
            seeders=candidate.seeders,
            indexer=candidate.indexer,
            download_job_id=handle.job_id,
            engine_gid=handle.gid,
        )

    def sync_seasons(self, request_id: int, seasons: dict[int, int | None]) -> MediaRequest:
        """Record known seasons and their episode counts for a show."""
        with self._request(request_id) as (session, request):
            for number, total_episodes in sorted(seasons.items()):
                season = self._ensure_season(session, request, number)
                if total_episodes is not None:
                    season.total_episodes = total_episodes
            self._apply_rollup(request)
            return self._save(session, request)

    def mark_season_pack_completed(self, request_id: int, season_number: int) -> MediaRequest:
        with self._request(request_id) as (session, request):
            season = self._get_season(request, season_number)
            season.status = SeasonStatus.COMPLETED
            for episode in season.episodes:
                episode.status = EpisodeStatus.COMPLETED
            self._finish_linked_downloads(request, DownloadStatus.COMPLETED, season=season)

            logger.log("COMPLETED", f"{request.log_string} season {season_number} completed")
            self._apply_rollup(request)
            return self._save(session, request)

    def mark_season_pack_failed(
        self, request_id: int, season_number: int, reason: str
    ) -> MediaRequest:
        with self._request(request_id) as (session, request):
            season = self._get_season(request, season_number)
            self._finish_linked_downloads(request, DownloadStatus.FAILED, season=season)

            logger.warning(f"{request.log_string} season {season_number} pack failed: {reason}")
            self._apply_rollup(request, reason)
            return self._save(session, request)

    def mark_episode_completed(
        self, request_id: int, season_number: int, episode_number: int
    ) -> MediaRequest:
        with self._request(request_id) as (session, request):
            season = self._get_season(request, season_number)
            episode = self._get_episode(season, episode_number)
            episode.status = EpisodeStatus.COMPLETED
            self._finish_linked_downloads(request, DownloadStatus.COMPLETED, episode=episode)

            logger.log(
                "COMPLETED",
                f"{request.log_string} S{season_number:02d}E{episode_number:02d} completed",
            )
            self._apply_rollup(request)
            return self._save(session, request)

    def mark_episode_failed(
        self, request_id: int, season_number: int, episode_number: int, reason: str
    ) -> MediaRequest:
        with self._request(request_id) as (session, request):
            season = self._get_season(request, season_number)
            episode = self._get_episode(season, episode_number)
            if episode.status != EpisodeStatus.COMPLETED:
                episode.status = EpisodeStatus.FAILED
            self._finish_linked_downloads(request, DownloadStatus.FAILED, episode=episode)

            logger.warning(
                f"{request.log_string} S{season_number:02d}E{episode_number:02d} failed: {reason}"
            )
            self._apply_rollup(request, reason)
            return self._save(session, request)

    def _get_season(self, request: MediaRequest, number: int) -> Season:
        season = request.get_season(number)
        if not season:
            raise EntityNotFoundError(f"Season {number} of request {request.id} not found")
        return season

    def _get_episode(self, season: Season, number: int) -> Episode:
        episode = season.get_episode(number)
        if not episode:
            raise EntityNotFoundError(
                f"Episode {number} of season {season.season_number} not found"
            )
        return episode

    def _finish_linked_downloads(
        self,
        request: MediaRequest,
        status: DownloadStatus,
        season: Season | None = None,
        episode: Episode | None = None,
    ) -> None:
        for download in request.active_torrent_downloads():
            linked = (episode is not None and download.episode_id == episode.id) or (
                season is not None
                and download.is_season_pack
                and download.season_id == season.id
            )
            if not linked:
                continue
            download.status = status
            download.completed_at = datetime.now()

    def _apply_rollup(self, request: MediaRequest, reason: str | None = None) -> None:
        result = apply_rollup(request)
        if not result.request_status:
            return

        state_transition.apply_transition(request, result.request_status)
        if result.request_status == RequestStatus.COMPLETED:
            request.completed_at = datetime.now()
            logger.log("COMPLETED", f"All seasons of {request.log_string} completed")
        else:
            request.status_reason = reason or "Every remaining season failed"
            logger.error(f"{request.log_string} failed: {request.status_reason}")

    # Organization

    def _should_organize(self, request: MediaRequest) -> bool:
        return bool(
            self.organizer
            and request.engine_gid
            and settings_manager.settings.downloads.organize_on_complete
        )

    async def _organize_request(self, request: MediaRequest) -> None:
        assert self.organizer and request.engine_gid
        try:
            await self.organizer.organize(
                request, request.engine_gid, request.children_of(request.engine_gid)
            )
        except Exception as e:
            logger.error(f"Organization failed for {request.log_string}: {e}")

    # Read-only views

    async def get_request_download_status(self, request_id: int) -> RequestDownloadStatus:
        request = db_functions.get_request_by_id(request_id)
        if not request:
            raise RequestNotFoundError(request_id)
        return await self.aggregator.get_request_download_status(request)

    async def get_download_summary(self) -> DownloadSummary:
        return await self.aggregator.get_download_summary(
            db_functions.get_downloading_requests(),
            db_functions.count_requests_by_status(),
        )
