"""
Search scheduling.

Each tick selects the requests that are due, searches them in small batches
and hands the best candidate to the download engine. Every request is
processed in isolation: one failing search never aborts its batch.
"""

import time
from collections.abc import Sequence
from datetime import datetime, timedelta

import trio
from sqlalchemy.exc import SQLAlchemyError

from harvest.db import db_functions
from harvest.exceptions import (
    DownloadEngineError,
    HarvestError,
    IllegalTransitionError,
    RequestNotFoundError,
)
from harvest.media.models import TorrentCandidate
from harvest.media.request import MediaRequest
from harvest.media.search_log import SearchLog
from harvest.media.state import RequestStatus
from harvest.scheduling.guard import SingleFlight
from harvest.services.downloaders.models import DownloadOptions
from harvest.services.downloaders.shared import DownloadEngine
from harvest.services.lifecycle.orchestrator import LifecycleOrchestrator
from harvest.services.scrapers.shared import FilterCriteria, IndexerAggregator, TorrentRanker
from harvest.services.scrapers.strategies import (
    ContentStrategy,
    TvShowStrategy,
    get_strategy,
    season_tag,
)
from harvest.settings import settings_manager
from harvest.settings.models import SchedulerModel
from harvest.utils.logging import logger

SEARCHABLE_STATUSES = (
    RequestStatus.PENDING,
    RequestStatus.FAILED,
    RequestStatus.CANCELLED,
    RequestStatus.EXPIRED,
)


def batched(requests: Sequence[MediaRequest], size: int) -> list[Sequence[MediaRequest]]:
    return [requests[i : i + size] for i in range(0, len(requests), size)]


class SearchScheduler:
    def __init__(
        self,
        orchestrator: LifecycleOrchestrator,
        engine: DownloadEngine,
        indexer: IndexerAggregator,
        ranker: TorrentRanker,
        settings: SchedulerModel | None = None,
    ):
        self.orchestrator = orchestrator
        self.engine = engine
        self.indexer = indexer
        self.ranker = ranker
        self.settings = settings or settings_manager.settings.scheduler
        self.guard = SingleFlight("Search scheduler")

    async def run_tick(self) -> int | None:
        """
        Search every due request.

        Returns:
            int | None: Number of requests processed, or None if the tick was
            skipped because a previous one is still running.
        """
        with self.guard.acquire() as acquired:
            if not acquired:
                return None

            due = db_functions.get_requests_due_for_search(datetime.now())
            if not due:
                logger.debug("No requests due for search")
                return 0

            logger.log("SEARCH", f"Searching {len(due)} due requests")
            await self.process_batches(due)
            return len(due)

    async def search_for_all_requests(self) -> int | None:
        """Operator triggered search of every PENDING, FAILED and EXPIRED request."""
        with self.guard.acquire() as acquired:
            if not acquired:
                return None

            requests = [
                r
                for r in db_functions.get_requests_for_manual_search()
                if r.status.is_soft_terminal or not r.attempts_exhausted
            ]
            logger.log("SEARCH", f"Manual search of {len(requests)} requests")
            await self.process_batches(requests)
            return len(requests)

    async def search_for_specific_request(self, request_id: int) -> MediaRequest:
        """
        Operator triggered search of one request, outside the normal tick.

        Raises:
            RequestNotFoundError: If the request does not exist
            IllegalTransitionError: If the request cannot be searched right now
        """
        request = db_functions.get_request_by_id(request_id)
        if not request:
            raise RequestNotFoundError(request_id)

        if request.status not in SEARCHABLE_STATUSES and not self._awaits_handoff(request):
            raise IllegalTransitionError(request.status, RequestStatus.SEARCHING)

        await self.process_request(request)
        return db_functions.get_request_by_id(request_id) or request

    async def process_batches(self, requests: Sequence[MediaRequest]) -> None:
        for index, batch in enumerate(batched(requests, self.settings.batch_size)):
            if index and self.settings.batch_delay:
                await trio.sleep(self.settings.batch_delay)

            async with trio.open_nursery() as nursery:
                for request in batch:
                    nursery.start_soon(self.process_request, request)

    async def process_request(self, request: MediaRequest) -> None:
        """Search one request. Never raises; failures are logged and the request released."""
        try:
            if self._awaits_handoff(request):
                await self._retry_handoff(request)
                return

            strategy = get_strategy(request.content_type)
            if isinstance(strategy, TvShowStrategy) and request.is_ongoing:
                await self._process_ongoing(request, strategy)
            else:
                await self._process_single(request, strategy)
        except Exception as e:
            logger.exception(f"Search failed for {request.log_string}: {e}")
            self._release(request.id)

    def _awaits_handoff(self, request: MediaRequest) -> bool:
        return request.status == RequestStatus.FOUND and not request.engine_gid

    def _release(self, request_id: int) -> None:
        """Return a request left in SEARCHING by a failure to PENDING (or FAILED)."""
        try:
            request = db_functions.get_request_by_id(request_id)
            if request and request.status == RequestStatus.SEARCHING:
                self.orchestrator.return_to_pending(request_id)
        except (HarvestError, SQLAlchemyError) as e:
            logger.error(f"Could not release request {request_id}: {e}")

    def _start_search(self, request: MediaRequest) -> MediaRequest:
        try:
            return self.orchestrator.start_search(request.id)
        except Exception:
            self._log_search(request, request.title, ["error"], 0, None, time.monotonic())
            raise

    async def _process_single(self, request: MediaRequest, strategy: ContentStrategy) -> None:
        request = self._start_search(request)
        best = await self._search(request, strategy)

        if not best:
            self.orchestrator.return_to_pending(request.id)
            return

        request = self.orchestrator.mark_as_found(request.id, best)
        await self._hand_off(request, strategy, best)

    async def _process_ongoing(self, request: MediaRequest, strategy: TvShowStrategy) -> None:
        """
        Acquire the next piece of an ongoing show.

        A season pack is tried first; without one the first few missing
        episodes are searched one at a time. At most one download starts per
        tick and the request itself never enters FOUND.
        """
        request = self._start_search(request)
        try:
            plan = strategy.plan_next_acquisition(request, self.settings.episode_fallback_count)
        except Exception:
            self._log_search(request, request.title, ["error"], 0, None, time.monotonic())
            raise
        started = False

        if plan.search_pack:
            best = await self._search(request, strategy, plan.season_number)
            if best:
                started = await self._hand_off_tracked(request, strategy, best, plan.season_number)

        if not started:
            for episode in plan.episodes:
                best = await self._search(request, strategy, plan.season_number, episode)
                if best:
                    started = await self._hand_off_tracked(
                        request, strategy, best, plan.season_number, episode
                    )
                    break

        self.orchestrator.return_to_pending(request.id, progressed=started)

    async def _search(
        self,
        request: MediaRequest,
        strategy: ContentStrategy,
        season: int | None = None,
        episode: int | None = None,
    ) -> TorrentCandidate | None:
        """Query the indexers and rank the results. Always writes a search log."""
        started_at = time.monotonic()
        query = request.title

        try:
            criteria = strategy.build_criteria(request, season, episode)
            query = criteria.query
            candidates = await strategy.search(self.indexer, criteria)
            # a result the engine cannot fetch is never selected
            best = self.ranker.select_best(
                [c for c in candidates if c.uri], FilterCriteria.from_request(request)
            )
        except Exception:
            self._log_search(request, query, ["error"], 0, None, started_at)
            raise

        indexers = request.trusted_indexers or sorted(
            {c.indexer for c in candidates if c.indexer}
        ) or ["all"]
        self._log_search(request, criteria.query, indexers, len(candidates), best, started_at)

        if best:
            logger.log("SEARCH", f"Best result for '{criteria.query}': {best.title}")
        else:
            logger.log("NOT_FOUND", f"No acceptable result for '{criteria.query}'")
        return best

    def _log_search(
        self,
        request: MediaRequest,
        query: str,
        indexers: list[str],
        results: int,
        best: TorrentCandidate | None,
        started_at: float,
    ) -> None:
        try:
            db_functions.add_search_log(
                SearchLog(
                    request_id=request.id,
                    search_query=query,
                    indexers_searched=indexers,
                    results_found=results,
                    best_result_title=best.title if best else None,
                    best_result_seeders=best.seeders if best else None,
                    search_duration_ms=int((time.monotonic() - started_at) * 1000),
                )
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to write search log for {request.log_string}: {e}")

    def _download_options(self, strategy: ContentStrategy) -> DownloadOptions:
        return DownloadOptions(dir=str(strategy.destination()))

    async def _hand_off(
        self,
        request: MediaRequest,
        strategy: ContentStrategy,
        candidate: TorrentCandidate,
        retry: bool = False,
    ) -> bool:
        if not candidate.uri:
            self.orchestrator.record_handoff_failure(
                request.id, "Selected result has no link", spend_attempt=retry
            )
            return False

        try:
            handle = await self.engine.start_download(
                candidate.uri, self._download_options(strategy)
            )
        except DownloadEngineError as e:
            self.orchestrator.record_handoff_failure(request.id, str(e), spend_attempt=retry)
            return False

        self.orchestrator.start_download(request.id, handle)
        return True

    async def _hand_off_tracked(
        self,
        request: MediaRequest,
        strategy: ContentStrategy,
        candidate: TorrentCandidate,
        season: int,
        episode: int | None = None,
    ) -> bool:
        label = f"{request.title} {season_tag(season, episode)}"
        if not candidate.uri:
            logger.warning(f"Result {candidate.title} for {label} has no link")
            return False

        try:
            handle = await self.engine.start_download(
                candidate.uri, self._download_options(strategy)
            )
        except DownloadEngineError as e:
            logger.warning(f"Download handoff failed for {label}: {e}")
            return False

        if episode is None:
            self.orchestrator.start_season_pack_download(request.id, season, candidate, handle)
        else:
            self.orchestrator.start_episode_download(
                request.id, season, episode, candidate, handle
            )
        return True

    async def _retry_handoff(self, request: MediaRequest) -> None:
        """
        Hand a FOUND request's stored selection to the engine again.

        Every failed retry spends a search attempt. Once the budget is spent or
        the request's window has closed the request is cancelled instead.
        """
        candidate = TorrentCandidate(
            title=request.found_title or request.title,
            link=request.found_link,
            magnet_uri=request.found_magnet_uri,
            size=request.found_size,
            seeders=request.found_seeders or 0,
            indexer=request.found_indexer,
        )
        if request.attempts_exhausted:
            await self.orchestrator.mark_as_cancelled(
                request.id, f"Download handoff failed after {request.search_attempts} attempts"
            )
            return
        if request.expires_at and request.expires_at <= datetime.now():
            await self.orchestrator.mark_as_cancelled(
                request.id, "Search window expired before the download could start"
            )
            return

        logger.log("DOWNLOAD", f"Retrying download handoff for {request.log_string}")
        await self._hand_off(request, get_strategy(request.content_type), candidate, retry=True)

    def cleanup_expired_requests(self) -> int:
        """Expire PENDING and FAILED requests whose time window has closed."""
        expired = 0
        for request in db_functions.get_expired_requests(datetime.now()):
            try:
                self.orchestrator.expire_request(request.id)
                expired += 1
            except (HarvestError, SQLAlchemyError) as e:
                logger.error(f"Could not expire {request.log_string}: {e}")

        if expired:
            logger.log("REQUEST", f"Expired {expired} requests")
        return expired

    def cleanup_search_logs(self) -> int:
        retention = settings_manager.settings.requests.search_log_retention_days
        return db_functions.delete_search_logs_older_than(
            datetime.now() - timedelta(days=retention)
        )

