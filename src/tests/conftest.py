# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from collections.abc import Callable, Iterator
from typing import Any

os.environ.setdefault("HARVEST_DATA_DIR", tempfile.mkdtemp(prefix="harvest-tests-"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from harvest.db.base_model import get_base_metadata
from harvest.db.db import db, db_session
from harvest.exceptions import HandleNotFoundError
from harvest.media.models import DownloadHandle, TorrentCandidate
from harvest.media.request import MediaRequest
from harvest.media.state import ContentType
from harvest.services.downloaders.aggregator import DownloadAggregator
from harvest.services.downloaders.models import (
    DownloadOptions,
    EngineState,
    EngineStatus,
    GlobalStats,
)
from harvest.services.downloaders.shared import DownloadEngine
from harvest.services.lifecycle import EngineCancellationNotifier, LifecycleOrchestrator
from harvest.services.organizer import (
    DownloadOrganizer,
    FileOrganizer,
    OrganizationContext,
    OrganizationResult,
)
from harvest.services.scrapers.shared import (
    FilterCriteria,
    IndexerAggregator,
    SearchCriteria,
    TorrentRanker,
)
from harvest.settings.models import SchedulerModel
from harvest.utils.logging import setup_logger

# Setup logger for tests to ensure custom log levels are available
setup_logger("DEBUG")


class FakeEngine(DownloadEngine):
    """In-memory download engine; statuses are set by the test."""

    def __init__(self):
        self.statuses: dict[str, EngineStatus] = {}
        self.errors: dict[str, Exception] = {}
        self.added: list[tuple[str, DownloadOptions | None]] = []
        self.removed: list[str] = []
        self.paused: list[str] = []
        self.unpaused: list[str] = []
        self.add_error: Exception | None = None
        self.remove_error: Exception | None = None
        self._counter = 0

    def set_status(self, gid: str, state: EngineState, **kwargs: Any) -> EngineStatus:
        self.statuses[gid] = EngineStatus(gid=gid, status=state, **kwargs)
        return self.statuses[gid]

    async def _add(self, uri: str, options: DownloadOptions | None) -> DownloadHandle:
        if self.add_error:
            raise self.add_error
        self._counter += 1
        gid = f"gid{self._counter}"
        self.added.append((uri, options))
        self.statuses.setdefault(gid, EngineStatus(gid=gid, status=EngineState.WAITING))
        return DownloadHandle(gid=gid)

    async def add_uri(self, uris, options=None):
        return await self._add(uris[0], options)

    async def add_magnet(self, magnet_uri, options=None):
        return await self._add(magnet_uri, options)

    async def add_torrent(self, torrent_url, options=None):
        return await self._add(torrent_url, options)

    async def get_status(self, gid):
        if gid in self.errors:
            raise self.errors[gid]
        if gid not in self.statuses:
            raise HandleNotFoundError(gid)
        return self.statuses[gid]

    async def pause(self, gid):
        if gid not in self.statuses:
            raise HandleNotFoundError(gid)
        self.paused.append(gid)

    async def unpause(self, gid):
        if gid not in self.statuses:
            raise HandleNotFoundError(gid)
        self.unpaused.append(gid)

    async def remove(self, gid):
        if self.remove_error:
            raise self.remove_error
        self.removed.append(gid)

    async def get_global_stats(self):
        return GlobalStats(num_active=len(self.statuses))


class FakeIndexer(IndexerAggregator):
    """Returns canned candidates per query and records every query."""

    def __init__(self):
        self.results: dict[str, list[TorrentCandidate]] = {}
        self.errors: dict[str, Exception] = {}
        self.queries: list[str] = []

    async def _search(self, criteria: SearchCriteria) -> list[TorrentCandidate]:
        self.queries.append(criteria.query)
        if criteria.query in self.errors:
            raise self.errors[criteria.query]
        return list(self.results.get(criteria.query, []))

    async def search_movie(self, criteria):
        return await self._search(criteria)

    async def search_tv(self, criteria):
        return await self._search(criteria)

    async def search_game(self, criteria):
        return await self._search(criteria)


class FakeRanker(TorrentRanker):
    """Drops candidates below the seeder floor, most seeded first."""

    def filter_and_rank(self, candidates, criteria: FilterCriteria):
        accepted = [c for c in candidates if c.seeders >= criteria.min_seeders]
        return sorted(accepted, key=lambda c: c.seeders, reverse=True)


class FakeFileOrganizer(FileOrganizer):
    def __init__(self):
        self.contexts: list[OrganizationContext] = []
        self.fail_on: set[str] = set()

    async def organize_file(self, context, request_id):
        self.contexts.append(context)
        if context.original_path in self.fail_on:
            raise OSError(f"cannot move {context.original_path}")
        return OrganizationResult(
            success=True,
            original_path=context.original_path,
            organized_path=f"{context.destination_root}/{context.file_name}",
        )


@pytest.fixture()
def test_db() -> Iterator[Engine]:
    """
    Fresh in-memory SQLite schema per test, bound into the global db so
    application code uses it.
    """
    original_engine = db.engine

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata = get_base_metadata()
    metadata.create_all(engine)

    db.engine = engine
    db.Session.configure(bind=engine)

    try:
        yield engine
    finally:
        metadata.drop_all(engine)
        engine.dispose()
        db.engine = original_engine
        db.Session.configure(bind=original_engine)


@pytest.fixture()
def add_request(test_db: Engine) -> Callable[..., MediaRequest]:
    """Factory storing a MediaRequest and returning it detached."""

    def _add(**kwargs: Any) -> MediaRequest:
        kwargs.setdefault("content_type", ContentType.MOVIE)
        kwargs.setdefault("title", "Example Movie")
        request = MediaRequest(**kwargs)
        with db_session() as session:
            session.add(request)
            session.commit()
            session.expunge(request)
        return request

    return _add


@pytest.fixture()
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def indexer() -> FakeIndexer:
    return FakeIndexer()


@pytest.fixture()
def ranker() -> FakeRanker:
    return FakeRanker()


@pytest.fixture()
def file_organizer() -> FakeFileOrganizer:
    return FakeFileOrganizer()


@pytest.fixture()
def aggregator(engine: FakeEngine) -> DownloadAggregator:
    return DownloadAggregator(engine, metadata_threshold=100_000)


@pytest.fixture()
def organizer(aggregator: DownloadAggregator, file_organizer: FakeFileOrganizer) -> DownloadOrganizer:
    return DownloadOrganizer(aggregator, file_organizer)


@pytest.fixture()
def orchestrator(
    test_db: Engine,
    aggregator: DownloadAggregator,
    organizer: DownloadOrganizer,
    engine: FakeEngine,
) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(aggregator, organizer, EngineCancellationNotifier(engine))


@pytest.fixture()
def scheduler_settings() -> SchedulerModel:
    return SchedulerModel(batch_size=3, batch_delay=0, episode_fallback_count=3)


@pytest.fixture()
def make_candidate() -> Callable[..., TorrentCandidate]:
    def _make(title: str, seeders: int = 10, **kwargs: Any) -> TorrentCandidate:
        kwargs.setdefault("magnet_uri", f"magnet:?dn={title}")
        return TorrentCandidate(title=title, seeders=seeders, indexer="fake", **kwargs)

    return _make
