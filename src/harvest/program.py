import os
from dataclasses import dataclass

import trio
import trio_util
from kink import di

from harvest.db import db_functions
from harvest.db.db import create_database, validate_database
from harvest.scheduling import ProgramScheduler, ProgressTracker, SearchScheduler
from harvest.services.downloaders import DownloadAggregator, DownloadEngine
from harvest.services.lifecycle import EngineCancellationNotifier, LifecycleOrchestrator
from harvest.services.organizer import DownloadOrganizer, FileOrganizer
from harvest.services.requests import RequestService
from harvest.services.scrapers import IndexerAggregator, TorrentRanker
from harvest.settings import settings_manager
from harvest.utils import data_dir_path, get_version
from harvest.utils.logging import logger, setup_logger


@dataclass
class Services:
    engine: DownloadEngine
    indexer: IndexerAggregator
    ranker: TorrentRanker
    aggregator: DownloadAggregator
    organizer: DownloadOrganizer | None
    orchestrator: LifecycleOrchestrator
    search_scheduler: SearchScheduler
    progress_tracker: ProgressTracker
    requests: RequestService

    @classmethod
    def build(
        cls,
        engine: DownloadEngine,
        indexer: IndexerAggregator,
        ranker: TorrentRanker,
        file_organizer: FileOrganizer | None = None,
    ) -> "Services":
        """Wire the lifecycle components around the external collaborators."""

        aggregator = DownloadAggregator(engine)
        organizer = DownloadOrganizer(aggregator, file_organizer) if file_organizer else None
        orchestrator = LifecycleOrchestrator(
            aggregator,
            organizer,
            EngineCancellationNotifier(engine),
        )
        search_scheduler = SearchScheduler(orchestrator, engine, indexer, ranker)

        return cls(
            engine=engine,
            indexer=indexer,
            ranker=ranker,
            aggregator=aggregator,
            organizer=organizer,
            orchestrator=orchestrator,
            search_scheduler=search_scheduler,
            progress_tracker=ProgressTracker(orchestrator, aggregator, organizer),
            requests=RequestService(orchestrator, search_scheduler, engine),
        )


class Program:
    """Program class"""

    def __init__(self):
        self.initialized = trio_util.AsyncBool(False)
        self.services: Services | None = None
        self.scheduler_manager: ProgramScheduler | None = None

    def initialize_services(self) -> bool:
        """Build the services from the collaborators registered in the container."""

        missing = [
            dependency.__name__
            for dependency in (DownloadEngine, IndexerAggregator, TorrentRanker)
            if dependency not in di
        ]
        if missing:
            logger.error(f"No {', '.join(missing)} registered, cannot start.")
            return False

        file_organizer = di[FileOrganizer] if FileOrganizer in di else None
        if not file_organizer:
            logger.warning("No FileOrganizer registered, completed downloads stay in place.")

        self.services = Services.build(
            engine=di[DownloadEngine],
            indexer=di[IndexerAggregator],
            ranker=di[TorrentRanker],
            file_organizer=file_organizer,
        )

        di[LifecycleOrchestrator] = self.services.orchestrator
        di[RequestService] = self.services.requests
        return True

    def _apply_settings(self) -> None:
        setup_logger(settings_manager.settings.log_level)

    def start(self) -> bool:
        """Prepare the data directory, settings and database, then build the services."""

        logger.log("PROGRAM", f"Harvest v{get_version()} starting!")

        os.makedirs(data_dir_path, exist_ok=True)

        if not settings_manager.settings_file.exists():
            logger.log("PROGRAM", "Settings file not found, creating default settings")
            settings_manager.save()

        settings_manager.register_observer(self._apply_settings)

        if not validate_database() or not create_database():
            logger.error("Failed to prepare the database, exiting")
            return False

        if not self.initialize_services():
            return False

        for status, count in sorted(db_functions.count_requests_by_status().items()):
            logger.log("REQUEST", f"{status.title()}: {count}")

        return True

    async def run(self, search_now: bool = False) -> None:
        """Run the scheduled jobs until `stop` is called."""

        assert self.services

        async with trio.open_nursery() as nursery:
            self.scheduler_manager = ProgramScheduler(self)
            await nursery.start(self.scheduler_manager.start)

            self.initialized.value = True
            logger.success("Harvest is running!")

            if search_now:
                nursery.start_soon(self.services.search_scheduler.search_for_all_requests)

            await self.initialized.wait_value(False)
            await self.scheduler_manager.stop()

    def stop(self) -> None:
        if not self.initialized.value:
            return

        self.initialized.value = False
        logger.log("PROGRAM", "Harvest has been stopped.")
