from abc import ABC, abstractmethod
from collections.abc import Iterable

from loguru import logger

from harvest.exceptions import DownloadEngineError
from harvest.services.downloaders.shared import DownloadEngine


class CancellationNotifier(ABC):
    """Told about engine handles that belong to a cancelled request."""

    @abstractmethod
    async def handles_cancelled(self, request_id: int, gids: Iterable[str]) -> None:
        """Best effort; must never raise for handles that are already gone."""


class EngineCancellationNotifier(CancellationNotifier):
    """Removes cancelled handles from the download engine without waiting on the outcome."""

    def __init__(self, engine: DownloadEngine):
        self.engine = engine

    async def handles_cancelled(self, request_id: int, gids: Iterable[str]) -> None:
        for gid in dict.fromkeys(gids):
            try:
                await self.engine.remove(gid)
                logger.log("ENGINE", f"Removed handle {gid} of cancelled request {request_id}")
            except DownloadEngineError as e:
                logger.debug(f"Could not remove handle {gid} of request {request_id}: {e}")
