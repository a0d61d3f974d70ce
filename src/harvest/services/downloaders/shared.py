from abc import ABC, abstractmethod

from harvest.media.models import DownloadHandle
from harvest.services.downloaders.models import DownloadOptions, EngineStatus, GlobalStats


class DownloadEngine(ABC):
    """The abstract base class for download engine clients."""

    @abstractmethod
    async def add_uri(
        self, uris: list[str], options: DownloadOptions | None = None
    ) -> DownloadHandle:
        """
        Start an HTTP/FTP download

        Args:
            uris: Mirrors of the same resource
            options: Destination and engine options

        Returns:
            DownloadHandle: The engine handle of the new download
        """

    @abstractmethod
    async def add_magnet(
        self, magnet_uri: str, options: DownloadOptions | None = None
    ) -> DownloadHandle:
        """
        Start a magnet download

        The returned handle usually only resolves torrent metadata; the engine
        later spawns the content handles as children of it.
        """

    @abstractmethod
    async def add_torrent(
        self, torrent_url: str, options: DownloadOptions | None = None
    ) -> DownloadHandle:
        """Start a download from a .torrent file URL"""

    @abstractmethod
    async def get_status(self, gid: str) -> EngineStatus:
        """
        Get the live status of a handle

        Raises:
            HandleNotFoundError: If the engine no longer knows the handle
            DownloadEngineError: On any other engine failure
        """

    @abstractmethod
    async def pause(self, gid: str) -> None:
        """Pause a download"""

    @abstractmethod
    async def unpause(self, gid: str) -> None:
        """Resume a paused download"""

    @abstractmethod
    async def remove(self, gid: str) -> None:
        """Remove a download from the engine"""

    @abstractmethod
    async def get_global_stats(self) -> GlobalStats:
        """Engine wide speed and queue counters"""

    async def start_download(
        self,
        uri: str,
        options: DownloadOptions | None = None,
    ) -> DownloadHandle:
        """Dispatch a candidate uri to the matching add_* call."""
        if uri.startswith("magnet:"):
            return await self.add_magnet(uri, options)
        if uri.split("?", 1)[0].endswith(".torrent"):
            return await self.add_torrent(uri, options)
        return await self.add_uri([uri], options)
