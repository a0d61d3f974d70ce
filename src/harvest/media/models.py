from pydantic import BaseModel, Field


class TorrentCandidate(BaseModel):
    """A search result chosen (or offered) for a request."""

    title: str
    link: str | None = None
    magnet_uri: str | None = None
    size: int | None = Field(default=None, description="Size in bytes")
    seeders: int = 0
    leechers: int = 0
    indexer: str | None = None
    info_hash: str | None = None

    @property
    def uri(self) -> str | None:
        return self.magnet_uri or self.link


class DownloadHandle(BaseModel):
    """Identifiers of a download handed to the engine."""

    gid: str
    download_job_id: str | None = None

    @property
    def job_id(self) -> str:
        return self.download_job_id or self.gid
