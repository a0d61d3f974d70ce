from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel

from harvest.media.state import ContentType


class OrganizationContext(BaseModel):
    """Everything the organizer needs to place one finished file."""

    content_type: ContentType
    title: str
    year: int | None = None
    season: int | None = None
    episode: int | None = None
    platform: str | None = None
    quality: str | None = None
    format: str | None = None
    edition: str | None = None
    original_path: str
    file_name: str
    file_size: int | None = None
    destination_root: str | None = None


class OrganizationResult(BaseModel):
    success: bool
    original_path: str
    organized_path: str | None = None
    error: str | None = None

    @classmethod
    def failed(cls, original_path: str | Path, error: str) -> "OrganizationResult":
        return cls(success=False, original_path=str(original_path), error=error)


class FileOrganizer(ABC):
    """Moves and renames a finished file into the library."""

    @abstractmethod
    async def organize_file(
        self, context: OrganizationContext, request_id: int
    ) -> OrganizationResult:
        """
        Organize a single file

        Args:
            context: Metadata and hints describing the file
            request_id: The request the file belongs to

        Returns:
            OrganizationResult: Where the file ended up, or why it could not be moved
        """
