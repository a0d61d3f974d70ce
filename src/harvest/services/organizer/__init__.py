from .organize import DownloadOrganizer
from .shared import FileOrganizer, OrganizationContext, OrganizationResult

__all__ = [
    "DownloadOrganizer",
    "FileOrganizer",
    "OrganizationContext",
    "OrganizationResult",
]
