"""Exception taxonomy shared by the lifecycle, scheduler and tracker."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from harvest.media.state import RequestStatus


class HarvestError(Exception):
    """Base class for all harvest errors"""


class EntityNotFoundError(HarvestError):
    """A requested entity does not exist."""


class RequestNotFoundError(EntityNotFoundError):
    def __init__(self, request_id: int):
        super().__init__(f"Request {request_id} not found")
        self.request_id = request_id


class IllegalTransitionError(HarvestError):
    """Raised before any write when a status change is not an edge of the lifecycle."""

    def __init__(self, from_status: "RequestStatus", to_status: "RequestStatus"):
        super().__init__(
            f"Illegal transition {from_status.value} -> {to_status.value}"
        )
        self.from_status = from_status
        self.to_status = to_status


class RequestUpdateError(HarvestError):
    """Raised when a request is edited outside of PENDING."""


class DownloadEngineError(HarvestError):
    """Transient failure talking to the download engine."""


class HandleNotFoundError(DownloadEngineError):
    def __init__(self, gid: str):
        super().__init__(f"Download handle {gid} is unknown to the engine")
        self.gid = gid


class IndexerError(HarvestError):
    """Transient failure talking to the indexer aggregator."""
