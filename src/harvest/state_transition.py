"""
Request lifecycle state machine.

Pure transition table and validity checks. Nothing here touches the database;
callers validate an edge with `can_transition` (or let `apply_transition`
raise) before persisting anything.
"""

from harvest.exceptions import IllegalTransitionError
from harvest.media.request import MediaRequest
from harvest.media.state import CANCELLABLE_STATUSES, RequestStatus

TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset(
        {RequestStatus.SEARCHING, RequestStatus.CANCELLED}
    ),
    RequestStatus.SEARCHING: frozenset(
        {
            RequestStatus.PENDING,
            RequestStatus.FOUND,
            RequestStatus.FAILED,
            RequestStatus.CANCELLED,
        }
    ),
    RequestStatus.FOUND: frozenset(
        {RequestStatus.DOWNLOADING, RequestStatus.CANCELLED}
    ),
    RequestStatus.DOWNLOADING: frozenset(
        {RequestStatus.COMPLETED, RequestStatus.FAILED, RequestStatus.CANCELLED}
    ),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.FAILED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
}

# Administrative operations, deliberately not part of TRANSITIONS
RESETTABLE_STATUSES = frozenset(
    {RequestStatus.FAILED, RequestStatus.CANCELLED, RequestStatus.EXPIRED}
)
RESET_TARGETS = frozenset({RequestStatus.PENDING, RequestStatus.SEARCHING})
EXPIRABLE_STATUSES = frozenset({RequestStatus.PENDING, RequestStatus.FAILED})


def can_transition(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    """Check whether `from_status -> to_status` is a normal lifecycle edge."""
    return to_status in TRANSITIONS.get(from_status, frozenset())


def allowed_transitions(from_status: RequestStatus) -> frozenset[RequestStatus]:
    return TRANSITIONS.get(from_status, frozenset())


def apply_transition(request: MediaRequest, to_status: RequestStatus) -> MediaRequest:
    """
    Move `request` to `to_status` in memory.

    Raises:
        IllegalTransitionError: If the edge is not in the transition table.
    """
    if not can_transition(request.status, to_status):
        raise IllegalTransitionError(request.status, to_status)

    request.status = to_status
    return request


def reset(
    request: MediaRequest,
    to_status: RequestStatus = RequestStatus.PENDING,
) -> MediaRequest:
    """
    Re-arm a FAILED, CANCELLED or EXPIRED request.

    Clears the search budget counters, search timestamps and any previous
    selection before re-entering PENDING or SEARCHING.
    """
    if request.status not in RESETTABLE_STATUSES or to_status not in RESET_TARGETS:
        raise IllegalTransitionError(request.status, to_status)

    request.search_attempts = 0
    request.next_search_at = None
    request.last_search_at = None
    request.status_reason = None
    request.completed_at = None
    request.clear_selection()
    request.status = to_status
    return request


def expire(request: MediaRequest) -> MediaRequest:
    """Close a request whose time window has passed."""
    if request.status not in EXPIRABLE_STATUSES:
        raise IllegalTransitionError(request.status, RequestStatus.EXPIRED)

    request.status = RequestStatus.EXPIRED
    request.next_search_at = None
    return request


def is_cancellable(status: RequestStatus) -> bool:
    return status in CANCELLABLE_STATUSES
