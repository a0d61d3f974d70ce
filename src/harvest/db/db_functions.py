from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from harvest.media.request import MediaRequest
from harvest.media.search_log import SearchLog
from harvest.media.state import ContentType, DownloadStatus, RequestStatus
from harvest.media.torrent_download import TorrentDownload
from harvest.utils.logging import logger

from .db import db_session


@contextmanager
def _maybe_session(session: Session | None) -> Iterator[tuple[Session, bool]]:
    """
    Yield a (session, owns_session) pair.

    If `session` is None, create a new db.Session() and close it on exit.
    Otherwise, yield the caller-provided session and do not close it.
    """

    if session:
        yield session, False
        return

    with db_session() as s:
        yield s, True


def _detach(session: Session, entities: Sequence[Any]) -> list[Any]:
    for entity in entities:
        session.expunge(entity)
    return list(entities)


def get_request_by_id(
    request_id: int,
    session: Session | None = None,
) -> MediaRequest | None:
    """
    Retrieve a MediaRequest by its database ID.

    Seasons, episodes and torrent downloads are eagerly loaded so the returned
    request stays usable once detached from the session.

    Returns:
        MediaRequest | None: The detached request, or `None` if it does not exist.
    """

    with _maybe_session(session) as (_s, owns):
        request = _s.execute(
            select(MediaRequest).where(MediaRequest.id == request_id)
        ).scalar_one_or_none()

        if request and owns:
            _s.expunge(request)

        return request


def get_requests(
    status: RequestStatus | Sequence[RequestStatus] | None = None,
    content_type: ContentType | None = None,
    limit: int = 50,
    offset: int = 0,
    session: Session | None = None,
) -> list[MediaRequest]:
    """Paginated request listing, newest first."""

    query = select(MediaRequest)

    if isinstance(status, RequestStatus):
        query = query.where(MediaRequest.status == status)
    elif status:
        query = query.where(MediaRequest.status.in_(list(status)))

    if content_type:
        query = query.where(MediaRequest.content_type == content_type)

    query = query.order_by(MediaRequest.created_at.desc(), MediaRequest.id.desc())
    query = query.limit(limit).offset(offset)

    with _maybe_session(session) as (_s, owns):
        requests = _s.execute(query).scalars().all()
        return _detach(_s, requests) if owns else list(requests)


def count_requests_by_status(session: Session | None = None) -> dict[str, int]:
    with _maybe_session(session) as (_s, _):
        rows = _s.execute(
            select(MediaRequest.status, func.count(MediaRequest.id)).group_by(
                MediaRequest.status
            )
        ).all()
        return {status.value: count for status, count in rows}


def get_requests_due_for_search(
    now: datetime,
    limit: int | None = None,
    session: Session | None = None,
) -> list[MediaRequest]:
    """
    Requests the search scheduler should process on this tick.

    PENDING requests whose next search time has passed, that are still inside
    their time window and have search attempts left, plus FOUND requests whose
    download handoff has not happened yet. Highest priority first, then the
    longest waiting.
    """

    pending_due = (
        (MediaRequest.status == RequestStatus.PENDING)
        & (MediaRequest.search_attempts < MediaRequest.max_search_attempts)
        & or_(MediaRequest.expires_at.is_(None), MediaRequest.expires_at > now)
    )
    handoff_due = (MediaRequest.status == RequestStatus.FOUND) & (
        MediaRequest.engine_gid.is_(None)
    )

    query = (
        select(MediaRequest)
        .where(or_(pending_due, handoff_due))
        .where(
            or_(MediaRequest.next_search_at.is_(None), MediaRequest.next_search_at <= now)
        )
        .order_by(MediaRequest.priority.desc(), MediaRequest.next_search_at.asc())
    )

    if limit:
        query = query.limit(limit)

    with _maybe_session(session) as (_s, owns):
        requests = _s.execute(query).scalars().all()
        return _detach(_s, requests) if owns else list(requests)


def get_requests_for_manual_search(session: Session | None = None) -> list[MediaRequest]:
    """Requests an operator-triggered search-all may re-arm."""

    query = (
        select(MediaRequest)
        .where(
            MediaRequest.status.in_(
                [RequestStatus.PENDING, RequestStatus.FAILED, RequestStatus.EXPIRED]
            )
        )
        .order_by(MediaRequest.priority.desc(), MediaRequest.created_at.asc())
    )

    with _maybe_session(session) as (_s, owns):
        requests = _s.execute(query).scalars().all()
        return _detach(_s, requests) if owns else list(requests)


def get_downloading_requests(session: Session | None = None) -> list[MediaRequest]:
    """Requests in DOWNLOADING plus any request with an in-flight torrent download."""

    active_download = select(TorrentDownload.request_id).where(
        TorrentDownload.status == DownloadStatus.DOWNLOADING
    )
    query = (
        select(MediaRequest)
        .where(
            or_(
                (MediaRequest.status == RequestStatus.DOWNLOADING)
                & MediaRequest.engine_gid.is_not(None),
                MediaRequest.id.in_(active_download),
            )
        )
        .order_by(MediaRequest.id)
    )

    with _maybe_session(session) as (_s, owns):
        requests = _s.execute(query).scalars().all()
        return _detach(_s, requests) if owns else list(requests)


def get_expired_requests(
    now: datetime,
    session: Session | None = None,
) -> list[MediaRequest]:
    """PENDING or FAILED requests whose time window has closed."""

    query = select(MediaRequest).where(
        MediaRequest.status.in_([RequestStatus.PENDING, RequestStatus.FAILED]),
        MediaRequest.expires_at.is_not(None),
        MediaRequest.expires_at <= now,
    )

    with _maybe_session(session) as (_s, owns):
        requests = _s.execute(query).scalars().all()
        return _detach(_s, requests) if owns else list(requests)


def add_search_log(log: SearchLog, session: Session | None = None) -> SearchLog:
    with _maybe_session(session) as (_s, owns):
        _s.add(log)
        if owns:
            _s.commit()
            _s.expunge(log)
        return log


def get_search_logs_for_request(
    request_id: int,
    limit: int = 20,
    session: Session | None = None,
) -> list[SearchLog]:
    query = (
        select(SearchLog)
        .where(SearchLog.request_id == request_id)
        .order_by(SearchLog.searched_at.desc(), SearchLog.id.desc())
        .limit(limit)
    )

    with _maybe_session(session) as (_s, owns):
        logs = _s.execute(query).scalars().all()
        return _detach(_s, logs) if owns else list(logs)


def get_recent_search_logs(
    limit: int = 50,
    session: Session | None = None,
) -> list[SearchLog]:
    query = (
        select(SearchLog)
        .order_by(SearchLog.searched_at.desc(), SearchLog.id.desc())
        .limit(limit)
    )

    with _maybe_session(session) as (_s, owns):
        logs = _s.execute(query).scalars().all()
        return _detach(_s, logs) if owns else list(logs)


def get_search_stats(session: Session | None = None) -> dict[str, Any]:
    """Totals over every search ever logged."""

    with _maybe_session(session) as (_s, _):
        total, successful, average_duration = _s.execute(
            select(
                func.count(SearchLog.id),
                func.count(SearchLog.id).filter(SearchLog.results_found > 0),
                func.avg(SearchLog.search_duration_ms),
            )
        ).one()

    total = total or 0
    successful = successful or 0

    return {
        "total_searches": total,
        "successful_searches": successful,
        "success_rate": round(successful / total * 100, 1) if total else 0.0,
        "average_duration_ms": round(average_duration or 0),
    }


def delete_search_logs_older_than(
    cutoff: datetime,
    session: Session | None = None,
) -> int:
    with _maybe_session(session) as (_s, owns):
        result = _s.execute(delete(SearchLog).where(SearchLog.searched_at < cutoff))
        if owns:
            _s.commit()

    deleted = result.rowcount or 0
    if deleted:
        logger.log("DATABASE", f"Deleted {deleted} search logs older than {cutoff}")
    return deleted


def delete_request(request_id: int, session: Session | None = None) -> bool:
    """Delete a request with its seasons, episodes, downloads and search logs."""

    with _maybe_session(session) as (_s, owns):
        request = _s.get(MediaRequest, request_id)
        if not request:
            return False

        _s.execute(delete(SearchLog).where(SearchLog.request_id == request_id))
        _s.delete(request)

        if owns:
            _s.commit()

    logger.log("DATABASE", f"Deleted request {request_id}")
    return True
