"""
Download aggregation.

A torrent handed to the engine starts as a small metadata-resolving handle
(the parent) which the engine later "follows" into one or more content
handles (the children). The aggregator folds that hierarchy into one
progress/status view. Progress is always fetched live from the engine and
never persisted.
"""

import math
from collections.abc import Sequence

from loguru import logger

from harvest.exceptions import DownloadEngineError, HandleNotFoundError
from harvest.media.request import MediaRequest
from harvest.media.state import RequestStatus
from harvest.services.downloaders.models import (
    DownloadProgress,
    DownloadSummary,
    EngineFile,
    EngineState,
    EngineStatus,
    RequestDownloadStatus,
    UnifiedStatus,
)
from harvest.services.downloaders.shared import DownloadEngine
from harvest.settings import settings_manager

SPEED_UNITS = ["B/s", "KB/s", "MB/s", "GB/s"]


def format_speed(bytes_per_second: int) -> str:
    """Human readable transfer rate, base 1024 with one decimal."""
    if bytes_per_second <= 0:
        return "0 B/s"

    size = float(bytes_per_second)
    unit_index = 0
    while size >= 1024 and unit_index < len(SPEED_UNITS) - 1:
        size /= 1024
        unit_index += 1

    return f"{size:.1f} {SPEED_UNITS[unit_index]}"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_eta(total_size: int, completed_size: int, speed: int) -> str:
    """Remaining time as "Ns", "Nm" or "Hh Mm"; "∞" when it cannot be estimated."""
    if speed <= 0 or total_size <= 0 or completed_size >= total_size:
        return "∞"

    eta_seconds = _round_half_up((total_size - completed_size) / speed)

    if eta_seconds < 60:
        return f"{eta_seconds}s"
    if eta_seconds < 3600:
        return f"{_round_half_up(eta_seconds / 60)}m"

    hours = eta_seconds // 3600
    minutes = _round_half_up((eta_seconds % 3600) / 60)
    return f"{hours}h {minutes}m"


def calculate_progress(completed_size: int, total_size: int) -> int:
    """Whole percentage clamped to [0, 100]."""
    if total_size <= 0:
        return 0
    return max(0, min(100, _round_half_up(completed_size / total_size * 100)))


def resolve_children_status(
    parent_state: EngineState, children: Sequence[EngineState]
) -> UnifiedStatus:
    """
    Fold child states into one status.

    Any error wins, then any active child; the download is complete only once
    every child and the parent are complete. Children that were all removed
    (without error or activity) report REMOVED. Anything else is still settling.
    """
    if not children:
        return UnifiedStatus.UNRESOLVED
    if EngineState.ERROR in children:
        return UnifiedStatus.ERROR
    if EngineState.ACTIVE in children:
        return UnifiedStatus.ACTIVE
    if all(state == EngineState.COMPLETE for state in children):
        if parent_state == EngineState.COMPLETE:
            return UnifiedStatus.COMPLETE
        return UnifiedStatus.UNRESOLVED
    if all(
        state in (EngineState.COMPLETE, EngineState.REMOVED) for state in children
    ):
        return UnifiedStatus.REMOVED
    return UnifiedStatus.UNRESOLVED


class DownloadAggregator:
    """Unified progress over a parent engine handle and its children."""

    def __init__(self, engine: DownloadEngine, metadata_threshold: int | None = None):
        self.engine = engine
        self.metadata_threshold = (
            metadata_threshold
            if metadata_threshold is not None
            else settings_manager.settings.downloads.metadata_threshold_bytes
        )

    def is_metadata_only(self, status: EngineStatus) -> bool:
        """A finished torrent handle this small only carried metadata, not content."""
        return (
            status.bittorrent
            and status.status == EngineState.COMPLETE
            and status.total_length < self.metadata_threshold
        )

    async def get_progress(
        self, gid: str, known_children: Sequence[str] = ()
    ) -> DownloadProgress:
        """
        Fetch live status for `gid` and every child handle.

        Args:
            gid: The primary (parent) handle
            known_children: Child handles discovered on earlier polls, used when
                the engine has already purged the parent

        Returns:
            DownloadProgress: Totals come only from the children once they
            exist; the parent's own numbers are used otherwise.

        Raises:
            DownloadEngineError: If the engine fails for the primary handle
        """
        try:
            parent = await self.engine.get_status(gid)
        except HandleNotFoundError:
            if not known_children:
                logger.log("ENGINE", f"Handle {gid} is gone from the engine")
                return DownloadProgress(
                    gid=gid,
                    status=UnifiedStatus.REMOVED,
                    error_message="Download no longer exists in the engine",
                )
            # metadata handles are purged once they spawned their children
            parent = EngineStatus(gid=gid, status=EngineState.COMPLETE, bittorrent=True)

        child_gids = list(dict.fromkeys([*parent.followed_by, *known_children]))
        if not child_gids:
            return self._progress_from_parent(parent)

        children: list[EngineStatus] = []
        for child_gid in child_gids:
            try:
                children.append(await self.engine.get_status(child_gid))
            except HandleNotFoundError:
                logger.debug(f"Child handle {child_gid} of {gid} is gone from the engine")
                children.append(EngineStatus(gid=child_gid, status=EngineState.REMOVED))
            except DownloadEngineError as e:
                logger.debug(f"Could not fetch child handle {child_gid} of {gid}: {e}")

        return self._progress_from_children(parent, child_gids, children)

    def _progress_from_parent(self, parent: EngineStatus) -> DownloadProgress:
        if self.is_metadata_only(parent):
            return DownloadProgress(
                gid=parent.gid,
                status=UnifiedStatus.WAITING,
                total_size=0,
                completed_size=0,
                is_metadata_only=True,
            )

        total = max(0, parent.total_length)
        completed = min(max(0, parent.completed_length), total)
        speed = parent.download_speed if parent.status == EngineState.ACTIVE else 0

        return DownloadProgress(
            gid=parent.gid,
            status=UnifiedStatus.from_engine(parent.status),
            total_size=total,
            completed_size=completed,
            download_speed=speed,
            progress=calculate_progress(completed, total),
            eta=calculate_eta(total, completed, speed),
            speed=format_speed(speed),
            files=parent.files,
            error_message=parent.error_message,
        )

    def _progress_from_children(
        self,
        parent: EngineStatus,
        child_gids: list[str],
        children: list[EngineStatus],
    ) -> DownloadProgress:
        total = 0
        completed = 0
        speed = 0
        files: list[EngineFile] = []
        error_message = None

        for child in children:
            child_total = max(0, child.total_length)
            total += child_total
            completed += min(max(0, child.completed_length), child_total)
            if child.status == EngineState.ACTIVE:
                speed += child.download_speed
            if child.status == EngineState.ERROR and not error_message:
                error_message = child.error_message or f"Child download {child.gid} failed"
            files.extend(child.files)

        if len(children) < len(child_gids):
            # a child could not be read this tick, never call it complete
            status = resolve_children_status(
                parent.status, [c.status for c in children] + [EngineState.WAITING]
            )
        else:
            status = resolve_children_status(parent.status, [c.status for c in children])

        return DownloadProgress(
            gid=parent.gid,
            status=status,
            total_size=total,
            completed_size=completed,
            download_speed=speed,
            progress=calculate_progress(completed, total),
            eta=calculate_eta(total, completed, speed),
            speed=format_speed(speed),
            child_gids=child_gids,
            files=files,
            error_message=error_message,
        )

    async def is_download_complete(self, gid: str, known_children: Sequence[str] = ()) -> bool:
        return (await self.get_progress(gid, known_children)).is_complete

    async def is_download_failed(self, gid: str, known_children: Sequence[str] = ()) -> bool:
        return (await self.get_progress(gid, known_children)).is_failed

    async def collect_file_paths(
        self, gid: str, known_children: Sequence[str] = ()
    ) -> list[str]:
        """Every file path of the download, children first when they exist."""
        progress = await self.get_progress(gid, known_children)
        return list(dict.fromkeys(f.path for f in progress.files if f.path))

    async def get_request_download_status(
        self, request: MediaRequest
    ) -> RequestDownloadStatus:
        """Live download view of one request across all its tracked handles."""
        gids = request.tracked_gids()
        if request.status != RequestStatus.DOWNLOADING and not gids:
            progress = 100 if request.status == RequestStatus.COMPLETED else 0
            return RequestDownloadStatus(
                request_id=request.id,
                request_status=request.status.value,
                progress=progress,
            )

        downloads: list[DownloadProgress] = []
        for gid in gids:
            try:
                downloads.append(await self.get_progress(gid, request.children_of(gid)))
            except DownloadEngineError as e:
                logger.debug(f"Could not fetch download status for {gid}: {e}")
                downloads.append(
                    DownloadProgress(gid=gid, status=UnifiedStatus.ERROR, error_message=str(e))
                )

        total = sum(d.total_size for d in downloads)
        completed = sum(d.completed_size for d in downloads)
        speed = sum(d.download_speed for d in downloads)

        return RequestDownloadStatus(
            request_id=request.id,
            request_status=request.status.value,
            downloads=downloads,
            total_size=total,
            completed_size=completed,
            download_speed=speed,
            progress=calculate_progress(completed, total),
            eta=calculate_eta(total, completed, speed),
            speed=format_speed(speed),
        )

    async def get_download_summary(
        self,
        requests: Sequence[MediaRequest],
        status_counts: dict[str, int],
    ) -> DownloadSummary:
        """Summary over every in-flight request plus engine wide counters."""
        statuses = [await self.get_request_download_status(r) for r in requests]
        live = [s for s in statuses if s.downloads]

        speed = sum(s.download_speed for s in live)
        progress = _round_half_up(sum(s.progress for s in live) / len(live)) if live else 0
        unified = [d.status for s in live for d in s.downloads]

        try:
            engine_stats = await self.engine.get_global_stats()
        except DownloadEngineError as e:
            logger.debug(f"Could not fetch engine stats: {e}")
            engine_stats = None

        return DownloadSummary(
            total=sum(status_counts.values()),
            active=unified.count(UnifiedStatus.ACTIVE),
            waiting=unified.count(UnifiedStatus.WAITING) + unified.count(UnifiedStatus.UNRESOLVED),
            paused=unified.count(UnifiedStatus.PAUSED),
            completed=status_counts.get(RequestStatus.COMPLETED.value, 0),
            failed=status_counts.get(RequestStatus.FAILED.value, 0),
            progress=progress,
            download_speed=speed,
            speed=format_speed(speed),
            engine=engine_stats,
        )
