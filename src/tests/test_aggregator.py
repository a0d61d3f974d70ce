"""Tests for parent/child download aggregation."""

from __future__ import annotations

import pytest
import trio

from harvest.exceptions import DownloadEngineError
from harvest.media.request import MediaRequest
from harvest.media.state import ContentType, RequestStatus
from harvest.services.downloaders.aggregator import (
    calculate_eta,
    calculate_progress,
    format_speed,
    resolve_children_status,
)
from harvest.services.downloaders.models import EngineFile, EngineState, UnifiedStatus


def _progress(aggregator, gid, known_children=()):
    async def run():
        return await aggregator.get_progress(gid, known_children)

    return trio.run(run)


def test_totals_come_only_from_children(engine, aggregator):
    engine.set_status(
        "parent",
        EngineState.COMPLETE,
        total_length=5000,
        completed_length=5000,
        followed_by=["child"],
        bittorrent=True,
    )
    engine.set_status(
        "child",
        EngineState.ACTIVE,
        total_length=2_000_000_000,
        completed_length=500_000_000,
        download_speed=1_048_576,
    )

    progress = _progress(aggregator, "parent")

    assert progress.status == UnifiedStatus.ACTIVE
    assert progress.total_size == 2_000_000_000
    assert progress.completed_size == 500_000_000
    assert progress.progress == 25
    assert progress.speed == "1.0 MB/s"
    assert progress.child_gids == ["child"]


def test_metadata_only_parent_reports_waiting(engine, aggregator):
    engine.set_status(
        "parent",
        EngineState.COMPLETE,
        total_length=5000,
        completed_length=5000,
        bittorrent=True,
    )

    progress = _progress(aggregator, "parent")

    assert progress.status == UnifiedStatus.WAITING
    assert progress.is_metadata_only
    assert progress.progress == 0
    assert not progress.is_complete


def test_small_plain_download_is_not_metadata(engine, aggregator):
    engine.set_status("file", EngineState.COMPLETE, total_length=5000, completed_length=5000)

    progress = _progress(aggregator, "file")

    assert progress.status == UnifiedStatus.COMPLETE
    assert progress.progress == 100


@pytest.mark.parametrize(
    "children,expected",
    [
        ([EngineState.ACTIVE, EngineState.COMPLETE], UnifiedStatus.ACTIVE),
        ([EngineState.ERROR, EngineState.COMPLETE], UnifiedStatus.ERROR),
        ([EngineState.ERROR, EngineState.ACTIVE], UnifiedStatus.ERROR),
        ([EngineState.COMPLETE, EngineState.COMPLETE], UnifiedStatus.COMPLETE),
        ([EngineState.COMPLETE, EngineState.REMOVED], UnifiedStatus.REMOVED),
        ([EngineState.WAITING, EngineState.COMPLETE], UnifiedStatus.UNRESOLVED),
        ([EngineState.PAUSED], UnifiedStatus.UNRESOLVED),
        ([], UnifiedStatus.UNRESOLVED),
    ],
)
def test_status_precedence(children, expected):
    assert resolve_children_status(EngineState.COMPLETE, children) == expected


def test_complete_children_wait_for_parent():
    children = [EngineState.COMPLETE, EngineState.COMPLETE]
    assert resolve_children_status(EngineState.ACTIVE, children) == UnifiedStatus.UNRESOLVED


def test_purged_parent_with_known_children(engine, aggregator):
    engine.set_status("child", EngineState.COMPLETE, total_length=100, completed_length=100)

    progress = _progress(aggregator, "parent", ["child"])

    assert progress.status == UnifiedStatus.COMPLETE
    assert progress.is_complete


def test_unknown_handle_without_children_is_removed(aggregator):
    progress = _progress(aggregator, "ghost")

    assert progress.status == UnifiedStatus.REMOVED
    assert progress.is_failed


def test_unreadable_child_blocks_completion(engine, aggregator):
    engine.set_status("parent", EngineState.COMPLETE, followed_by=["a", "b"], bittorrent=True)
    engine.set_status("a", EngineState.COMPLETE, total_length=10, completed_length=10)
    engine.set_status("b", EngineState.COMPLETE, total_length=10, completed_length=10)
    engine.errors["b"] = DownloadEngineError("timeout")

    progress = _progress(aggregator, "parent")

    assert not progress.is_complete
    assert progress.status == UnifiedStatus.UNRESOLVED


def test_parent_engine_error_propagates(engine, aggregator):
    engine.errors["parent"] = DownloadEngineError("unreachable")

    with pytest.raises(DownloadEngineError):
        _progress(aggregator, "parent")


def test_speed_counts_only_active_children(engine, aggregator):
    engine.set_status("parent", EngineState.COMPLETE, followed_by=["a", "b"], bittorrent=True)
    engine.set_status("a", EngineState.ACTIVE, total_length=100, download_speed=2048)
    engine.set_status("b", EngineState.PAUSED, total_length=100, download_speed=4096)

    progress = _progress(aggregator, "parent")

    assert progress.download_speed == 2048
    assert progress.speed == "2.0 KB/s"


def test_collect_file_paths_prefers_children(engine, aggregator):
    engine.set_status(
        "parent",
        EngineState.COMPLETE,
        followed_by=["child"],
        bittorrent=True,
        files=[EngineFile(path="/downloads/[METADATA]abc")],
    )
    engine.set_status(
        "child",
        EngineState.COMPLETE,
        total_length=10,
        completed_length=10,
        files=[EngineFile(path="/downloads/movie.mkv"), EngineFile(path="/downloads/movie.nfo")],
    )

    async def run():
        return await aggregator.collect_file_paths("parent")

    assert trio.run(run) == ["/downloads/movie.mkv", "/downloads/movie.nfo"]


def test_request_download_status_without_handles(aggregator):
    request = MediaRequest(content_type=ContentType.MOVIE, title="Done", status=RequestStatus.COMPLETED)
    request.id = 7

    async def run():
        return await aggregator.get_request_download_status(request)

    status = trio.run(run)
    assert status.progress == 100
    assert status.downloads == []


def test_download_summary(engine, aggregator):
    engine.set_status("g1", EngineState.ACTIVE, total_length=100, completed_length=50, download_speed=10)
    request = MediaRequest(
        content_type=ContentType.MOVIE,
        title="Busy",
        status=RequestStatus.DOWNLOADING,
        engine_gid="g1",
    )
    request.id = 1

    async def run():
        return await aggregator.get_download_summary([request], {"DOWNLOADING": 1, "COMPLETED": 2})

    summary = trio.run(run)
    assert summary.total == 3
    assert summary.active == 1
    assert summary.completed == 2
    assert summary.progress == 50
    assert summary.engine is not None


@pytest.mark.parametrize(
    "value,expected",
    [
        (0, "0 B/s"),
        (512, "512.0 B/s"),
        (1536, "1.5 KB/s"),
        (1_048_576, "1.0 MB/s"),
        (5 * 1024**3, "5.0 GB/s"),
    ],
)
def test_format_speed(value, expected):
    assert format_speed(value) == expected


@pytest.mark.parametrize(
    "total,completed,speed,expected",
    [
        (100, 50, 0, "∞"),
        (100, 100, 10, "∞"),
        (100, 50, 10, "5s"),
        (10_000, 0, 100, "2m"),
        (7_200_000, 0, 1000, "2h 0m"),
        (5_400_000, 0, 1000, "1h 30m"),
    ],
)
def test_calculate_eta(total, completed, speed, expected):
    assert calculate_eta(total, completed, speed) == expected


def test_calculate_progress_is_clamped():
    assert calculate_progress(0, 0) == 0
    assert calculate_progress(150, 100) == 100
    assert calculate_progress(1, 3) == 33
    assert calculate_progress(1, 2) == 50


def test_completion_predicates(engine, aggregator):
    engine.set_status("done", EngineState.COMPLETE, total_length=10, completed_length=10)
    engine.set_status("broken", EngineState.ERROR, error_message="disk full")

    async def run():
        return (
            await aggregator.is_download_complete("done"),
            await aggregator.is_download_failed("done"),
            await aggregator.is_download_complete("broken"),
            await aggregator.is_download_failed("broken"),
        )

    assert trio.run(run) == (True, False, False, True)
