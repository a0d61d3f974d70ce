import pytest
import trio

from harvest.db import db_functions
from harvest.exceptions import DownloadEngineError
from harvest.media.models import DownloadHandle
from harvest.media.state import (
    ContentType,
    DownloadStatus,
    EpisodeStatus,
    RequestStatus,
    SeasonStatus,
)
from harvest.scheduling.progress_tracker import ProgressTracker, locate
from harvest.services.downloaders.models import EngineFile, EngineState


@pytest.fixture()
def tracker(orchestrator, aggregator, organizer) -> ProgressTracker:
    return ProgressTracker(orchestrator, aggregator, organizer)


def _status(request_id):
    return db_functions.get_request_by_id(request_id)


def _complete(engine, gid, *paths):
    engine.set_status(
        gid,
        EngineState.COMPLETE,
        total_length=1_000_000_000,
        completed_length=1_000_000_000,
        files=[EngineFile(path=path, length=1_000_000_000) for path in paths],
    )


def test_completed_download_completes_request(tracker, engine, file_organizer, add_request):
    request = add_request(status=RequestStatus.DOWNLOADING, engine_gid="g1")
    _complete(engine, "g1", "/downloads/movies/Example.Movie.2020.1080p.mkv", "/downloads/movies/info.nfo")

    assert trio.run(tracker.run_tick) == 1

    assert _status(request.id).status == RequestStatus.COMPLETED
    [context] = file_organizer.contexts
    assert context.original_path == "/downloads/movies/Example.Movie.2020.1080p.mkv"
    assert context.content_type == ContentType.MOVIE


def test_completion_closes_torrent_download(tracker, orchestrator, engine, add_request, make_candidate):
    request = add_request()
    orchestrator.start_search(request.id)
    orchestrator.mark_as_found(request.id, make_candidate("Example.Movie.1080p"))
    orchestrator.start_download(request.id, DownloadHandle(gid="g1"))
    _complete(engine, "g1", "/downloads/movies/Example.Movie.1080p.mkv")

    trio.run(tracker.run_tick)

    completed = _status(request.id)
    assert completed.status == RequestStatus.COMPLETED
    assert [d.status for d in completed.torrent_downloads] == [DownloadStatus.COMPLETED]


def test_errored_download_fails_request(tracker, engine, add_request):
    request = add_request(status=RequestStatus.DOWNLOADING, engine_gid="g1")
    engine.set_status("g1", EngineState.ERROR, error_message="disk full")

    trio.run(tracker.run_tick)

    failed = _status(request.id)
    assert failed.status == RequestStatus.FAILED
    assert failed.status_reason == "disk full"


def test_vanished_download_fails_request(tracker, add_request):
    request = add_request(status=RequestStatus.DOWNLOADING, engine_gid="gone")

    trio.run(tracker.run_tick)

    failed = _status(request.id)
    assert failed.status == RequestStatus.FAILED
    assert failed.status_reason == "Download no longer exists in the engine"


def test_new_children_are_recorded(tracker, engine, add_request):
    request = add_request(status=RequestStatus.DOWNLOADING, engine_gid="g1")
    engine.set_status("g1", EngineState.COMPLETE, total_length=5000, followed_by=["c1"], bittorrent=True)
    engine.set_status("c1", EngineState.ACTIVE, total_length=100, completed_length=10)

    trio.run(tracker.run_tick)

    updated = _status(request.id)
    assert updated.status == RequestStatus.DOWNLOADING
    assert updated.child_gids == ["c1"]


def test_purged_parent_completes_through_children(tracker, engine, add_request):
    request = add_request(status=RequestStatus.DOWNLOADING, engine_gid="g1", child_gids=["c1"])
    _complete(engine, "c1", "/downloads/movies/Example.Movie.mkv")

    trio.run(tracker.run_tick)

    assert _status(request.id).status == RequestStatus.COMPLETED


def test_episode_completion(tracker, orchestrator, engine, file_organizer, add_request, make_candidate):
    request = add_request(content_type=ContentType.TV_SHOW, title="Example Show", is_ongoing=True)
    orchestrator.start_episode_download(
        request.id, 1, 2, make_candidate("Example.Show.S01E02"), DownloadHandle(gid="e2")
    )
    _complete(engine, "e2", "/downloads/tv-shows/Example.Show.S01E02.1080p.mkv")

    trio.run(tracker.run_tick)

    updated = _status(request.id)
    assert updated.status == RequestStatus.PENDING
    assert updated.get_season(1).get_episode(2).status == EpisodeStatus.COMPLETED
    assert updated.active_torrent_downloads() == []
    [context] = file_organizer.contexts
    assert (context.season, context.episode) == (1, 2)


def test_season_pack_failure(tracker, orchestrator, engine, add_request, make_candidate):
    request = add_request(content_type=ContentType.TV_SHOW, title="Example Show", is_ongoing=True)
    orchestrator.start_season_pack_download(
        request.id, 1, make_candidate("Example.Show.S01"), DownloadHandle(gid="p1")
    )
    engine.set_status("p1", EngineState.ERROR, error_message="tracker error")

    trio.run(tracker.run_tick)

    updated = _status(request.id)
    assert [d.status for d in updated.torrent_downloads] == [DownloadStatus.FAILED]
    assert updated.get_season(1).status == SeasonStatus.FAILED
    assert updated.status == RequestStatus.PENDING


def test_one_failing_check_does_not_stop_the_tick(tracker, engine, add_request):
    broken = add_request(title="Broken", status=RequestStatus.DOWNLOADING, engine_gid="g1")
    healthy = add_request(title="Healthy", status=RequestStatus.DOWNLOADING, engine_gid="g2")
    engine.errors["g1"] = DownloadEngineError("engine timeout")
    _complete(engine, "g2", "/downloads/movies/Healthy.mkv")

    assert trio.run(tracker.run_tick) == 2

    assert _status(broken.id).status == RequestStatus.DOWNLOADING
    assert _status(healthy.id).status == RequestStatus.COMPLETED


def test_tick_skipped_while_running(tracker, add_request):
    add_request(status=RequestStatus.DOWNLOADING, engine_gid="g1")

    with tracker.guard.acquire():
        assert trio.run(tracker.run_tick) is None


def test_nothing_downloading(tracker, test_db):
    assert trio.run(tracker.run_tick) == 0


def test_locate(orchestrator, add_request, make_candidate):
    request = add_request(content_type=ContentType.TV_SHOW, title="Example Show", is_ongoing=True)
    orchestrator.start_season_pack_download(
        request.id, 1, make_candidate("Example.Show.S01"), DownloadHandle(gid="p1")
    )
    updated = orchestrator.start_episode_download(
        request.id, 2, 5, make_candidate("Example.Show.S02E05"), DownloadHandle(gid="e5")
    )
    pack, episode = updated.torrent_downloads

    assert locate(updated, pack) == (1, None)
    assert locate(updated, episode) == (2, 5)
