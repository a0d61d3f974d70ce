from datetime import datetime, timedelta

import pytest
import trio

from harvest.exceptions import HandleNotFoundError, RequestNotFoundError, RequestUpdateError
from harvest.media.state import ContentType, RequestStatus
from harvest.scheduling.search_scheduler import SearchScheduler
from harvest.services.downloaders.models import EngineState
from harvest.services.requests import RequestCreate, RequestService, RequestUpdate


@pytest.fixture()
def service(orchestrator, engine, indexer, ranker, scheduler_settings) -> RequestService:
    scheduler = SearchScheduler(orchestrator, engine, indexer, ranker, scheduler_settings)
    return RequestService(orchestrator, scheduler, engine)


def test_create_request_fills_defaults(service):
    request = service.create_request(
        RequestCreate(content_type=ContentType.MOVIE, title="Example Movie", year=2020)
    )

    assert request.id is not None
    assert request.status == RequestStatus.PENDING
    assert request.max_search_attempts == 50
    assert request.search_interval_mins == 30
    assert request.next_search_at > datetime.now()
    assert request.expires_at > datetime.now() + timedelta(days=29)
    assert not request.is_ongoing


def test_create_ongoing_show(service):
    request = service.create_request(
        RequestCreate(content_type=ContentType.TV_SHOW, title="Example Show", is_ongoing=True)
    )

    assert request.is_ongoing
    assert request.max_search_attempts == 1000
    assert request.expires_at > datetime.now() + timedelta(days=364)


def test_only_shows_can_be_ongoing(service):
    request = service.create_request(
        RequestCreate(content_type=ContentType.MOVIE, title="Example Movie", is_ongoing=True)
    )

    assert not request.is_ongoing
    assert request.max_search_attempts == 50


def test_create_request_keeps_explicit_budget(service):
    request = service.create_request(
        RequestCreate(
            content_type=ContentType.GAME,
            title="Example Game",
            platform="pc",
            max_search_attempts=3,
            search_interval_mins=5,
        )
    )

    assert request.max_search_attempts == 3
    assert request.search_interval_mins == 5
    assert service.get_request(request.id).platform == "pc"


def test_update_pending_request(service, add_request):
    request = add_request()

    updated = service.update_request(request.id, RequestUpdate(title=None, priority=5, min_seeders=3))

    assert updated.title == "Example Movie"
    assert updated.priority == 5
    assert updated.min_seeders == 3


def test_update_rejected_outside_pending(service, add_request):
    request = add_request(status=RequestStatus.FOUND)

    with pytest.raises(RequestUpdateError):
        service.update_request(request.id, RequestUpdate(priority=1))

    with pytest.raises(RequestNotFoundError):
        service.update_request(999, RequestUpdate(priority=1))


def test_list_requests(service, add_request):
    add_request(title="First")
    add_request(title="Second", content_type=ContentType.GAME)
    add_request(title="Third", status=RequestStatus.COMPLETED)

    assert [r.title for r in service.list_requests()] == ["Third", "Second", "First"]
    assert [r.title for r in service.list_requests(status=RequestStatus.PENDING)] == ["Second", "First"]
    assert [r.title for r in service.list_requests(content_type=ContentType.GAME)] == ["Second"]
    assert service.get_status_counts() == {"PENDING": 2, "COMPLETED": 1}


def test_delete_cancels_active_download(service, engine, add_request):
    request = add_request(status=RequestStatus.DOWNLOADING, engine_gid="g1")

    async def run():
        return await service.delete_request(request.id)

    assert trio.run(run)
    assert engine.removed == ["g1"]
    with pytest.raises(RequestNotFoundError):
        service.get_request(request.id)


def test_delete_without_handles(service, engine, add_request):
    request = add_request(status=RequestStatus.FAILED)

    async def run():
        return await service.delete_request(request.id)

    assert trio.run(run)
    assert engine.removed == []


def test_pause_ignores_missing_children(service, engine, add_request):
    request = add_request(status=RequestStatus.DOWNLOADING, engine_gid="g1", child_gids=["c1"])
    engine.set_status("g1", EngineState.ACTIVE)

    async def run():
        return await service.pause_request(request.id)

    trio.run(run)
    assert engine.paused == ["g1"]


def test_resume_fails_for_missing_primary(service, add_request):
    request = add_request(status=RequestStatus.DOWNLOADING, engine_gid="g1")

    async def run():
        return await service.resume_request(request.id)

    with pytest.raises(HandleNotFoundError):
        trio.run(run)


def test_retry_failed_request(service, add_request):
    request = add_request(status=RequestStatus.FAILED, search_attempts=50)

    retried = service.retry_request(request.id)

    assert retried.status == RequestStatus.PENDING
    assert retried.search_attempts == 0


def test_search_logs_require_request(service):
    with pytest.raises(RequestNotFoundError):
        service.get_search_logs(123)


def test_search_stats_without_logs(service, test_db):
    assert service.get_search_stats() == {
        "total_searches": 0,
        "successful_searches": 0,
        "success_rate": 0.0,
        "average_duration_ms": 0,
    }


def test_update_season_metadata(service, add_request):
    request = add_request(content_type=ContentType.TV_SHOW, title="Example Show", is_ongoing=True)

    updated = service.update_season_metadata(request.id, {2: 8, 1: 10})

    assert [(s.season_number, s.total_episodes) for s in updated.seasons] == [(1, 10), (2, 8)]
