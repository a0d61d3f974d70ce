"""Tests for the request lifecycle transition table and administrative operations."""

from __future__ import annotations

from datetime import datetime
from itertools import product

import pytest

from harvest import state_transition
from harvest.exceptions import IllegalTransitionError
from harvest.media.request import MediaRequest
from harvest.media.state import ContentType, RequestStatus

S = RequestStatus

LEGAL_EDGES = {
    (S.PENDING, S.SEARCHING),
    (S.PENDING, S.CANCELLED),
    (S.SEARCHING, S.PENDING),
    (S.SEARCHING, S.FOUND),
    (S.SEARCHING, S.FAILED),
    (S.SEARCHING, S.CANCELLED),
    (S.FOUND, S.DOWNLOADING),
    (S.FOUND, S.CANCELLED),
    (S.DOWNLOADING, S.COMPLETED),
    (S.DOWNLOADING, S.FAILED),
    (S.DOWNLOADING, S.CANCELLED),
}


def _request(status: RequestStatus) -> MediaRequest:
    return MediaRequest(
        content_type=ContentType.MOVIE,
        title="Example Movie",
        status=status,
        search_attempts=3,
        next_search_at=datetime(2024, 1, 1),
        last_search_at=datetime(2024, 1, 1),
        found_title="Example.Movie.1080p",
        found_magnet_uri="magnet:?dn=example",
        engine_gid="abc",
        child_gids=["def"],
    )


@pytest.mark.parametrize("from_status,to_status", list(product(S, S)))
def test_can_transition_matches_edge_table(from_status, to_status):
    assert state_transition.can_transition(from_status, to_status) == (
        (from_status, to_status) in LEGAL_EDGES
    )


@pytest.mark.parametrize("status", [S.COMPLETED, S.FAILED, S.CANCELLED, S.EXPIRED])
def test_terminal_states_have_no_outgoing_edges(status):
    assert state_transition.allowed_transitions(status) == frozenset()


def test_apply_transition_rejects_illegal_edge_without_mutating():
    request = _request(S.PENDING)

    with pytest.raises(IllegalTransitionError) as exc_info:
        state_transition.apply_transition(request, S.DOWNLOADING)

    assert request.status == S.PENDING
    assert exc_info.value.from_status == S.PENDING
    assert exc_info.value.to_status == S.DOWNLOADING


def test_apply_transition_moves_along_edge():
    request = _request(S.SEARCHING)
    state_transition.apply_transition(request, S.FOUND)
    assert request.status == S.FOUND


@pytest.mark.parametrize("status", [S.FAILED, S.CANCELLED, S.EXPIRED])
@pytest.mark.parametrize("target", [S.PENDING, S.SEARCHING])
def test_reset_clears_budget_and_selection(status, target):
    request = _request(status)

    state_transition.reset(request, target)

    assert request.status == target
    assert request.search_attempts == 0
    assert request.next_search_at is None
    assert request.last_search_at is None
    assert request.found_title is None
    assert request.found_magnet_uri is None
    assert request.engine_gid is None
    assert request.child_gids == []


@pytest.mark.parametrize("status", [S.PENDING, S.SEARCHING, S.FOUND, S.DOWNLOADING, S.COMPLETED])
def test_reset_only_applies_to_soft_terminal_states(status):
    with pytest.raises(IllegalTransitionError):
        state_transition.reset(_request(status))


def test_reset_rejects_other_targets():
    with pytest.raises(IllegalTransitionError):
        state_transition.reset(_request(S.FAILED), S.DOWNLOADING)


@pytest.mark.parametrize("status", [S.PENDING, S.FAILED])
def test_expire(status):
    request = _request(status)
    state_transition.expire(request)
    assert request.status == S.EXPIRED
    assert request.next_search_at is None


@pytest.mark.parametrize("status", [S.SEARCHING, S.FOUND, S.DOWNLOADING, S.COMPLETED, S.CANCELLED])
def test_expire_rejected_outside_pending_and_failed(status):
    with pytest.raises(IllegalTransitionError):
        state_transition.expire(_request(status))


def test_cancellable_statuses():
    cancellable = {s for s in S if state_transition.is_cancellable(s)}
    assert cancellable == {S.PENDING, S.SEARCHING, S.FOUND, S.DOWNLOADING}
    assert all(s.is_cancellable for s in cancellable)
