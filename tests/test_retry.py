from __future__ import annotations

from datetime import timedelta

import pytest

from price_watch.errors import ExtractionFailure
from price_watch.models import ErrorEvent, ListingStatus, utcnow
from price_watch.services.retry import MAX_ATTEMPTS, RetryCoordinator

from conftest import FakeRepository


@pytest.fixture
def coordinator(repo: FakeRepository) -> RetryCoordinator:
    repo.add(7)
    return RetryCoordinator(repo)


def _old_error(repo: FakeRepository, hours_ago: float) -> None:
    repo.add_error_event(
        ErrorEvent(listing_id=7, message="old", attempt_number=1, created_at=utcnow() - timedelta(hours=hours_ago))
    )


def test_first_attempt_without_errors(coordinator: RetryCoordinator) -> None:
    assert coordinator.current_attempt(7) == 1


def test_current_attempt_is_idempotent(coordinator: RetryCoordinator, repo: FakeRepository) -> None:
    _old_error(repo, 1)
    assert coordinator.current_attempt(7) == coordinator.current_attempt(7) == 2


def test_errors_outside_window_are_ignored(coordinator: RetryCoordinator, repo: FakeRepository) -> None:
    _old_error(repo, 25)
    _old_error(repo, 48)
    assert coordinator.current_attempt(7) == 1


def test_attempt_is_capped(coordinator: RetryCoordinator, repo: FakeRepository) -> None:
    for h in range(5):
        _old_error(repo, h + 0.5)
    assert coordinator.current_attempt(7) == MAX_ATTEMPTS


def test_handle_logs_and_retries_below_max(coordinator: RetryCoordinator, repo: FakeRepository) -> None:
    try:
        raise ExtractionFailure("nothing found")
    except ExtractionFailure as e:
        decision = coordinator.handle(7, e, attempt=1)
    assert decision.should_retry is True
    assert decision.next_attempt == 2
    assert decision.delay_secs == 60
    assert repo.get_listing(7).status == ListingStatus.ACTIVE
    event = repo.error_events[0]
    assert event.message == "nothing found"
    assert event.attempt_number == 1
    assert "ExtractionFailure" in event.stack_trace


def test_handle_marks_error_at_max(coordinator: RetryCoordinator, repo: FakeRepository) -> None:
    decision = coordinator.handle(7, ExtractionFailure("still nothing"), attempt=3)
    assert decision.should_retry is False
    assert repo.get_listing(7).status == ListingStatus.ERROR
    assert len(repo.error_events) == 1


def test_three_runs_exhaust_attempts(coordinator: RetryCoordinator, repo: FakeRepository) -> None:
    decisions = []
    for _ in range(3):
        attempt = coordinator.current_attempt(7)
        decisions.append((attempt, coordinator.handle(7, ExtractionFailure("x"), attempt).should_retry))
    assert decisions == [(1, True), (2, True), (3, False)]
    assert repo.get_listing(7).status == ListingStatus.ERROR


def test_mark_removed_skips_error_log(coordinator: RetryCoordinator, repo: FakeRepository) -> None:
    coordinator.mark_removed(7)
    assert repo.get_listing(7).status == ListingStatus.REMOVED
    assert repo.error_events == []
