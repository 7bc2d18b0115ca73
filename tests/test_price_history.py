from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from price_watch.models import Currency, ExtractionResult, SystemEventType
from price_watch.services.price_history import PriceHistoryStore

from conftest import FakeRepository

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(repo: FakeRepository) -> PriceHistoryStore:
    repo.add(1)
    return PriceHistoryStore(repo)


def _save(store: PriceHistoryStore, price: float, minutes: int, currency: str = "PLN") -> None:
    store.save(1, ExtractionResult(price=price, currency=currency, raw_text=f"{price} {currency}"),
               when=T0 + timedelta(minutes=minutes))


def test_saved_observation_reads_back_as_latest(store: PriceHistoryStore) -> None:
    _save(store, 100_000, 0)
    _save(store, 98_500.5, 10, currency="EUR")
    latest = store.latest(1)
    assert latest is not None
    assert latest.price == 98_500.5
    assert latest.currency == Currency.EUR


def test_no_anomaly_without_history(store: PriceHistoryStore, repo: FakeRepository) -> None:
    assert store.detect_anomaly(1, 40_000) is False
    assert repo.events_of(SystemEventType.ANOMALY) == []


def test_large_drop_is_anomaly_and_still_saved(store: PriceHistoryStore, repo: FakeRepository) -> None:
    _save(store, 100_000, 0)
    assert store.detect_anomaly(1, 40_000) is True
    events = repo.events_of(SystemEventType.ANOMALY)
    assert len(events) == 1
    assert events[0].listing_id == 1
    assert events[0].metadata["old_price"] == 100_000
    assert events[0].metadata["new_price"] == 40_000

    _save(store, 40_000, 5)
    assert store.latest(1).price == 40_000


@pytest.mark.parametrize("new_price,flagged", [(150_000, False), (149_999, False), (150_001, True), (50_000, False), (49_999, True)])
def test_anomaly_threshold_is_strictly_over_fifty_percent(store: PriceHistoryStore, new_price, flagged) -> None:
    _save(store, 100_000, 0)
    assert store.detect_anomaly(1, new_price) is flagged


def test_stats_over_full_history(store: PriceHistoryStore) -> None:
    for i, p in enumerate([100.0, 300.0, 200.0]):
        _save(store, p, i)
    stats = store.stats(1)
    assert (stats.min, stats.max, stats.avg, stats.count) == (100.0, 300.0, 200.0, 3)


def test_stats_empty(store: PriceHistoryStore) -> None:
    stats = store.stats(1)
    assert stats.count == 0 and stats.avg == 0


def test_update_last_checked(store: PriceHistoryStore, repo: FakeRepository) -> None:
    store.update_last_checked(1, when=T0)
    assert repo.get_listing(1).last_checked_at == T0
