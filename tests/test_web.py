from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from price_watch.config import Settings
from price_watch.errors import PersistenceFailure
from price_watch.models import Currency, ListingStatus, PriceObservation
from price_watch.services import Pipeline
from price_watch.services.scraper import Scraper, ScraperConfig
from price_watch.web.main import app, get_pipeline, get_settings

from conftest import FakeRepository

AUTH = {"Authorization": "Bearer s3cret"}


class PageScraper(Scraper):
    def __init__(self, html: str) -> None:
        super().__init__(ScraperConfig(min_delay_secs=0, max_delay_secs=0))
        self.html = html

    def fetch(self, url: str) -> str:
        return self.html


@pytest.fixture
def pipeline(repo: FakeRepository) -> Pipeline:
    return Pipeline(repo, scraper=PageScraper("<h2 class='amount'>39 900 PLN</h2>"), batch_pause_secs=0)


@pytest.fixture
def client(pipeline: Pipeline) -> Iterator[TestClient]:
    app.dependency_overrides[get_settings] = lambda: Settings(cron_secret="s3cret")
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_trigger_requires_bearer_token(client: TestClient, repo: FakeRepository) -> None:
    repo.add(1, selector="h2.amount")
    assert client.post("/cron/check-prices").status_code == 401
    assert client.post("/cron/check-prices", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert repo.observations == []


def test_trigger_without_configured_secret(client: TestClient) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(cron_secret=None)
    resp = client.post("/cron/check-prices", headers=AUTH)
    assert resp.status_code == 500


def test_trigger_runs_pipeline(client: TestClient, repo: FakeRepository) -> None:
    repo.add(1, selector="h2.amount")
    repo.add(2, selector="h2.amount")
    resp = client.post("/cron/check-prices", headers=AUTH)
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "processed": 2,
        "errors": 0,
        "message": "Price check completed successfully",
    }


def test_trigger_reports_storage_failure(client: TestClient, repo: FakeRepository, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(status=None):
        raise PersistenceFailure("connection refused")

    monkeypatch.setattr(repo, "list_listings", broken)
    resp = client.post("/cron/check-prices", headers=AUTH)
    assert resp.status_code == 500
    assert resp.json()["error"] == "Failed to fetch listings"


def test_recheck_returns_listing_view(client: TestClient, repo: FakeRepository) -> None:
    repo.add(5, selector="h2.amount", status=ListingStatus.ERROR)
    resp = client.post("/listings/5/recheck", headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Cena zaktualizowana pomyślnie"
    assert body["listing"]["status"] == "active"
    assert body["listing"]["currentPrice"] == 39900
    assert body["listing"]["currency"] == "PLN"
    assert body["listing"]["lastChecked"] is not None


def test_recheck_unknown_listing(client: TestClient) -> None:
    assert client.post("/listings/404/recheck", headers=AUTH).status_code == 404


def test_health_and_stats(client: TestClient, repo: FakeRepository) -> None:
    repo.add(1)
    for price in (100.0, 200.0):
        repo.add_observation(PriceObservation(listing_id=1, price=price, currency=Currency.PLN))

    health = client.get("/health", params={"hours": 12}, headers=AUTH).json()
    assert health["success_rate"] == 100
    assert health["active_listing_count"] == 1

    stats = client.get("/listings/1/stats", headers=AUTH).json()
    assert stats == {"min": 100.0, "max": 200.0, "avg": 150.0, "count": 2}
