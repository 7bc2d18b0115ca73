from __future__ import annotations

import json

import pytest

import price_watch.cli.check as check
from price_watch.errors import ConfigurationError
from price_watch.services import Pipeline
from price_watch.services.scraper import Scraper, ScraperConfig

from conftest import FakeRepository


class PageScraper(Scraper):
    def __init__(self) -> None:
        super().__init__(ScraperConfig(min_delay_secs=0, max_delay_secs=0))

    def fetch(self, url: str) -> str:
        return "<h2 class='amount'>39 900 PLN</h2>"


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(check, "configure_logging", lambda level: None)


@pytest.fixture
def use_pipeline(monkeypatch: pytest.MonkeyPatch, repo: FakeRepository) -> FakeRepository:
    pipeline = Pipeline(repo, scraper=PageScraper(), batch_pause_secs=0)
    monkeypatch.setattr(check.Pipeline, "from_settings", classmethod(lambda cls, settings: pipeline))
    return repo


def test_check_prints_summary(use_pipeline: FakeRepository, capsys: pytest.CaptureFixture[str]) -> None:
    use_pipeline.add(1, selector="h2.amount")
    assert check.main(["check"]) == 0
    assert json.loads(capsys.readouterr().out) == {
        "processed": 1,
        "errors": 0,
        "message": "Price check completed successfully",
    }


def test_recheck_exit_codes(use_pipeline: FakeRepository, capsys: pytest.CaptureFixture[str]) -> None:
    use_pipeline.add(1, selector="h2.amount")
    assert check.main(["recheck", "1"]) == 0
    assert "39900.00 PLN" in capsys.readouterr().out
    assert check.main(["recheck", "2"]) == 2


def test_configuration_error_exit_code(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(cls, settings):
        raise ConfigurationError("OpenRouter API key not configured for AI extraction")

    monkeypatch.setattr(check.Pipeline, "from_settings", classmethod(broken))
    assert check.main(["health"]) == 3
