from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
import requests

from price_watch.models import (
    ErrorEvent,
    Listing,
    ListingStatus,
    PriceObservation,
    SystemEvent,
    SystemEventType,
)
from price_watch.repositories import Repository


class FakeRepository(Repository):
    """In-memory stand-in for the Postgres repository."""

    def __init__(self) -> None:
        self.listings: Dict[int, Listing] = {}
        self.observations: List[PriceObservation] = []
        self.error_events: List[ErrorEvent] = []
        self.system_events: List[SystemEvent] = []

    def add(self, listing_id: int, url: str = "https://example.com/offer", selector: Optional[str] = None,
            status: ListingStatus = ListingStatus.ACTIVE) -> Listing:
        listing = Listing(id=listing_id, url=url, selector=selector, status=status)
        self.listings[listing_id] = listing
        return listing

    def get_listing(self, listing_id: int) -> Optional[Listing]:
        return self.listings.get(listing_id)

    def list_listings(self, status: Optional[ListingStatus] = None) -> List[Listing]:
        return [l for l in self.listings.values() if status is None or l.status == status]

    def count_listings(self, status: Optional[ListingStatus] = None) -> int:
        return len(self.list_listings(status))

    def _update(self, listing_id: int, **changes: Any) -> None:
        self.listings[listing_id] = self.listings[listing_id].model_copy(update=changes)

    def set_status(self, listing_id: int, status: ListingStatus) -> None:
        self._update(listing_id, status=status)

    def set_selector(self, listing_id: int, selector: str) -> None:
        self._update(listing_id, selector=selector)

    def set_last_checked(self, listing_id: int, when: datetime) -> None:
        self._update(listing_id, last_checked_at=when)

    def add_observation(self, obs: PriceObservation) -> None:
        self.observations.append(obs)

    def latest_observation(self, listing_id: int) -> Optional[PriceObservation]:
        mine = [o for o in self.observations if o.listing_id == listing_id]
        return max(mine, key=lambda o: o.observed_at) if mine else None

    def observation_prices(self, listing_id: int) -> List[float]:
        return [o.price for o in sorted(self.observations, key=lambda o: o.observed_at) if o.listing_id == listing_id]

    def add_error_event(self, event: ErrorEvent) -> None:
        self.error_events.append(event)

    def count_error_events(self, listing_id: int, since: datetime) -> int:
        return sum(1 for e in self.error_events if e.listing_id == listing_id and e.created_at >= since)

    def add_system_event(self, event: SystemEvent) -> None:
        self.system_events.append(event)

    def count_system_events(self, event_type: SystemEventType, since: datetime) -> int:
        return sum(1 for e in self.system_events if e.event_type == event_type and e.created_at >= since)

    def latest_system_event(self, event_type: SystemEventType) -> Optional[SystemEvent]:
        mine = [e for e in self.system_events if e.event_type == event_type]
        return max(mine, key=lambda e: e.created_at) if mine else None

    def events_of(self, event_type: SystemEventType) -> List[SystemEvent]:
        return [e for e in self.system_events if e.event_type == event_type]


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", json_body: Any = None, reason: str = "") -> None:
        self.status_code = status_code
        self.text = text
        self.reason = reason
        self._json = json_body

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    """Records requests and replays queued responses or exceptions."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def _next(self, method: str, url: str, **kwargs: Any) -> Any:
        self.calls.append({"method": method, "url": url, **kwargs})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def get(self, url: str, **kwargs: Any) -> Any:
        return self._next("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> Any:
        return self._next("POST", url, **kwargs)


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()
