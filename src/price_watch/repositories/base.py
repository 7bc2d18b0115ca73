from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from price_watch.models import (
    ErrorEvent,
    Listing,
    ListingStatus,
    PriceObservation,
    SystemEvent,
    SystemEventType,
)


class Repository:
    """Storage boundary used by the pipeline.

    Implementations must support filtered counts, ordered range queries and
    simple inserts/updates. Each call is independent; conflicting writes are
    serialized by the storage layer.
    """

    # Listings
    def get_listing(self, listing_id: int) -> Optional[Listing]:
        raise NotImplementedError

    def list_listings(self, status: Optional[ListingStatus] = None) -> List[Listing]:
        raise NotImplementedError

    def count_listings(self, status: Optional[ListingStatus] = None) -> int:
        raise NotImplementedError

    def set_status(self, listing_id: int, status: ListingStatus) -> None:
        raise NotImplementedError

    def set_selector(self, listing_id: int, selector: str) -> None:
        raise NotImplementedError

    def set_last_checked(self, listing_id: int, when: datetime) -> None:
        raise NotImplementedError

    # Price history
    def add_observation(self, obs: PriceObservation) -> None:
        raise NotImplementedError

    def latest_observation(self, listing_id: int) -> Optional[PriceObservation]:
        raise NotImplementedError

    def observation_prices(self, listing_id: int) -> List[float]:
        raise NotImplementedError

    # Error log
    def add_error_event(self, event: ErrorEvent) -> None:
        raise NotImplementedError

    def count_error_events(self, listing_id: int, since: datetime) -> int:
        raise NotImplementedError

    # System events
    def add_system_event(self, event: SystemEvent) -> None:
        raise NotImplementedError

    def count_system_events(self, event_type: SystemEventType, since: datetime) -> int:
        raise NotImplementedError

    def latest_system_event(self, event_type: SystemEventType) -> Optional[SystemEvent]:
        raise NotImplementedError
