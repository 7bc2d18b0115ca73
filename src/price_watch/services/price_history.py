from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from price_watch.models import (
    ExtractionResult,
    PriceObservation,
    PriceStats,
    SystemEvent,
    SystemEventType,
    utcnow,
)
from price_watch.repositories import Repository

logger = logging.getLogger(__name__)


ANOMALY_THRESHOLD = 0.5


class PriceHistoryStore:
    """Append-only price history plus last-checked bookkeeping."""

    def __init__(self, repo: Repository, anomaly_threshold: float = ANOMALY_THRESHOLD) -> None:
        self.repo = repo
        self.anomaly_threshold = anomaly_threshold

    def latest(self, listing_id: int) -> Optional[PriceObservation]:
        return self.repo.latest_observation(listing_id)

    def detect_anomaly(self, listing_id: int, new_price: float) -> bool:
        """Flag a change of more than 50% against the last stored price.

        Logs an ``anomaly`` system event when flagged. Never blocks the save.
        """
        last = self.repo.latest_observation(listing_id)
        if last is None:
            return False
        change = abs(new_price - last.price) / last.price
        if change <= self.anomaly_threshold:
            return False
        logger.warning(
            "Price anomaly for listing %s: %.2f -> %.2f (%.1f%%)",
            listing_id,
            last.price,
            new_price,
            change * 100,
        )
        self.repo.add_system_event(
            SystemEvent(
                listing_id=listing_id,
                event_type=SystemEventType.ANOMALY,
                message=f"Price changed by {change * 100:.2f}%",
                metadata={"old_price": last.price, "new_price": new_price, "percent_change": change},
            )
        )
        return True

    def save(self, listing_id: int, extracted: ExtractionResult, when: Optional[datetime] = None) -> PriceObservation:
        obs = PriceObservation(
            listing_id=listing_id,
            price=extracted.price,
            currency=extracted.currency,
            observed_at=when or utcnow(),
        )
        self.repo.add_observation(obs)
        return obs

    def update_last_checked(self, listing_id: int, when: Optional[datetime] = None) -> None:
        self.repo.set_last_checked(listing_id, when or utcnow())

    def stats(self, listing_id: int) -> PriceStats:
        prices = self.repo.observation_prices(listing_id)
        if not prices:
            return PriceStats()
        return PriceStats(
            min=min(prices),
            max=max(prices),
            avg=sum(prices) / len(prices),
            count=len(prices),
        )
