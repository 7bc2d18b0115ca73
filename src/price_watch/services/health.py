from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from price_watch.models import (
    HealthSnapshot,
    ListingStatus,
    SystemEvent,
    SystemEventType,
    utcnow,
)
from price_watch.repositories import Repository

from .alerts import WebhookNotifier

logger = logging.getLogger(__name__)


ERROR_RATE_THRESHOLD = 15.0  # percent
ALERT_COOLDOWN = timedelta(hours=6)
ALERT_WINDOW_HOURS = 24


class HealthMonitor:
    """Tracks check outcomes as system events and raises rate-limited alerts.

    The cooldown is read from the latest ``alert-sent`` event on every call,
    so it holds across processes and restarts.
    """

    def __init__(self, repo: Repository, notifier: Optional[WebhookNotifier] = None) -> None:
        self.repo = repo
        self.notifier = notifier or WebhookNotifier(None)

    def record(self, listing_id: int, success: bool) -> None:
        self.repo.add_system_event(
            SystemEvent(
                listing_id=listing_id,
                event_type=SystemEventType.SUCCESS if success else SystemEventType.FAILURE,
                message="Price successfully checked" if success else "Price check failed",
            )
        )

    def health(self, window_hours: float = ALERT_WINDOW_HOURS, now: Optional[datetime] = None) -> HealthSnapshot:
        since = (now or utcnow()) - timedelta(hours=window_hours)
        successes = self.repo.count_system_events(SystemEventType.SUCCESS, since)
        failures = self.repo.count_system_events(SystemEventType.FAILURE, since)
        total = successes + failures
        # No checks in the window: assume healthy rather than alert on a cold start
        success_rate = (successes / total) * 100 if total else 100.0
        last_alert = self.repo.latest_system_event(SystemEventType.ALERT_SENT)
        return HealthSnapshot(
            success_rate=success_rate,
            total_checks=total,
            error_count=failures,
            active_listing_count=self.repo.count_listings(ListingStatus.ACTIVE),
            last_alert_at=last_alert.created_at if last_alert else None,
        )

    def check_and_alert(self, now: Optional[datetime] = None) -> bool:
        """Send one alert when the 24h error rate is above 15%, at most every 6h."""
        now = now or utcnow()
        snapshot = self.health(ALERT_WINDOW_HOURS, now=now)
        error_rate = 100.0 - snapshot.success_rate
        if error_rate <= ERROR_RATE_THRESHOLD:
            return False
        if snapshot.last_alert_at is not None and now - snapshot.last_alert_at < ALERT_COOLDOWN:
            logger.info("Error rate %.2f%% above threshold, alert suppressed (cooldown)", error_rate)
            return False

        payload = {
            "title": "High Error Rate Alert",
            "timestamp": now.isoformat(),
            "successRate": f"{snapshot.success_rate:.2f}%",
            "errorRate": f"{error_rate:.2f}%",
            "totalChecks": snapshot.total_checks,
            "errorCount": snapshot.error_count,
            "activeListings": snapshot.active_listing_count,
        }
        self.notifier.send(payload)
        self.repo.add_system_event(
            SystemEvent(
                event_type=SystemEventType.ALERT_SENT,
                message=f"High error rate detected: {error_rate:.2f}%",
                metadata={"health": snapshot.model_dump(mode="json"), "timestamp": now.isoformat()},
                created_at=now,
            )
        )
        logger.warning("High error rate alert sent: %.2f%%", error_rate)
        return True
