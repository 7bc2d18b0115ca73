"""Cross-run retry policy.

Nothing is slept here. Each pipeline run makes one attempt per listing and the
next scheduled run is the next attempt, so the attempt number is derived from
the error log rather than kept in memory.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from price_watch.models import ErrorEvent, ListingStatus, utcnow
from price_watch.repositories import Repository

logger = logging.getLogger(__name__)


MAX_ATTEMPTS = 3
ATTEMPT_WINDOW = timedelta(hours=24)
# Nominal wait after a failed attempt 1, 2 and 3.
RETRY_DELAYS_SECS = (60, 300, 900)


@dataclass
class RetryDecision:
    should_retry: bool
    next_attempt: Optional[int] = None
    delay_secs: int = 0


class RetryCoordinator:
    def __init__(self, repo: Repository, max_attempts: int = MAX_ATTEMPTS) -> None:
        self.repo = repo
        self.max_attempts = max_attempts

    def current_attempt(self, listing_id: int, now: Optional[datetime] = None) -> int:
        since = (now or utcnow()) - ATTEMPT_WINDOW
        count = self.repo.count_error_events(listing_id, since)
        return min(count + 1, self.max_attempts)

    def retry_delay(self, attempt: int) -> int:
        idx = min(max(attempt, 1), len(RETRY_DELAYS_SECS)) - 1
        return RETRY_DELAYS_SECS[idx]

    def log_error(self, listing_id: int, error: BaseException, attempt: int) -> None:
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self.repo.add_error_event(
            ErrorEvent(
                listing_id=listing_id,
                message=str(error) or type(error).__name__,
                stack_trace=stack or None,
                attempt_number=attempt,
            )
        )

    def handle(self, listing_id: int, error: BaseException, attempt: int) -> RetryDecision:
        self.log_error(listing_id, error, attempt)
        if attempt < self.max_attempts:
            decision = RetryDecision(
                should_retry=True, next_attempt=attempt + 1, delay_secs=self.retry_delay(attempt)
            )
            logger.info(
                "Listing %s failed attempt %d/%d, next attempt on a later run (~%ds)",
                listing_id,
                attempt,
                self.max_attempts,
                decision.delay_secs,
            )
            return decision

        self.repo.set_status(listing_id, ListingStatus.ERROR)
        logger.error("Listing %s exhausted %d attempts, marked as error", listing_id, self.max_attempts)
        return RetryDecision(should_retry=False)

    def mark_removed(self, listing_id: int) -> None:
        self.repo.set_status(listing_id, ListingStatus.REMOVED)
        logger.info("Listing %s is gone upstream, marked as removed", listing_id)

    def set_status(self, listing_id: int, status: ListingStatus) -> None:
        self.repo.set_status(listing_id, status)
