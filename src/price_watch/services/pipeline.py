"""Per-listing price check and concurrency-bounded batch runs."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Set

from price_watch.config import Settings
from price_watch.errors import (
    ExtractionFailure,
    HttpRemoved,
    LLMTimeout,
    PersistenceFailure,
    StructuredExtractionError,
    ValidationFailure,
)
from price_watch.models import ExtractionResult, Listing, ListingStatus, PriceObservation
from price_watch.repositories import PostgresRepository, Repository

from .alerts import WebhookNotifier
from .extraction import StructuredExtractor, get_extractor
from .health import HealthMonitor
from .price_history import PriceHistoryStore
from .retry import RetryCoordinator
from .scraper import Scraper, ScraperConfig
from .validation import validate

logger = logging.getLogger(__name__)


# Tried in order after the stored selector and the AI extractor came up empty.
FALLBACK_PRICE_SELECTORS = (
    'h3[data-testid="ad-price"]',
    ".offer-price__number",
    '[itemprop="price"]',
    '[data-testid="price"]',
    'span[class*="price"]',
)

STATUS_MESSAGES = {
    ListingStatus.ACTIVE: "Cena zaktualizowana pomyślnie",
    ListingStatus.ERROR: "Nie udało się pobrać ceny. Spróbuj ponownie później.",
    ListingStatus.REMOVED: "Oferta została usunięta ze strony źródłowej",
}


def status_message(status: ListingStatus) -> str:
    return STATUS_MESSAGES[status]


@dataclass
class ExtractionAttempt:
    strategy: str
    result: ExtractionResult
    learned_selector: Optional[str] = None


Strategy = Callable[[str, Listing], Optional[ExtractionAttempt]]


@dataclass
class CheckOutcome:
    listing_id: int
    status: ListingStatus
    success: bool
    strategy: Optional[str] = None
    anomaly: bool = False
    error: Optional[str] = None


@dataclass
class BatchSummary:
    total: int = 0
    processed: int = 0
    errors: int = 0
    timed_out: bool = False
    outcomes: List[CheckOutcome] = field(default_factory=list)

    def add(self, outcome: CheckOutcome) -> None:
        self.outcomes.append(outcome)
        self.processed += 1
        if not outcome.success:
            self.errors += 1

    @property
    def message(self) -> str:
        if self.total == 0:
            return "No active listings to process"
        if self.timed_out:
            return "Price check timed out, unfinished listings will be retried on the next run"
        if self.errors:
            return "Price check completed with some errors"
        return "Price check completed successfully"

    def as_dict(self) -> dict:
        return {"processed": self.processed, "errors": self.errors, "message": self.message}


@dataclass
class RecheckResult:
    listing: Listing
    latest: Optional[PriceObservation]
    message: str


class RunLedger:
    """Listings whose health outcome has been recorded in the current batch run.

    A listing abandoned at the deadline keeps running on its worker thread;
    whichever of the two claims it first records the outcome.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claimed: Set[int] = set()

    def claim(self, listing_id: int) -> bool:
        with self._lock:
            if listing_id in self._claimed:
                return False
            self._claimed.add(listing_id)
            return True


class Pipeline:
    """Fetch, extract, validate and persist prices for tracked listings.

    Per-listing failures never escape ``process_one``; they are turned into a
    removed transition or a retry decision so sibling listings are unaffected.
    """

    def __init__(
        self,
        repo: Repository,
        scraper: Optional[Scraper] = None,
        extractor: Optional[StructuredExtractor] = None,
        notifier: Optional[WebhookNotifier] = None,
        batch_size: int = 10,
        batch_pause_secs: float = 5.0,
        run_timeout_secs: Optional[float] = 300.0,
    ) -> None:
        self.repo = repo
        self.scraper = scraper or Scraper()
        self.extractor = extractor
        self.history = PriceHistoryStore(repo)
        self.retry = RetryCoordinator(repo)
        self.health = HealthMonitor(repo, notifier)
        self.batch_size = batch_size
        self.batch_pause_secs = batch_pause_secs
        self.run_timeout_secs = run_timeout_secs
        self.strategies: Sequence[Strategy] = (self._by_selector, self._by_ai, self._by_heuristic)

    @classmethod
    def from_settings(cls, settings: Settings, repo: Optional[Repository] = None) -> "Pipeline":
        scraper = Scraper(
            ScraperConfig(
                timeout_secs=settings.fetch_timeout_secs,
                min_delay_secs=settings.fetch_min_delay_secs,
                max_delay_secs=settings.fetch_max_delay_secs,
            )
        )
        return cls(
            repo or PostgresRepository(settings.db_url),
            scraper=scraper,
            extractor=get_extractor(settings),
            notifier=WebhookNotifier(settings.alert_webhook_url),
            batch_size=settings.batch_size,
            batch_pause_secs=settings.batch_pause_secs,
            run_timeout_secs=settings.run_timeout_secs,
        )

    # Extraction strategies

    def _by_selector(self, html: str, listing: Listing) -> Optional[ExtractionAttempt]:
        result = self.scraper.extract_with_selector(html, listing.selector)
        return ExtractionAttempt("selector", result) if result else None

    def _by_ai(self, html: str, listing: Listing) -> Optional[ExtractionAttempt]:
        if self.extractor is None:
            return None
        try:
            ai = self.extractor.extract(html, listing.url)
        except LLMTimeout as e:
            logger.warning("Listing %s: %s, falling back to heuristics", listing.id, e)
            return None
        except StructuredExtractionError as e:
            logger.warning("Listing %s: AI extraction failed: %s", listing.id, e)
            return None
        if not self.extractor.validate_confidence(ai):
            logger.warning(
                "Listing %s: low confidence AI extraction (%.2f) rejected", listing.id, ai.confidence
            )
            return None
        return ExtractionAttempt("ai", ai.to_result(), learned_selector=ai.selector.strip() or None)

    def _by_heuristic(self, html: str, listing: Listing) -> Optional[ExtractionAttempt]:
        for selector in FALLBACK_PRICE_SELECTORS:
            if selector == listing.selector:
                continue
            result = self.scraper.extract_with_selector(html, selector)
            if result:
                return ExtractionAttempt("heuristic", result)
        return None

    def extract(self, html: str, listing: Listing) -> Optional[ExtractionAttempt]:
        for strategy in self.strategies:
            attempt = strategy(html, listing)
            if attempt is not None:
                return attempt
        return None

    # Single listing

    def process_one(self, listing: Listing, ledger: Optional[RunLedger] = None) -> CheckOutcome:
        """Check one listing. With a ``ledger``, its health outcome is recorded at most once per run."""
        attempt = 1
        try:
            attempt = self.retry.current_attempt(listing.id)
            html = self.scraper.fetch(listing.url)

            extracted = self.extract(html, listing)
            if extracted is None:
                raise ExtractionFailure("Failed to extract price with selector, AI and heuristics")

            validation = validate(extracted.result)
            if not validation.is_valid:
                raise ValidationFailure(validation.errors)

            anomaly = self.history.detect_anomaly(listing.id, extracted.result.price)
            if extracted.learned_selector and extracted.learned_selector != listing.selector:
                self.repo.set_selector(listing.id, extracted.learned_selector)
                logger.info("Listing %s: selector updated to %r", listing.id, extracted.learned_selector)
            self.history.save(listing.id, extracted.result)
            self.history.update_last_checked(listing.id)
            self._record(listing.id, True, ledger)

            status = listing.status
            if status == ListingStatus.ERROR:
                self.retry.set_status(listing.id, ListingStatus.ACTIVE)
                status = ListingStatus.ACTIVE
            logger.info(
                "Listing %s: %s %s via %s",
                listing.id,
                extracted.result.price,
                extracted.result.currency,
                extracted.strategy,
            )
            return CheckOutcome(
                listing.id, status, success=True, strategy=extracted.strategy, anomaly=anomaly
            )
        except Exception as e:
            return self._handle_failure(listing, e, attempt, ledger)

    def _handle_failure(
        self, listing: Listing, error: Exception, attempt: int, ledger: Optional[RunLedger] = None
    ) -> CheckOutcome:
        status = listing.status
        try:
            if isinstance(error, HttpRemoved):
                self.retry.mark_removed(listing.id)
                status = ListingStatus.REMOVED
            else:
                logger.error("Listing %s: check failed (attempt %d): %s", listing.id, attempt, error)
                decision = self.retry.handle(listing.id, error, attempt)
                if not decision.should_retry:
                    status = ListingStatus.ERROR
        except PersistenceFailure:
            logger.exception("Listing %s: could not record failure", listing.id)
        self._record(listing.id, False, ledger)
        return CheckOutcome(listing.id, status, success=False, error=str(error) or type(error).__name__)

    def _record(self, listing_id: int, success: bool, ledger: Optional[RunLedger] = None) -> None:
        if ledger is not None and not ledger.claim(listing_id):
            logger.info("Listing %s: outcome already recorded for this run", listing_id)
            return
        try:
            self.health.record(listing_id, success)
        except PersistenceFailure:
            logger.exception("Listing %s: could not record check outcome", listing_id)

    # Batches

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        return None if deadline is None else max(0.0, deadline - time.monotonic())

    def _abandon(self, listings: Iterable[Listing], summary: BatchSummary, ledger: RunLedger) -> None:
        for listing in listings:
            logger.error("Listing %s: abandoned, run deadline exceeded", listing.id)
            summary.errors += 1
            self._record(listing.id, False, ledger)

    def process_batch(
        self,
        listings: Iterable[Listing],
        batch_size: Optional[int] = None,
        deadline: Optional[float] = None,
    ) -> BatchSummary:
        """Process ``listings`` in concurrent fixed-size batches.

        ``deadline`` is a ``time.monotonic()`` value. Once it passes, listings
        still running or not yet started are recorded as failed for this run
        and no further batches start; worker threads are not waited for.
        The health check and alert run once at the end either way.
        """
        items = list(listings)
        size = max(1, batch_size or self.batch_size)
        summary = BatchSummary(total=len(items))
        ledger = RunLedger()

        for start in range(0, len(items), size):
            batch = items[start : start + size]
            number = start // size + 1
            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                summary.timed_out = True
                self._abandon(items[start:], summary, ledger)
                break

            executor = ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="price-check")
            futures = {executor.submit(self.process_one, listing, ledger): listing for listing in batch}
            done, pending = wait(futures, timeout=remaining)
            executor.shutdown(wait=not pending, cancel_futures=True)

            failed = 0
            for fut in done:
                listing = futures[fut]
                try:
                    outcome = fut.result()
                except Exception as e:
                    logger.exception("Listing %s: unexpected error", listing.id)
                    outcome = CheckOutcome(listing.id, listing.status, success=False, error=str(e))
                summary.add(outcome)
                failed += 0 if outcome.success else 1
            if failed:
                logger.warning("Batch %d: %d of %d failed", number, failed, len(batch))

            if pending:
                summary.timed_out = True
                self._abandon([futures[f] for f in pending] + items[start + size :], summary, ledger)
                break

            if start + size < len(items):
                pause = self.batch_pause_secs
                remaining = self._remaining(deadline)
                if remaining is not None:
                    pause = min(pause, remaining)
                if pause > 0:
                    time.sleep(pause)

        try:
            self.health.check_and_alert()
        except PersistenceFailure:
            logger.exception("Health check failed")
        return summary

    def run_scheduled(self) -> BatchSummary:
        """Entry point for the external scheduler: check every active listing once."""
        listings = self.repo.list_listings(ListingStatus.ACTIVE)
        logger.info("Processing %d active listings", len(listings))
        deadline = time.monotonic() + self.run_timeout_secs if self.run_timeout_secs else None
        summary = self.process_batch(listings, deadline=deadline)
        if summary.timed_out:
            logger.error("Processing timed out after %ss", self.run_timeout_secs)
        logger.info(
            "Processing completed: %d processed, %d errors", summary.processed, summary.errors
        )
        return summary

    def recheck(self, listing_id: int) -> Optional[RecheckResult]:
        """Manual single-listing check; ``None`` when the listing does not exist."""
        listing = self.repo.get_listing(listing_id)
        if listing is None:
            return None
        self.process_one(listing)
        updated = self.repo.get_listing(listing_id) or listing
        return RecheckResult(
            listing=updated,
            latest=self.history.latest(listing_id),
            message=status_message(updated.status),
        )
