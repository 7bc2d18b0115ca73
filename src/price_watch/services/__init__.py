"""Service layer for the price-check pipeline."""

from .pipeline import BatchSummary, CheckOutcome, Pipeline, RecheckResult, status_message
from .scraper import Scraper, extract_with_selector, is_removed

__all__ = [
    "BatchSummary",
    "CheckOutcome",
    "Pipeline",
    "RecheckResult",
    "Scraper",
    "extract_with_selector",
    "is_removed",
    "status_message",
]
