"""Data models for listings, observations and pipeline events."""

from .events import ErrorEvent, PriceObservation, SystemEvent, SystemEventType, utcnow
from .extraction import AIExtraction, ExtractionResult, HealthSnapshot, PriceStats, TokenUsage
from .listing import DEFAULT_CURRENCY, SUPPORTED_CURRENCIES, Currency, Listing, ListingStatus

__all__ = [
    "AIExtraction",
    "Currency",
    "DEFAULT_CURRENCY",
    "ErrorEvent",
    "ExtractionResult",
    "HealthSnapshot",
    "Listing",
    "ListingStatus",
    "PriceObservation",
    "PriceStats",
    "SUPPORTED_CURRENCIES",
    "SystemEvent",
    "SystemEventType",
    "TokenUsage",
    "utcnow",
]
