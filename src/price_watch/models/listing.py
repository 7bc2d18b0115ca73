"""Data models for tracked listings."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Currency(str, Enum):
    PLN = "PLN"
    EUR = "EUR"
    USD = "USD"
    GBP = "GBP"


DEFAULT_CURRENCY = Currency.PLN
SUPPORTED_CURRENCIES = frozenset(c.value for c in Currency)


class ListingStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"
    REMOVED = "removed"


class Listing(BaseModel):
    """A tracked external page whose price is periodically re-checked.

    ``selector`` is rewritten when the structured extractor learns a better
    one, so future checks can use the cheap selector path again.
    """

    id: int
    url: str
    selector: Optional[str] = None
    status: ListingStatus = ListingStatus.ACTIVE
    last_checked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
