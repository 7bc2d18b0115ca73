"""Exception taxonomy for the price-check pipeline."""

from __future__ import annotations

from typing import List, Optional


class PriceWatchError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = True


class NetworkError(PriceWatchError):
    """Connection-level failure while fetching a page."""


class FetchTimeout(NetworkError):
    """The page did not respond within the fetch timeout."""


class HttpError(PriceWatchError):
    """Non-2xx response from the listing site."""

    def __init__(self, status_code: int, reason: Optional[str] = None) -> None:
        self.status_code = status_code
        self.reason = reason or ""
        super().__init__(f"HTTP {status_code}: {self.reason}".rstrip(": "))


class HttpRemoved(HttpError):
    """404/410: the listing is gone for good."""

    retryable = False


class ExtractionFailure(PriceWatchError):
    """No extraction strategy produced a usable price."""


class ValidationFailure(PriceWatchError):
    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class PersistenceFailure(PriceWatchError):
    """A storage read or write failed."""


class ConfigurationError(PriceWatchError):
    retryable = False


class StructuredExtractionError(PriceWatchError):
    """The language-model backend returned an unusable response."""


class LLMTimeout(StructuredExtractionError):
    pass
