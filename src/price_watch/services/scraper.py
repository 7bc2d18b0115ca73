"""Page fetching and selector-based price extraction."""

from __future__ import annotations

import logging
import math
import random
import re
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import requests
from cssselect import SelectorError
from scrapy import Selector

from price_watch.errors import FetchTimeout, HttpError, HttpRemoved, NetworkError
from price_watch.models import DEFAULT_CURRENCY, ExtractionResult

logger = logging.getLogger(__name__)


USER_AGENTS = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

# Codes first so "PLN" wins over a stray "$" in the same text.
CURRENCY_MARKERS = (
    ("PLN", "PLN"),
    ("EUR", "EUR"),
    ("USD", "USD"),
    ("GBP", "GBP"),
    ("zł", "PLN"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("$", "USD"),
)

_NUMBER_RUN = re.compile(r"\d[\d\s\u00a0\u202f'.,]*")
_GROUPING = re.compile(r"[\s\u00a0\u202f']")

REMOVED_STATUS_CODES = frozenset({404, 410})


def is_removed(status_code: int) -> bool:
    """404 and 410 mean the listing is gone; nothing else does."""
    return status_code in REMOVED_STATUS_CODES


def parse_price(text: str) -> Optional[float]:
    """Parse the first numeric run of ``text``, handling thousands separators.

    Examples: "45 000 zł", "1.299,95 EUR", "$1,299.99", "12 345".
    """
    m = _NUMBER_RUN.search(text or "")
    if not m:
        return None
    raw = _GROUPING.sub("", m.group(0)).rstrip(".,")
    if "," in raw and "." in raw:
        # Whichever separator comes last is the decimal mark
        if raw.rfind(",") > raw.rfind("."):
            raw = raw.replace(".", "").replace(",", ".")
        else:
            raw = raw.replace(",", "")
    elif "," in raw:
        head, _, tail = raw.rpartition(",")
        if len(tail) in (1, 2) and "," not in head:
            raw = f"{head}.{tail}"
        else:
            raw = raw.replace(",", "")
    elif raw.count(".") > 1 or (raw.count(".") == 1 and len(raw.rpartition(".")[2]) == 3):
        raw = raw.replace(".", "")
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def detect_currency(text: str) -> str:
    for marker, code in CURRENCY_MARKERS:
        if marker in text:
            return code
    return DEFAULT_CURRENCY.value


def extract_with_selector(html: str, selector: Optional[str]) -> Optional[ExtractionResult]:
    """Extract a price from the first element matching ``selector``.

    Returns ``None`` when the selector is empty or invalid, matches nothing,
    or the element text holds no number. ``None`` means "try the next
    strategy", not failure.
    """
    if not selector or not selector.strip():
        return None
    try:
        matches = Selector(text=html).css(selector)
    except (SelectorError, ValueError) as e:
        logger.debug("Invalid selector %r: %s", selector, e)
        return None
    if not matches:
        return None
    raw_text = " ".join(t.strip() for t in matches[0].css("::text").getall() if t and t.strip())
    price = parse_price(raw_text)
    if price is None:
        return None
    return ExtractionResult(price=price, currency=detect_currency(raw_text), raw_text=raw_text)


@dataclass
class ScraperConfig:
    timeout_secs: float = 30.0
    min_delay_secs: float = 2.0
    max_delay_secs: float = 5.0
    user_agents: Sequence[str] = USER_AGENTS


class Scraper:
    """Fetches listing pages with rotating client identities.

    Every successful ``fetch`` sleeps a random 2-5 s before returning, which
    throttles the request rate against the target site for all callers.
    """

    def __init__(
        self, config: ScraperConfig | None = None, session: Optional[requests.Session] = None
    ) -> None:
        self.config = config or ScraperConfig()
        self.session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": random.choice(list(self.config.user_agents)),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "pl-PL,pl;q=0.9,en-US;q=0.8,en;q=0.7",
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
        }

    def _throttle(self) -> None:
        lo, hi = self.config.min_delay_secs, self.config.max_delay_secs
        delay = random.uniform(lo, max(lo, hi))
        if delay > 0:
            time.sleep(delay)

    def fetch(self, url: str) -> str:
        try:
            resp = self.session.get(url, headers=self._headers(), timeout=self.config.timeout_secs)
        except requests.Timeout as e:
            raise FetchTimeout(f"Request timeout after {self.config.timeout_secs:g}s") from e
        except requests.RequestException as e:
            raise NetworkError(str(e)) from e

        if is_removed(resp.status_code):
            raise HttpRemoved(resp.status_code, resp.reason)
        if not 200 <= resp.status_code < 300:
            raise HttpError(resp.status_code, resp.reason)

        self._throttle()
        return resp.text

    def extract_with_selector(self, html: str, selector: Optional[str]) -> Optional[ExtractionResult]:
        return extract_with_selector(html, selector)
