from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

import psycopg2
import psycopg2.extras

from price_watch.errors import PersistenceFailure
from price_watch.models import (
    ErrorEvent,
    Listing,
    ListingStatus,
    PriceObservation,
    SystemEvent,
    SystemEventType,
)

from .base import Repository

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS listings (
  id BIGSERIAL PRIMARY KEY,
  url TEXT NOT NULL,
  selector TEXT,
  status TEXT NOT NULL DEFAULT 'active'
    CHECK (status IN ('active', 'error', 'removed')),
  last_checked_at TIMESTAMPTZ,
  created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS price_history (
  id BIGSERIAL PRIMARY KEY,
  listing_id BIGINT NOT NULL REFERENCES listings(id),
  price NUMERIC(12, 2) NOT NULL CHECK (price > 0),
  currency TEXT NOT NULL CHECK (currency IN ('PLN', 'EUR', 'USD', 'GBP')),
  observed_at TIMESTAMPTZ NOT NULL
);
CREATE TABLE IF NOT EXISTS error_log (
  id BIGSERIAL PRIMARY KEY,
  listing_id BIGINT NOT NULL REFERENCES listings(id),
  message TEXT NOT NULL,
  stack_trace TEXT,
  attempt_number INTEGER NOT NULL,
  created_at TIMESTAMPTZ NOT NULL
);
CREATE TABLE IF NOT EXISTS system_events (
  id BIGSERIAL PRIMARY KEY,
  listing_id BIGINT REFERENCES listings(id),
  event_type TEXT NOT NULL,
  message TEXT NOT NULL,
  metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
  created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS listings_status_idx ON listings(status);
CREATE INDEX IF NOT EXISTS price_history_listing_idx ON price_history(listing_id, observed_at DESC);
CREATE INDEX IF NOT EXISTS error_log_listing_idx ON error_log(listing_id, created_at);
CREATE INDEX IF NOT EXISTS system_events_type_idx ON system_events(event_type, created_at DESC);
"""

_LISTING_COLUMNS = "id, url, selector, status, last_checked_at, created_at"


def _listing(row: tuple) -> Listing:
    lid, url, selector, status, last_checked_at, created_at = row
    return Listing(
        id=int(lid),
        url=url,
        selector=selector,
        status=ListingStatus(status),
        last_checked_at=last_checked_at,
        created_at=created_at,
    )


class PostgresRepository(Repository):
    """psycopg2-backed storage. Every method opens and commits its own connection."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn

    @contextmanager
    def connect(self) -> Iterator["psycopg2.extensions.connection"]:
        try:
            conn = psycopg2.connect(self.dsn)
        except psycopg2.Error as e:
            raise PersistenceFailure(f"Database connection failed: {e}") from e
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def cursor(self) -> Iterator["psycopg2.extensions.cursor"]:
        with self.connect() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                raise PersistenceFailure(str(e).strip()) from e

    def init_schema(self) -> None:
        with self.cursor() as cur:
            cur.execute(SCHEMA)
        logger.info("Schema ready")

    def add_listing(self, url: str, selector: Optional[str] = None) -> Listing:
        with self.cursor() as cur:
            cur.execute(
                f"INSERT INTO listings (url, selector) VALUES (%s, %s) RETURNING {_LISTING_COLUMNS}",
                (url, selector),
            )
            return _listing(cur.fetchone())

    def get_listing(self, listing_id: int) -> Optional[Listing]:
        with self.cursor() as cur:
            cur.execute(f"SELECT {_LISTING_COLUMNS} FROM listings WHERE id=%s", (listing_id,))
            row = cur.fetchone()
        return _listing(row) if row else None

    def list_listings(self, status: Optional[ListingStatus] = None) -> List[Listing]:
        sql = f"SELECT {_LISTING_COLUMNS} FROM listings"
        params: list[object] = []
        if status is not None:
            sql += " WHERE status=%s"
            params.append(status.value)
        sql += " ORDER BY id ASC"
        with self.cursor() as cur:
            cur.execute(sql, params)
            return [_listing(r) for r in cur.fetchall()]

    def count_listings(self, status: Optional[ListingStatus] = None) -> int:
        with self.cursor() as cur:
            if status is None:
                cur.execute("SELECT COUNT(*) FROM listings")
            else:
                cur.execute("SELECT COUNT(*) FROM listings WHERE status=%s", (status.value,))
            return int(cur.fetchone()[0])

    def set_status(self, listing_id: int, status: ListingStatus) -> None:
        with self.cursor() as cur:
            cur.execute("UPDATE listings SET status=%s WHERE id=%s", (status.value, listing_id))

    def set_selector(self, listing_id: int, selector: str) -> None:
        with self.cursor() as cur:
            cur.execute("UPDATE listings SET selector=%s WHERE id=%s", (selector, listing_id))

    def set_last_checked(self, listing_id: int, when: datetime) -> None:
        with self.cursor() as cur:
            cur.execute("UPDATE listings SET last_checked_at=%s WHERE id=%s", (when, listing_id))

    def add_observation(self, obs: PriceObservation) -> None:
        with self.cursor() as cur:
            cur.execute(
                "INSERT INTO price_history (listing_id, price, currency, observed_at) VALUES (%s, %s, %s, %s)",
                (obs.listing_id, obs.price, obs.currency.value, obs.observed_at),
            )

    def latest_observation(self, listing_id: int) -> Optional[PriceObservation]:
        with self.cursor() as cur:
            cur.execute(
                """
                SELECT price, currency, observed_at FROM price_history
                WHERE listing_id=%s ORDER BY observed_at DESC LIMIT 1
                """,
                (listing_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        price, currency, observed_at = row
        return PriceObservation(
            listing_id=listing_id, price=float(price), currency=currency, observed_at=observed_at
        )

    def observation_prices(self, listing_id: int) -> List[float]:
        with self.cursor() as cur:
            cur.execute(
                "SELECT price FROM price_history WHERE listing_id=%s ORDER BY observed_at ASC",
                (listing_id,),
            )
            return [float(p) for (p,) in cur.fetchall()]

    def add_error_event(self, event: ErrorEvent) -> None:
        with self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO error_log (listing_id, message, stack_trace, attempt_number, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (event.listing_id, event.message, event.stack_trace, event.attempt_number, event.created_at),
            )

    def count_error_events(self, listing_id: int, since: datetime) -> int:
        with self.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM error_log WHERE listing_id=%s AND created_at >= %s",
                (listing_id, since),
            )
            return int(cur.fetchone()[0])

    def add_system_event(self, event: SystemEvent) -> None:
        with self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO system_events (listing_id, event_type, message, metadata, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    event.listing_id,
                    event.event_type.value,
                    event.message,
                    psycopg2.extras.Json(event.metadata),
                    event.created_at,
                ),
            )

    def count_system_events(self, event_type: SystemEventType, since: datetime) -> int:
        with self.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM system_events WHERE event_type=%s AND created_at >= %s",
                (event_type.value, since),
            )
            return int(cur.fetchone()[0])

    def latest_system_event(self, event_type: SystemEventType) -> Optional[SystemEvent]:
        with self.cursor() as cur:
            cur.execute(
                """
                SELECT listing_id, message, metadata, created_at FROM system_events
                WHERE event_type=%s ORDER BY created_at DESC LIMIT 1
                """,
                (event_type.value,),
            )
            row = cur.fetchone()
        if not row:
            return None
        listing_id, message, metadata, created_at = row
        return SystemEvent(
            listing_id=listing_id,
            event_type=event_type,
            message=message,
            metadata=metadata or {},
            created_at=created_at,
        )
