from __future__ import annotations

import hmac
import logging
from dataclasses import asdict
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse

from price_watch.config import Settings
from price_watch.errors import ConfigurationError, PersistenceFailure
from price_watch.models import DEFAULT_CURRENCY
from price_watch.repositories import PostgresRepository
from price_watch.services import Pipeline
from price_watch.utils.log import configure_logging

logger = logging.getLogger(__name__)


app = FastAPI(title="Price Watch")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def get_pipeline(settings: Settings = Depends(get_settings)) -> Pipeline:
    try:
        return Pipeline.from_settings(settings)
    except ConfigurationError as e:
        logger.error("Pipeline misconfigured: %s", e)
        raise HTTPException(status_code=500, detail="Server configuration error") from e


def require_cron_secret(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject the call before any listing is touched unless the bearer token matches."""
    if not settings.cron_secret:
        logger.error("CRON_SECRET not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        logger.warning("Unauthorized trigger attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.on_event("startup")
def on_startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        PostgresRepository(settings.db_url).init_schema()
    except PersistenceFailure as e:
        # DB may not be up yet; the first trigger will surface the failure
        logger.warning("Schema init skipped: %s", e)


@app.post("/cron/check-prices", dependencies=[Depends(require_cron_secret)])
def check_prices(pipeline: Pipeline = Depends(get_pipeline)) -> JSONResponse:
    try:
        summary = pipeline.run_scheduled()
    except PersistenceFailure as e:
        logger.error("Failed to load listings: %s", e)
        return JSONResponse({"error": "Failed to fetch listings", "details": str(e)}, status_code=500)
    return JSONResponse({"success": True, **summary.as_dict()})


@app.post("/listings/{listing_id}/recheck", dependencies=[Depends(require_cron_secret)])
def recheck(listing_id: int, pipeline: Pipeline = Depends(get_pipeline)) -> JSONResponse:
    result = pipeline.recheck(listing_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Listing not found")
    latest = result.latest
    return JSONResponse(
        {
            "success": True,
            "message": result.message,
            "listing": {
                "id": result.listing.id,
                "status": result.listing.status.value,
                "lastChecked": result.listing.last_checked_at.isoformat()
                if result.listing.last_checked_at
                else None,
                "currentPrice": latest.price if latest else 0,
                "currency": latest.currency.value if latest else DEFAULT_CURRENCY.value,
            },
        }
    )


@app.get("/health", dependencies=[Depends(require_cron_secret)])
def health(hours: float = 24, pipeline: Pipeline = Depends(get_pipeline)) -> JSONResponse:
    snapshot = pipeline.health.health(window_hours=hours)
    return JSONResponse(snapshot.model_dump(mode="json"))


@app.get("/listings/{listing_id}/stats", dependencies=[Depends(require_cron_secret)])
def stats(listing_id: int, pipeline: Pipeline = Depends(get_pipeline)) -> JSONResponse:
    return JSONResponse(asdict(pipeline.history.stats(listing_id)))
