"""Append-only records written by the pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .listing import Currency


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceObservation(BaseModel):
    model_config = ConfigDict(frozen=True)

    listing_id: int
    price: float = Field(gt=0)
    currency: Currency
    observed_at: datetime = Field(default_factory=utcnow)


class ErrorEvent(BaseModel):
    """One failed attempt; counted to derive the current retry attempt."""

    model_config = ConfigDict(frozen=True)

    listing_id: int
    message: str
    stack_trace: Optional[str] = None
    attempt_number: int
    created_at: datetime = Field(default_factory=utcnow)


class SystemEventType(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ANOMALY = "anomaly"
    ALERT_SENT = "alert-sent"


class SystemEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    listing_id: Optional[int] = None
    event_type: SystemEventType
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
