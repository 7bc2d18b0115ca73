"""Extraction results produced by the selector, AI and heuristic strategies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .listing import Currency


@dataclass
class ExtractionResult:
    price: float
    currency: str
    raw_text: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    model: Optional[str] = None


class AIExtraction(BaseModel):
    """Structured response of the language-model extraction call."""

    model_config = ConfigDict(populate_by_name=True)

    price: float
    currency: Currency
    confidence: float = Field(ge=0.0, le=1.0)
    selector: str
    city: str = ""
    title: str = ""
    image_url: str = Field(default="", alias="imageUrl")
    usage: Optional[TokenUsage] = Field(default=None, exclude=True)

    def to_result(self) -> ExtractionResult:
        return ExtractionResult(
            price=self.price,
            currency=self.currency.value,
            raw_text=f"{self.price} {self.currency.value}",
        )


@dataclass
class PriceStats:
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    count: int = 0


class HealthSnapshot(BaseModel):
    success_rate: float
    total_checks: int
    error_count: int
    active_listing_count: int
    last_alert_at: Optional[datetime] = None
