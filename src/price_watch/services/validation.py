from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List

from price_watch.models import SUPPORTED_CURRENCIES, ExtractionResult


MIN_PRICE = 0
MAX_PRICE = 10_000_000


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def validate(data: ExtractionResult) -> ValidationResult:
    """Check an extracted price; every rule runs so the full diagnosis is returned."""
    errors: List[str] = []
    price = data.price
    is_number = isinstance(price, (int, float)) and not isinstance(price, bool)

    if not is_number or not math.isfinite(price):
        errors.append("Price must be a valid number")
    if is_number and price <= MIN_PRICE:
        errors.append(f"Price must be greater than {MIN_PRICE}")
    if is_number and price >= MAX_PRICE:
        errors.append(f"Price must be less than {MAX_PRICE:,}")
    if data.currency not in SUPPORTED_CURRENCIES:
        errors.append(f"Invalid currency: {data.currency}")
    if not (data.raw_text or "").strip():
        errors.append("Raw value is empty")

    return ValidationResult(is_valid=not errors, errors=errors)
