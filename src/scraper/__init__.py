"""PriceWatch - Scraper Layer"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field

from src.config import Website


class ExtractionResult(BaseModel):
    """
    Canonical result of one successful extraction.

    Every caller receives this shape; nothing downstream branches on
    whether a price arrived bare or wrapped.
    """
    price: Decimal = Field(gt=0)
    name: str | None = None
    brand: str | None = None
    category: str | None = None
    website: Website | None = None
    url: str | None = None
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
