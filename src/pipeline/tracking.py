"""
PriceWatch - Tracking Service

User-triggered operations around listings and alerts. Unlike the
reconciliation pass, errors here surface to the caller so the user can
correct the URL or the band.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog

from src.config import NotificationType, settings
from src.models.alert import Alert
from src.models.listing import Listing
from src.pipeline.store import ListingStore
from src.scraper.retry import SleepFn, with_retry
from src.scraper.selectors import resolve_website

logger = structlog.get_logger(__name__)


async def add_listing(
    store: ListingStore,
    extractor: Any,
    *,
    url: str,
    website: str,
    product_identifier: str,
    created_by: uuid.UUID | None = None,
    name: str | None = None,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> Listing:
    """
    Start tracking a product URL.

    The price is extracted synchronously so the listing is created with a
    real current price and a first history entry. Extrema are seeded from
    the existing sibling group; the next reconciliation pass refreshes the
    whole group.

    Raises:
        UnsupportedWebsite: website outside the enumeration.
        RetryExhausted: page could not be fetched or priced within the bound.
        InvalidPriceFormat: page priced with a non-numeric or non-positive value.
        PersistenceError: listing could not be written.
    """
    identifier = product_identifier.strip()
    if not identifier:
        raise ValueError("product_identifier must not be empty")
    site = resolve_website(website)

    result = await with_retry(
        lambda: extractor.extract(url, site),
        max_attempts=max_attempts,
        base_delay=base_delay,
        sleep=sleep,
        label=url,
    )

    siblings = await store.find_all_listings(product_identifier=identifier)
    known = [Decimal(s.current_price) for s in siblings if s.current_price is not None]
    group_prices = known + [result.price]
    now = datetime.now(timezone.utc)

    listing = Listing(
        product_identifier=identifier,
        website=site.value,
        url=url.strip(),
        name=(name or result.name or "").strip(),
        brand=result.brand,
        category=result.category,
        current_price=result.price,
        lowest_price=min(group_prices),
        highest_price=max(group_prices),
        last_checked=now,
        created_by=created_by,
    )
    await store.create_listing(listing, recorded_at=now)

    logger.info(
        "tracking_listing_added",
        listing_id=str(listing.id),
        product_identifier=identifier,
        website=site.value,
        price=str(result.price),
        siblings=len(siblings),
    )
    return listing


async def create_alert(
    store: ListingStore,
    *,
    user_id: uuid.UUID,
    listing_id: uuid.UUID,
    min_price: Decimal,
    max_price: Decimal,
    notification_type: str = NotificationType.EMAIL.value,
) -> Alert:
    """
    Subscribe a user to a listing's price band.

    Raises:
        ValueError: invalid band or notification type.
        LookupError: listing or user does not exist.
    """
    low, high = Decimal(min_price), Decimal(max_price)
    if low < settings.MIN_ALERT_PRICE:
        raise ValueError(f"min_price must be >= {settings.MIN_ALERT_PRICE}")
    if low > high:
        raise ValueError("min_price must not exceed max_price")
    channel = NotificationType(notification_type)

    if await store.find_listing(listing_id) is None:
        raise LookupError(f"Listing {listing_id} not found")
    if await store.find_user(user_id) is None:
        raise LookupError(f"User {user_id} not found")

    alert = Alert(
        user_id=user_id,
        listing_id=listing_id,
        min_price=low,
        max_price=high,
        notification_type=channel.value,
        is_active=True,
    )
    saved = await store.save(alert)
    logger.info(
        "tracking_alert_created",
        listing_id=str(listing_id),
        min_price=str(low),
        max_price=str(high),
    )
    return saved


async def lowest_price_listings(store: ListingStore, limit: int | None = None) -> list[Listing]:
    """Cheapest tracked listings across every product."""
    return await store.lowest_priced(limit if limit is not None else settings.LOWEST_PRICE_LIMIT)


async def compare_prices(store: ListingStore, product_identifier: str) -> list[Listing]:
    """Sibling listings of one product, cheapest first; unpriced ones last."""
    siblings = await store.find_all_listings(product_identifier=product_identifier.strip())
    return sorted(
        siblings,
        key=lambda s: (s.current_price is None, s.current_price if s.current_price is not None else 0),
    )
