"""
PriceWatch - Alert Evaluator

Decides whether a freshly reconciled price falls inside a user's alert band
and ranks the sibling prices into a best-deals list. Pure functions, no I/O.

Re-notification policy (applied by the engine after `evaluate`):
    an alert that fired less than ALERT_COOLDOWN_HOURS ago is suppressed;
    a cooldown of 0 notifies on every qualifying pass.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, NamedTuple

import structlog

from src.config import settings

logger = structlog.get_logger(__name__)


class SiblingPrice(NamedTuple):
    """One sibling listing's freshly extracted price."""
    price: Decimal
    url: str
    website: str


class AlertBand(NamedTuple):
    """Minimal alert shape; ORM Alert rows expose the same attributes."""
    min_price: Decimal
    max_price: Decimal
    is_active: bool = True


class AlertDecision(NamedTuple):
    fire: bool
    best_deals: list[SiblingPrice]


def in_band(price: Decimal, min_price: Decimal, max_price: Decimal) -> bool:
    """Inclusive on both ends."""
    return min_price <= price <= max_price


def best_deals(sibling_prices: Iterable[SiblingPrice], limit: int | None = None) -> list[SiblingPrice]:
    """Cheapest siblings first, at most `limit` (default: BEST_DEALS_LIMIT)."""
    n = limit if limit is not None else settings.BEST_DEALS_LIMIT
    return sorted(sibling_prices, key=lambda s: s.price)[:n]


def evaluate(
    alert: Any,
    new_price: Decimal,
    sibling_prices: Iterable[SiblingPrice],
    limit: int | None = None,
) -> AlertDecision:
    """
    Evaluate one alert against a new price.

    Args:
        alert: Anything with `is_active`, `min_price`, `max_price`.
        new_price: Price just written to the alert's listing.
        sibling_prices: Fresh prices across the listing's sibling group.
        limit: Best-deals cap.

    Returns:
        AlertDecision. `best_deals` is computed whether or not the alert fires.
    """
    fire = bool(alert.is_active) and in_band(
        Decimal(new_price), Decimal(alert.min_price), Decimal(alert.max_price)
    )
    deals = best_deals(sibling_prices, limit)

    logger.debug(
        "alert_evaluated",
        new_price=str(new_price),
        min_price=str(alert.min_price),
        max_price=str(alert.max_price),
        is_active=bool(alert.is_active),
        fire=fire,
        source="alerts",
    )
    return AlertDecision(fire=fire, best_deals=deals)


def should_suppress(
    last_notified: datetime | None,
    now: datetime,
    cooldown_hours: int | None = None,
) -> bool:
    """True if the alert fired within the cooldown window."""
    hours = cooldown_hours if cooldown_hours is not None else settings.ALERT_COOLDOWN_HOURS
    if hours <= 0 or last_notified is None:
        return False
    if last_notified.tzinfo is None and now.tzinfo is not None:
        # SQLite hands back naive datetimes; every timestamp we write is UTC.
        last_notified = last_notified.replace(tzinfo=now.tzinfo)
    return now - last_notified < timedelta(hours=hours)
