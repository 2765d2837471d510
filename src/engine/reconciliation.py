"""
PriceWatch - Reconciliation Engine

One pass re-extracts every listing's price and rewrites the sibling-group
aggregates:

    Idle -> Collecting -> ExtractingAll -> Aggregating -> Persisting -> Notifying -> Idle

1. Collecting     load all listings, group by product_identifier
2. ExtractingAll  retry-wrapped extraction for every listing, concurrently
3. Aggregating    min/max over the group's fresh prices only
4. Persisting     one atomic write per listing
5. Notifying      evaluate active alerts on freshly priced listings

A failure on one listing never aborts the pass. It is logged, the listing
keeps its previous price for this round, and the next pass tries again.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, NamedTuple

import structlog
from pydantic import BaseModel

from src.config import settings
from src.engine.alerts import SiblingPrice, evaluate, should_suppress
from src.models.listing import Listing
from src.pipeline.store import ListingStore, PriceUpdate
from src.scraper import ExtractionResult
from src.scraper.errors import PersistenceError
from src.scraper.retry import SleepFn, with_retry
from src.signals.email import format_alert_email

logger = structlog.get_logger(__name__)


class ReconcilePhase(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    EXTRACTING_ALL = "extracting_all"
    AGGREGATING = "aggregating"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"


class ExtractionOutcome(NamedTuple):
    listing: Listing
    result: ExtractionResult | None
    error: Exception | None


class ReconcileReport(BaseModel):
    """Counters for one pass."""
    groups: int = 0
    listings: int = 0
    extracted: int = 0
    failed: int = 0
    persisted: int = 0
    persist_failures: int = 0
    alerts_fired: int = 0
    alerts_suppressed: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None


def group_by_identifier(listings: list[Listing]) -> dict[str, list[Listing]]:
    groups: dict[str, list[Listing]] = defaultdict(list)
    for listing in listings:
        groups[listing.product_identifier].append(listing)
    return dict(groups)


def plan_group_updates(
    outcomes: list[ExtractionOutcome],
    checked_at: datetime,
) -> dict[Any, PriceUpdate]:
    """
    Aggregate one sibling group.

    Extrema come from this pass's fresh prices only. A sibling whose own
    extraction failed keeps its price but receives the fresh extrema,
    widened to cover its stale price so lowest <= current <= highest holds.
    When no sibling succeeded, only last_checked moves.
    """
    fresh = [o.result.price for o in outcomes if o.result is not None]
    updates: dict[Any, PriceUpdate] = {}

    if not fresh:
        for outcome in outcomes:
            updates[outcome.listing.id] = PriceUpdate(checked_at=checked_at)
        return updates

    group_low, group_high = min(fresh), max(fresh)

    for outcome in outcomes:
        if outcome.result is not None:
            updates[outcome.listing.id] = PriceUpdate(
                checked_at=checked_at,
                current_price=outcome.result.price,
                lowest_price=group_low,
                highest_price=group_high,
            )
            continue

        stale = outcome.listing.current_price
        low, high = group_low, group_high
        if stale is not None:
            low, high = min(low, Decimal(stale)), max(high, Decimal(stale))
        updates[outcome.listing.id] = PriceUpdate(
            checked_at=checked_at,
            lowest_price=low,
            highest_price=high,
        )
    return updates


class ReconciliationEngine:
    """
    Runs reconciliation passes.

    Usage:
        engine = ReconciliationEngine(store, extractor, notifier)
        report = await engine.run_once()

    `extractor` needs `async extract(url, website) -> ExtractionResult`;
    `notifier` needs `async send(to_address, subject, body) -> bool`.
    Overlap between passes is prevented by the scheduler.
    """

    def __init__(
        self,
        store: ListingStore,
        extractor: Any,
        notifier: Any,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        sleep: SleepFn = asyncio.sleep,
        concurrency: int | None = None,
        cooldown_hours: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.notifier = notifier
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep
        self._concurrency = concurrency if concurrency is not None else settings.RECONCILE_CONCURRENCY
        self._cooldown_hours = cooldown_hours
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.phase = ReconcilePhase.IDLE

    # -----------------------------------------------------------------------
    # Extracting
    # -----------------------------------------------------------------------

    async def _extract_listing(self, listing: Listing, semaphore: asyncio.Semaphore) -> ExtractionOutcome:
        """Retry-wrapped extraction; never raises."""

        async def attempt() -> ExtractionResult:
            # Slot is held per attempt, not across backoff sleeps.
            async with semaphore:
                return await self.extractor.extract(listing.url, listing.website)

        try:
            result = await with_retry(
                attempt,
                max_attempts=self._max_attempts,
                base_delay=self._base_delay,
                sleep=self._sleep,
                label=listing.url,
            )
            return ExtractionOutcome(listing, result, None)
        except Exception as e:
            logger.warning(
                "reconcile_extraction_failed",
                listing_id=str(listing.id),
                product_identifier=listing.product_identifier,
                website=listing.website,
                error=str(e),
                error_type=type(e).__name__,
                source="reconciliation",
            )
            return ExtractionOutcome(listing, None, e)

    # -----------------------------------------------------------------------
    # Persisting
    # -----------------------------------------------------------------------

    async def _persist(self, listing: Listing, price_update: PriceUpdate) -> bool:
        try:
            await self.store.apply_price_update(listing.id, price_update)
            return True
        except PersistenceError as e:
            logger.error(
                "reconcile_persist_failed",
                listing_id=str(listing.id),
                product_identifier=listing.product_identifier,
                error=e.reason,
                source="reconciliation",
            )
            return False

    # -----------------------------------------------------------------------
    # Notifying
    # -----------------------------------------------------------------------

    async def _notify_listing(
        self,
        outcome: ExtractionOutcome,
        siblings: list[SiblingPrice],
        report: ReconcileReport,
    ) -> None:
        listing, result = outcome.listing, outcome.result
        assert result is not None
        now = self._clock()

        for alert, email in await self.store.find_active_alerts(listing.id):
            decision = evaluate(alert, result.price, siblings)
            if not decision.fire:
                continue
            report.alerts_fired += 1

            if should_suppress(alert.last_notified, now, self._cooldown_hours):
                report.alerts_suppressed += 1
                logger.info(
                    "reconcile_alert_suppressed",
                    alert_id=str(alert.id),
                    listing_id=str(listing.id),
                    last_notified=alert.last_notified.isoformat() if alert.last_notified else None,
                    source="reconciliation",
                )
                continue

            subject, body = format_alert_email(
                listing.name or result.name or "",
                listing.url,
                alert,
                result.price,
                decision.best_deals,
            )
            if not await self.notifier.send(email, subject, body):
                report.notifications_failed += 1
                continue

            report.notifications_sent += 1
            try:
                await self.store.mark_notified(alert.id, now)
            except PersistenceError as e:
                logger.error(
                    "reconcile_mark_notified_failed",
                    alert_id=str(alert.id),
                    error=e.reason,
                    source="reconciliation",
                )

    async def _notify(
        self,
        outcomes: list[ExtractionOutcome],
        siblings: list[SiblingPrice],
        report: ReconcileReport,
    ) -> None:
        for outcome in outcomes:
            try:
                await self._notify_listing(outcome, siblings, report)
            except Exception as e:
                logger.error(
                    "reconcile_notify_failed",
                    listing_id=str(outcome.listing.id),
                    error=str(e),
                    error_type=type(e).__name__,
                    source="reconciliation",
                )

    # -----------------------------------------------------------------------
    # Pass
    # -----------------------------------------------------------------------

    async def run_once(self) -> ReconcileReport:
        """Execute one full reconciliation pass."""
        report = ReconcileReport(started_at=self._clock())
        try:
            self.phase = ReconcilePhase.COLLECTING
            listings = await self.store.find_all_listings()
            groups = group_by_identifier(listings)
            report.groups = len(groups)
            report.listings = len(listings)
            logger.info(
                "reconcile_started",
                groups=report.groups,
                listings=report.listings,
                source="reconciliation",
            )

            self.phase = ReconcilePhase.EXTRACTING_ALL
            semaphore = asyncio.Semaphore(max(1, self._concurrency))
            outcomes = await asyncio.gather(
                *(self._extract_listing(listing, semaphore) for listing in listings)
            )
            by_group: dict[str, list[ExtractionOutcome]] = defaultdict(list)
            for outcome in outcomes:
                by_group[outcome.listing.product_identifier].append(outcome)
                if outcome.result is not None:
                    report.extracted += 1
                else:
                    report.failed += 1

            self.phase = ReconcilePhase.AGGREGATING
            checked_at = self._clock()
            plans = {
                identifier: plan_group_updates(group_outcomes, checked_at)
                for identifier, group_outcomes in by_group.items()
            }

            self.phase = ReconcilePhase.PERSISTING
            persisted: dict[Any, bool] = {}
            for identifier, group_outcomes in by_group.items():
                for outcome in group_outcomes:
                    ok = await self._persist(outcome.listing, plans[identifier][outcome.listing.id])
                    persisted[outcome.listing.id] = ok
                    if ok:
                        report.persisted += 1
                    else:
                        report.persist_failures += 1

            self.phase = ReconcilePhase.NOTIFYING
            for identifier, group_outcomes in by_group.items():
                fresh = [
                    o for o in group_outcomes
                    if o.result is not None and persisted.get(o.listing.id)
                ]
                if not fresh:
                    continue
                siblings = [
                    SiblingPrice(o.result.price, o.listing.url, o.listing.website)
                    for o in group_outcomes
                    if o.result is not None
                ]
                await self._notify(fresh, siblings, report)
        finally:
            self.phase = ReconcilePhase.IDLE

        report.finished_at = self._clock()
        logger.info(
            "reconcile_complete",
            **report.model_dump(exclude={"started_at", "finished_at"}),
            source="reconciliation",
        )
        return report
