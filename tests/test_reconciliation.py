"""
Tests for the Reconciliation Engine.

Runs full passes against an in-memory SQLite store with a scripted
extractor and a recording notifier.

Covers:
- Group extrema and history appends
- Stale siblings after a failed extraction
- Failure isolation across listings and groups
- Alert delivery, cooldown and failed sends
- Persistence failures on a single listing
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.engine.reconciliation import (
    ExtractionOutcome,
    ReconcilePhase,
    ReconciliationEngine,
    group_by_identifier,
    plan_group_updates,
)
from src.models import Alert, Listing
from src.scraper import ExtractionResult
from src.scraper.errors import (
    InvalidPriceFormat,
    NetworkError,
    PersistenceError,
    PriceNotFound,
)

AMAZON = "https://www.amazon.in/dp/B0CHX1W1XY"
FLIPKART = "https://www.flipkart.com/apple-iphone-15/p/itm6ac6485515ae4"
CROMA = "https://www.croma.com/apple-iphone-15/p/300652"
MEESHO = "https://www.meesho.com/phone-cover/p/2x9k1"


@pytest.fixture
def make_engine(store, fake_notifier, no_sleep):
    """Build an engine over the test store; sleeps are skipped unless overridden."""

    def _make(extractor, notifier=None, **kwargs) -> ReconciliationEngine:
        kwargs.setdefault("max_attempts", 3)
        kwargs.setdefault("base_delay", 0.0)
        kwargs.setdefault("cooldown_hours", 24)
        kwargs.setdefault("sleep", no_sleep)
        return ReconciliationEngine(
            store=store,
            extractor=extractor,
            notifier=notifier or fake_notifier,
            **kwargs,
        )

    return _make


async def _by_url(store) -> dict:
    return {listing.url: listing for listing in await store.find_all_listings()}


@pytest.fixture
async def iphone_group(seed_listing):
    """Three sibling listings of one product with yesterday's prices."""
    amazon = await seed_listing("iphone-15-128-black", "amazon", AMAZON, "70000", name="Apple iPhone 15")
    flipkart = await seed_listing("iphone-15-128-black", "flipkart", FLIPKART, "66000", name="Apple iPhone 15")
    croma = await seed_listing("iphone-15-128-black", "croma", CROMA, "68000", name="Apple iPhone 15")
    return amazon, flipkart, croma


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class TestAggregation:
    @pytest.mark.asyncio
    async def test_group_extrema_and_history(
        self, make_engine, fake_extractor, store, iphone_group
    ) -> None:
        extractor = fake_extractor({AMAZON: "69900", FLIPKART: "65999", CROMA: "67000"})

        report = await make_engine(extractor).run_once()

        assert report.groups == 1
        assert report.listings == 3
        assert report.extracted == 3
        assert report.failed == 0
        assert report.persisted == 3

        listings = await _by_url(store)
        assert listings[AMAZON].current_price == Decimal("69900")
        assert listings[FLIPKART].current_price == Decimal("65999")
        assert listings[CROMA].current_price == Decimal("67000")
        for listing in listings.values():
            assert listing.lowest_price == Decimal("65999")
            assert listing.highest_price == Decimal("69900")
            assert listing.last_checked is not None
            history = await store.history_for(listing.id)
            assert len(history) == 2
            assert history[-1].price == listing.current_price

    @pytest.mark.asyncio
    async def test_single_listing_group(
        self, make_engine, fake_extractor, store, seed_listing
    ) -> None:
        await seed_listing("phone-cover", "meesho", MEESHO, "299")
        await make_engine(fake_extractor({MEESHO: "249"})).run_once()

        listing = (await _by_url(store))[MEESHO]
        assert listing.current_price == Decimal("249")
        assert listing.lowest_price == listing.highest_price == Decimal("249")

    @pytest.mark.asyncio
    async def test_history_grows_each_pass(
        self, make_engine, fake_extractor, store, seed_listing
    ) -> None:
        await seed_listing("phone-cover", "meesho", MEESHO, "299")
        extractor = fake_extractor({MEESHO: ["279", "259"]})
        engine = make_engine(extractor)

        await engine.run_once()
        await engine.run_once()

        listing = (await _by_url(store))[MEESHO]
        history = await store.history_for(listing.id)
        assert [h.price for h in history] == [Decimal("299"), Decimal("279"), Decimal("259")]
        assert listing.current_price == Decimal("259")
        # Extrema track the latest pass, not all-time history.
        assert listing.lowest_price == listing.highest_price == Decimal("259")

    @pytest.mark.asyncio
    async def test_phase_returns_to_idle(self, make_engine, fake_extractor, iphone_group) -> None:
        engine = make_engine(fake_extractor({AMAZON: "1", FLIPKART: "2", CROMA: "3"}))
        assert engine.phase is ReconcilePhase.IDLE
        await engine.run_once()
        assert engine.phase is ReconcilePhase.IDLE

    @pytest.mark.asyncio
    async def test_empty_store(self, make_engine, fake_extractor) -> None:
        report = await make_engine(fake_extractor({})).run_once()
        assert report.listings == 0
        assert report.groups == 0


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_stale_sibling_keeps_price(
        self, make_engine, fake_extractor, store, iphone_group
    ) -> None:
        extractor = fake_extractor({
            AMAZON: "69900",
            FLIPKART: NetworkError("HTTP 503", status_code=503),
            CROMA: "67000",
        })

        report = await make_engine(extractor).run_once()

        assert report.extracted == 2
        assert report.failed == 1
        assert extractor.calls.count(FLIPKART) == 3

        listings = await _by_url(store)
        stale = listings[FLIPKART]
        assert stale.current_price == Decimal("66000")
        assert len(await store.history_for(stale.id)) == 1
        assert stale.last_checked is not None
        # Fresh extrema, widened to cover the stale price.
        assert stale.lowest_price == Decimal("66000")
        assert stale.highest_price == Decimal("69900")

        for url in (AMAZON, CROMA):
            assert listings[url].lowest_price == Decimal("67000")
            assert listings[url].highest_price == Decimal("69900")

    @pytest.mark.asyncio
    async def test_invariant_holds_for_every_listing(
        self, make_engine, fake_extractor, store, iphone_group, seed_listing
    ) -> None:
        await seed_listing("phone-cover", "meesho", MEESHO, "299")
        extractor = fake_extractor({
            AMAZON: "71000",
            FLIPKART: PriceNotFound("Could not extract price from flipkart"),
            CROMA: "64000",
            MEESHO: "310",
        })

        await make_engine(extractor).run_once()

        for listing in await store.find_all_listings():
            assert listing.lowest_price <= listing.current_price <= listing.highest_price

    @pytest.mark.asyncio
    async def test_failed_group_does_not_affect_others(
        self, make_engine, fake_extractor, store, iphone_group, seed_listing
    ) -> None:
        await seed_listing("phone-cover", "meesho", MEESHO, "299")
        extractor = fake_extractor({
            AMAZON: "69900",
            FLIPKART: "65999",
            CROMA: "67000",
            MEESHO: NetworkError("connection reset"),
        })

        report = await make_engine(extractor).run_once()

        assert report.failed == 1
        assert report.persisted == 4
        listings = await _by_url(store)
        assert listings[MEESHO].current_price == Decimal("299")
        assert listings[MEESHO].lowest_price == Decimal("299")
        assert listings[MEESHO].last_checked is not None
        assert listings[AMAZON].lowest_price == Decimal("65999")

    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(
        self, make_engine, fake_extractor, seed_listing
    ) -> None:
        await seed_listing("phone-cover", "meesho", MEESHO, "299")
        extractor = fake_extractor({MEESHO: InvalidPriceFormat("Invalid price format: '.'")})

        report = await make_engine(extractor).run_once()

        assert report.failed == 1
        assert extractor.calls == [MEESHO]

    @pytest.mark.asyncio
    async def test_transient_failure_recovers_within_pass(
        self, make_engine, fake_extractor, store, seed_listing
    ) -> None:
        await seed_listing("phone-cover", "meesho", MEESHO, "299")
        extractor = fake_extractor({MEESHO: [NetworkError("timeout"), "289"]})

        report = await make_engine(extractor).run_once()

        assert report.extracted == 1
        assert (await _by_url(store))[MEESHO].current_price == Decimal("289")

    @pytest.mark.asyncio
    async def test_backoff_wait_does_not_hold_extraction_slot(self, make_engine, seed_listing) -> None:
        """With one slot, a listing sleeping between attempts lets its sibling run."""
        await seed_listing("phone-cover", "meesho", MEESHO, "299")
        await seed_listing("phone-cover", "amazon", AMAZON, "319")
        loop = asyncio.get_running_loop()
        finished_at: dict[str, float] = {}

        class FailsOnceOnMeesho:
            def __init__(self) -> None:
                self.failed = False

            async def extract(self, url, website):
                if url == MEESHO and not self.failed:
                    self.failed = True
                    raise NetworkError("HTTP 503", status_code=503)
                finished_at[url] = loop.time()
                return ExtractionResult(price=Decimal("249"), url=url)

        engine = make_engine(
            FailsOnceOnMeesho(), concurrency=1, base_delay=0.5, sleep=asyncio.sleep
        )
        started = loop.time()
        report = await engine.run_once()

        assert report.extracted == 2
        assert finished_at[AMAZON] - started < 0.4
        assert finished_at[MEESHO] - started >= 0.5

    @pytest.mark.asyncio
    async def test_persistence_failure_is_isolated(
        self, make_engine, fake_extractor, fake_notifier, store, iphone_group, seed_user, seed_alert,
        monkeypatch,
    ) -> None:
        amazon, flipkart, _ = iphone_group
        user = await seed_user()
        await seed_alert(user, flipkart, "60000", "70000")

        original = store.apply_price_update

        async def failing_for_flipkart(listing_id, price_update):
            if listing_id == flipkart.id:
                raise PersistenceError("disk I/O error", listing_id=str(listing_id))
            return await original(listing_id, price_update)

        monkeypatch.setattr(store, "apply_price_update", failing_for_flipkart)
        extractor = fake_extractor({AMAZON: "69900", FLIPKART: "65999", CROMA: "67000"})

        report = await make_engine(extractor).run_once()

        assert report.persist_failures == 1
        assert report.persisted == 2
        listings = await _by_url(store)
        assert listings[FLIPKART].current_price == Decimal("66000")
        assert len(await store.history_for(flipkart.id)) == 1
        assert listings[AMAZON].current_price == Decimal("69900")
        # Nothing was written for flipkart, so its alert is not evaluated.
        assert fake_notifier.sent == []


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestNotifications:
    @pytest.mark.asyncio
    async def test_alert_fires_and_is_marked(
        self, make_engine, fake_extractor, fake_notifier, store, iphone_group, seed_user, seed_alert
    ) -> None:
        _, flipkart, _ = iphone_group
        user = await seed_user("buyer@example.com")
        alert = await seed_alert(user, flipkart, "60000", "66000")
        extractor = fake_extractor({AMAZON: "69900", FLIPKART: "65999", CROMA: "67000"})

        report = await make_engine(extractor).run_once()

        assert report.alerts_fired == 1
        assert report.notifications_sent == 1
        assert len(fake_notifier.sent) == 1
        to_address, subject, body = fake_notifier.sent[0]
        assert to_address == "buyer@example.com"
        assert subject == "Price Alert for Apple iPhone 15"
        assert "65,999.00" in body
        # Best deals span the whole sibling group, cheapest first.
        assert body.index("flipkart: 65,999.00") < body.index("croma: 67,000.00")
        assert body.index("croma: 67,000.00") < body.index("amazon: 69,900.00")

        [(stored, _)] = await store.find_active_alerts(flipkart.id)
        assert stored.id == alert.id
        assert stored.last_notified is not None

    @pytest.mark.asyncio
    async def test_out_of_band_does_not_fire(
        self, make_engine, fake_extractor, fake_notifier, iphone_group, seed_user, seed_alert
    ) -> None:
        amazon, _, _ = iphone_group
        user = await seed_user()
        await seed_alert(user, amazon, "50000", "60000")

        report = await make_engine(
            fake_extractor({AMAZON: "69900", FLIPKART: "65999", CROMA: "67000"})
        ).run_once()

        assert report.alerts_fired == 0
        assert fake_notifier.sent == []

    @pytest.mark.asyncio
    async def test_failed_send_leaves_alert_unmarked(
        self, make_engine, fake_extractor, fake_notifier, store, seed_listing, seed_user, seed_alert
    ) -> None:
        listing = await seed_listing("phone-cover", "meesho", MEESHO, "299", name="Phone Cover")
        user = await seed_user()
        await seed_alert(user, listing, "100", "300")

        fake_notifier.ok = False

        report = await make_engine(fake_extractor({MEESHO: "249"})).run_once()

        assert report.alerts_fired == 1
        assert report.notifications_failed == 1
        assert report.notifications_sent == 0
        [(stored, _)] = await store.find_active_alerts(listing.id)
        assert stored.last_notified is None

    @pytest.mark.asyncio
    async def test_recent_notification_suppressed(
        self, make_engine, fake_extractor, fake_notifier, seed_listing, seed_user, seed_alert
    ) -> None:
        listing = await seed_listing("phone-cover", "meesho", MEESHO, "299")
        user = await seed_user()
        await seed_alert(
            user, listing, "100", "300",
            last_notified=datetime.now(timezone.utc) - timedelta(hours=1),
        )

        report = await make_engine(fake_extractor({MEESHO: "249"})).run_once()

        assert report.alerts_fired == 1
        assert report.alerts_suppressed == 1
        assert fake_notifier.sent == []

    @pytest.mark.asyncio
    async def test_zero_cooldown_notifies_every_pass(
        self, make_engine, fake_extractor, fake_notifier, seed_listing, seed_user, seed_alert
    ) -> None:
        listing = await seed_listing("phone-cover", "meesho", MEESHO, "299")
        user = await seed_user()
        await seed_alert(user, listing, "100", "300")
        engine = make_engine(fake_extractor({MEESHO: "249"}), cooldown_hours=0)

        await engine.run_once()
        await engine.run_once()

        assert len(fake_notifier.sent) == 2

    @pytest.mark.asyncio
    async def test_cooldown_blocks_second_pass(
        self, make_engine, fake_extractor, fake_notifier, seed_listing, seed_user, seed_alert
    ) -> None:
        listing = await seed_listing("phone-cover", "meesho", MEESHO, "299")
        user = await seed_user()
        await seed_alert(user, listing, "100", "300")
        engine = make_engine(fake_extractor({MEESHO: "249"}), cooldown_hours=24)

        await engine.run_once()
        report = await engine.run_once()

        assert len(fake_notifier.sent) == 1
        assert report.alerts_suppressed == 1

    @pytest.mark.asyncio
    async def test_inactive_alert_ignored(
        self, make_engine, fake_extractor, fake_notifier, session_factory, seed_listing, seed_user, seed_alert
    ) -> None:
        listing = await seed_listing("phone-cover", "meesho", MEESHO, "299")
        user = await seed_user()
        alert = await seed_alert(user, listing, "100", "300", is_active=False)

        report = await make_engine(fake_extractor({MEESHO: "249"})).run_once()

        assert report.alerts_fired == 0
        assert fake_notifier.sent == []
        async with session_factory() as session:
            stored = await session.get(Alert, alert.id)
            assert stored.last_notified is None

    @pytest.mark.asyncio
    async def test_failed_listing_alerts_not_evaluated(
        self, make_engine, fake_extractor, fake_notifier, store, iphone_group, seed_user, seed_alert
    ) -> None:
        _, flipkart, _ = iphone_group
        user = await seed_user()
        # Stale 66000 is inside the band but was not freshly extracted.
        await seed_alert(user, flipkart, "60000", "70000")
        extractor = fake_extractor({
            AMAZON: "69900",
            FLIPKART: NetworkError("HTTP 503", status_code=503),
            CROMA: "67000",
        })

        await make_engine(extractor).run_once()

        assert fake_notifier.sent == []

    @pytest.mark.asyncio
    async def test_notifier_crash_does_not_abort_pass(
        self, make_engine, fake_extractor, seed_listing, seed_user, seed_alert
    ) -> None:
        listing = await seed_listing("phone-cover", "meesho", MEESHO, "299")
        user = await seed_user()
        await seed_alert(user, listing, "100", "300")

        class ExplodingNotifier:
            async def send(self, to_address, subject, body):
                raise RuntimeError("template bug")

        report = await make_engine(fake_extractor({MEESHO: "249"}), ExplodingNotifier()).run_once()

        assert report.persisted == 1
        assert report.notifications_sent == 0
        assert report.finished_at is not None


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestPlanGroupUpdates:
    NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def _listing(self, identifier: str, price: str | None):
        return Listing(
            id=uuid.uuid4(),
            product_identifier=identifier,
            website="amazon",
            url=f"https://example.com/{uuid.uuid4()}",
            current_price=Decimal(price) if price else None,
        )

    def test_no_fresh_prices_only_touch_last_checked(self) -> None:
        a, b = self._listing("x", "10"), self._listing("x", "20")
        outcomes = [
            ExtractionOutcome(a, None, NetworkError("down")),
            ExtractionOutcome(b, None, NetworkError("down")),
        ]

        plan = plan_group_updates(outcomes, self.NOW)

        for update in plan.values():
            assert update.checked_at == self.NOW
            assert update.current_price is None
            assert update.lowest_price is None
            assert update.highest_price is None

    def test_stale_unpriced_sibling_gets_fresh_extrema(self) -> None:
        fresh, unpriced = self._listing("x", "10"), self._listing("x", None)
        outcomes = [
            ExtractionOutcome(fresh, ExtractionResult(price=Decimal("12")), None),
            ExtractionOutcome(unpriced, None, NetworkError("down")),
        ]

        plan = plan_group_updates(outcomes, self.NOW)

        assert plan[unpriced.id].current_price is None
        assert plan[unpriced.id].lowest_price == Decimal("12")
        assert plan[fresh.id].current_price == Decimal("12")

    def test_group_by_identifier(self) -> None:
        listings = [self._listing("a", "1"), self._listing("b", "2"), self._listing("a", "3")]
        groups = group_by_identifier(listings)
        assert sorted(groups) == ["a", "b"]
        assert len(groups["a"]) == 2
