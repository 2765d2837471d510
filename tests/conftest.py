"""
PriceWatch - Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- In-memory async database (aiosqlite) and a ListingStore over it
- Seed helpers for users, listings and alerts
- Fake extractor / notifier doubles for the reconciliation engine
- Product page HTML fixtures
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.models import Alert, Base, Listing, PriceHistory, User
from src.pipeline.store import ListingStore
from src.scraper import ExtractionResult


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)

FIXTURES = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory over a fresh in-memory SQLite database.

    Creates all tables per test, ensuring isolation.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    await engine.dispose()


@pytest.fixture
def store(session_factory) -> ListingStore:
    return ListingStore(session_factory)


# ---------------------------------------------------------------------------
# Seed Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def seed_user(session_factory):
    async def _seed(email: str = "shopper@example.com", name: str = "Shopper") -> User:
        user = User(email=email, name=name)
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _seed


@pytest.fixture
def seed_listing(session_factory):
    """Insert a listing; a priced listing also gets one history row from an hour ago."""

    async def _seed(
        product_identifier: str,
        website: str,
        url: str,
        price: str | Decimal | None = None,
        name: str = "",
    ) -> Listing:
        value = Decimal(price) if price is not None else None
        listing = Listing(
            product_identifier=product_identifier,
            website=website,
            url=url,
            name=name,
            current_price=value,
            lowest_price=value,
            highest_price=value,
        )
        async with session_factory() as session:
            session.add(listing)
            await session.flush()
            if value is not None:
                session.add(
                    PriceHistory(
                        listing_id=listing.id,
                        price=value,
                        recorded_at=datetime.now(timezone.utc) - timedelta(hours=1),
                    )
                )
            await session.commit()
        return listing

    return _seed


@pytest.fixture
def seed_alert(session_factory):
    async def _seed(
        user: User,
        listing: Listing,
        min_price: str,
        max_price: str,
        is_active: bool = True,
        last_notified: datetime | None = None,
    ) -> Alert:
        alert = Alert(
            user_id=user.id,
            listing_id=listing.id,
            min_price=Decimal(min_price),
            max_price=Decimal(max_price),
            is_active=is_active,
            last_notified=last_notified,
        )
        async with session_factory() as session:
            session.add(alert)
            await session.commit()
        return alert

    return _seed


# ---------------------------------------------------------------------------
# Test Doubles
# ---------------------------------------------------------------------------


class FakeExtractor:
    """
    Scripted extractor keyed by URL.

    A value may be a price, an exception instance, or a list of those
    consumed one per call (the last entry repeats).
    """

    def __init__(self, script: dict[str, Any]) -> None:
        self.script = script
        self.calls: list[str] = []

    async def extract(self, url: str, website: Any) -> ExtractionResult:
        self.calls.append(url)
        entry = self.script[url]
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, Exception):
            raise entry
        return ExtractionResult(price=Decimal(str(entry)), website=website, url=url)


class FakeNotifier:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        self.sent.append((to_address, subject, body))
        return self.ok


@pytest.fixture
def fake_extractor():
    """Factory: fake_extractor({url: price | exception | [entries]})."""
    return FakeExtractor


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    """Recording notifier; set `.ok = False` to simulate a refused send."""
    return FakeNotifier()


@pytest.fixture
def no_sleep():
    """Backoff sleep that returns immediately."""

    async def _sleep(_seconds: float) -> None:
        return None

    return _sleep


# ---------------------------------------------------------------------------
# Fixture Loaders
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def load_html():
    """Read a product page from tests/fixtures/."""

    def _load(name: str) -> str:
        return (FIXTURES / name).read_text(encoding="utf-8")

    return _load
