"""
PriceWatch - Listing Store

Thin document-store adapter over the async session factory. The engine and
the tracking service only need equality filters, an ascending price sort
with a limit, and single-record saves; everything else stays in here.

Every write opens its own session and commits or rolls back as a unit, so a
failure on one listing never leaves another half-written.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.alert import Alert
from src.models.listing import Listing
from src.models.price_history import PriceHistory
from src.models.user import User
from src.scraper.errors import PersistenceError

logger = structlog.get_logger(__name__)


class PriceUpdate(NamedTuple):
    """
    Engine-owned fields for one listing after a pass.

    current_price is None for a listing whose own extraction failed; its
    price and history are left alone. lowest/highest of None leave the
    stored extrema untouched.
    """
    checked_at: datetime
    current_price: Decimal | None = None
    lowest_price: Decimal | None = None
    highest_price: Decimal | None = None


class ListingStore:
    """
    Usage:
        store = ListingStore(session_factory)
        listings = await store.find_all_listings()
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def find_all_listings(self, product_identifier: str | None = None) -> list[Listing]:
        stmt = select(Listing)
        if product_identifier is not None:
            stmt = stmt.where(Listing.product_identifier == product_identifier)
        async with self.session_factory() as session:
            result = await session.execute(stmt.order_by(Listing.created_at, Listing.id))
            return list(result.scalars().all())

    async def find_listing(self, listing_id: uuid.UUID) -> Listing | None:
        async with self.session_factory() as session:
            return await session.get(Listing, listing_id)

    async def find_user(self, user_id: uuid.UUID) -> User | None:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def find_active_alerts(self, listing_id: uuid.UUID) -> list[tuple[Alert, str]]:
        """Active alerts on a listing, each paired with its owner's email."""
        stmt = (
            select(Alert, User.email)
            .join(User, User.id == Alert.user_id)
            .where(Alert.listing_id == listing_id, Alert.is_active.is_(True))
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [(alert, email) for alert, email in result.all()]

    async def lowest_priced(self, limit: int) -> list[Listing]:
        """Cheapest listings first. Listings never priced are excluded."""
        stmt = (
            select(Listing)
            .where(Listing.current_price.isnot(None))
            .order_by(Listing.current_price.asc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def history_for(self, listing_id: uuid.UUID) -> list[PriceHistory]:
        """Price history in insertion order."""
        stmt = (
            select(PriceHistory)
            .where(PriceHistory.listing_id == listing_id)
            .order_by(PriceHistory.recorded_at, PriceHistory.id)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    async def create_listing(self, listing: Listing, recorded_at: datetime) -> Listing:
        """Insert a new listing together with its first history entry."""
        try:
            async with self.session_factory() as session:
                session.add(listing)
                await session.flush()
                if listing.current_price is not None:
                    session.add(
                        PriceHistory(
                            listing_id=listing.id,
                            price=listing.current_price,
                            recorded_at=recorded_at,
                        )
                    )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not create listing: {e}") from e
        return listing

    async def save(self, record: User | Alert | Listing) -> User | Alert | Listing:
        """Insert or merge a single record."""
        try:
            async with self.session_factory() as session:
                merged = await session.merge(record)
                await session.commit()
                return merged
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not save {type(record).__name__}: {e}") from e

    async def apply_price_update(self, listing_id: uuid.UUID, price_update: PriceUpdate) -> None:
        """
        Write one listing's reconciliation result atomically.

        Appends a history row and sets current_price when a fresh price is
        present; always stamps last_checked; sets extrema when provided.

        Raises:
            PersistenceError: listing vanished or the write failed. Nothing
                from this update is left behind.
        """
        try:
            async with self.session_factory() as session:
                listing = await session.get(Listing, listing_id)
                if listing is None:
                    raise PersistenceError("Listing no longer exists", listing_id=str(listing_id))

                if price_update.current_price is not None:
                    session.add(
                        PriceHistory(
                            listing_id=listing_id,
                            price=price_update.current_price,
                            recorded_at=price_update.checked_at,
                        )
                    )
                    listing.current_price = price_update.current_price
                if price_update.lowest_price is not None:
                    listing.lowest_price = price_update.lowest_price
                if price_update.highest_price is not None:
                    listing.highest_price = price_update.highest_price
                listing.last_checked = price_update.checked_at

                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(str(e), listing_id=str(listing_id)) from e

    async def mark_notified(self, alert_id: uuid.UUID, when: datetime) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(Alert).where(Alert.id == alert_id).values(last_notified=when)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not mark alert {alert_id} notified: {e}") from e
