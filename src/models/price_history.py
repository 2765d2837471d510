"""
PriceWatch - Price History Model

Append-only log of extracted prices per listing. Never updated or pruned
here; each successful extraction appends one row. Retention is handled
outside the application.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DECIMAL, TIMESTAMP, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class PriceHistory(Base):
    """
    One price observation.

    Index: (listing_id, recorded_at) supports ordered history reads.
    """

    __tablename__ = "price_history"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
    )
    price: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        comment="UTC timestamp of the extraction",
    )

    __table_args__ = (
        Index("ix_price_history_listing_recorded", "listing_id", "recorded_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PriceHistory listing_id={self.listing_id!r} "
            f"price={self.price} at={self.recorded_at}>"
        )
