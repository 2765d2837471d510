"""
PriceWatch - Listing Model

One tracked product URL on one retail site. Listings sharing a
product_identifier form a sibling group: the same logical product sold on
different sites.

Once a listing exists, only the reconciliation engine writes
current_price, lowest_price, highest_price and last_checked.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DECIMAL, TIMESTAMP, CheckConstraint, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class Listing(Base):
    """
    Tracked product page.

    lowest_price / highest_price are extrema across the whole sibling group,
    not this listing alone, recomputed on every reconciliation pass.
    """

    __tablename__ = "listings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    product_identifier: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Caller-supplied key shared by all sibling listings",
    )
    website: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="amazon | flipkart | reliance | croma | bazaar | meesho | other",
    )
    url: Mapped[str] = mapped_column(String, nullable=False)

    # --- Descriptive fields (user-editable) ---
    name: Mapped[str] = mapped_column(String, nullable=False, default="", server_default="")
    brand: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)

    # --- Engine-owned fields ---
    current_price: Mapped[Decimal | None] = mapped_column(
        DECIMAL(12, 2), nullable=True, comment="Latest successfully extracted price"
    )
    lowest_price: Mapped[Decimal | None] = mapped_column(
        DECIMAL(12, 2), nullable=True, comment="Sibling-group minimum"
    )
    highest_price: Mapped[Decimal | None] = mapped_column(
        DECIMAL(12, 2), nullable=True, comment="Sibling-group maximum"
    )
    last_checked: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="Most recent extraction attempt, successful or not",
    )

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "website IN ('amazon', 'flipkart', 'reliance', 'croma', 'bazaar', 'meesho', 'other')",
            name="ck_listings_website",
        ),
        Index("ix_listings_product_identifier", "product_identifier"),
        Index("ix_listings_current_price", "current_price"),
    )

    def __repr__(self) -> str:
        return (
            f"<Listing id={self.id!r} product={self.product_identifier!r} "
            f"website={self.website!r} price={self.current_price}>"
        )
