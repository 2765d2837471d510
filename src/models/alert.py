"""
PriceWatch - Alert Model

A user's subscription to one listing's price band. Bound to a single
listing; the best-deals list in the notification still spans the listing's
sibling group.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BOOLEAN,
    DECIMAL,
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Uuid,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class Alert(Base):
    """Price band subscription. The engine only ever writes last_notified."""

    __tablename__ = "alerts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
    )
    min_price: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), nullable=False)
    max_price: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), nullable=False)
    notification_type: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="email",
        server_default="email",
        comment="email | sms | both (only email is delivered)",
    )
    is_active: Mapped[bool] = mapped_column(
        BOOLEAN,
        nullable=False,
        default=True,
        server_default=true(),
    )
    last_notified: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="Null until the first successful delivery",
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint("min_price <= max_price", name="ck_alerts_band"),
        Index("ix_alerts_listing_active", "listing_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<Alert id={self.id!r} listing_id={self.listing_id!r} "
            f"band=[{self.min_price}, {self.max_price}] active={self.is_active!r}>"
        )
