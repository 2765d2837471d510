"""
PriceWatch - User Model

Account identity and the address alert emails are delivered to.
Credentials and sessions are issued elsewhere.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import TIMESTAMP, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class User(Base):
    """Owner of listings and alerts."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Primary key",
    )
    email: Mapped[str] = mapped_column(
        String,
        unique=True,
        nullable=False,
        comment="Lower-cased delivery address for price alerts",
    )
    name: Mapped[str] = mapped_column(
        String,
        nullable=False,
        default="",
        server_default="",
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        comment="Account creation timestamp",
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} email={self.email!r}>"
