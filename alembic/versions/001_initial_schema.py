"""Initial schema - users, listings, price_history, alerts

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False, server_default=""),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # --- listings ---
    op.create_table(
        "listings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("product_identifier", sa.String(), nullable=False, comment="Shared by sibling listings"),
        sa.Column("website", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False, server_default=""),
        sa.Column("brand", sa.String(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("current_price", sa.DECIMAL(12, 2), nullable=True),
        sa.Column("lowest_price", sa.DECIMAL(12, 2), nullable=True),
        sa.Column("highest_price", sa.DECIMAL(12, 2), nullable=True),
        sa.Column("last_checked", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "website IN ('amazon', 'flipkart', 'reliance', 'croma', 'bazaar', 'meesho', 'other')",
            name="ck_listings_website",
        ),
    )
    op.create_index("ix_listings_product_identifier", "listings", ["product_identifier"])
    op.create_index("ix_listings_current_price", "listings", ["current_price"])

    # --- price_history (append-only) ---
    op.create_table(
        "price_history",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "listing_id",
            sa.Uuid(),
            sa.ForeignKey("listings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("price", sa.DECIMAL(12, 2), nullable=False),
        sa.Column("recorded_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_price_history_listing_recorded",
        "price_history",
        ["listing_id", "recorded_at"],
    )

    # --- alerts ---
    op.create_table(
        "alerts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "listing_id",
            sa.Uuid(),
            sa.ForeignKey("listings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("min_price", sa.DECIMAL(12, 2), nullable=False),
        sa.Column("max_price", sa.DECIMAL(12, 2), nullable=False),
        sa.Column("notification_type", sa.String(), nullable=False, server_default="email"),
        sa.Column("is_active", sa.BOOLEAN(), nullable=False, server_default=sa.true()),
        sa.Column("last_notified", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("min_price <= max_price", name="ck_alerts_band"),
    )
    op.create_index("ix_alerts_listing_active", "alerts", ["listing_id", "is_active"])


def downgrade() -> None:
    op.drop_index("ix_alerts_listing_active", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("ix_price_history_listing_recorded", table_name="price_history")
    op.drop_table("price_history")
    op.drop_index("ix_listings_current_price", table_name="listings")
    op.drop_index("ix_listings_product_identifier", table_name="listings")
    op.drop_table("listings")
    op.drop_table("users")
