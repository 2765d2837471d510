"""
PriceWatch - Track a Product URL

Extracts the current price synchronously and creates the listing. Extraction
failures are printed so the URL can be corrected.

Usage:
    python scripts/add_listing.py --url https://www.amazon.in/dp/B0CX23V2ZK --website amazon --product iphone-15-128gb
    python scripts/add_listing.py --url https://www.flipkart.com/p/itm6ac6485515ae4 --website flipkart --product iphone-15-128gb --owner-email me@example.com
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Resolve project root so this script can be run from any working directory
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.config import Website, settings
from src.models.user import User
from src.pipeline.store import ListingStore
from src.pipeline.tracking import add_listing
from src.scraper.errors import ExtractionError, PersistenceError
from src.scraper.extractor import PriceExtractor


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Start tracking a product page and record its current price.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/add_listing.py --url https://www.amazon.in/dp/B0CX23V2ZK --website amazon --product iphone-15-128gb
  python scripts/add_listing.py --url https://www.croma.com/p/300652 --website croma --product iphone-15-128gb --name "iPhone 15"
""",
    )
    parser.add_argument("--url", type=str, required=True, help="Product page URL.")
    parser.add_argument(
        "--website",
        type=str,
        required=True,
        choices=[w.value for w in Website if w is not Website.OTHER],
        help="Retail site the URL belongs to.",
    )
    parser.add_argument(
        "--product",
        type=str,
        required=True,
        help="Product identifier shared by the same product on other sites.",
    )
    parser.add_argument("--name", type=str, default=None, help="Display name (default: scraped title).")
    parser.add_argument(
        "--owner-email",
        type=str,
        default=None,
        help="Email of an existing user to record as the listing owner.",
    )
    return parser.parse_args()


async def _find_owner(session_factory: async_sessionmaker[AsyncSession], email: str | None) -> uuid.UUID | None:
    if not email:
        return None
    async with session_factory() as session:
        result = await session.execute(select(User.id).where(User.email == email.strip().lower()))
        owner = result.scalar()
    if owner is None:
        raise SystemExit(f"No user with email {email!r}")
    return owner


async def main() -> None:
    args = parse_args()

    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        owner = await _find_owner(session_factory, args.owner_email)
        async with PriceExtractor() as extractor:
            listing = await add_listing(
                ListingStore(session_factory),
                extractor,
                url=args.url,
                website=args.website,
                product_identifier=args.product,
                created_by=owner,
                name=args.name,
            )
    except (ExtractionError, PersistenceError, ValueError) as e:
        print(f"Failed to track {args.url}: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        await engine.dispose()

    print("Listing created successfully.")
    print(f"  listings.id         = {listing.id}")
    print(f"  product_identifier  = {listing.product_identifier}")
    print(f"  website             = {listing.website}")
    print(f"  name                = {listing.name}")
    print(f"  current_price       = {listing.current_price}")
    print(f"  group low / high    = {listing.lowest_price} / {listing.highest_price}")


if __name__ == "__main__":
    asyncio.run(main())
