"""
PriceWatch - Selector Registry

Per-website CSS selectors for price, name, brand and category, in fallback
order. Sites change markup without notice; new selectors are appended (or
promoted) here and the extractor picks them up with no code change.

Within one purpose, the first selector whose matched text is non-empty wins.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple

from src.config import Website
from src.scraper.errors import UnsupportedWebsite


class Purpose(str, Enum):
    PRICE = "price"
    NAME = "name"
    BRAND = "brand"
    CATEGORY = "category"


class SelectorRule(NamedTuple):
    purpose: Purpose
    selector: str


# Bump when selectors are added, removed or reordered.
SELECTOR_TABLE_VERSION = 4

SELECTOR_TABLE: dict[Website, dict[Purpose, tuple[str, ...]]] = {
    Website.AMAZON: {
        Purpose.PRICE: (
            "#priceblock_ourprice",
            ".a-price-whole",
            "#price_inside_buybox",
            "#newBuyBoxPrice",
        ),
        Purpose.NAME: ("#productTitle",),
        Purpose.BRAND: ("#bylineInfo",),
        Purpose.CATEGORY: ("#wayfinding-breadcrumbs_feature_div",),
    },
    Website.FLIPKART: {
        Purpose.PRICE: (
            "._30jeq3._16Jk6d",
            ".dyC4hf",
            "._30jeq3",
            ".CEmiEU",
            "._2YxCDZ",
        ),
        Purpose.NAME: (".B_NuCI", ".VU-ZEz"),
        Purpose.BRAND: (".G6XhRU", ".mEh187"),
        Purpose.CATEGORY: ("._3Ll34p", ".r2CdBx"),
    },
    Website.RELIANCE: {
        Purpose.PRICE: (".pdp__offerPrice",),
        Purpose.NAME: (".pdp__title",),
        Purpose.BRAND: (".pdp__brand",),
        Purpose.CATEGORY: (".breadcrumb",),
    },
    Website.CROMA: {
        Purpose.PRICE: (".amount", ".pd-price", ".price"),
        Purpose.NAME: (".pd-title",),
        Purpose.BRAND: (".pd-brand",),
        Purpose.CATEGORY: (".breadcrumb",),
    },
    Website.BAZAAR: {
        Purpose.PRICE: (".discount-price",),
        Purpose.NAME: (".product-title",),
        Purpose.BRAND: (".product-brand",),
        Purpose.CATEGORY: (".breadcrumb",),
    },
    Website.MEESHO: {
        Purpose.PRICE: (
            ".ProductDetails__DiscountedPriceP-sc-1p3qgqh-3",
            ".actual-price",
        ),
        Purpose.NAME: (".ProductDetails__ProductName-sc-1p3qgqh-0",),
        Purpose.BRAND: (".ProductDetails__BrandName-sc-1p3qgqh-1",),
        Purpose.CATEGORY: (".Breadcrumbs__BreadcrumbsWrapper-sc-1p3qgqh-2",),
    },
    # Tracked for grouping and comparison only; nothing to scrape.
    Website.OTHER: {},
}


def resolve_website(website: str | Website) -> Website:
    """Normalize a website tag to the enum. Raises UnsupportedWebsite."""
    if isinstance(website, Website):
        return website
    try:
        return Website(str(website).strip().lower())
    except ValueError:
        raise UnsupportedWebsite(str(website)) from None


def rules_for(website: str | Website) -> list[SelectorRule]:
    """
    Return the ordered extraction rules for a website.

    Rules are grouped by purpose (price first) and keep their fallback order
    within each purpose.

    Raises:
        UnsupportedWebsite: if the tag is outside the enumeration.
    """
    site = resolve_website(website)
    table = SELECTOR_TABLE.get(site, {})
    return [
        SelectorRule(purpose, selector)
        for purpose in Purpose
        for selector in table.get(purpose, ())
    ]


def selectors_for(website: str | Website, purpose: Purpose) -> list[str]:
    """Selectors for one purpose, in fallback order."""
    return [rule.selector for rule in rules_for(website) if rule.purpose == purpose]


def is_scrapable(website: str | Website) -> bool:
    """True if the website has at least one price selector."""
    try:
        return bool(selectors_for(website, Purpose.PRICE))
    except UnsupportedWebsite:
        return False
