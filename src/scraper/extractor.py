"""
PriceWatch - Price Extractor

Fetches a product page with a browser-like header set and applies the
Selector Registry to it. Touches nothing but the outbound HTTP request;
storage is the caller's concern.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
import structlog
from bs4 import BeautifulSoup

from src.config import Website, settings
from src.scraper import ExtractionResult
from src.scraper.anti_detect import AntiDetect
from src.scraper.errors import (
    ExtractionError,
    InvalidPriceFormat,
    InvalidProductUrl,
    NetworkError,
    PriceNotFound,
    UnsupportedWebsite,
)
from src.scraper.selectors import Purpose, is_scrapable, resolve_website, selectors_for

logger = structlog.get_logger(__name__)

_NON_PRICE_CHARS = re.compile(r"[^0-9.]")
_LEADING_NUMBER = re.compile(r"\d+\.?\d*|\.\d+")


# ---------------------------------------------------------------------------
# Pure parsing helpers
# ---------------------------------------------------------------------------


def clean_price_text(text: str | None) -> str:
    """Strip everything except digits and the decimal point: '₹1,299.00' -> '1299.00'."""
    if not text:
        return ""
    return _NON_PRICE_CHARS.sub("", text.strip())


def parse_price(cleaned: str) -> Decimal:
    """
    Parse cleaned price text into a positive Decimal.

    Only the leading number is read, so trailing points picked up from
    labels like 'Incl. of all taxes' are ignored: '1299.00.' -> 1299.00.

    Raises:
        InvalidPriceFormat: no leading number ('.', ''), or not > 0.
    """
    match = _LEADING_NUMBER.match(cleaned)
    if match is None:
        raise InvalidPriceFormat(f"Invalid price format: {cleaned!r}")
    try:
        value = Decimal(match.group(0))
    except InvalidOperation:
        raise InvalidPriceFormat(f"Invalid price format: {cleaned!r}") from None
    if not value.is_finite() or value <= 0:
        raise InvalidPriceFormat(f"Invalid price format: {cleaned!r}")
    return value


def _first_text(soup: BeautifulSoup, selectors: list[str]) -> str | None:
    """Text of the first selector that matches non-empty text."""
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = element.get_text(" ", strip=True)
        if text:
            return text
    return None


def _first_price_text(soup: BeautifulSoup, selectors: list[str]) -> tuple[str, str] | None:
    """(selector, cleaned text) for the first selector whose cleaned text is non-empty."""
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        cleaned = clean_price_text(element.get_text())
        if cleaned:
            return selector, cleaned
    return None


def check_product_url(url: str) -> None:
    """Raise InvalidProductUrl unless `url` is an absolute http(s) URL with a host."""
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise InvalidProductUrl(url, str(e)) from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidProductUrl(url, "expected an absolute http(s) URL")


def parse_product_page(
    html: str,
    website: str | Website,
    url: str | None = None,
) -> ExtractionResult:
    """
    Apply the website's selector chains to a fetched page.

    Args:
        html: Response body.
        website: Website tag.
        url: Source URL, copied onto the result.

    Returns:
        ExtractionResult with a positive price.

    Raises:
        UnsupportedWebsite: no selector rules for the website.
        PriceNotFound: no price selector matched non-empty text.
        InvalidPriceFormat: the matched text is not a positive number.
    """
    site = resolve_website(website)
    price_selectors = selectors_for(site, Purpose.PRICE)
    if not price_selectors:
        raise UnsupportedWebsite(site.value)

    soup = BeautifulSoup(html, "html.parser")

    match = _first_price_text(soup, price_selectors)
    if match is None:
        raise PriceNotFound(f"Could not extract price from {site.value}")
    selector, cleaned = match
    price = parse_price(cleaned)

    logger.debug(
        "extractor_price_matched",
        website=site.value,
        selector=selector,
        price=str(price),
        source="extractor",
    )

    return ExtractionResult(
        price=price,
        name=_first_text(soup, selectors_for(site, Purpose.NAME)),
        brand=_first_text(soup, selectors_for(site, Purpose.BRAND)),
        category=_first_text(soup, selectors_for(site, Purpose.CATEGORY)),
        website=site,
        url=url,
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class PriceExtractor:
    """
    Async price extractor.

    Usage:
        async with PriceExtractor() as extractor:
            result = await extractor.extract(url, "amazon")
    """

    def __init__(
        self,
        anti_detect: AntiDetect | None = None,
        timeout: float | None = None,
    ) -> None:
        self.anti_detect = anti_detect or AntiDetect()
        self._timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> PriceExtractor:
        self._client = httpx.AsyncClient(
            headers=self.anti_detect.headers(),
            timeout=self._timeout,
            **self.anti_detect.client_kwargs(),
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> str:
        """
        GET a product page.

        Raises:
            InvalidProductUrl: malformed or non-http(s) URL; no request is made.
            NetworkError: transport failure or non-2xx status.
        """
        assert self._client is not None, "Extractor not initialized. Use 'async with'."
        check_product_url(url)

        try:
            response = await self._client.get(url)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise InvalidProductUrl(url, str(e)) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

        if not response.is_success:
            raise NetworkError(
                f"{url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response.text

    async def extract(self, url: str, website: str | Website) -> ExtractionResult:
        """
        Fetch `url` and extract the product price and details.

        The website is validated before any request is made.

        Raises:
            UnsupportedWebsite, InvalidProductUrl, NetworkError, PriceNotFound, InvalidPriceFormat.
        """
        site = resolve_website(website)
        if not is_scrapable(site):
            raise UnsupportedWebsite(site.value)

        html = await self.fetch(url)
        try:
            result = parse_product_page(html, site, url=url)
        except ExtractionError as e:
            logger.warning(
                "extractor_parse_failed",
                url=url,
                website=site.value,
                error=e.reason,
                error_type=type(e).__name__,
                source="extractor",
            )
            raise

        logger.info(
            "extractor_success",
            url=url,
            website=site.value,
            price=str(result.price),
            source="extractor",
        )
        return result
