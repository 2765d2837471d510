"""
PriceWatch - Extraction Error Taxonomy

The Retry Controller dispatches on `retryable`, never on message text.

    UnsupportedWebsite   terminal   website tag has no selector rules
    InvalidProductUrl    terminal   URL is malformed or not http(s)
    NetworkError         retried    transport failure or non-2xx status
    InvalidPriceFormat   terminal   matched text is not a positive number
    PriceNotFound        retried    page fetched but no price selector matched
    RetryExhausted       -          wraps the last transient error
    PersistenceError     -          storage write failed for one listing
"""

from __future__ import annotations


class ExtractionError(Exception):
    """Base class for every failure raised while extracting a price."""

    retryable: bool = False

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class UnsupportedWebsite(ExtractionError):
    def __init__(self, website: str) -> None:
        super().__init__(f"Unsupported website: {website}")
        self.website = website


class InvalidProductUrl(ExtractionError):
    """URL is malformed or not http(s); retrying cannot help."""

    def __init__(self, url: str, detail: str = "") -> None:
        super().__init__(f"Invalid product URL {url!r}" + (f": {detail}" if detail else ""))
        self.url = url


class NetworkError(ExtractionError):
    retryable = True

    def __init__(self, reason: str, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.status_code = status_code


class InvalidPriceFormat(ExtractionError):
    """Matched price text could not be turned into a positive number."""


class PriceNotFound(InvalidPriceFormat):
    """
    No price selector matched any non-empty text.

    Markup on these sites is frequently served partially (A/B layouts,
    interstitials), so an empty match is treated as transient.
    """

    retryable = True


class RetryExhausted(ExtractionError):
    def __init__(self, last_error: Exception, attempts: int) -> None:
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class PersistenceError(Exception):
    """A listing or alert write failed; the whole write was rolled back."""

    def __init__(self, reason: str, listing_id: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.listing_id = listing_id
