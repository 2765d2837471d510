"""
PriceWatch - Browser Identity for Product Page Requests

Amazon, Flipkart and Croma serve a captcha or an empty shell to clients that
do not look like a desktop browser. Every product page request carries the
same fixed header set built here.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.config import settings

logger = structlog.get_logger(__name__)


class AntiDetect:
    """
    Builds request headers and proxy settings for the price extractor.

    Usage:
        profile = AntiDetect()
        client = httpx.AsyncClient(headers=profile.headers(), **profile.client_kwargs())
    """

    BASE_HEADERS: dict[str, str] = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Cache-Control": "max-age=0",
    }

    def __init__(self, user_agent: str | None = None, proxy_url: str | None = None) -> None:
        self._user_agent = user_agent or settings.SCRAPE_USER_AGENT
        self._proxy_url = proxy_url if proxy_url is not None else settings.PROXY_URL

    def headers(self) -> dict[str, str]:
        """Full header set, User-Agent first."""
        return {"User-Agent": self._user_agent, **self.BASE_HEADERS}

    def get_proxy(self) -> str | None:
        """Return the proxy URL if PROXY_URL is set."""
        return self._proxy_url or None

    def client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for httpx.AsyncClient beyond headers."""
        kwargs: dict[str, Any] = {"follow_redirects": True}
        proxy = self.get_proxy()
        if proxy:
            logger.debug("anti_detect_proxy_enabled", source="anti_detect")
            kwargs["proxy"] = proxy
        return kwargs
