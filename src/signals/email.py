"""
PriceWatch - Email Notification Delivery

Delivers price alerts over SMTP. The reconciliation engine only sees
`send(to_address, subject, body) -> bool`; a False return leaves the alert
unmarked so the next qualifying pass tries again.
"""

from __future__ import annotations

import asyncio
import smtplib
from datetime import datetime, timezone
from decimal import Decimal
from email.message import EmailMessage
from typing import Any, Iterable

import structlog

from src.config import settings

logger = structlog.get_logger(__name__)


def _fmt_price(price: Any) -> str:
    return f"{Decimal(price):,.2f}"


def format_alert_email(
    product_name: str,
    product_url: str,
    alert: Any,
    new_price: Decimal,
    best_deals: Iterable[Any],
) -> tuple[str, str]:
    """
    Build the subject and plain-text body for a fired alert.

    Args:
        product_name: Listing name (falls back to the URL when empty).
        product_url: Listing URL.
        alert: Anything with `min_price` and `max_price`.
        new_price: Price that triggered the alert.
        best_deals: SiblingPrice tuples, cheapest first.

    Returns:
        (subject, body)
    """
    name = product_name or product_url
    subject = f"Price Alert for {name}"

    lines = [
        "Price Alert Notification",
        "",
        f"The price for {name} is now {_fmt_price(new_price)}.",
        "",
        "Your alert settings:",
        f"  Min Price: {_fmt_price(alert.min_price)}",
        f"  Max Price: {_fmt_price(alert.max_price)}",
        "",
        f"View the product: {product_url}",
    ]

    deals = list(best_deals)
    if deals:
        lines += ["", "Best deals available:"]
        for rank, deal in enumerate(deals, start=1):
            lines.append(f"  {rank}. {deal.website}: {_fmt_price(deal.price)} - {deal.url}")

    lines += ["", "Your PriceWatch Team"]
    return subject, "\n".join(lines)


class EmailNotifier:
    """
    SMTP delivery for price alerts.

    Disabled (every send returns False) when SMTP_HOST is empty, so a
    development instance can run the full pipeline without a mail server.

    Usage:
        notifier = EmailNotifier()
        ok = await notifier.send("user@example.com", subject, body)
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool | None = None,
        sender: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._host = host if host is not None else settings.SMTP_HOST
        self._port = port if port is not None else settings.SMTP_PORT
        self._username = username if username is not None else settings.SMTP_USERNAME
        self._password = password if password is not None else settings.SMTP_PASSWORD
        self._use_tls = use_tls if use_tls is not None else settings.SMTP_USE_TLS
        self._sender = sender or settings.EMAIL_FROM
        self._timeout = timeout if timeout is not None else settings.SMTP_TIMEOUT_SECONDS
        self._enabled = bool(self._host)

        if not self._enabled:
            logger.warning(
                "email_notifier_disabled",
                reason="SMTP_HOST is empty or not set",
                source="email",
                timestamp=datetime.now(timezone.utc).isoformat(),
            )

    def _build_message(self, to_address: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)
        return message

    def _deliver(self, message: EmailMessage) -> None:
        """Blocking SMTP exchange; runs in a worker thread."""
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username:
                smtp.login(self._username, self._password)
            smtp.send_message(message)

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """
        Send one email.

        Returns:
            True if the SMTP server accepted the message, False otherwise.
        """
        if not self._enabled:
            return False
        if not to_address:
            logger.warning("email_send_skipped_no_address", subject=subject, source="email")
            return False

        message = self._build_message(to_address, subject, body)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "email_send_failed",
                to=to_address,
                subject=subject,
                error=str(e),
                error_type=type(e).__name__,
                source="email",
            )
            return False

        logger.info("email_sent", to=to_address, subject=subject, source="email")
        return True

    async def send_test_email(self, to_address: str) -> bool:
        """Confirm a user's address receives PriceWatch mail."""
        body = "\n".join([
            "Email Settings Test",
            "",
            "This is a test email to confirm your email settings are working correctly.",
            "You will receive price alerts at this email address.",
            "",
            "Your PriceWatch Team",
        ])
        return await self.send(to_address, "PriceWatch: Email Settings Test", body)
