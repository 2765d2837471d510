"""
PriceWatch - Retry Controller

Bounded exponential backoff around a fallible async operation.

    attempt 0 fails -> wait base * 1
    attempt 1 fails -> wait base * 2
    attempt 2 fails -> RetryExhausted   (max_attempts=3)

Only errors flagged `retryable` are retried. Anything else propagates on
first occurrence, unwrapped: a fixed page layout will not parse differently
a second later.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

from src.config import settings
from src.scraper.errors import RetryExhausted

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


def is_retryable(error: BaseException) -> bool:
    return bool(getattr(error, "retryable", False))


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Seconds to wait after 0-indexed `attempt` fails."""
    return base_delay * (2 ** attempt)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int | None = None,
    base_delay: float | None = None,
    sleep: SleepFn = asyncio.sleep,
    label: str = "",
) -> T:
    """
    Call `operation` until it succeeds or the attempt bound is hit.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        max_attempts: Total attempts (default: RETRY_MAX_ATTEMPTS).
        base_delay: Backoff unit in seconds (default: RETRY_BASE_DELAY_SECONDS).
        sleep: Awaitable sleep, injectable for tests.
        label: Free-form context for log lines (usually the URL).

    Returns:
        The first successful result.

    Raises:
        RetryExhausted: `max_attempts` retryable failures in a row.
        Exception: any non-retryable error, on first occurrence.
    """
    attempts = max_attempts if max_attempts is not None else settings.RETRY_MAX_ATTEMPTS
    base = base_delay if base_delay is not None else settings.RETRY_BASE_DELAY_SECONDS
    if attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_error: Exception | None = None

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                raise
            last_error = e

            if attempt + 1 >= attempts:
                break

            wait_time = backoff_delay(attempt, base)
            logger.warning(
                "retry_attempt_failed",
                label=label,
                attempt=attempt + 1,
                max_attempts=attempts,
                wait_seconds=wait_time,
                error=str(e),
                error_type=type(e).__name__,
                source="retry",
            )
            await sleep(wait_time)

    assert last_error is not None
    logger.error(
        "retry_exhausted",
        label=label,
        attempts=attempts,
        error=str(last_error),
        error_type=type(last_error).__name__,
        source="retry",
    )
    raise RetryExhausted(last_error, attempts) from last_error
