"""
PriceWatch - Application Entrypoint

    python -m src.main

Opens the database, then runs reconciliation passes on the configured
interval until SIGTERM/SIGINT.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings
from src.engine.reconciliation import ReconciliationEngine
from src.pipeline.scheduler import run_scheduler
from src.pipeline.store import ListingStore
from src.scraper.extractor import PriceExtractor
from src.scraper.selectors import SELECTOR_TABLE_VERSION
from src.signals.email import EmailNotifier

logger = structlog.get_logger(__name__)


def _configure_logging(log_level: str) -> None:
    """JSON lines on stdout; stdlib logging carries third-party output."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def open_database(url: str | None = None) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create the engine and session factory, then prove the connection works.

    The engine is disposed again if the health check fails.
    """
    engine = create_async_engine(url or settings.DATABASE_URL, pool_pre_ping=True)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("database_unreachable", error=str(e), error_type=type(e).__name__)
        await engine.dispose()
        raise
    logger.info("database_ready")
    return engine, session_factory


async def main() -> None:
    _configure_logging(settings.LOG_LEVEL)

    if not settings.SMTP_HOST:
        logger.warning("config_smtp_host_missing", note="alert emails will not be delivered")

    engine, session_factory = await open_database()
    logger.info(
        "pricewatch_started",
        interval_minutes=settings.RECONCILE_INTERVAL_MINUTES,
        retry_max_attempts=settings.RETRY_MAX_ATTEMPTS,
        concurrency=settings.RECONCILE_CONCURRENCY,
        selector_table_version=SELECTOR_TABLE_VERSION,
    )

    try:
        async with PriceExtractor() as extractor:
            reconciler = ReconciliationEngine(ListingStore(session_factory), extractor, EmailNotifier())
            await run_scheduler(reconciler)
    finally:
        await engine.dispose()
        logger.info("pricewatch_stopped")


if __name__ == "__main__":
    asyncio.run(main())
