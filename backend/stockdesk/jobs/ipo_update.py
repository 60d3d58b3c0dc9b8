from __future__ import annotations

import asyncio
import datetime
import logging
import sys

from sqlalchemy.dialects.postgresql import insert

from stockdesk.config.settings import settings
from stockdesk.db.models import ListedStock
from stockdesk.db.session import AsyncSessionLocal
from stockdesk.logging_conf import setup_logging
from stockdesk.providers import marketstack

logger = logging.getLogger(__name__)


async def _fetch_and_store(limit: int = 100) -> int:
    listings = await marketstack.fetch_ipos(limit=limit)
    now = datetime.datetime.utcnow()

    created = 0
    async with AsyncSessionLocal() as session:
        for listing in listings:
            stmt = insert(ListedStock).values(
                symbol=listing.symbol,
                name=listing.name,
                sector=listing.sector or "Unknown",
                listing_date=datetime.datetime.combine(listing.listing_date, datetime.time.min),
                price=listing.price,
                change=0.0,
                created_at=now,
            )
            # Listings already stored keep their original row.
            stmt = stmt.on_conflict_do_nothing(index_elements=["symbol"])
            result = await session.execute(stmt)
            if result.rowcount:
                created += int(result.rowcount)
        await session.commit()

    logger.info("Stored %d new IPO listings out of %d fetched", created, len(listings))
    return created


def run_ipo_update(limit: int = 100) -> int:
    return asyncio.run(_fetch_and_store(limit))


def main() -> None:
    setup_logging(settings.log_level)
    logger.info("Starting IPO data update")
    try:
        run_ipo_update()
    except Exception:
        logger.exception("IPO data update failed")
        sys.exit(1)
    logger.info("IPO data update completed")
