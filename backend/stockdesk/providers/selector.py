from __future__ import annotations

import logging

from stockdesk.errors import ProviderError, RateLimitedError
from stockdesk.providers import alpha_vantage, marketstack
from stockdesk.schemas.stocks import CompanyOverview, StockQuote

logger = logging.getLogger(__name__)


async def fetch_quote_with_fallback(symbol: str) -> StockQuote:
    try:
        return await marketstack.fetch_quote(symbol)
    except RateLimitedError:
        raise
    except ProviderError as exc:
        logger.info("Falling back to Alpha Vantage quote for %s: %s", symbol, exc)
        return await alpha_vantage.fetch_global_quote(symbol)


async def fetch_overview_with_fallback(symbol: str) -> CompanyOverview:
    try:
        return await alpha_vantage.fetch_company_overview(symbol)
    except RateLimitedError:
        raise
    except ProviderError as exc:
        logger.info("Falling back to Marketstack company info for %s: %s", symbol, exc)
        return await marketstack.fetch_company_info(symbol)
