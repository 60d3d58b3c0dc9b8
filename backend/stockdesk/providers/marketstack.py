from __future__ import annotations

import datetime
import logging
import re
from typing import Any

from stockdesk.cache import Cache
from stockdesk.config.settings import settings
from stockdesk.errors import MalformedPayloadError, MissingApiKeyError, NoDataError
from stockdesk.providers.http import get_json
from stockdesk.schemas.stocks import CompanyOverview, HistoricalPoint, IpoListing, StockQuote

logger = logging.getLogger(__name__)

PROVIDER = "marketstack"

_INTRADAY_LATEST_PATH = "/intraday/latest"
_EOD_LATEST_PATH = "/eod/latest"
_EOD_PATH = "/eod"
_TICKER_PATH = "/tickers/{symbol}"
_IPOS_PATH = "/ipos"

RANGE_DAYS = {
    "1w": 7,
    "1m": 30,
    "3m": 90,
    "6m": 182,
    "1y": 365,
    "5y": 5 * 365,
}
DEFAULT_RANGE = "1m"
LONG_RANGES = {"1y", "5y"}
_MAX_PAGE_LIMIT = 1000
_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")


def _api_key() -> str:
    api_key = settings.providers.marketstack_api_key
    if not api_key:
        raise MissingApiKeyError(PROVIDER)
    return api_key


def _build_url(path: str) -> str:
    return f"{settings.providers.marketstack_base_url.rstrip('/')}{path}"


async def _get(path: str, params: dict[str, str]) -> dict[str, Any]:
    payload = await get_json(PROVIDER, _build_url(path), {"access_key": _api_key(), **params})
    if not isinstance(payload, dict):
        raise MalformedPayloadError(PROVIDER, "expected a JSON object")
    error = payload.get("error")
    if isinstance(error, dict):
        raise MalformedPayloadError(PROVIDER, str(error.get("message") or error.get("code")))
    return payload


def _rows(payload: dict[str, Any]) -> list[dict[str, Any]]:
    data = payload.get("data")
    if not isinstance(data, list):
        return []
    return [row for row in data if isinstance(row, dict)]


def _iso_timestamp(value: Any) -> str | None:
    # marketstack sends "+0000" style offsets
    if not isinstance(value, str) or not value:
        return None
    return _OFFSET_RE.sub(r"\1:\2", value)


def _change(price: float, previous: float) -> tuple[float, float]:
    change = price - previous
    change_percent = (change / previous) * 100 if previous else 0.0
    return change, change_percent


async def fetch_batch_prices(symbols: list[str]) -> list[dict[str, Any]]:
    """Latest price for every symbol, with change against the previous close.

    Symbols missing from either the intraday or the end-of-day response are left
    out of the result.
    """
    if not symbols:
        return []
    joined = ",".join(symbols)
    current = _rows(await _get(_INTRADAY_LATEST_PATH, {"symbols": joined}))
    if not current:
        raise NoDataError(PROVIDER, "no data available for the requested symbols")
    previous = _rows(await _get(_EOD_LATEST_PATH, {"symbols": joined}))
    previous_close = {
        str(row.get("symbol", "")).upper(): row.get("close") for row in previous
    }

    results: list[dict[str, Any]] = []
    for row in current:
        symbol = str(row.get("symbol") or "").upper()
        price = row.get("close") if row.get("close") is not None else row.get("last")
        prior = previous_close.get(symbol)
        if not symbol or not isinstance(price, (int, float)) or not isinstance(prior, (int, float)):
            logger.warning("Incomplete marketstack price row for %r", symbol or row)
            continue
        change, change_percent = _change(float(price), float(prior))
        results.append(
            {
                "symbol": symbol,
                "price": float(price),
                "change": change,
                "changePercent": change_percent,
                "lastUpdated": _iso_timestamp(row.get("date")),
            }
        )
    return results


async def fetch_quote(symbol: str) -> StockQuote:
    symbol = symbol.upper()
    rows = _rows(await _get(_EOD_PATH, {"symbols": symbol, "limit": "2"}))
    if not rows:
        raise NoDataError(PROVIDER, f"no data available for {symbol}")
    latest = rows[0]
    if not isinstance(latest.get("close"), (int, float)):
        raise MalformedPayloadError(PROVIDER, f"missing close for {symbol}")
    change, change_percent = 0.0, 0.0
    if len(rows) > 1 and isinstance(rows[1].get("close"), (int, float)):
        change, change_percent = _change(float(latest["close"]), float(rows[1]["close"]))
    return StockQuote(
        symbol=symbol,
        price=float(latest["close"]),
        change=change,
        change_percent=change_percent,
        high=latest.get("high"),
        low=latest.get("low"),
        volume=latest.get("volume"),
        last_updated=_iso_timestamp(latest.get("date")),
    )


def historical_cache_key(symbol: str, range_key: str) -> str:
    return f"marketstack:historical:{symbol.upper()}:{range_key}"


def historical_ttl(range_key: str) -> float:
    if range_key in LONG_RANGES:
        return settings.cache.historical_ttl_seconds
    return settings.cache.intraday_ttl_seconds


async def fetch_historical(
    symbol: str, range_key: str | None, cache: Cache, today: datetime.date | None = None
) -> list[HistoricalPoint]:
    """Daily closes for ``range_key``, oldest first."""
    symbol = symbol.upper()
    range_key = (range_key or DEFAULT_RANGE).lower()
    if range_key not in RANGE_DAYS:
        raise ValueError(f"unsupported range: {range_key}")

    cache_key = historical_cache_key(symbol, range_key)
    cached = cache.get(cache_key)
    if cached is not None:
        return [HistoricalPoint.model_validate(point) for point in cached]

    today = today or datetime.date.today()
    date_from = today - datetime.timedelta(days=RANGE_DAYS[range_key])
    rows = _rows(
        await _get(
            _EOD_PATH,
            {
                "symbols": symbol,
                "date_from": date_from.isoformat(),
                "date_to": today.isoformat(),
                "limit": str(_MAX_PAGE_LIMIT),
            },
        )
    )

    points: list[HistoricalPoint] = []
    for row in rows:
        close = row.get("close")
        raw_date = row.get("date")
        if not isinstance(close, (int, float)) or not isinstance(raw_date, str):
            continue
        points.append(HistoricalPoint(date=raw_date[:10], price=float(close)))
    if not points:
        raise NoDataError(PROVIDER, f"no historical data for {symbol}")

    points.sort(key=lambda point: point.date)
    cache.set(cache_key, [point.model_dump(mode="json") for point in points], historical_ttl(range_key))
    return points


async def fetch_company_info(symbol: str) -> CompanyOverview:
    symbol = symbol.upper()
    payload = await _get(_TICKER_PATH.format(symbol=symbol), {})
    if not payload.get("name"):
        raise NoDataError(PROVIDER, f"no company info available for {symbol}")
    return CompanyOverview(
        name=payload["name"],
        description=payload.get("description") or "No description available",
        sector=payload.get("sector") or "Unknown",
        industry=payload.get("industry") or "Unknown",
    )


async def fetch_ipos(limit: int = 100) -> list[IpoListing]:
    rows = _rows(await _get(_IPOS_PATH, {"limit": str(limit)}))
    if not rows:
        raise NoDataError(PROVIDER, "no IPO data available")

    listings: list[IpoListing] = []
    for row in rows:
        symbol = str(row.get("symbol") or "").strip().upper()
        listing_date = row.get("listing_date")
        if not symbol or not row.get("name") or not isinstance(listing_date, str):
            logger.warning("Skipping incomplete IPO row %r", row)
            continue
        price = row.get("price")
        listings.append(
            IpoListing(
                symbol=symbol,
                name=row["name"],
                sector=row.get("sector") or "Unknown",
                listing_date=listing_date[:10],
                price=float(price) if isinstance(price, (int, float)) else None,
            )
        )
    return listings
