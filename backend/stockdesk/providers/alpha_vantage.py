from __future__ import annotations

from typing import Any

from stockdesk.config.settings import settings
from stockdesk.errors import MalformedPayloadError, MissingApiKeyError, NoDataError, RateLimitedError
from stockdesk.providers.http import get_json
from stockdesk.schemas.stocks import CompanyOverview, StockQuote

PROVIDER = "alpha_vantage"


async def _query(function: str, symbol: str) -> dict[str, Any]:
    api_key = settings.providers.alpha_vantage_api_key
    if not api_key:
        raise MissingApiKeyError(PROVIDER)
    payload = await get_json(
        PROVIDER,
        settings.providers.alpha_vantage_base_url,
        {"function": function, "symbol": symbol, "apikey": api_key},
    )
    if not isinstance(payload, dict):
        raise MalformedPayloadError(PROVIDER, "expected a JSON object")
    # throttled responses come back as HTTP 200 with a note instead of data
    if "Note" in payload or "Information" in payload:
        raise RateLimitedError(PROVIDER, str(payload.get("Note") or payload.get("Information")))
    if "Error Message" in payload:
        raise NoDataError(PROVIDER, str(payload["Error Message"]))
    return payload


def _to_float(value: Any) -> float:
    return float(str(value).strip().rstrip("%"))


async def fetch_global_quote(symbol: str) -> StockQuote:
    symbol = symbol.upper()
    payload = await _query("GLOBAL_QUOTE", symbol)
    quote = payload.get("Global Quote")
    if not quote:
        raise NoDataError(PROVIDER, f"invalid stock symbol {symbol}")
    try:
        return StockQuote(
            symbol=symbol,
            price=_to_float(quote["05. price"]),
            change=_to_float(quote.get("09. change", 0)),
            change_percent=_to_float(quote.get("10. change percent", 0)),
            high=_to_float(quote["03. high"]) if quote.get("03. high") else None,
            low=_to_float(quote["04. low"]) if quote.get("04. low") else None,
            volume=_to_float(quote["06. volume"]) if quote.get("06. volume") else None,
            last_updated=quote.get("07. latest trading day"),
        )
    except (KeyError, ValueError) as exc:
        raise MalformedPayloadError(PROVIDER, f"unexpected quote payload for {symbol}") from exc


async def fetch_company_overview(symbol: str) -> CompanyOverview:
    symbol = symbol.upper()
    payload = await _query("OVERVIEW", symbol)
    if not payload.get("Name"):
        raise NoDataError(PROVIDER, f"no company overview for {symbol}")
    return CompanyOverview(
        name=payload["Name"],
        description=payload.get("Description") or "No description available",
        sector=payload.get("Sector") or "Unknown",
        industry=payload.get("Industry") or "Unknown",
    )
