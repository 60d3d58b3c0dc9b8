import asyncio
import datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from stockdesk.cache import TTLCache
from stockdesk.config.settings import settings
from stockdesk.errors import (
    MalformedPayloadError,
    MissingApiKeyError,
    NoDataError,
    ProviderError,
    RateLimitedError,
)
from stockdesk.providers import alpha_vantage, marketstack
from stockdesk.providers.http import get_json
from stockdesk.providers.selector import fetch_quote_with_fallback
from stockdesk.schemas.stocks import StockQuote


class FakeGetJson:
    def __init__(self, responses: dict[str, object]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, dict[str, str]]] = []

    async def __call__(self, provider: str, url: str, params: dict[str, str]) -> object:
        self.calls.append((url, params))
        for suffix, payload in self.responses.items():
            if url.endswith(suffix):
                return payload
        raise AssertionError(f"unexpected url {url}")


@pytest.fixture
def api_keys(monkeypatch):
    monkeypatch.setattr(settings.providers, "marketstack_api_key", "ms-key")
    monkeypatch.setattr(settings.providers, "alpha_vantage_api_key", "av-key")


def mock_transport(monkeypatch, handler) -> None:
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)


def test_get_json_returns_payload(monkeypatch) -> None:
    mock_transport(monkeypatch, lambda request: httpx.Response(200, json={"ok": True}))

    assert asyncio.run(get_json("test", "https://example.test/x", {"a": "1"})) == {"ok": True}


@pytest.mark.parametrize(
    ("response", "error"),
    [
        (httpx.Response(429, json={}), RateLimitedError),
        (httpx.Response(503, text="down"), ProviderError),
        (httpx.Response(200, text="<html>not json</html>"), MalformedPayloadError),
    ],
)
def test_get_json_maps_failures(monkeypatch, response, error) -> None:
    mock_transport(monkeypatch, lambda request: response)

    with pytest.raises(error):
        asyncio.run(get_json("test", "https://example.test/x", {}))


def test_get_json_maps_network_errors(monkeypatch) -> None:
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    mock_transport(monkeypatch, handler)

    with pytest.raises(ProviderError):
        asyncio.run(get_json("test", "https://example.test/x", {}))


def test_marketstack_requires_api_key(monkeypatch) -> None:
    monkeypatch.setattr(settings.providers, "marketstack_api_key", None)

    with pytest.raises(MissingApiKeyError):
        asyncio.run(marketstack.fetch_batch_prices(["AAPL"]))


def test_fetch_batch_prices_computes_change_against_previous_close(api_keys) -> None:
    fake = FakeGetJson(
        {
            "/intraday/latest": {
                "data": [
                    {"symbol": "AAPL", "close": 110.0, "date": "2025-01-15T15:00:00+0000"},
                    {"symbol": "MSFT", "close": 400.0, "date": "2025-01-15T15:00:00+0000"},
                    {"symbol": "NVDA", "close": 140.0, "date": "2025-01-15T15:00:00+0000"},
                ]
            },
            "/eod/latest": {
                "data": [
                    {"symbol": "MSFT", "close": 410.0},
                    {"symbol": "AAPL", "close": 100.0},
                ]
            },
        }
    )
    with patch("stockdesk.providers.marketstack.get_json", fake):
        results = asyncio.run(marketstack.fetch_batch_prices(["AAPL", "MSFT", "NVDA"]))

    by_symbol = {row["symbol"]: row for row in results}
    assert set(by_symbol) == {"AAPL", "MSFT"}
    assert by_symbol["AAPL"]["change"] == pytest.approx(10.0)
    assert by_symbol["AAPL"]["changePercent"] == pytest.approx(10.0)
    assert by_symbol["MSFT"]["change"] == pytest.approx(-10.0)
    assert by_symbol["AAPL"]["lastUpdated"] == "2025-01-15T15:00:00+00:00"
    assert fake.calls[0][1]["symbols"] == "AAPL,MSFT,NVDA"
    assert fake.calls[0][1]["access_key"] == "ms-key"


def test_fetch_batch_prices_without_data_raises(api_keys) -> None:
    fake = FakeGetJson({"/intraday/latest": {"data": []}})
    with patch("stockdesk.providers.marketstack.get_json", fake):
        with pytest.raises(NoDataError):
            asyncio.run(marketstack.fetch_batch_prices(["AAPL"]))


def test_marketstack_error_body_is_malformed_payload(api_keys) -> None:
    fake = FakeGetJson({"/eod": {"error": {"code": "invalid_access_key", "message": "bad key"}}})
    with patch("stockdesk.providers.marketstack.get_json", fake):
        with pytest.raises(MalformedPayloadError):
            asyncio.run(marketstack.fetch_quote("AAPL"))


def test_fetch_quote_uses_latest_two_closes(api_keys) -> None:
    fake = FakeGetJson(
        {
            "/eod": {
                "data": [
                    {"close": 105.0, "high": 106.0, "low": 99.0, "volume": 1000, "date": "2025-01-15T00:00:00+0000"},
                    {"close": 100.0, "date": "2025-01-14T00:00:00+0000"},
                ]
            }
        }
    )
    with patch("stockdesk.providers.marketstack.get_json", fake):
        quote = asyncio.run(marketstack.fetch_quote("aapl"))

    assert quote.symbol == "AAPL"
    assert quote.price == 105.0
    assert quote.change == pytest.approx(5.0)
    assert quote.change_percent == pytest.approx(5.0)
    assert quote.last_updated == datetime.datetime(2025, 1, 15, tzinfo=datetime.timezone.utc)
    assert quote.model_dump(by_alias=True)["changePercent"] == pytest.approx(5.0)


def test_fetch_historical_is_sorted_and_cached(api_keys) -> None:
    fake = FakeGetJson(
        {
            "/eod": {
                "data": [
                    {"close": 3.0, "date": "2025-01-15T00:00:00+0000"},
                    {"close": 2.0, "date": "2025-01-14T00:00:00+0000"},
                    {"close": None, "date": "2025-01-13T00:00:00+0000"},
                    {"close": 1.0, "date": "2025-01-10T00:00:00+0000"},
                ]
            }
        }
    )
    cache = TTLCache()
    today = datetime.date(2025, 1, 15)
    with patch("stockdesk.providers.marketstack.get_json", fake):
        first = asyncio.run(marketstack.fetch_historical("aapl", "5y", cache, today=today))
        second = asyncio.run(marketstack.fetch_historical("AAPL", "5y", cache, today=today))

    assert [point.price for point in first] == [1.0, 2.0, 3.0]
    assert first == second
    assert len(fake.calls) == 1
    assert fake.calls[0][1]["date_to"] == "2025-01-15"
    assert fake.calls[0][1]["date_from"] == "2020-01-17"
    assert cache.get(marketstack.historical_cache_key("AAPL", "5y"))[0] == {"date": "2025-01-10", "price": 1.0}


def test_historical_ttl_depends_on_range() -> None:
    assert marketstack.historical_ttl("5y") == settings.cache.historical_ttl_seconds
    assert marketstack.historical_ttl("1y") == settings.cache.historical_ttl_seconds
    assert marketstack.historical_ttl("1w") == settings.cache.intraday_ttl_seconds


def test_fetch_historical_rejects_unknown_range() -> None:
    with pytest.raises(ValueError):
        asyncio.run(marketstack.fetch_historical("AAPL", "10y", TTLCache()))


def test_fetch_ipos_skips_incomplete_rows(api_keys) -> None:
    fake = FakeGetJson(
        {
            "/ipos": {
                "data": [
                    {"symbol": "newco", "name": "New Co", "listing_date": "2025-01-10", "price": 21.5},
                    {"symbol": "", "name": "Nameless", "listing_date": "2025-01-10"},
                    {"symbol": "NOSEC", "name": "No Sector", "listing_date": "2025-01-11T00:00:00+0000", "sector": None},
                ]
            }
        }
    )
    with patch("stockdesk.providers.marketstack.get_json", fake):
        listings = asyncio.run(marketstack.fetch_ipos())

    assert [listing.symbol for listing in listings] == ["NEWCO", "NOSEC"]
    assert listings[1].sector == "Unknown"
    assert listings[1].listing_date == datetime.date(2025, 1, 11)
    assert fake.calls[0][1]["limit"] == "100"


def test_alpha_vantage_global_quote(api_keys) -> None:
    fake = FakeGetJson(
        {
            "/query": {
                "Global Quote": {
                    "01. symbol": "IBM",
                    "03. high": "190.00",
                    "04. low": "185.00",
                    "05. price": "188.50",
                    "06. volume": "3000000",
                    "07. latest trading day": "2025-01-15",
                    "09. change": "-1.25",
                    "10. change percent": "-0.6588%",
                }
            }
        }
    )
    with patch("stockdesk.providers.alpha_vantage.get_json", fake):
        quote = asyncio.run(alpha_vantage.fetch_global_quote("ibm"))

    assert quote.symbol == "IBM"
    assert quote.price == 188.5
    assert quote.change == -1.25
    assert quote.change_percent == pytest.approx(-0.6588)
    assert fake.calls[0][1] == {"function": "GLOBAL_QUOTE", "symbol": "IBM", "apikey": "av-key"}


def test_alpha_vantage_throttle_note_is_rate_limit(api_keys) -> None:
    fake = FakeGetJson({"/query": {"Note": "Thank you for using Alpha Vantage! Our standard API rate limit is..."}})
    with patch("stockdesk.providers.alpha_vantage.get_json", fake):
        with pytest.raises(RateLimitedError):
            asyncio.run(alpha_vantage.fetch_company_overview("IBM"))


def test_alpha_vantage_company_overview(api_keys) -> None:
    fake = FakeGetJson(
        {"/query": {"Name": "International Business Machines", "Sector": "TECHNOLOGY", "Industry": ""}}
    )
    with patch("stockdesk.providers.alpha_vantage.get_json", fake):
        overview = asyncio.run(alpha_vantage.fetch_company_overview("IBM"))

    assert overview.name == "International Business Machines"
    assert overview.sector == "TECHNOLOGY"
    assert overview.industry == "Unknown"
    assert overview.description == "No description available"


def test_quote_falls_back_to_alpha_vantage() -> None:
    fallback_quote = StockQuote(symbol="AAPL", price=1.0)
    with patch(
        "stockdesk.providers.selector.marketstack.fetch_quote",
        AsyncMock(side_effect=NoDataError("marketstack", "empty")),
    ) as marketstack_mock, patch(
        "stockdesk.providers.selector.alpha_vantage.fetch_global_quote",
        AsyncMock(return_value=fallback_quote),
    ) as alpha_mock:
        quote = asyncio.run(fetch_quote_with_fallback("AAPL"))

    assert quote is fallback_quote
    assert marketstack_mock.await_count == 1
    assert alpha_mock.await_count == 1


def test_quote_rate_limit_is_not_masked_by_fallback() -> None:
    with patch(
        "stockdesk.providers.selector.marketstack.fetch_quote",
        AsyncMock(side_effect=RateLimitedError("marketstack", "slow down")),
    ), patch(
        "stockdesk.providers.selector.alpha_vantage.fetch_global_quote",
        AsyncMock(),
    ) as alpha_mock:
        with pytest.raises(RateLimitedError):
            asyncio.run(fetch_quote_with_fallback("AAPL"))

    assert alpha_mock.await_count == 0
