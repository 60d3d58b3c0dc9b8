from __future__ import annotations

import datetime

from pydantic import Field

from stockdesk.schemas.base import CamelModel


class StockQuote(CamelModel):
    symbol: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    high: float | None = None
    low: float | None = None
    volume: float | None = None
    last_updated: datetime.datetime | None = None


class CompanyOverview(CamelModel):
    name: str
    description: str = "No description available"
    sector: str = "Unknown"
    industry: str = "Unknown"


class HistoricalPoint(CamelModel):
    date: datetime.date
    price: float


class IpoListing(CamelModel):
    symbol: str
    name: str
    sector: str = "Unknown"
    listing_date: datetime.date
    price: float | None = None


class ListedStockResponse(CamelModel):
    symbol: str
    name: str
    sector: str
    listing_date: datetime.datetime
    price: float | None = None
    change: float | None = None


class StockListResponse(CamelModel):
    stocks: list[ListedStockResponse] = Field(default_factory=list)
    total: int
    page: int
    page_size: int
    total_pages: int
