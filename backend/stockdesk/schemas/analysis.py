from __future__ import annotations

import datetime
from typing import Literal

from pydantic import Field

from stockdesk.schemas.base import CamelModel

Sentiment = Literal["positive", "neutral", "negative"]


class NewsItem(CamelModel):
    title: str
    source: str = "Unknown"
    date: str | None = None


class StockData(CamelModel):
    symbol: str | None = None
    price: float
    change: float | str = 0
    change_percent: float | str = 0


class CompanyInfo(CamelModel):
    name: str
    description: str = ""
    sector: str = "Unknown"
    industry: str = "Unknown"


class AnalysisRequest(CamelModel):
    symbol: str = Field(min_length=1)
    stock_data: StockData
    company_overview: CompanyInfo


class AnalysisResult(CamelModel):
    sentiment: Sentiment
    ai_insight: str
    news: list[NewsItem] = Field(default_factory=list)


class StockAnalysis(CamelModel):
    symbol: str
    company_name: str
    price: float
    change: str
    change_percent: str
    news: list[NewsItem] = Field(default_factory=list)
    sentiment: Sentiment
    ai_insight: str
    date: str


class SavedAnalysisResponse(StockAnalysis):
    id: str
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


class ChatRequest(CamelModel):
    message: str = Field(min_length=1)


class ChatResponse(CamelModel):
    message: str | None = None
