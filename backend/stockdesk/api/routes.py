import datetime
import logging
import math
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockdesk.analysis import chat, generate_analysis
from stockdesk.cache import Cache
from stockdesk.db.models import ListedStock, SavedAnalysis
from stockdesk.db.session import get_session
from stockdesk.errors import MissingApiKeyError, NoDataError, ProviderError, RateLimitedError
from stockdesk.jobs.queue import enqueue_ipo_update
from stockdesk.price_cache import PriceRefreshCache
from stockdesk.providers import marketstack
from stockdesk.providers.selector import fetch_overview_with_fallback, fetch_quote_with_fallback
from stockdesk.schemas.analysis import (
    AnalysisRequest,
    AnalysisResult,
    ChatRequest,
    ChatResponse,
    NewsItem,
    SavedAnalysisResponse,
    StockAnalysis,
)
from stockdesk.schemas.prices import PriceSnapshot, WatchRequest, WatchResponse
from stockdesk.schemas.stocks import ListedStockResponse, StockListResponse

logger = logging.getLogger(__name__)

router = APIRouter()

_STOCK_DATA_TYPES = {"quote", "overview", "historical"}


def get_cache(request: Request) -> Cache:
    return request.app.state.cache


def get_price_cache(request: Request) -> PriceRefreshCache:
    return request.app.state.price_cache


def _normalize_symbol(symbol: str | None) -> str:
    return (symbol or "").strip().upper()


def _provider_http_error(exc: ProviderError) -> HTTPException:
    if isinstance(exc, MissingApiKeyError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "API configuration error", "details": str(exc)},
        )
    if isinstance(exc, NoDataError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "No data available for this symbol", "details": str(exc)},
        )
    if isinstance(exc, RateLimitedError):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error": "Upstream rate limit reached", "details": str(exc)},
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "Failed to fetch stock data", "details": str(exc)},
    )


def _paginate(items: list, page: int, page_size: int) -> tuple[list, int]:
    total_pages = math.ceil(len(items) / page_size) if items else 0
    start = (page - 1) * page_size
    return items[start : start + page_size], total_pages


def _analysis_response(row: SavedAnalysis) -> SavedAnalysisResponse:
    return SavedAnalysisResponse(
        id=str(row.id),
        symbol=row.symbol,
        company_name=row.company_name,
        price=row.price,
        change=row.change,
        change_percent=row.change_percent,
        news=[NewsItem.model_validate(item) for item in (row.news or [])],
        sentiment=row.sentiment,
        ai_insight=row.ai_insight,
        date=row.date,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _analysis_values(analysis: StockAnalysis) -> dict:
    return {
        "symbol": _normalize_symbol(analysis.symbol),
        "company_name": analysis.company_name,
        "price": analysis.price,
        "change": analysis.change,
        "change_percent": analysis.change_percent,
        "news": [item.model_dump(by_alias=True) for item in analysis.news],
        "sentiment": analysis.sentiment,
        "ai_insight": analysis.ai_insight,
        "date": analysis.date,
    }


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/api/stock")
async def get_stock(
    symbol: str | None = None,
    data_type: str = Query("quote", alias="type"),
    range_key: str | None = Query(None, alias="range"),
    cache: Cache = Depends(get_cache),
):
    normalized = _normalize_symbol(symbol)
    if not normalized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Stock symbol is required"},
        )
    if data_type not in _STOCK_DATA_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": f"Unknown data type: {data_type}"},
        )

    try:
        if data_type == "overview":
            return await fetch_overview_with_fallback(normalized)
        if data_type == "historical":
            return await marketstack.fetch_historical(normalized, range_key, cache)
        return await fetch_quote_with_fallback(normalized)
    except ProviderError as exc:
        logger.warning("Stock %s lookup for %s failed: %s", data_type, normalized, exc)
        raise _provider_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(exc)},
        ) from exc


@router.post("/api/analysis", response_model=AnalysisResult)
async def create_analysis(payload: AnalysisRequest) -> AnalysisResult:
    try:
        return await generate_analysis(payload)
    except ProviderError as exc:
        logger.exception("Error generating analysis for %s", payload.symbol)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to generate analysis", "details": str(exc)},
        ) from exc


@router.post("/api/chat", response_model=ChatResponse)
async def create_chat_reply(payload: ChatRequest) -> ChatResponse:
    try:
        reply = await chat(payload.message)
    except ProviderError as exc:
        logger.exception("Error in chat request")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to get response from AI"},
        ) from exc
    return ChatResponse(message=reply)


@router.get("/api/stocks", response_model=StockListResponse)
async def list_stocks(
    search: str = "",
    days: int = Query(30, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(30, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
) -> StockListResponse:
    cutoff = datetime.datetime.utcnow() - datetime.timedelta(days=days)
    stmt = select(ListedStock).where(ListedStock.listing_date >= cutoff)
    term = search.strip()
    if term:
        pattern = f"%{term}%"
        stmt = stmt.where(or_(ListedStock.symbol.ilike(pattern), ListedStock.name.ilike(pattern)))
    stmt = stmt.order_by(ListedStock.listing_date.desc())

    result = await db.execute(stmt)
    rows = list(result.scalars().all())
    page_rows, total_pages = _paginate(rows, page, limit)
    return StockListResponse(
        stocks=[
            ListedStockResponse(
                symbol=row.symbol,
                name=row.name,
                sector=row.sector,
                listing_date=row.listing_date,
                price=row.price,
                change=row.change,
            )
            for row in page_rows
        ],
        total=len(rows),
        page=page,
        page_size=limit,
        total_pages=total_pages,
    )


@router.post("/api/ipos/update")
def update_ipos() -> dict:
    try:
        job = enqueue_ipo_update()
    except Exception as exc:
        logger.exception("Error queueing IPO update")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to update IPO data"},
        ) from exc
    return {"message": "IPO data update queued", "jobId": job.id}


@router.post("/api/prices/watch", response_model=WatchResponse)
async def watch_prices(
    payload: WatchRequest, price_cache: PriceRefreshCache = Depends(get_price_cache)
) -> WatchResponse:
    price_cache.start_updates(payload.symbols)
    return WatchResponse(symbols=price_cache.symbols(), running=price_cache.is_running)


@router.delete("/api/prices/watch", response_model=WatchResponse)
async def unwatch_prices(
    price_cache: PriceRefreshCache = Depends(get_price_cache),
) -> WatchResponse:
    price_cache.stop_updates()
    return WatchResponse(symbols=price_cache.symbols(), running=price_cache.is_running)


@router.get("/api/prices/{symbol}", response_model=PriceSnapshot)
async def get_price(
    symbol: str, price_cache: PriceRefreshCache = Depends(get_price_cache)
) -> PriceSnapshot:
    snapshot = price_cache.get_price(symbol)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found.")
    return snapshot


@router.get("/api/users/{user_id}/analyses", response_model=list[SavedAnalysisResponse])
async def list_user_analyses(
    user_id: str, db: AsyncSession = Depends(get_session)
) -> list[SavedAnalysisResponse]:
    result = await db.execute(
        select(SavedAnalysis)
        .where(SavedAnalysis.user_id == user_id)
        .order_by(SavedAnalysis.created_at.desc())
    )
    return [_analysis_response(row) for row in result.scalars().all()]


@router.post("/api/users/{user_id}/analyses", response_model=SavedAnalysisResponse)
async def save_user_analysis(
    user_id: str, payload: StockAnalysis, db: AsyncSession = Depends(get_session)
) -> SavedAnalysisResponse:
    now = datetime.datetime.utcnow()
    row = SavedAnalysis(
        id=uuid.uuid4(),
        user_id=user_id,
        created_at=now,
        updated_at=now,
        **_analysis_values(payload),
    )
    db.add(row)
    await db.commit()
    return _analysis_response(row)


@router.put("/api/users/{user_id}/analyses/{symbol}", response_model=SavedAnalysisResponse)
async def update_user_analysis(
    user_id: str, symbol: str, payload: StockAnalysis, db: AsyncSession = Depends(get_session)
) -> SavedAnalysisResponse:
    normalized = _normalize_symbol(symbol)
    result = await db.execute(
        select(SavedAnalysis)
        .where(SavedAnalysis.user_id == user_id, SavedAnalysis.symbol == normalized)
        .order_by(SavedAnalysis.created_at.desc())
        .limit(1)
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Analysis not found.")

    for key, value in _analysis_values(payload).items():
        setattr(row, key, value)
    row.updated_at = datetime.datetime.utcnow()
    await db.commit()
    return _analysis_response(row)
