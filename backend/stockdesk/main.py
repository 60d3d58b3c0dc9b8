from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from stockdesk.api.routes import router
from stockdesk.cache import build_cache
from stockdesk.config.settings import Settings, settings
from stockdesk.logging_conf import setup_logging
from stockdesk.price_cache import FetchBatch, PriceRefreshCache
from stockdesk.providers import marketstack


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.price_cache.aclose()


def create_app(
    app_settings: Settings = settings, fetch_batch: FetchBatch | None = None
) -> FastAPI:
    setup_logging(app_settings.log_level)
    app = FastAPI(title="StockDesk", version="0.1.0", lifespan=lifespan)

    # One shared instance of each cache for the whole process.
    app.state.cache = build_cache(app_settings)
    app.state.price_cache = PriceRefreshCache.from_settings(
        fetch_batch or marketstack.fetch_batch_prices,
        app_settings.price_refresh,
        app_settings.market_hours,
    )

    app.include_router(router)
    return app


app = create_app()
