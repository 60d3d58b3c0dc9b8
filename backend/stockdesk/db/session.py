# backend/stockdesk/db/session.py

import asyncio
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from stockdesk.config.settings import settings
from stockdesk.db.models import Base

engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
# rows are read back after commit, outside any lazy-load context
AsyncSessionLocal = async_sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


async def init_models() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def create_tables() -> None:
    asyncio.run(init_models())


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
