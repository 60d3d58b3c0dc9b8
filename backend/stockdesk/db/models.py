# backend/stockdesk/db/models.py

import datetime
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ListedStock(Base):
    __tablename__ = "listed_stocks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    symbol = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    sector = Column(String, default="Unknown", nullable=False)
    listing_date = Column(DateTime, nullable=False, index=True)
    price = Column(Float)
    change = Column(Float, default=0.0)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    def __repr__(self):
        return f"<ListedStock(symbol='{self.symbol}', listing_date='{self.listing_date}')>"


class SavedAnalysis(Base):
    __tablename__ = "saved_analyses"

    # One row per analysis a user keeps on the dashboard
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    symbol = Column(String, nullable=False, index=True)
    company_name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    change = Column(String, nullable=False)
    change_percent = Column(String, nullable=False)
    news = Column("news_json", JSONB)
    sentiment = Column(String, nullable=False)
    ai_insight = Column(Text, nullable=False)
    date = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    def __repr__(self):
        return f"<SavedAnalysis(user_id='{self.user_id}', symbol='{self.symbol}')>"
