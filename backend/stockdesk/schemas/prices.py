from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class PriceSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    symbol: str = Field(min_length=1)
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    last_updated: datetime.datetime

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @classmethod
    def placeholder(cls, symbol: str, now: datetime.datetime) -> "PriceSnapshot":
        return cls(symbol=symbol, price=0.0, change=0.0, change_percent=0.0, last_updated=now)

    @property
    def is_placeholder(self) -> bool:
        return self.price == 0.0 and self.change == 0.0 and self.change_percent == 0.0


class WatchRequest(BaseModel):
    symbols: list[str] = Field(default_factory=list)


class WatchResponse(BaseModel):
    symbols: list[str]
    running: bool
