from __future__ import annotations

import datetime
from zoneinfo import ZoneInfo

from stockdesk.config.settings import MarketHoursSettings


def exchange_time(now: datetime.datetime, hours: MarketHoursSettings) -> datetime.datetime:
    # naive timestamps are taken to be UTC
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    return now.astimezone(ZoneInfo(hours.timezone))


def is_market_open(now: datetime.datetime, hours: MarketHoursSettings | None = None) -> bool:
    """True on weekdays between the session open and close, both minutes included."""
    hours = hours or MarketHoursSettings()
    local = exchange_time(now, hours)
    if local.weekday() >= 5:
        return False
    wall_clock = local.time().replace(second=0, microsecond=0)
    return hours.open <= wall_clock <= hours.close
