"""
Latest-price cache for the symbols the dashboard is currently showing.

One instance is built by the application wiring and shared by every consumer.
``start_updates`` registers symbols, runs a refresh cycle right away and arms a
periodic timer; ``stop_updates`` disarms the timer but keeps the data, so the
next ``start_updates`` serves last-known prices while a fresh cycle runs.

A refresh cycle:
  - is skipped entirely if another cycle is still running (dropped, not queued),
  - does nothing outside regular market hours,
  - fetches the tracked symbols in fixed-size batches, one batch at a time,
    pausing between batches to stay under the provider rate limit,
  - survives a failing batch and moves on to the next one.

Upstream errors never reach ``get_price``; readers get the newest snapshot or
the last known one.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import threading
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from stockdesk.config.settings import MarketHoursSettings, PriceRefreshSettings
from stockdesk.market_hours import is_market_open
from stockdesk.schemas.prices import PriceSnapshot

logger = logging.getLogger(__name__)

PriceRecord = Mapping[str, Any] | PriceSnapshot
FetchBatch = Callable[[list[str]], Awaitable[Iterable[PriceRecord]]]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _normalize_symbol(symbol: str) -> str:
    return (symbol or "").strip().upper()


class PriceRefreshCache:
    def __init__(
        self,
        fetch_batch: FetchBatch,
        *,
        interval_seconds: float = 30 * 60,
        batch_size: int = 50,
        batch_delay_seconds: float = 1.0,
        batch_timeout_seconds: float | None = 10.0,
        market_hours: MarketHoursSettings | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.batch_timeout_seconds = batch_timeout_seconds
        self.market_hours = market_hours or MarketHoursSettings()
        self._fetch_batch = fetch_batch
        self._clock = clock
        # paces batches within a cycle; the periodic timer always uses asyncio.sleep
        self._sleep = sleep
        self._snapshots: dict[str, PriceSnapshot] = {}
        # try-acquire only; a second cycle never waits on it
        self._cycle_lock = threading.Lock()
        self._timer: asyncio.Task | None = None
        self._cycles: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        fetch_batch: FetchBatch,
        refresh: PriceRefreshSettings,
        market_hours: MarketHoursSettings,
    ) -> "PriceRefreshCache":
        return cls(
            fetch_batch,
            interval_seconds=refresh.interval_seconds,
            batch_size=refresh.batch_size,
            batch_delay_seconds=refresh.batch_delay_seconds,
            batch_timeout_seconds=refresh.batch_timeout_seconds,
            market_hours=market_hours,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def start_updates(self, symbols: Iterable[str]) -> None:
        """Register ``symbols``, refresh immediately and (re)arm the periodic timer.

        Must be called from inside a running event loop.
        """
        self._cancel_timer()

        now = self._clock()
        for symbol in symbols:
            normalized = _normalize_symbol(symbol)
            if normalized and normalized not in self._snapshots:
                self._snapshots[normalized] = PriceSnapshot.placeholder(normalized, now)

        self._spawn_cycle()
        self._timer = asyncio.create_task(self._run_timer())

    def stop_updates(self) -> None:
        """Disarm the timer. Stored snapshots and any in-flight cycle are left alone."""
        self._cancel_timer()

    def get_price(self, symbol: str) -> PriceSnapshot | None:
        return self._snapshots.get(_normalize_symbol(symbol))

    def symbols(self) -> list[str]:
        return list(self._snapshots)

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_updating(self) -> bool:
        return self._cycle_lock.locked()

    async def refresh(self) -> None:
        """Run one refresh cycle unless one is already in progress."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Price refresh already in progress, dropping trigger")
            return
        try:
            await self._run_cycle()
        except Exception:
            logger.exception("Price refresh cycle failed")
        finally:
            self._cycle_lock.release()

    async def drain(self) -> None:
        """Wait for every cycle started so far to finish."""
        while self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)

    async def aclose(self) -> None:
        self.stop_updates()
        await self.drain()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def _spawn_cycle(self) -> None:
        task = asyncio.create_task(self.refresh())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self._spawn_cycle()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ------------------------------------------------------------------
    # Refresh cycle
    # ------------------------------------------------------------------
    async def _run_cycle(self) -> None:
        if not is_market_open(self._clock(), self.market_hours):
            logger.info("Market is closed, skipping price update")
            return

        symbols = list(self._snapshots)
        batches = [
            symbols[start : start + self.batch_size]
            for start in range(0, len(symbols), self.batch_size)
        ]
        logger.info("Updating prices for %d symbols in %d batches", len(symbols), len(batches))

        for number, batch in enumerate(batches, start=1):
            await self._refresh_batch(number, len(batches), batch)
            if number < len(batches):
                await self._sleep(self.batch_delay_seconds)

        logger.info("Price update completed")

    async def _refresh_batch(self, number: int, total: int, batch: list[str]) -> None:
        logger.debug("Processing batch %d of %d", number, total)
        try:
            # materialised here so a non-iterable payload fails only this batch
            records = list(
                await asyncio.wait_for(self._fetch_batch(batch), timeout=self.batch_timeout_seconds)
            )
        except Exception:
            logger.exception("Batch %d of %d failed for %s", number, total, ",".join(batch))
            return

        requested = set(batch)
        refreshed_at = self._clock()
        updated: set[str] = set()
        for record in records:
            try:
                snapshot = self._to_snapshot(record, refreshed_at)
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping malformed price record in batch %d: %s", number, exc)
                continue
            if snapshot.symbol not in requested:
                logger.debug("Ignoring unrequested symbol %s in batch %d", snapshot.symbol, number)
                continue
            self._snapshots[snapshot.symbol] = snapshot
            updated.add(snapshot.symbol)

        missing = requested - updated
        if missing:
            logger.warning(
                "Batch %d of %d returned no price for %s",
                number,
                total,
                ",".join(sorted(missing)),
            )

    @staticmethod
    def _to_snapshot(record: PriceRecord, refreshed_at: datetime.datetime) -> PriceSnapshot:
        if isinstance(record, PriceSnapshot):
            return record.model_copy(update={"last_updated": refreshed_at})
        payload = dict(record)
        payload.pop("last_updated", None)
        payload["lastUpdated"] = refreshed_at
        return PriceSnapshot.model_validate(payload)
