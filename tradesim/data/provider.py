"""Price-history provider used by the backtest engine.

The provider fetches each symbol's history from an upstream source once,
caches it, and answers point-in-time snapshot requests from the cache. A
snapshot request that finds no bar raises ``NoPriceDataError``, which the
engine reads as "market closed".
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from tradesim.core.config import DataConfig, MarketHoursConfig
from tradesim.core.exceptions import DataError, NoPriceDataError, RequestLimitError
from tradesim.core.types import Asset, Bar, MarketHistory, TimeInterval
from tradesim.data.snapshot import PriceQuote, PriceSnapshot
from tradesim.data.store import HistorySource

logger = logging.getLogger(__name__)


class PriceHistoryProvider(ABC):
    @abstractmethod
    async def get_market_history(self, asset: Asset, start: datetime, end: datetime) -> list[Bar]: ...

    @abstractmethod
    async def get_quote(self, symbol: str, at: datetime, interval: TimeInterval | str) -> PriceQuote: ...

    @abstractmethod
    async def get_backtest_prices(self, at: datetime, interval: TimeInterval | str) -> PriceSnapshot: ...


@dataclass(slots=True)
class CachedSeries:
    start: datetime
    bars: list[Bar]


def _start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time())


class CachedHistoryProvider(PriceHistoryProvider):
    def __init__(
        self,
        source: HistorySource,
        config: DataConfig | None = None,
        market_hours: MarketHoursConfig | None = None,
    ) -> None:
        self.source = source
        self.config = config or DataConfig()
        self.market_hours = market_hours or MarketHoursConfig()
        self._cache: dict[str, CachedSeries] = {}
        self._by_date: dict[str, dict[date, Bar]] = {}
        self._by_time: dict[str, dict[datetime, Bar]] = {}
        self._saved_symbols: set[str] = set()
        self._requests = 0

    @property
    def market_history(self) -> MarketHistory:
        """Shallow copy of the cache: a new mapping over the cached bar lists."""
        return {symbol: series.bars for symbol, series in self._cache.items()}

    def cached_start(self, symbol: str) -> datetime | None:
        series = self._cache.get(symbol)
        return series.start if series else None

    def load_history(self, symbol: str, start: datetime, bars: list[Bar]) -> None:
        """Install bars for a symbol directly, bypassing the upstream source."""
        self._cache[symbol] = CachedSeries(start=start, bars=bars)
        self._by_date[symbol] = {b.timestamp.date(): b for b in bars}
        self._by_time[symbol] = {b.timestamp: b for b in bars}

    async def _fetch(self, symbol: str, start: datetime) -> list[Bar]:
        self._saved_symbols.add(symbol)
        self._requests += 1
        limit = self.config.requests_per_symbol * len(self._saved_symbols)
        if self._requests > limit:
            raise RequestLimitError(limit)

        bars = await self.source.load_bars(symbol, _start_of_day(start))
        if not bars:
            raise DataError(f"No data for {symbol} on {start.date().isoformat()}")
        gap = (bars[0].timestamp.date() - start.date()).days
        if gap > self.config.max_start_gap_days:
            raise DataError(
                f"Data start date does not match for {symbol}: requested "
                f"{start.date().isoformat()}, first bar {bars[0].timestamp.date().isoformat()}"
            )
        logger.debug("Cached %d bars for %s from %s", len(bars), symbol, start.date())
        self.load_history(symbol, start, bars)
        return bars

    async def get_market_history(self, asset: Asset, start: datetime, end: datetime) -> list[Bar]:
        """Bars dated from the day before ``start`` through ``end``.

        When ``end`` is exactly the market open, that day's bar is dropped
        since its close is not yet known.
        """
        series = self._cache.get(asset.symbol)
        if series is None or start < series.start:
            bars = await self._fetch(asset.symbol, start)
        else:
            bars = series.bars

        lower = start.date() - timedelta(days=1)
        result = [b for b in bars if b.timestamp.date() >= lower and b.timestamp <= end]
        if (
            result
            and end.time() == self.market_hours.open_time
            and result[-1].timestamp.date() == end.date()
        ):
            result.pop()
        return result

    def _daily_quote(self, symbol: str, at: datetime) -> PriceQuote:
        bar = self._by_date.get(symbol, {}).get(at.date())
        if bar is None:
            raise NoPriceDataError(symbol, at)
        if at.time() < self.market_hours.close_time:
            return self._quote(bar.open, bar.open, bar.open, bar.open, bar.open, 0.0)
        return self._quote(bar.close, bar.open, bar.high, bar.low, bar.close, bar.volume)

    def _intraday_quote(self, symbol: str, at: datetime) -> PriceQuote:
        bar = self._by_time.get(symbol, {}).get(at)
        if bar is None:
            raise NoPriceDataError(symbol, at)
        return self._quote(bar.close, bar.open, bar.high, bar.low, bar.close, bar.volume)

    def _quote(self, px: float, open_: float, high: float, low: float, close: float, volume: float) -> PriceQuote:
        spread = self.config.spread_pct
        return PriceQuote(
            bid=px * (1 - spread),
            mid=px,
            ask=px * (1 + spread),
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=volume,
        )

    def quote_at(self, symbol: str, at: datetime, interval: TimeInterval | str) -> PriceQuote:
        if TimeInterval(interval) == TimeInterval.DAY:
            return self._daily_quote(symbol, at)
        return self._intraday_quote(symbol, at)

    async def get_quote(self, symbol: str, at: datetime, interval: TimeInterval | str) -> PriceQuote:
        return self.quote_at(symbol, at, interval)

    async def get_backtest_prices(self, at: datetime, interval: TimeInterval | str) -> PriceSnapshot:
        """Quotes for every cached symbol at ``at``.

        Raises:
            NoPriceDataError: If nothing is cached or any cached symbol has
                no bar at ``at``.
        """
        if not self._cache:
            raise NoPriceDataError(None, at)
        snapshot = PriceSnapshot(at)
        for symbol in self._cache:
            snapshot.set(symbol, self.quote_at(symbol, at, interval))
        return snapshot
