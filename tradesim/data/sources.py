"""In-process history sources: fixed bar lists and CSV files."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pandas as pd

from tradesim.core.exceptions import DataError
from tradesim.core.types import Bar, MarketHistory
from tradesim.data.store import HistorySource

_REQUIRED_COLUMNS = ("date", "open", "high", "low", "close", "volume")


def _window(bars: list[Bar], start: datetime, end: datetime | None) -> list[Bar]:
    return [b for b in bars if b.timestamp >= start and (end is None or b.timestamp < end)]


class InMemorySource(HistorySource):
    def __init__(self, history: MarketHistory | None = None) -> None:
        self._history: MarketHistory = {
            symbol: sorted(bars, key=lambda b: b.timestamp) for symbol, bars in (history or {}).items()
        }
        self.load_calls = 0

    def add_bars(self, bars: list[Bar]) -> None:
        for bar in bars:
            self._history.setdefault(bar.symbol, []).append(bar)
        for series in self._history.values():
            series.sort(key=lambda b: b.timestamp)

    async def load_bars(self, symbol: str, start: datetime, end: datetime | None = None) -> list[Bar]:
        self.load_calls += 1
        return _window(self._history.get(symbol, []), start, end)

    async def symbols(self) -> list[str]:
        return sorted(self._history)


class CsvSource(HistorySource):
    """Daily bars from one CSV file per symbol.

    Files need ``date,open,high,low,close,volume`` columns (header case is
    ignored). Each file is parsed once, on first request.
    """

    def __init__(self, paths: dict[str, str | Path]) -> None:
        self._paths = {symbol: Path(p) for symbol, p in paths.items()}
        self._loaded: MarketHistory = {}

    def _read(self, symbol: str) -> list[Bar]:
        path = self._paths[symbol]
        df = pd.read_csv(path)
        df.columns = [c.strip().lower() for c in df.columns]
        missing = [c for c in _REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise DataError(f"{path}: missing columns {', '.join(missing)}")
        df["date"] = pd.to_datetime(df["date"])
        df = df.sort_values("date").drop_duplicates(subset="date", keep="last")
        return [
            Bar(
                symbol=symbol,
                timestamp=row.date.to_pydatetime(),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
            )
            for row in df.itertuples(index=False)
        ]

    async def load_bars(self, symbol: str, start: datetime, end: datetime | None = None) -> list[Bar]:
        if symbol not in self._paths:
            return []
        if symbol not in self._loaded:
            self._loaded[symbol] = self._read(symbol)
        return _window(self._loaded[symbol], start, end)

    async def symbols(self) -> list[str]:
        return sorted(self._paths)
