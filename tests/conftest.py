"""Shared fixtures for tradesim tests."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta

import pytest

from tradesim.core.config import ZERO_COMMISSION_CONFIG
from tradesim.core.types import Asset, Bar
from tradesim.data.provider import CachedHistoryProvider
from tradesim.data.sources import InMemorySource

# Monday
TRADING_START = date(2024, 1, 8)


def _weekdays(start: date, count: int) -> list[date]:
    days: list[date] = []
    day = start
    while len(days) < count:
        if day.weekday() < 5:
            days.append(day)
        day += timedelta(days=1)
    return days


@pytest.fixture
def make_bars():
    """Daily bars stamped at midnight on consecutive weekdays.

    ``prices`` gives open == close for each day unless ``opens`` is passed.
    """

    def make(
        symbol: str,
        prices: list[float],
        start: date = TRADING_START,
        opens: list[float] | None = None,
        volume: float = 1_000.0,
    ) -> list[Bar]:
        opens = opens or prices
        bars = []
        for day, o, c in zip(_weekdays(start, len(prices)), opens, prices):
            bars.append(Bar(
                symbol=symbol,
                timestamp=datetime.combine(day, time()),
                open=o,
                high=max(o, c),
                low=min(o, c),
                close=c,
                volume=volume,
            ))
        return bars

    return make


@pytest.fixture
def spy():
    return Asset("SPY")


@pytest.fixture
def zero_commission():
    return ZERO_COMMISSION_CONFIG


@pytest.fixture
def provider_for():
    """Build a CachedHistoryProvider over in-memory bars."""

    def build(*series: list[Bar]) -> CachedHistoryProvider:
        source = InMemorySource()
        for bars in series:
            source.add_bars(bars)
        return CachedHistoryProvider(source)

    return build
