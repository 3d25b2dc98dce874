"""Synthetic price paths for robustness testing.

A normal model is fitted to four bar-to-bar relationships over a date
window (open->high, open->low, open->close, previous close->open) and a new
path is sampled over the same calendar window. Volume and dates are kept
from the original bars.
"""
from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, replace
from datetime import date, datetime

import numpy as np

from tradesim.core.config import SyntheticDataConfig
from tradesim.core.exceptions import SyntheticDataError
from tradesim.core.money import round_cents
from tradesim.core.types import Bar, MarketHistory
from tradesim.data.provider import CachedHistoryProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Distribution:
    mean: float
    sd: float

    @classmethod
    def of(cls, values: list[float]) -> Distribution:
        if not values:
            return cls(0.0, 0.0)
        arr = np.asarray(values, dtype=float)
        return cls(float(arr.mean()), float(arr.std()))


@dataclass(frozen=True, slots=True)
class BarDistributions:
    open_to_high: Distribution
    open_to_low: Distribution
    open_to_close: Distribution
    close_to_open: Distribution
    n: int

    def with_mean_deviation(self, value: float) -> BarDistributions:
        """Shift drift: half of ``value`` onto open->close, half onto close->open."""
        half = value / 2
        return replace(
            self,
            open_to_close=Distribution(self.open_to_close.mean + half, self.open_to_close.sd),
            close_to_open=Distribution(self.close_to_open.mean + half, self.close_to_open.sd),
        )


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def random_box_muller(mean: float, sd: float, rng: random.Random) -> float:
    """One normal draw via the Box-Muller transform."""
    u = 1.0 - rng.random()
    v = rng.random()
    return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v) * sd + mean


def fit_distributions(bars: list[Bar], start: date | datetime, end: date | datetime) -> BarDistributions:
    """Fit the four relationships over bars dated within [start, end].

    open->close is divided by the bar's low, not its open. close->open uses
    the preceding bar's close, so the first bar in the window contributes
    only when an earlier bar exists.
    """
    start, end = _as_date(start), _as_date(end)
    open_to_high: list[float] = []
    open_to_low: list[float] = []
    open_to_close: list[float] = []
    close_to_open: list[float] = []
    prev: Bar | None = None
    for bar in bars:
        day = bar.timestamp.date()
        if day > end:
            break
        if day >= start:
            open_to_high.append((bar.high - bar.open) / bar.open)
            open_to_low.append((bar.low - bar.open) / bar.open)
            open_to_close.append((bar.close - bar.open) / bar.low)
            if prev is not None:
                close_to_open.append((bar.open - prev.close) / prev.close)
        prev = bar

    if not open_to_high:
        raise SyntheticDataError("Market history cannot be empty")

    return BarDistributions(
        open_to_high=Distribution.of(open_to_high),
        open_to_low=Distribution.of(open_to_low),
        open_to_close=Distribution.of(open_to_close),
        close_to_open=Distribution.of(close_to_open),
        n=len(open_to_high),
    )


def _sample_bar(prev: Bar, original: Bar, model: BarDistributions, rng: random.Random) -> Bar:
    open_ = round_cents(prev.close + prev.close * random_box_muller(model.close_to_open.mean, model.close_to_open.sd, rng))
    close = round_cents(open_ + prev.open * random_box_muller(model.open_to_close.mean, model.open_to_close.sd, rng))
    high = round_cents(open_ + prev.open * random_box_muller(model.open_to_high.mean, model.open_to_high.sd, rng))
    low = round_cents(open_ + prev.open * random_box_muller(model.open_to_low.mean, model.open_to_low.sd, rng))
    return Bar(
        symbol=original.symbol,
        timestamp=original.timestamp,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=original.volume,
    )


def transform_history(
    bars: list[Bar],
    start: date | datetime,
    end: date | datetime,
    mean_deviation_value: float,
    rng: random.Random,
) -> list[Bar]:
    """Return a new bar list with the window after its first bar resampled.

    The first bar on or after ``start`` anchors the walk and is kept. Bars
    outside the window are copied through unchanged.
    """
    model = fit_distributions(bars, start, end).with_mean_deviation(mean_deviation_value)
    start, end = _as_date(start), _as_date(end)
    result = list(bars)
    anchor = next(i for i, b in enumerate(result) if b.timestamp.date() >= start)
    prev = result[anchor]
    for i in range(anchor + 1, len(result)):
        if result[i].timestamp.date() > end:
            break
        prev = _sample_bar(prev, result[i], model, rng)
        result[i] = prev
    return result


class SyntheticPriceGenerator(CachedHistoryProvider):
    """Provider serving a perturbed copy of another provider's cached history.

    On construction a uniform draw against ``params.ratio`` decides whether
    the copy is resampled or served as-is. The wrapped provider's cache is
    never modified. Symbols first requested after construction are fetched
    from the shared upstream source and served unperturbed.
    """

    def __init__(
        self,
        provider: CachedHistoryProvider,
        params: SyntheticDataConfig,
        start: date | datetime,
        end: date | datetime,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(provider.source, provider.config, provider.market_hours)
        self.params = params
        self._rng = rng or random.Random()

        history: MarketHistory = provider.market_history
        if not history:
            raise SyntheticDataError("Market history cannot be empty")

        self.transformed = self._rng.random() * 100 < params.ratio
        if self.transformed:
            history = {
                symbol: transform_history(bars, start, end, params.mean_deviation_value, self._rng)
                for symbol, bars in history.items()
            }
            logger.debug("Resampled %d symbols for %s..%s", len(history), start, end)

        for symbol, bars in history.items():
            self.load_history(symbol, provider.cached_start(symbol), list(bars))
