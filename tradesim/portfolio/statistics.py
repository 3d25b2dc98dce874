"""Risk-adjusted performance metrics for a finished backtest."""
from __future__ import annotations

import math
from dataclasses import dataclass, fields
from typing import Iterable

# Fixed per-step risk-free growth, not compounded.
RISK_FREE_STEP_RATE = 1.001


@dataclass(frozen=True, slots=True)
class Statistics:
    sortino: float = 0.0
    sharpe: float = 0.0
    percent_change: float = 0.0
    total_change: float = 0.0
    average_change: float = 0.0
    max_drawdown: float = 0.0

    @classmethod
    def calculate(
        cls,
        final_value: float,
        initial_value: float,
        value_history: list[float],
        delta_history: list[float],
    ) -> Statistics:
        """Compute all metrics from aligned value and per-step delta series.

        Args:
            final_value: Portfolio value at the end of the run.
            initial_value: Starting capital.
            value_history: Recorded portfolio value per step.
            delta_history: Change in value per step, aligned with value_history.

        Returns:
            New Statistics. Sharpe and Sortino are 0 when their deviation is 0
            or there is no history.
        """
        steps = len(value_history)
        total_change = final_value - initial_value
        percent_change = total_change / initial_value * 100 if initial_value else 0.0
        average_change = total_change / steps if steps else 0.0

        if not steps or not delta_history:
            return cls(
                percent_change=percent_change,
                total_change=total_change,
                average_change=average_change,
                max_drawdown=calculate_max_drawdown(value_history),
            )

        risk_free_return = initial_value * RISK_FREE_STEP_RATE * steps
        risk_free_percent = (risk_free_return - initial_value) / initial_value

        # Deltas are measured about the mean portfolio value.
        mean = sum(value_history) / steps
        sd = _deviation(delta_history, mean)
        negative_sd = _deviation([d for d in delta_history if d < 0], mean)

        sharpe = (percent_change - risk_free_percent) / sd if sd else 0.0
        sortino = (total_change - risk_free_percent) / negative_sd if negative_sd else 0.0

        return cls(
            sortino=sortino,
            sharpe=sharpe,
            percent_change=percent_change,
            total_change=total_change,
            average_change=average_change,
            max_drawdown=calculate_max_drawdown(value_history),
        )

    def add(self, other: Statistics) -> Statistics:
        return Statistics(
            *(getattr(self, f.name) + getattr(other, f.name) for f in fields(self))
        )

    def divide(self, n: float) -> Statistics:
        return Statistics(*(getattr(self, f.name) / n for f in fields(self)))

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> Statistics:
        return cls(**{f.name: float(data.get(f.name, 0.0)) for f in fields(cls)})


def _deviation(values: list[float], mean: float) -> float:
    """Population standard deviation of ``values`` about ``mean``."""
    if not values:
        return 0.0
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def calculate_max_drawdown(values: list[float]) -> float:
    """Largest peak-to-trough decline, in value units."""
    if not values:
        return 0.0
    peak = trough = values[0]
    max_drawdown = 0.0
    for value in values[1:]:
        if value > peak:
            peak = trough = value
        elif value < trough:
            trough = value
            max_drawdown = max(max_drawdown, peak - trough)
    return max_drawdown


def average_statistics(results: Iterable[Statistics]) -> Statistics:
    """Element-wise mean across repeated runs."""
    total = Statistics()
    count = 0
    for result in results:
        total = total.add(result)
        count += 1
    if not count:
        raise ValueError("Cannot average an empty set of statistics")
    return total.divide(count)
