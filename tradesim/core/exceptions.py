"""Exception hierarchy for tradesim.

Validation and synthetic-data errors propagate to the caller. Errors raised
while a backtest is stepping are absorbed by the engine into an ERROR status.
"""
from __future__ import annotations

from datetime import datetime


class TradeSimError(Exception):
    """Base exception class for all tradesim errors.

    Callers can catch every framework error with a single except clause.
    """


class ConfigError(TradeSimError):
    """Configuration-related errors.

    Raised for unreadable configuration files or values that fail
    validation after loading.
    """


class ValidationError(TradeSimError):
    """Pre-run validation failures.

    Raised synchronously by backtest creation and validation: bad date
    ranges, unsupported asset classes, missing price history.
    """


class NotFoundError(ValidationError):
    """Requested backtest document does not exist for this user.

    Attributes:
        backtest_id: Identifier that was looked up.
    """

    def __init__(self, backtest_id: str):
        super().__init__(f"Backtest not found: {backtest_id}")
        self.backtest_id = backtest_id


class DataError(TradeSimError):
    """Price data availability and consistency errors."""


class NoPriceDataError(DataError):
    """No price snapshot exists for a timestamp.

    Inside the simulation loop this is the market-closed signal rather than
    a failure.

    Attributes:
        symbol: Symbol lacking a bar, or None when no data is cached at all.
        timestamp: Simulated time that was requested.
    """

    def __init__(self, symbol: str | None, timestamp: datetime):
        """Initialize NoPriceDataError.

        Args:
            symbol: Symbol that has no bar at ``timestamp``.
            timestamp: Requested simulated time.
        """
        target = symbol or "any symbol"
        super().__init__(f"No price data for {target} at {timestamp.isoformat()}")
        self.symbol = symbol
        self.timestamp = timestamp


class RequestLimitError(DataError):
    """Upstream history requests exceeded the per-symbol budget.

    Attributes:
        limit: Number of requests allowed for the symbols seen so far.
    """

    def __init__(self, limit: int):
        super().__init__(f"Too many API requests (limit {limit})")
        self.limit = limit


class SyntheticDataError(DataError):
    """Synthetic price generation cannot proceed.

    Raised when the historical window used to fit the model is empty.
    """


class ConditionError(TradeSimError):
    """A strategy condition cannot be evaluated or rebuilt from a document."""
