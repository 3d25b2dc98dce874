"""Unit tests for core exceptions."""
from datetime import datetime

from tradesim.core.exceptions import (
    ConditionError,
    ConfigError,
    DataError,
    NoPriceDataError,
    NotFoundError,
    RequestLimitError,
    SyntheticDataError,
    TradeSimError,
    ValidationError,
)


class TestExceptionHierarchy:
    def test_exception_hierarchy(self):
        """Test exception inheritance hierarchy."""
        assert issubclass(ConfigError, TradeSimError)
        assert issubclass(ValidationError, TradeSimError)
        assert issubclass(NotFoundError, ValidationError)
        assert issubclass(DataError, TradeSimError)
        assert issubclass(NoPriceDataError, DataError)
        assert issubclass(RequestLimitError, DataError)
        assert issubclass(SyntheticDataError, DataError)
        assert issubclass(ConditionError, TradeSimError)

    def test_base_exception_is_exception(self):
        """Test that the base exception derives from Exception."""
        assert issubclass(TradeSimError, Exception)


class TestNoPriceDataError:
    def test_message_and_attributes(self):
        """The message names the symbol and time."""
        at = datetime(2024, 1, 8, 9, 30)
        err = NoPriceDataError("SPY", at)
        assert err.symbol == "SPY"
        assert err.timestamp == at
        assert str(err) == "No price data for SPY at 2024-01-08T09:30:00"

    def test_without_symbol(self):
        """A missing symbol reads as any symbol."""
        err = NoPriceDataError(None, datetime(2024, 1, 8, 16, 0))
        assert "any symbol" in str(err)


class TestOtherErrors:
    def test_not_found(self):
        """NotFoundError keeps the id."""
        err = NotFoundError("abc")
        assert err.backtest_id == "abc"
        assert "abc" in str(err)

    def test_request_limit(self):
        """RequestLimitError keeps the limit."""
        err = RequestLimitError(10)
        assert err.limit == 10
        assert str(err).startswith("Too many API requests")

    def test_synthetic_data_error_message(self):
        """SyntheticDataError keeps its message."""
        assert str(SyntheticDataError("Market history cannot be empty")) == "Market history cannot be empty"
