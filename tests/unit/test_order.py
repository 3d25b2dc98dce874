from datetime import datetime

import pytest

from tradesim.core.types import Asset, OrderStatus, OrderType, Side
from tradesim.execution.order import Order, create_mock_order


class TestOrder:
    def test_create_mock_order(self):
        """Mock orders are filled market orders with a backtest id."""
        at = datetime(2024, 1, 8, 9, 30)
        order = create_mock_order(Asset("SPY"), 10, 100.0, "buy", at, strategy_id="s1", portfolio_id="p1", user_id="u1")
        assert order.order_id.startswith("BACKTEST-")
        assert order.side == Side.BUY
        assert order.type == OrderType.MARKET
        assert order.status == OrderStatus.FILLED
        assert order.notional == 1000.0
        assert order.symbol == "SPY"

    def test_orders_are_immutable(self):
        """Orders cannot be changed after creation."""
        order = create_mock_order(Asset("SPY"), 10, 100.0, Side.SELL, datetime(2024, 1, 8))
        with pytest.raises(AttributeError):
            order.quantity = 5

    def test_unique_ids(self):
        """Every order gets its own id."""
        at = datetime(2024, 1, 8)
        a = create_mock_order(Asset("SPY"), 1, 1.0, Side.BUY, at)
        b = create_mock_order(Asset("SPY"), 1, 1.0, Side.BUY, at)
        assert a.order_id != b.order_id

    def test_dict_round_trip(self):
        """Orders survive a dict round trip."""
        order = create_mock_order(Asset("SPY"), 2, 50.0, Side.SELL, datetime(2024, 1, 8, 16), strategy_id="s1")
        assert Order.from_dict(order.to_dict()) == order
