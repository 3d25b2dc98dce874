import pytest

from tradesim.core.types import Asset, AssetType
from tradesim.portfolio.position import Position


def _flat(symbol="AAPL"):
    return Position(Asset(symbol), 0.0, 0.0, 0.0)


class TestPosition:
    def test_open_long(self):
        """A buy from flat opens at the fill price."""
        pos = _flat()
        pos.apply_fill(10, 100.0)
        assert pos.quantity == 10
        assert pos.average_cost == 100.0
        assert pos.last_price == 100.0

    def test_add_uses_weighted_average(self):
        """Adding takes the quantity-weighted average cost."""
        pos = _flat()
        pos.apply_fill(10, 100.0)
        pos.apply_fill(30, 120.0)
        assert pos.quantity == 40
        assert pos.average_cost == pytest.approx(115.0)

    def test_reduce_keeps_average_cost(self):
        """Reducing keeps the average cost."""
        pos = _flat()
        pos.apply_fill(10, 100.0)
        pos.apply_fill(-4, 150.0)
        assert pos.quantity == 6
        assert pos.average_cost == 100.0
        assert pos.last_price == 150.0

    def test_open_short_from_flat(self):
        """A sell from flat opens a short."""
        pos = _flat()
        pos.apply_fill(-5, 50.0)
        assert pos.quantity == -5
        assert pos.average_cost == 50.0

    def test_add_to_short(self):
        """Adding to a short averages its cost."""
        pos = _flat()
        pos.apply_fill(-5, 50.0)
        pos.apply_fill(-5, 40.0)
        assert pos.quantity == -10
        assert pos.average_cost == pytest.approx(45.0)

    def test_cross_through_zero_rebases(self):
        """Crossing through zero re-bases on the fill price."""
        pos = _flat()
        pos.apply_fill(10, 100.0)
        pos.apply_fill(-15, 90.0)
        assert pos.quantity == -5
        assert pos.average_cost == 90.0

    def test_market_value_and_properties(self):
        """Positions expose their asset's fields."""
        pos = Position(Asset("SPY", name="S&P 500 ETF"), 3, 100.0, 110.0)
        assert pos.market_value == 330.0
        assert pos.name == "S&P 500 ETF"
        assert pos.type == AssetType.STOCK

    def test_copy_is_independent(self):
        """Copies do not follow later fills."""
        pos = Position(Asset("SPY"), 3, 100.0, 110.0)
        snapshot = pos.copy()
        pos.apply_fill(1, 120.0)
        assert snapshot.quantity == 3
        assert snapshot.last_price == 110.0

    def test_dict_round_trip(self):
        """Positions survive a dict round trip."""
        pos = Position(Asset("SPY"), 3, 100.0, 110.0)
        assert Position.from_dict(pos.to_dict()) == pos
