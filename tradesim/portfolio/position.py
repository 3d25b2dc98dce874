from __future__ import annotations

from dataclasses import dataclass

from tradesim.core.types import Asset, AssetType


@dataclass(slots=True)
class Position:
    """Signed holding in one asset. Negative quantity is a short or written position."""

    asset: Asset
    quantity: float
    average_cost: float
    last_price: float

    @property
    def symbol(self) -> str:
        return self.asset.symbol

    @property
    def name(self) -> str:
        return self.asset.display_name

    @property
    def type(self) -> AssetType:
        return self.asset.type

    @property
    def market_value(self) -> float:
        return self.quantity * self.last_price

    def apply_fill(self, quantity: float, price: float) -> None:
        """Apply a signed fill, keeping average_cost consistent with quantity.

        Adding to the position (or opening from flat) takes the
        quantity-weighted average. Reducing keeps the existing average cost.
        Crossing through zero re-bases the average cost on the fill price.
        """
        current = self.quantity
        updated = current + quantity
        if current == 0 or (current > 0) == (quantity > 0):
            total = abs(current) + abs(quantity)
            self.average_cost = (abs(current) * self.average_cost + abs(quantity) * price) / total
        elif updated != 0 and (updated > 0) != (current > 0):
            self.average_cost = price
        self.quantity = updated
        self.last_price = price

    def copy(self) -> Position:
        return Position(self.asset, self.quantity, self.average_cost, self.last_price)

    def to_dict(self) -> dict:
        return {
            "asset": self.asset.to_dict(),
            "quantity": self.quantity,
            "average_cost": self.average_cost,
            "last_price": self.last_price,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Position:
        return cls(
            asset=Asset.from_dict(data["asset"]),
            quantity=data["quantity"],
            average_cost=data["average_cost"],
            last_price=data["last_price"],
        )
