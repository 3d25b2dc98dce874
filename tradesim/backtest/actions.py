from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from tradesim.execution.order import Order


@dataclass(frozen=True, slots=True)
class ActionData:
    symbol: str
    strategy_name: str
    buying_power: float
    condition: str
    quantity: float
    price: float
    order: Order

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "strategy_name": self.strategy_name,
            "buying_power": self.buying_power,
            "condition": self.condition,
            "quantity": self.quantity,
            "price": self.price,
            "order": self.order.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ActionData:
        return cls(
            symbol=data["symbol"],
            strategy_name=data["strategy_name"],
            buying_power=data["buying_power"],
            condition=data["condition"],
            quantity=data["quantity"],
            price=data["price"],
            order=Order.from_dict(data["order"]),
        )


@dataclass(frozen=True, slots=True)
class Action:
    """A successful buy or sell, as recorded by the engine."""

    date: datetime
    data: ActionData

    @property
    def filled_at(self) -> datetime:
        return self.data.order.filled_at

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), "data": self.data.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> Action:
        return cls(date=datetime.fromisoformat(data["date"]), data=ActionData.from_dict(data["data"]))
