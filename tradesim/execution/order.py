from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from tradesim.core.types import Asset, OrderStatus, OrderType, Side


def _order_id() -> str:
    return f"BACKTEST-{uuid.uuid4()}"


@dataclass(frozen=True, slots=True)
class Order:
    """Log record of one simulated fill. Never changed after creation."""

    asset: Asset
    quantity: float
    price: float
    side: Side
    filled_at: datetime
    strategy_id: str | None = None
    portfolio_id: str | None = None
    user_id: str | None = None
    type: OrderType = OrderType.MARKET
    status: OrderStatus = OrderStatus.FILLED
    order_id: str = field(default_factory=_order_id)

    @property
    def symbol(self) -> str:
        return self.asset.symbol

    @property
    def notional(self) -> float:
        return self.quantity * self.price

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "asset": self.asset.to_dict(),
            "quantity": self.quantity,
            "price": self.price,
            "side": self.side.value,
            "filled_at": self.filled_at.isoformat(),
            "strategy_id": self.strategy_id,
            "portfolio_id": self.portfolio_id,
            "user_id": self.user_id,
            "type": self.type.value,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Order:
        return cls(
            asset=Asset.from_dict(data["asset"]),
            quantity=data["quantity"],
            price=data["price"],
            side=Side(data["side"]),
            filled_at=datetime.fromisoformat(data["filled_at"]),
            strategy_id=data.get("strategy_id"),
            portfolio_id=data.get("portfolio_id"),
            user_id=data.get("user_id"),
            type=OrderType(data.get("type", OrderType.MARKET.value)),
            status=OrderStatus(data.get("status", OrderStatus.FILLED.value)),
            order_id=data["order_id"],
        )


def create_mock_order(
    asset: Asset,
    quantity: float,
    price: float,
    side: Side | str,
    filled_at: datetime,
    *,
    strategy_id: str | None = None,
    portfolio_id: str | None = None,
    user_id: str | None = None,
    order_type: OrderType | str = OrderType.MARKET,
) -> Order:
    """Build an already-filled order for the simulated ledger."""
    return Order(
        asset=asset,
        quantity=quantity,
        price=price,
        side=Side(side),
        filled_at=filled_at,
        strategy_id=strategy_id,
        portfolio_id=portfolio_id,
        user_id=user_id,
        type=OrderType(order_type),
    )
