from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from tradesim.core.types import Asset
from tradesim.strategy.allocation import Allocation, AllocationType
from tradesim.strategy.conditions import Condition, condition_from_dict


@dataclass
class Strategy:
    """Rules for trading one target asset.

    Buy conditions are tried in order and the first true one buys
    ``buy_amount``. Every true sell condition sells ``sell_amount`` from each
    open position in the target asset.
    """

    name: str
    target_asset: Asset
    buy_amount: Allocation = field(default_factory=lambda: Allocation(AllocationType.NUM_ASSETS, 1))
    sell_amount: Allocation = field(default_factory=lambda: Allocation(AllocationType.NUM_ASSETS, 1))
    buy_conditions: list[Condition] = field(default_factory=list)
    sell_conditions: list[Condition] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def lookback_days(self) -> int:
        return max((c.lookback_days for c in self.buy_conditions + self.sell_conditions), default=0)

    def referenced_assets(self) -> list[Asset]:
        """Target asset first, then every asset named inside the conditions."""
        seen: dict[str, Asset] = {self.target_asset.symbol: self.target_asset}
        for condition in self.buy_conditions + self.sell_conditions:
            for asset in condition.referenced_assets():
                seen.setdefault(asset.symbol, asset)
        return list(seen.values())

    def reset(self) -> None:
        for condition in self.buy_conditions + self.sell_conditions:
            condition.reset()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "target_asset": self.target_asset.to_dict(),
            "buy_amount": self.buy_amount.to_dict(),
            "sell_amount": self.sell_amount.to_dict(),
            "buy_conditions": [c.to_dict() for c in self.buy_conditions],
            "sell_conditions": [c.to_dict() for c in self.sell_conditions],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Strategy:
        return cls(
            id=data["id"],
            name=data["name"],
            target_asset=Asset.from_dict(data["target_asset"]),
            buy_amount=Allocation.from_dict(data["buy_amount"]),
            sell_amount=Allocation.from_dict(data["sell_amount"]),
            buy_conditions=[condition_from_dict(c) for c in data.get("buy_conditions", [])],
            sell_conditions=[condition_from_dict(c) for c in data.get("sell_conditions", [])],
        )
