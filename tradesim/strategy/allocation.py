"""Position sizing for strategy buy and sell amounts."""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from tradesim.core.config import TradingConfig
from tradesim.core.types import Asset, AssetType, FillPolicy, Side
from tradesim.data.snapshot import PriceSnapshot
from tradesim.portfolio.position import Position

# Headroom left for commission when a buy is capped by buying power.
BUYING_POWER_HEADROOM = 0.99


class AllocationType(str, Enum):
    PERCENT_OF_PORTFOLIO = "percent of portfolio"
    PERCENT_OF_BUYING_POWER = "percent of buying power"
    PERCENT_OF_CURRENT_POSITIONS = "percent of current positions"
    DOLLARS = "dollars"
    NUM_ASSETS = "number of assets"


@dataclass(frozen=True, slots=True)
class Allocation:
    type: AllocationType
    amount: float

    def to_dict(self) -> dict:
        return {"type": self.type.value, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: dict) -> Allocation:
        return cls(type=AllocationType(data["type"]), amount=float(data["amount"]))


def _whole_contracts(asset: Asset) -> bool:
    return asset.type in (AssetType.OPTION, AssetType.DEBIT_SPREAD)


def positions_value(positions: Iterable[Position], price_map: PriceSnapshot) -> float:
    total = 0.0
    for position in positions:
        if price_map.contains(position.symbol):
            total += position.quantity * price_map.get_position_price(position)
        else:
            total += position.market_value
    return total


def position_allocation(
    allocation_type: AllocationType,
    buying_power: float,
    positions: list[Position],
    price_map: PriceSnapshot,
) -> float:
    """How much of ``positions`` is held, measured in ``allocation_type`` units."""
    allocation_type = AllocationType(allocation_type)
    if allocation_type == AllocationType.NUM_ASSETS:
        return sum(p.quantity for p in positions)
    if allocation_type == AllocationType.PERCENT_OF_CURRENT_POSITIONS:
        return 100.0
    value = positions_value(positions, price_map)
    if allocation_type == AllocationType.DOLLARS:
        return value
    if allocation_type == AllocationType.PERCENT_OF_BUYING_POWER:
        return value / buying_power * 100 if buying_power else 0.0
    total = value + buying_power
    return value / total * 100 if total else 0.0


def number_of_units(
    allocation: Allocation,
    buying_power: float,
    positions: list[Position],
    price_map: PriceSnapshot,
    asset: Asset,
    fill_policy: FillPolicy | str,
) -> float:
    """Units an allocation asks for, before any buying-power cap."""
    cost = price_map.get_dynamic_price(asset, Side.BUY, fill_policy)
    if allocation.type == AllocationType.NUM_ASSETS:
        return allocation.amount
    if cost <= 0:
        return 0.0
    if allocation.type == AllocationType.PERCENT_OF_PORTFOLIO:
        portfolio = positions_value(positions, price_map) + buying_power
        return allocation.amount * portfolio / cost / 100
    if allocation.type == AllocationType.PERCENT_OF_CURRENT_POSITIONS:
        return allocation.amount * positions_value(positions, price_map) / cost / 100
    if allocation.type == AllocationType.PERCENT_OF_BUYING_POWER:
        return allocation.amount * buying_power / cost / 100
    return allocation.amount / cost


class Allocator:
    @staticmethod
    def quantity_to_buy(
        asset: Asset,
        price_map: PriceSnapshot,
        amount: Allocation,
        buying_power: float,
        positions: list[Position],
        config: TradingConfig,
    ) -> float:
        if buying_power <= 0:
            return 0.0
        quantity = number_of_units(amount, buying_power, positions, price_map, asset, config.fill_at)
        price = price_map.get_dynamic_price(asset, Side.BUY, config.fill_at)
        if quantity * price > buying_power:
            quantity = buying_power / price * BUYING_POWER_HEADROOM
        if _whole_contracts(asset):
            return float(math.floor(quantity))
        return quantity

    @staticmethod
    def quantity_to_sell(
        asset: Asset,
        price_map: PriceSnapshot,
        amount: Allocation,
        buying_power: float,
        positions: list[Position],
        config: TradingConfig,
    ) -> float:
        requested = number_of_units(amount, buying_power, positions, price_map, asset, config.fill_at)
        held = next((p.quantity for p in positions if p.symbol == asset.symbol), 0.0)
        quantity = min(requested, held)
        if _whole_contracts(asset):
            return float(math.floor(quantity))
        return quantity
