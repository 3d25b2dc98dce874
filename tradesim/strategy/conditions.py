"""Buy and sell rules evaluated by the backtest engine.

Every rule implements ``async is_true(ctx)``. Compound rules (AND, OR,
THEN) evaluate their children through the same call. Rules round-trip
through plain dicts tagged with ``type`` so whole strategies can be stored
inside a backtest document.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, ClassVar

from tradesim.core.clock import Duration
from tradesim.core.exceptions import ConditionError, DataError
from tradesim.core.types import Asset, Comparator, Side
from tradesim.data.provider import PriceHistoryProvider
from tradesim.data.snapshot import PriceSnapshot
from tradesim.portfolio.position import Position
from tradesim.strategy.allocation import Allocation, AllocationType, position_allocation, positions_value

if TYPE_CHECKING:
    from tradesim.portfolio.ledger import Ledger
    from tradesim.strategy.base import Strategy

logger = logging.getLogger(__name__)

_CONDITION_TYPES: dict[str, type[Condition]] = {}


@dataclass(slots=True)
class ConditionContext:
    strategy: Strategy
    provider: PriceHistoryProvider
    price_map: PriceSnapshot
    ledger: Ledger
    current_time: datetime
    position: Position | None = None


class Condition(ABC):
    type_name: ClassVar[str]

    @abstractmethod
    async def is_true(self, ctx: ConditionContext) -> bool: ...

    @abstractmethod
    def to_dict(self) -> dict: ...

    @classmethod
    @abstractmethod
    def from_dict(cls, data: dict) -> Condition: ...

    @property
    def lookback_days(self) -> int:
        """Calendar days of history needed before the first evaluation."""
        return 0

    def referenced_assets(self) -> list[Asset]:
        return []

    def reset(self) -> None:
        """Clear any progress carried between evaluations."""

    def __str__(self) -> str:
        return f"Condition: {self.type_name}"


def register_condition(cls: type[Condition]) -> type[Condition]:
    if cls.type_name in _CONDITION_TYPES:
        raise ValueError(f"Condition already registered: {cls.type_name}")
    _CONDITION_TYPES[cls.type_name] = cls
    return cls


def condition_from_dict(data: dict) -> Condition:
    type_name = data.get("type")
    cls = _CONDITION_TYPES.get(type_name)
    if cls is None:
        raise ConditionError(f"Unknown condition type: {type_name!r}")
    return cls.from_dict(data)


def _asset_or_none(data: dict | None) -> Asset | None:
    return Asset.from_dict(data) if data else None


def _target(condition_asset: Asset | None, ctx: ConditionContext) -> Asset:
    return condition_asset or ctx.strategy.target_asset


@register_condition
class SimplePriceCondition(Condition):
    """Compare a field of the current quote against a fixed price."""

    type_name = "SimplePriceCondition"

    def __init__(
        self,
        target_price: float,
        comparator: Comparator | str,
        target_asset: Asset | None = None,
        field: str = "mid",
    ) -> None:
        self.target_price = target_price
        self.comparator = Comparator(comparator)
        self.target_asset = target_asset
        self.field = field

    async def is_true(self, ctx: ConditionContext) -> bool:
        asset = _target(self.target_asset, ctx)
        try:
            quote = ctx.price_map.get_quote(asset.symbol)
        except DataError as exc:
            raise ConditionError(str(exc)) from exc
        return self.comparator.compare(getattr(quote, self.field), self.target_price)

    def referenced_assets(self) -> list[Asset]:
        return [self.target_asset] if self.target_asset else []

    def to_dict(self) -> dict:
        return {
            "type": self.type_name,
            "target_price": self.target_price,
            "comparator": self.comparator.value,
            "target_asset": self.target_asset.to_dict() if self.target_asset else None,
            "field": self.field,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SimplePriceCondition:
        return cls(
            target_price=data["target_price"],
            comparator=data["comparator"],
            target_asset=_asset_or_none(data.get("target_asset")),
            field=data.get("field", "mid"),
        )

    def __str__(self) -> str:
        return f"Condition: {self.type_name} ({self.field} {self.comparator.value} {self.target_price})"


@register_condition
class MovingAverageCondition(Condition):
    """Compare the current mid against the simple average of recent closes."""

    type_name = "MovingAverageCondition"

    def __init__(self, period: int, comparator: Comparator | str, target_asset: Asset | None = None) -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        self.period = period
        self.comparator = Comparator(comparator)
        self.target_asset = target_asset

    @property
    def lookback_days(self) -> int:
        # Weekends and holidays: two calendar days per trading day.
        return self.period * 2

    async def is_true(self, ctx: ConditionContext) -> bool:
        asset = _target(self.target_asset, ctx)
        start = ctx.current_time - timedelta(days=self.lookback_days)
        bars = await ctx.provider.get_market_history(asset, start, ctx.current_time)
        if len(bars) < self.period:
            return False
        average = sum(b.close for b in bars[-self.period:]) / self.period
        return self.comparator.compare(ctx.price_map.get_quote(asset.symbol).mid, average)

    def referenced_assets(self) -> list[Asset]:
        return [self.target_asset] if self.target_asset else []

    def to_dict(self) -> dict:
        return {
            "type": self.type_name,
            "period": self.period,
            "comparator": self.comparator.value,
            "target_asset": self.target_asset.to_dict() if self.target_asset else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> MovingAverageCondition:
        return cls(
            period=int(data["period"]),
            comparator=data["comparator"],
            target_asset=_asset_or_none(data.get("target_asset")),
        )


@register_condition
class PositionPercentChangeCondition(Condition):
    """Compare the evaluated position's unrealized percent gain to a threshold."""

    type_name = "PositionPercentChangeCondition"

    def __init__(self, percent: float, comparator: Comparator | str) -> None:
        self.percent = percent
        self.comparator = Comparator(comparator)

    async def is_true(self, ctx: ConditionContext) -> bool:
        position = ctx.position
        if position is None or not position.average_cost:
            return False
        if ctx.price_map.contains(position.symbol):
            price = ctx.price_map.get_position_price(position, ctx.ledger.config.fill_at)
        else:
            price = position.last_price
        change = (price - position.average_cost) / position.average_cost * 100
        return self.comparator.compare(change, self.percent)

    def to_dict(self) -> dict:
        return {"type": self.type_name, "percent": self.percent, "comparator": self.comparator.value}

    @classmethod
    def from_dict(cls, data: dict) -> PositionPercentChangeCondition:
        return cls(percent=data["percent"], comparator=data["comparator"])


def _comparator_dict(condition: Condition, **fields) -> dict:
    return {"type": condition.type_name, **fields, "comparator": condition.comparator.value}


@register_condition
class HavePositionCondition(Condition):
    """Compare how much of some assets the ledger holds against an allocation.

    With no target assets every open position counts.
    """

    type_name = "HavePositionCondition"

    def __init__(
        self,
        allocation: Allocation,
        comparator: Comparator | str,
        target_assets: list[Asset] | None = None,
    ) -> None:
        self.allocation = allocation
        self.comparator = Comparator(comparator)
        self.target_assets = list(target_assets or [])

    @classmethod
    def has_none(cls, assets: list[Asset] | None = None) -> HavePositionCondition:
        return cls(Allocation(AllocationType.NUM_ASSETS, 0), Comparator.EQUAL_TO, assets)

    @classmethod
    def has_some(cls, assets: list[Asset] | None = None) -> HavePositionCondition:
        return cls(Allocation(AllocationType.NUM_ASSETS, 0), Comparator.GREATER_THAN, assets)

    async def is_true(self, ctx: ConditionContext) -> bool:
        positions = ctx.ledger.positions
        if self.target_assets:
            symbols = {a.symbol for a in self.target_assets}
            positions = [p for p in positions if p.symbol in symbols]
        held = position_allocation(self.allocation.type, ctx.ledger.buying_power, positions, ctx.price_map)
        return self.comparator.compare(held, self.allocation.amount)

    def to_dict(self) -> dict:
        return {
            "type": self.type_name,
            "allocation": self.allocation.to_dict(),
            "comparator": self.comparator.value,
            "target_assets": [a.to_dict() for a in self.target_assets],
        }

    @classmethod
    def from_dict(cls, data: dict) -> HavePositionCondition:
        return cls(
            allocation=Allocation.from_dict(data["allocation"]),
            comparator=data["comparator"],
            target_assets=[Asset.from_dict(a) for a in data.get("target_assets", [])],
        )

    def __str__(self) -> str:
        symbols = ", ".join(a.symbol for a in self.target_assets) or "any asset"
        return (
            f"Condition: {self.type_name} ({self.comparator.value} {self.allocation.amount} "
            f"{self.allocation.type.value} of {symbols})"
        )


@register_condition
class BuyingPowerIsCondition(Condition):
    type_name = "BuyingPowerIsCondition"

    def __init__(self, amount: float, comparator: Comparator | str = Comparator.EQUAL_TO) -> None:
        self.amount = amount
        self.comparator = Comparator(comparator)

    async def is_true(self, ctx: ConditionContext) -> bool:
        return self.comparator.compare(ctx.ledger.buying_power, self.amount)

    def to_dict(self) -> dict:
        return _comparator_dict(self, amount=self.amount)

    @classmethod
    def from_dict(cls, data: dict) -> BuyingPowerIsCondition:
        return cls(amount=data["amount"], comparator=data["comparator"])


@register_condition
class PortfolioValueIsCondition(Condition):
    """Compare cash plus marked positions against a dollar amount."""

    type_name = "PortfolioValueIsCondition"

    def __init__(self, amount: float, comparator: Comparator | str = Comparator.EQUAL_TO) -> None:
        self.amount = amount
        self.comparator = Comparator(comparator)

    async def is_true(self, ctx: ConditionContext) -> bool:
        return self.comparator.compare(ctx.ledger.calculate_value(ctx.price_map), self.amount)

    def to_dict(self) -> dict:
        return _comparator_dict(self, amount=self.amount)

    @classmethod
    def from_dict(cls, data: dict) -> PortfolioValueIsCondition:
        return cls(amount=data["amount"], comparator=data["comparator"])


@register_condition
class PositionValueIsCondition(Condition):
    """Compare the marked value of all open positions against a dollar amount."""

    type_name = "PositionValueIsCondition"

    def __init__(self, amount: float, comparator: Comparator | str = Comparator.EQUAL_TO) -> None:
        self.amount = amount
        self.comparator = Comparator(comparator)

    async def is_true(self, ctx: ConditionContext) -> bool:
        return self.comparator.compare(positions_value(ctx.ledger.positions, ctx.price_map), self.amount)

    def to_dict(self) -> dict:
        return _comparator_dict(self, amount=self.amount)

    @classmethod
    def from_dict(cls, data: dict) -> PositionValueIsCondition:
        return cls(amount=data["amount"], comparator=data["comparator"])


@register_condition
class PortfolioIsProfitableCondition(Condition):
    """True when the portfolio is worth more than its initial value plus ``percent_profit``."""

    type_name = "PortfolioIsProfitableCondition"

    def __init__(self, percent_profit: float = 0.0) -> None:
        self.percent_profit = percent_profit

    async def is_true(self, ctx: ConditionContext) -> bool:
        initial = ctx.ledger.initial_value
        return ctx.ledger.calculate_value(ctx.price_map) > initial + self.percent_profit / 100 * initial

    def to_dict(self) -> dict:
        return {"type": self.type_name, "percent_profit": self.percent_profit}

    @classmethod
    def from_dict(cls, data: dict) -> PortfolioIsProfitableCondition:
        return cls(percent_profit=data.get("percent_profit", 0.0))


@register_condition
class PositionIsShortCondition(Condition):
    """True for a position that was sold to open."""

    type_name = "PositionIsShortCondition"

    async def is_true(self, ctx: ConditionContext) -> bool:
        return ctx.position is not None and ctx.position.quantity < 0

    def to_dict(self) -> dict:
        return {"type": self.type_name}

    @classmethod
    def from_dict(cls, data: dict) -> PositionIsShortCondition:
        return cls()


@register_condition
class EnoughTimePassedCondition(Condition):
    """True once ``duration`` has passed since the ledger's last buy or sell.

    A ledger that never traded on ``side`` always qualifies.
    """

    type_name = "EnoughTimePassedCondition"

    def __init__(self, side: Side | str, duration: Duration) -> None:
        self.side = Side(side)
        self.duration = duration

    async def is_true(self, ctx: ConditionContext) -> bool:
        if self.side == Side.BUY:
            last = ctx.ledger.last_purchase_at
        else:
            last = ctx.ledger.last_sale_at
        if last is None:
            return True
        return self.duration.add_to(last) <= ctx.current_time

    def to_dict(self) -> dict:
        return {"type": self.type_name, "side": self.side.value, "duration": self.duration.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> EnoughTimePassedCondition:
        return cls(side=data["side"], duration=Duration.from_dict(data["duration"]))

    def __str__(self) -> str:
        duration = self.duration.to_dict()
        return f"Condition: {self.type_name} ({duration['number']} {duration['unit']} since last {self.side.value})"


class CompoundCondition(Condition):
    def __init__(self, conditions: list[Condition]) -> None:
        self.conditions = list(conditions)

    @property
    def lookback_days(self) -> int:
        return max((c.lookback_days for c in self.conditions), default=0)

    def referenced_assets(self) -> list[Asset]:
        seen: dict[str, Asset] = {}
        for condition in self.conditions:
            for asset in condition.referenced_assets():
                seen.setdefault(asset.symbol, asset)
        return list(seen.values())

    def reset(self) -> None:
        for condition in self.conditions:
            condition.reset()

    def to_dict(self) -> dict:
        return {"type": self.type_name, "conditions": [c.to_dict() for c in self.conditions]}

    @classmethod
    def from_dict(cls, data: dict) -> CompoundCondition:
        return cls([condition_from_dict(c) for c in data.get("conditions", [])])

    def __str__(self) -> str:
        children = "".join(f"\n  - {c}" for c in self.conditions)
        return f"Condition: {self.type_name}:{children}"


@register_condition
class AndCondition(CompoundCondition):
    type_name = "AndCondition"

    async def is_true(self, ctx: ConditionContext) -> bool:
        for condition in self.conditions:
            if not await condition.is_true(ctx):
                return False
        return True


@register_condition
class OrCondition(CompoundCondition):
    type_name = "OrCondition"

    async def is_true(self, ctx: ConditionContext) -> bool:
        for condition in self.conditions:
            if await condition.is_true(ctx):
                return True
        return False


@register_condition
class ThenCondition(CompoundCondition):
    """Children must become true in order, possibly across several steps.

    ``history`` holds the time each child first held. With a duration, the
    sequence starts over once that long has passed since the first trigger.
    """

    type_name = "ThenCondition"

    def __init__(
        self,
        conditions: list[Condition],
        duration: Duration | None = None,
        history: list[datetime] | None = None,
    ) -> None:
        super().__init__(conditions)
        self.duration = duration
        self.history: list[datetime] = list(history or [])

    def is_expired(self, current_time: datetime) -> bool:
        if self.duration is None or not self.history:
            return False
        return current_time >= self.duration.add_to(self.history[0])

    async def is_true(self, ctx: ConditionContext) -> bool:
        if self.is_expired(ctx.current_time):
            logger.debug("%s expired at %s, restarting sequence", self.type_name, ctx.current_time)
            self.history = []
        for condition in self.conditions[len(self.history):]:
            if not await condition.is_true(ctx):
                return False
            self.history.append(ctx.current_time)
        return True

    def reset(self) -> None:
        super().reset()
        self.history = []

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["duration"] = self.duration.to_dict() if self.duration else None
        data["history"] = [t.isoformat() for t in self.history]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ThenCondition:
        duration = data.get("duration")
        return cls(
            conditions=[condition_from_dict(c) for c in data.get("conditions", [])],
            duration=Duration.from_dict(duration) if duration else None,
            history=[datetime.fromisoformat(t) for t in data.get("history", [])],
        )
