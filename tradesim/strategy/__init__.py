from tradesim.strategy.allocation import Allocation, AllocationType, Allocator
from tradesim.strategy.base import Strategy
from tradesim.strategy.conditions import (
    AndCondition,
    BuyingPowerIsCondition,
    Condition,
    ConditionContext,
    EnoughTimePassedCondition,
    HavePositionCondition,
    MovingAverageCondition,
    OrCondition,
    PortfolioIsProfitableCondition,
    PortfolioValueIsCondition,
    PositionIsShortCondition,
    PositionPercentChangeCondition,
    PositionValueIsCondition,
    SimplePriceCondition,
    ThenCondition,
    condition_from_dict,
    register_condition,
)

__all__ = [
    "Allocation",
    "AllocationType",
    "Allocator",
    "Strategy",
    "Condition",
    "ConditionContext",
    "SimplePriceCondition",
    "MovingAverageCondition",
    "PositionPercentChangeCondition",
    "HavePositionCondition",
    "BuyingPowerIsCondition",
    "PortfolioValueIsCondition",
    "PositionValueIsCondition",
    "PortfolioIsProfitableCondition",
    "PositionIsShortCondition",
    "EnoughTimePassedCondition",
    "AndCondition",
    "OrCondition",
    "ThenCondition",
    "condition_from_dict",
    "register_condition",
]
