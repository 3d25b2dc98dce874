"""Simulated cash-and-positions account driven by a backtest."""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime

from tradesim.core.config import TradingConfig
from tradesim.core.exceptions import DataError, NoPriceDataError
from tradesim.core.money import round_cents
from tradesim.core.types import Asset, AssetType, Side, TimeInterval
from tradesim.data.provider import PriceHistoryProvider
from tradesim.data.snapshot import PriceSnapshot
from tradesim.execution.order import Order, create_mock_order
from tradesim.portfolio.position import Position
from tradesim.strategy.base import Strategy

logger = logging.getLogger(__name__)

BASELINE_SHARE_DECIMALS = 5


@dataclass(frozen=True, slots=True)
class HistoryPoint:
    timestamp: datetime
    value: float

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp.isoformat(), "value": self.value}

    @classmethod
    def from_dict(cls, data: dict) -> HistoryPoint:
        return cls(datetime.fromisoformat(data["timestamp"]), data["value"])


@dataclass(frozen=True, slots=True)
class PositionsPoint:
    timestamp: datetime
    positions: tuple[Position, ...]

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp.isoformat(), "positions": [p.to_dict() for p in self.positions]}

    @classmethod
    def from_dict(cls, data: dict) -> PositionsPoint:
        return cls(
            datetime.fromisoformat(data["timestamp"]),
            tuple(Position.from_dict(p) for p in data["positions"]),
        )


class Ledger:
    """Cash, positions and per-step history for one simulated run.

    ``buy`` and ``sell`` apply fills unconditionally; checking that there is
    enough buying power is the caller's job. History is recorded as value
    copies so the three series never alias live positions.
    """

    def __init__(
        self,
        initial_value: float,
        strategies: list[Strategy] | None = None,
        config: TradingConfig | None = None,
        *,
        portfolio_id: str | None = None,
        user_id: str | None = None,
        name: str = "",
        rng: random.Random | None = None,
    ) -> None:
        self.portfolio_id = portfolio_id
        self.user_id = user_id
        self.name = name
        self.initial_value = initial_value
        self.strategies: list[Strategy] = list(strategies or [])
        self.config = config or TradingConfig()
        self._rng = rng or random.Random()
        self.buying_power = initial_value
        self.commission_paid = 0.0
        self.positions: list[Position] = []
        self.value_history: list[HistoryPoint] = []
        self.delta_value_history: list[HistoryPoint] = []
        self.position_history: list[PositionsPoint] = []
        self.comparison_history: list[HistoryPoint] = []
        self.last_purchase_at: datetime | None = None
        self.last_sale_at: datetime | None = None

    def reset(self) -> None:
        self.buying_power = self.initial_value
        self.commission_paid = 0.0
        self.positions = []
        self.value_history = []
        self.delta_value_history = []
        self.position_history = []
        self.comparison_history = []
        self.last_purchase_at = None
        self.last_sale_at = None

    def get_position(self, symbol: str) -> Position | None:
        return next((p for p in self.positions if p.symbol == symbol), None)

    def earliest_lookback_days(self) -> int:
        return max((s.lookback_days for s in self.strategies), default=0)

    def calculate_commission(self, order: Order) -> float:
        rate = self.config.commission.rate_for(order.asset.type)
        if rate.type == "dollars":
            commission = rate.val
        else:
            commission = order.quantity * order.price * rate.val
        if self.config.commission_jitter:
            commission *= self._rng.uniform(0.5, 2.0)
        return commission

    def _apply(self, order: Order, signed_quantity: float) -> None:
        position = self.get_position(order.symbol)
        if position is None:
            position = Position(order.asset, 0.0, 0.0, order.price)
            self.positions.append(position)
        position.apply_fill(signed_quantity, order.price)
        if position.quantity == 0:
            self.positions.remove(position)

        commission = self.calculate_commission(order)
        self.buying_power -= commission
        self.commission_paid += commission

    def buy(self, order: Order) -> None:
        self.buying_power -= order.notional
        self._apply(order, order.quantity)
        self.last_purchase_at = order.filled_at
        logger.debug("BUY %s x%s @ %.2f, cash %.2f", order.symbol, order.quantity, order.price, self.buying_power)

    def sell(self, order: Order) -> None:
        self.buying_power += order.notional
        self._apply(order, -order.quantity)
        self.last_sale_at = order.filled_at
        logger.debug("SELL %s x%s @ %.2f, cash %.2f", order.symbol, order.quantity, order.price, self.buying_power)

    # Valuation and history

    def _mark(self, position: Position, price_map: PriceSnapshot | None) -> float:
        if price_map is not None and price_map.contains(position.symbol):
            return price_map.get_position_price(position, self.config.fill_at)
        return position.last_price

    def calculate_value(self, price_map: PriceSnapshot | None = None) -> float:
        """Cash plus marked positions, rounded half-up to the cent.

        Positions missing from ``price_map`` (or all of them, without one)
        are marked at their last observed price.
        """
        total = self.buying_power
        for position in self.positions:
            total += position.quantity * self._mark(position, price_map)
        return round_cents(total)

    def refresh_prices(self, price_map: PriceSnapshot) -> None:
        for position in self.positions:
            position.last_price = self._mark(position, price_map)

    def update_history(self, price_map: PriceSnapshot, at: datetime) -> float:
        """Record one aligned entry in each history series. Call once per step."""
        self.refresh_prices(price_map)
        value = self.calculate_value()
        previous = self.value_history[-1].value if self.value_history else self.initial_value
        self.value_history.append(HistoryPoint(at, value))
        self.delta_value_history.append(HistoryPoint(at, round_cents(value - previous)))
        self.position_history.append(PositionsPoint(at, tuple(p.copy() for p in self.positions)))
        return value

    async def generate_baseline_comparison(
        self,
        provider: PriceHistoryProvider,
        interval: TimeInterval | str,
        comparison_asset: Asset,
    ) -> list[HistoryPoint]:
        """Buy-and-hold series for ``comparison_asset`` aligned with value_history.

        The initial value buys the asset at the first recorded step, net of
        one commission. Steps without a quote carry the previous price.
        """
        if not self.value_history:
            return []

        first = self.value_history[0].timestamp
        last = self.value_history[-1].timestamp
        bars = await provider.get_market_history(comparison_asset, first, last)

        prices: list[float] = []
        for point in self.value_history:
            try:
                quote = await provider.get_quote(comparison_asset.symbol, point.timestamp, interval)
                prices.append(quote.mid)
            except NoPriceDataError:
                if prices:
                    prices.append(prices[-1])
                elif bars:
                    prices.append(bars[0].open)
                else:
                    raise DataError(f"No baseline prices for {comparison_asset.symbol}") from None

        entry = prices[0]
        shares = round(self.initial_value / entry, BASELINE_SHARE_DECIMALS)
        purchase = create_mock_order(comparison_asset, shares, entry, Side.BUY, first)
        cash = self.initial_value - shares * entry - self.calculate_commission(purchase)

        self.comparison_history = [
            HistoryPoint(point.timestamp, round_cents(shares * price + cash))
            for point, price in zip(self.value_history, prices)
        ]
        return self.comparison_history

    def delete_expired_options(self, current: date | datetime) -> list[Position]:
        if isinstance(current, datetime):
            current = current.date()
        expired = [p for p in self.positions if p.type == AssetType.OPTION and p.asset.is_expired(current)]
        for position in expired:
            self.positions.remove(position)
            logger.info("Removed expired option %s", position.symbol)
        return expired

    # Persistence

    def to_dict(self) -> dict:
        return {
            "portfolio_id": self.portfolio_id,
            "user_id": self.user_id,
            "name": self.name,
            "initial_value": self.initial_value,
            "buying_power": self.buying_power,
            "commission_paid": self.commission_paid,
            "config": self.config.model_dump(mode="json"),
            "strategies": [s.to_dict() for s in self.strategies],
            "positions": [p.to_dict() for p in self.positions],
            "value_history": [h.to_dict() for h in self.value_history],
            "delta_value_history": [h.to_dict() for h in self.delta_value_history],
            "position_history": [h.to_dict() for h in self.position_history],
            "comparison_history": [h.to_dict() for h in self.comparison_history],
            "last_purchase_at": self.last_purchase_at.isoformat() if self.last_purchase_at else None,
            "last_sale_at": self.last_sale_at.isoformat() if self.last_sale_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict, rng: random.Random | None = None) -> Ledger:
        ledger = cls(
            initial_value=data["initial_value"],
            strategies=[Strategy.from_dict(s) for s in data.get("strategies", [])],
            config=TradingConfig.model_validate(data.get("config", {})),
            portfolio_id=data.get("portfolio_id"),
            user_id=data.get("user_id"),
            name=data.get("name", ""),
            rng=rng,
        )
        ledger.buying_power = data.get("buying_power", ledger.initial_value)
        ledger.commission_paid = data.get("commission_paid", 0.0)
        ledger.positions = [Position.from_dict(p) for p in data.get("positions", [])]
        ledger.value_history = [HistoryPoint.from_dict(h) for h in data.get("value_history", [])]
        ledger.delta_value_history = [HistoryPoint.from_dict(h) for h in data.get("delta_value_history", [])]
        ledger.position_history = [PositionsPoint.from_dict(h) for h in data.get("position_history", [])]
        ledger.comparison_history = [HistoryPoint.from_dict(h) for h in data.get("comparison_history", [])]
        if data.get("last_purchase_at"):
            ledger.last_purchase_at = datetime.fromisoformat(data["last_purchase_at"])
        if data.get("last_sale_at"):
            ledger.last_sale_at = datetime.fromisoformat(data["last_sale_at"])
        return ledger
