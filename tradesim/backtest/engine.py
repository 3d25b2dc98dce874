"""Time-stepped backtest state machine.

A Backtester owns a TimeCursor and a Ledger for one run, pulls a price
snapshot at every step, runs each strategy's buy flow then sell flow, and
records history. Runtime failures end the run in ERROR status instead of
raising, so callers that started a run in the background learn the outcome
by polling the stored document.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone

from tradesim.backtest.actions import Action, ActionData
from tradesim.backtest.store import BacktestStore
from tradesim.core.clock import TimeCursor
from tradesim.core.config import BacktestConfig, MarketHoursConfig
from tradesim.core.exceptions import DataError, NoPriceDataError, NotFoundError, ValidationError
from tradesim.core.types import Asset, AssetType, Side, Status, TimeInterval
from tradesim.data.provider import PriceHistoryProvider
from tradesim.data.snapshot import PriceSnapshot
from tradesim.data.symbol_cache import SymbolCache
from tradesim.execution.order import Order, create_mock_order
from tradesim.portfolio.ledger import Ledger
from tradesim.portfolio.statistics import Statistics
from tradesim.strategy.allocation import Allocator
from tradesim.strategy.base import Strategy
from tradesim.strategy.conditions import ConditionContext

logger = logging.getLogger(__name__)


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Backtester:
    def __init__(
        self,
        *,
        ledger: Ledger,
        provider: PriceHistoryProvider,
        start_date: date | datetime,
        end_date: date | datetime,
        interval: TimeInterval | str = TimeInterval.DAY,
        name: str = "",
        user_id: str | None = None,
        backtest_id: str | None = None,
        config: BacktestConfig | None = None,
        market_hours: MarketHoursConfig | None = None,
        store: BacktestStore | None = None,
        symbol_cache: SymbolCache | None = None,
    ) -> None:
        self.id = backtest_id or str(uuid.uuid4())
        self.user_id = user_id
        self.name = name
        self.start_date = _as_date(start_date)
        self.end_date = _as_date(end_date)
        self.current_date = self.start_date
        self.interval = TimeInterval(interval)
        self.market_hours = market_hours or MarketHoursConfig()
        self.cursor = TimeCursor(self.interval, self.market_hours)
        self.config = config or BacktestConfig()
        self.status = Status.PENDING
        self.error: str | None = None
        self.time_elapsed = 0
        self.snapshot_misses = 0
        self.ledger = ledger
        self.statistics = Statistics()
        self.successful_buy_history: list[Action] = []
        self.successful_sell_history: list[Action] = []
        self.created_at = _now()
        self.updated_at = self.created_at
        self.provider = provider
        self.store = store
        self.symbol_cache = symbol_cache

    @classmethod
    async def create(
        cls,
        *,
        ledger: Ledger,
        provider: PriceHistoryProvider,
        start_date: date | datetime,
        end_date: date | datetime,
        validate: bool = True,
        save: bool = True,
        **kwargs,
    ) -> Backtester:
        """Build a backtest, validate it against available history, and store it.

        Raises:
            ValidationError: If the date range, asset classes or price
                history are unusable.
        """
        backtest = cls(ledger=ledger, provider=provider, start_date=start_date, end_date=end_date, **kwargs)
        if validate:
            await backtest.validate()
        if save:
            await backtest.save()
        return backtest

    @property
    def current_datetime(self) -> datetime:
        return self.cursor.get_datetime(self.current_date)

    # Validation

    async def validate(self) -> None:
        if self.end_date < self.start_date:
            raise ValidationError("End date must be after start date")
        lookback = self.ledger.earliest_lookback_days()
        for strategy in self.ledger.strategies:
            for asset in strategy.referenced_assets():
                await self.validate_history(asset, lookback)

    async def validate_history(self, asset: Asset, lookback_days: int = 0) -> None:
        """Require history for ``asset`` from at least the backtest start."""
        if asset.type == AssetType.NONE:
            return
        if asset.type != AssetType.STOCK:
            raise ValidationError(f"Only stocks are supported ({asset.symbol} is {asset.type.value})")
        if self.symbol_cache is not None and not await self.symbol_cache.contains(asset.symbol):
            raise ValidationError(f"Unknown symbol: {asset.symbol}")

        start = datetime.combine(self.start_date, time()) - timedelta(days=lookback_days + 1)
        end = datetime.combine(self.end_date, self.market_hours.close_time)
        try:
            bars = await self.provider.get_market_history(asset, start, end)
        except DataError as exc:
            raise ValidationError(f"No data for {asset.symbol} on {self.start_date.isoformat()}: {exc}") from exc
        if not bars or bars[0].timestamp.date() > self.start_date:
            raise ValidationError(f"No data for {asset.symbol} on {self.start_date.isoformat()}.")

    # Simulation

    async def _fetch_snapshot(self) -> PriceSnapshot | None:
        """Snapshot for the current step, or None when the market is closed.

        Any failure counts as closed.
        """
        at = self.current_datetime
        try:
            return await self.provider.get_backtest_prices(at, self.interval)
        except NoPriceDataError:
            logger.debug("No snapshot at %s, treating market as closed", at)
        except Exception as exc:
            logger.warning("Snapshot fetch failed at %s, treating market as closed: %s", at, exc)
        return None

    async def market_is_open(self) -> bool:
        return await self._fetch_snapshot() is not None

    def _context(self, strategy: Strategy, price_map: PriceSnapshot, position=None) -> ConditionContext:
        return ConditionContext(
            strategy=strategy,
            provider=self.provider,
            price_map=price_map,
            ledger=self.ledger,
            current_time=self.current_datetime,
            position=position,
        )

    def _mock_order(self, strategy: Strategy, asset: Asset, quantity: float, price: float, side: Side) -> Order:
        return create_mock_order(
            asset,
            quantity,
            price,
            side,
            self.current_datetime,
            strategy_id=strategy.id,
            portfolio_id=self.ledger.portfolio_id,
            user_id=self.user_id,
            order_type=self.ledger.config.order_type,
        )

    def _record(self, history: list[Action], strategy: Strategy, condition, buying_power: float, order: Order) -> None:
        history.append(Action(
            date=self.current_datetime,
            data=ActionData(
                symbol=order.symbol,
                strategy_name=strategy.name,
                buying_power=buying_power,
                condition=str(condition),
                quantity=order.quantity,
                price=order.price,
                order=order,
            ),
        ))

    async def _buy_flow(self, strategy: Strategy, price_map: PriceSnapshot) -> None:
        """First true buy condition buys once; later conditions are skipped."""
        if not strategy.buy_conditions:
            return
        ledger = self.ledger
        asset = strategy.target_asset
        fill_at = ledger.config.fill_at
        price = price_map.get_dynamic_price(asset, Side.BUY, fill_at)
        quantity = Allocator.quantity_to_buy(
            asset, price_map, strategy.buy_amount, ledger.buying_power, ledger.positions, ledger.config,
        )
        floor = self.config.min_buying_power_pct * ledger.initial_value

        for condition in strategy.buy_conditions:
            if ledger.buying_power < floor or quantity <= 0:
                break
            if not await condition.is_true(self._context(strategy, price_map)):
                continue
            buying_power = ledger.buying_power
            order = self._mock_order(strategy, asset, quantity, price, Side.BUY)
            ledger.buy(order)
            self._record(self.successful_buy_history, strategy, condition, buying_power, order)
            return

    async def _sell_flow(self, strategy: Strategy, price_map: PriceSnapshot) -> None:
        """Every true (condition, position) pair sells independently."""
        ledger = self.ledger
        target = strategy.target_asset.symbol
        for condition in strategy.sell_conditions:
            for position in list(ledger.positions):
                if position.symbol != target:
                    continue
                if not await condition.is_true(self._context(strategy, price_map, position)):
                    continue
                quantity = Allocator.quantity_to_sell(
                    position.asset, price_map, strategy.sell_amount, ledger.buying_power, ledger.positions, ledger.config,
                )
                if quantity <= 0:
                    continue
                buying_power = ledger.buying_power
                price = price_map.get_dynamic_price(position.asset, Side.SELL, ledger.config.fill_at)
                order = self._mock_order(strategy, position.asset, quantity, price, Side.SELL)
                ledger.sell(order)
                self._record(self.successful_sell_history, strategy, condition, buying_power, order)

    def update_portfolio_values(self, price_map: PriceSnapshot) -> None:
        self.ledger.update_history(price_map, self.current_datetime)

    def increment_time(self) -> None:
        if self.cursor.is_eod():
            self.current_date += timedelta(days=1)
        self.cursor.next()
        self.time_elapsed += 1

    def expire_options(self) -> None:
        self.ledger.delete_expired_options(self.current_date)

    async def run(self, save_on_run: bool | None = None, generate_baseline: bool | None = None) -> None:
        """Step from the current date to the end date.

        Never raises: a failure inside the loop sets status to ERROR with
        ``error`` holding the message, and the run is saved whatever
        ``save_on_run`` says. Store failures are logged.

        Args:
            save_on_run: Save the finished run. Defaults to ``config.save_on_run``.
            generate_baseline: Build the buy-and-hold comparison series.
                Defaults to ``config.generate_baseline``.
        """
        if save_on_run is None:
            save_on_run = self.config.save_on_run
        if generate_baseline is None:
            generate_baseline = self.config.generate_baseline
        self.status = Status.RUNNING
        logger.info("Backtest %s running %s..%s (%s)", self.id, self.current_date, self.end_date, self.interval.value)
        try:
            while self.current_date < self.end_date:
                price_map = await self._fetch_snapshot()
                if price_map is None:
                    # counted so data gaps can be told apart from holidays
                    self.snapshot_misses += 1
                else:
                    for strategy in self.ledger.strategies:
                        await self._buy_flow(strategy, price_map)
                        await self._sell_flow(strategy, price_map)
                    self.update_portfolio_values(price_map)
                self.increment_time()
                self.expire_options()

            ledger = self.ledger
            self.statistics = Statistics.calculate(
                ledger.calculate_value(),
                ledger.initial_value,
                [p.value for p in ledger.value_history],
                [p.value for p in ledger.delta_value_history],
            )
            if generate_baseline:
                await ledger.generate_baseline_comparison(
                    self.provider, self.interval, Asset(self.config.baseline_symbol),
                )
            self.status = Status.COMPLETE
        except Exception as exc:
            logger.exception("Backtest %s failed after %d steps", self.id, self.time_elapsed)
            self.status = Status.ERROR
            self.error = str(exc)
            await self._save_logged()
            return

        logger.info(
            "Backtest %s complete: %.2f%% change, %d buys, %d sells, %d snapshot misses",
            self.id,
            self.statistics.percent_change,
            len(self.successful_buy_history),
            len(self.successful_sell_history),
            self.snapshot_misses,
        )
        if save_on_run:
            await self._save_logged()

    def restart(self) -> None:
        """Return to the start date with a fresh ledger, ready to run again."""
        self.current_date = self.start_date
        self.cursor.reset()
        self.time_elapsed = 0
        self.snapshot_misses = 0
        self.error = None
        self.status = Status.RUNNING
        self.statistics = Statistics()
        self.successful_buy_history = []
        self.successful_sell_history = []
        self.ledger.reset()
        for strategy in self.ledger.strategies:
            strategy.reset()

    # Results

    def get_actions(self) -> list[Action]:
        """Buys and sells merged in fill order; buys first within a step."""
        return sorted(self.successful_buy_history + self.successful_sell_history, key=lambda a: a.filled_at)

    def get_orders(self) -> list[Order]:
        return [a.data.order for a in self.get_actions()]

    # Persistence

    def to_document(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "current_date": self.current_date.isoformat(),
            "interval": self.interval.value,
            "cursor": self.cursor.to_dict(),
            "status": self.status.value,
            "error": self.error,
            "time_elapsed": self.time_elapsed,
            "snapshot_misses": self.snapshot_misses,
            "config": self.config.model_dump(mode="json"),
            "ledger": self.ledger.to_dict(),
            "statistics": self.statistics.to_dict(),
            "successful_buy_history": [a.to_dict() for a in self.successful_buy_history],
            "successful_sell_history": [a.to_dict() for a in self.successful_sell_history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_document(
        cls,
        document: dict,
        provider: PriceHistoryProvider,
        *,
        store: BacktestStore | None = None,
        market_hours: MarketHoursConfig | None = None,
        symbol_cache: SymbolCache | None = None,
    ) -> Backtester:
        backtest = cls(
            ledger=Ledger.from_dict(document["ledger"]),
            provider=provider,
            start_date=date.fromisoformat(document["start_date"]),
            end_date=date.fromisoformat(document["end_date"]),
            interval=document["interval"],
            name=document.get("name", ""),
            user_id=document.get("user_id"),
            backtest_id=document["id"],
            config=BacktestConfig.model_validate(document.get("config", {})),
            market_hours=market_hours,
            store=store,
            symbol_cache=symbol_cache,
        )
        backtest.current_date = date.fromisoformat(document["current_date"])
        backtest.cursor = TimeCursor.from_dict(document["cursor"], backtest.market_hours)
        backtest.status = Status(document["status"])
        backtest.error = document.get("error")
        backtest.time_elapsed = document.get("time_elapsed", 0)
        backtest.snapshot_misses = document.get("snapshot_misses", 0)
        backtest.statistics = Statistics.from_dict(document.get("statistics", {}))
        backtest.successful_buy_history = [Action.from_dict(a) for a in document.get("successful_buy_history", [])]
        backtest.successful_sell_history = [Action.from_dict(a) for a in document.get("successful_sell_history", [])]
        backtest.created_at = datetime.fromisoformat(document["created_at"])
        backtest.updated_at = datetime.fromisoformat(document["updated_at"])
        return backtest

    async def save(self) -> None:
        if self.store is None:
            return
        self.updated_at = _now()
        await self.store.save(self.to_document())

    async def _save_logged(self) -> None:
        try:
            await self.save()
        except Exception:
            logger.exception("Failed to save backtest %s (status %s)", self.id, self.status.value)

    @classmethod
    async def find_one(
        cls,
        store: BacktestStore,
        backtest_id: str,
        user_id: str | None,
        provider: PriceHistoryProvider,
        **kwargs,
    ) -> Backtester:
        document = await store.find_one(backtest_id, user_id)
        if document is None:
            raise NotFoundError(backtest_id)
        return cls.from_document(document, provider, store=store, **kwargs)

    @classmethod
    async def find_one_and_run(
        cls,
        store: BacktestStore,
        backtest_id: str,
        user_id: str | None,
        provider: PriceHistoryProvider,
        **kwargs,
    ) -> Backtester:
        """Reload a stored run, re-validate against ``provider``, reset it and run it again."""
        backtest = await cls.find_one(store, backtest_id, user_id, provider, **kwargs)
        await backtest.validate()
        backtest.restart()
        await backtest.save()
        await backtest.run(save_on_run=True)
        return backtest

    @staticmethod
    async def find_summaries(
        store: BacktestStore,
        portfolio_id: str | None = None,
        user_id: str | None = None,
        limit: int = 50,
    ) -> list[dict]:
        return await store.find_summaries(portfolio_id, user_id, limit)
