import asyncio
import random
from datetime import date

import pytest

from tradesim.backtest.engine import Backtester
from tradesim.backtest.runner import BacktestRunner, run_perturbed
from tradesim.backtest.store import BacktestStore
from tradesim.core.config import RunnerConfig, SyntheticDataConfig
from tradesim.core.exceptions import NotFoundError, SyntheticDataError
from tradesim.core.types import Asset, Comparator, Status
from tradesim.data.provider import CachedHistoryProvider
from tradesim.data.sources import InMemorySource
from tradesim.portfolio.ledger import Ledger
from tradesim.portfolio.statistics import Statistics
from tradesim.strategy.allocation import Allocation, AllocationType
from tradesim.strategy.base import Strategy
from tradesim.strategy.conditions import SimplePriceCondition

START = date(2024, 1, 8)
END = date(2024, 1, 13)
RISING = [100.0, 102.5, 105.0, 107.5, 110.0]


def _ledger(zero_commission):
    strategy = Strategy(
        name="dip",
        target_asset=Asset("SPY"),
        buy_amount=Allocation(AllocationType.NUM_ASSETS, 10),
        buy_conditions=[SimplePriceCondition(101, Comparator.LESS_THAN)],
    )
    return Ledger(10_000.0, [strategy], zero_commission, portfolio_id="pf-1", user_id="user-1")


@pytest.fixture
async def store(tmp_path):
    s = BacktestStore(str(tmp_path / "backtests.db"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def source(make_bars):
    src = InMemorySource()
    src.add_bars(make_bars("SPY", RISING))
    return src


@pytest.fixture
def runner(store, source):
    return BacktestRunner(store, lambda: CachedHistoryProvider(source), max_concurrent=2)


async def _stored(store, source, zero_commission):
    backtest = await Backtester.create(
        ledger=_ledger(zero_commission),
        provider=CachedHistoryProvider(source),
        start_date=START,
        end_date=END,
        user_id="user-1",
        store=store,
    )
    return backtest.id


class TestBacktestRunner:
    async def test_runs_stored_backtests(self, runner, store, source, zero_commission):
        """Submitted runs complete and their stored status is readable."""
        ids = [await _stored(store, source, zero_commission) for _ in range(3)]
        for backtest_id in ids:
            runner.submit(backtest_id, "user-1")
        results = await runner.wait()

        assert all(isinstance(r, Backtester) for r in results)
        for backtest_id in ids:
            assert await runner.poll(backtest_id, "user-1") == Status.COMPLETE
        assert runner.active == []

    async def test_task_result(self, runner, store, source, zero_commission):
        """The task resolves to the finished backtest."""
        backtest_id = await _stored(store, source, zero_commission)
        backtest = await runner.submit(backtest_id)
        assert backtest.status == Status.COMPLETE
        assert backtest.statistics.total_change == pytest.approx(200.0)

    async def test_rejects_duplicate_submit(self, runner, store, source, zero_commission):
        """An id can only run once at a time."""
        backtest_id = await _stored(store, source, zero_commission)
        runner.submit(backtest_id)
        with pytest.raises(ValueError, match="already running"):
            runner.submit(backtest_id)
        await runner.wait()

    async def test_missing_backtest_is_returned(self, runner):
        """Lookup failures come back from wait() instead of raising."""
        runner.submit("missing")
        results = await runner.wait()
        assert isinstance(results[0], NotFoundError)

    async def test_poll_missing(self, runner):
        """Polling an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await runner.poll("missing")

    async def test_cancel(self, runner, store, source, zero_commission):
        """Cancelling an in-flight run cancels its task."""
        assert runner.cancel("missing") is False
        backtest_id = await _stored(store, source, zero_commission)
        task = runner.submit(backtest_id)
        assert runner.cancel(backtest_id) is True
        results = await runner.wait()
        assert isinstance(results[0], asyncio.CancelledError)
        assert task.cancelled()

    def test_rejects_bad_concurrency(self, store):
        """Concurrency must be positive."""
        with pytest.raises(ValueError):
            BacktestRunner(store, lambda: None, max_concurrent=0)

    def test_from_config(self, store, source):
        """Concurrency comes from the runner settings."""
        runner = BacktestRunner.from_config(
            store, lambda: CachedHistoryProvider(source), RunnerConfig(max_concurrent_runs=3)
        )
        assert runner.max_concurrent == 3
        assert BacktestRunner.from_config(store, lambda: None).max_concurrent == 4


class TestRunPerturbed:
    @pytest.fixture
    def build(self, zero_commission):
        async def build(provider):
            return await Backtester.create(
                ledger=_ledger(zero_commission),
                provider=provider,
                start_date=START,
                end_date=END,
                save=False,
            )

        return build

    async def test_ratio_zero_matches_single_run(self, build, source):
        """Ratio 0 replays the real history every time."""
        provider = CachedHistoryProvider(source)
        stats = await run_perturbed(
            build, provider, SyntheticDataConfig(ratio=0), START, END, runs=3, rng=random.Random(1)
        )
        assert stats.total_change == pytest.approx(200.0)
        assert stats.percent_change == pytest.approx(2.0)

    async def test_perturbed_runs_average(self, build, source):
        """Perturbed runs leave the source provider untouched."""
        provider = CachedHistoryProvider(source)
        stats = await run_perturbed(
            build, provider, SyntheticDataConfig(ratio=100, mean_deviation_value=0.01), START, END, runs=4,
            rng=random.Random(2),
        )
        assert isinstance(stats, Statistics)
        assert provider.market_history["SPY"][-1].close == 110.0

    async def test_requires_runs(self, build, source):
        """At least one run is required."""
        with pytest.raises(ValueError):
            await run_perturbed(build, CachedHistoryProvider(source), SyntheticDataConfig(), START, END, runs=0)

    async def test_empty_provider(self, source):
        """An empty provider cannot seed synthetic data."""
        async def build(provider):
            return None

        with pytest.raises(SyntheticDataError):
            await run_perturbed(build, CachedHistoryProvider(source), SyntheticDataConfig(), START, END, runs=1)
