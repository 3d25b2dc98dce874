"""Concurrent and repeated backtest execution.

``BacktestRunner`` runs stored backtests as asyncio tasks, at most
``max_concurrent`` at a time, each with its own provider so runs share no
mutable state. Results are read back from the store. ``run_perturbed``
repeats one backtest over synthetic price paths and averages the results.
"""
from __future__ import annotations

import asyncio
import logging
import random
from datetime import date, datetime
from typing import Awaitable, Callable

from tradesim.backtest.engine import Backtester
from tradesim.backtest.store import BacktestStore
from tradesim.core.config import RunnerConfig, SyntheticDataConfig
from tradesim.core.exceptions import NotFoundError
from tradesim.core.types import Status
from tradesim.data.provider import CachedHistoryProvider, PriceHistoryProvider
from tradesim.data.synthetic import SyntheticPriceGenerator
from tradesim.portfolio.statistics import Statistics, average_statistics

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], PriceHistoryProvider]
BacktestBuilder = Callable[[PriceHistoryProvider], Awaitable[Backtester]]


class BacktestRunner:
    def __init__(
        self,
        store: BacktestStore,
        provider_factory: ProviderFactory,
        max_concurrent: int = 4,
    ) -> None:
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        self._store = store
        self._provider_factory = provider_factory
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(
        cls,
        store: BacktestStore,
        provider_factory: ProviderFactory,
        config: RunnerConfig | None = None,
    ) -> BacktestRunner:
        config = config or RunnerConfig()
        return cls(store, provider_factory, max_concurrent=config.max_concurrent_runs)

    @property
    def active(self) -> list[str]:
        return [backtest_id for backtest_id, task in self._tasks.items() if not task.done()]

    def submit(self, backtest_id: str, user_id: str | None = None) -> asyncio.Task:
        """Schedule a reset-and-rerun of a stored backtest.

        The returned task resolves to the finished Backtester. Validation
        failures surface as the task's exception.
        """
        existing = self._tasks.get(backtest_id)
        if existing is not None and not existing.done():
            raise ValueError(f"Backtest already running: {backtest_id}")
        task = asyncio.create_task(self._run(backtest_id, user_id), name=f"backtest-{backtest_id}")
        self._tasks[backtest_id] = task
        return task

    async def _run(self, backtest_id: str, user_id: str | None) -> Backtester:
        async with self._semaphore:
            provider = self._provider_factory()
            backtest = await Backtester.find_one_and_run(self._store, backtest_id, user_id, provider)
            logger.info("Backtest %s finished with status %s", backtest_id, backtest.status.value)
            return backtest

    async def poll(self, backtest_id: str, user_id: str | None = None) -> Status:
        document = await self._store.find_one(backtest_id, user_id)
        if document is None:
            raise NotFoundError(backtest_id)
        return Status(document["status"])

    def cancel(self, backtest_id: str) -> bool:
        """Cancel an in-flight run.

        The stored status stays at whatever was last saved, usually RUNNING.
        """
        task = self._tasks.get(backtest_id)
        if task is None or task.done():
            return False
        return task.cancel()

    async def wait(self) -> list[Backtester | BaseException]:
        """Wait for every submitted run; failures are returned, not raised."""
        results = await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        for backtest_id, result in zip(self._tasks, results):
            if isinstance(result, BaseException):
                logger.warning("Backtest %s did not run: %r", backtest_id, result)
        self._tasks = {k: t for k, t in self._tasks.items() if not t.done()}
        return list(results)


async def run_perturbed(
    build: BacktestBuilder,
    provider: CachedHistoryProvider,
    params: SyntheticDataConfig,
    start: date | datetime,
    end: date | datetime,
    runs: int,
    rng: random.Random | None = None,
) -> Statistics:
    """Average statistics over ``runs`` backtests on synthetic price paths.

    ``build`` is first called with ``provider`` itself so that validation
    fills its cache, then once per run with a SyntheticPriceGenerator
    wrapping it. Runs that end in ERROR are left out of the average.

    Raises:
        SyntheticDataError: If the provider has no cached history.
        ValueError: If no run completed.
    """
    if runs <= 0:
        raise ValueError("runs must be positive")
    rng = rng or random.Random()
    await build(provider)

    results: list[Statistics] = []
    for i in range(runs):
        generator = SyntheticPriceGenerator(provider, params, start, end, rng=random.Random(rng.random()))
        backtest = await build(generator)
        await backtest.run(save_on_run=False, generate_baseline=False)
        if backtest.status == Status.ERROR:
            logger.warning("Perturbed run %d failed: %s", i, backtest.error)
            continue
        results.append(backtest.statistics)
    return average_statistics(results)
