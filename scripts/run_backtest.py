"""Backtest runner CLI: replays daily CSV bars through a price-threshold strategy.

Usage examples:
    # Buy 10 shares of SPY whenever it opens or closes under 400, sell over 450:
    python scripts/run_backtest.py --csv SPY=data/spy.csv --symbol SPY \
        --start 2023-01-03 --end 2023-12-29 --buy-below 400 --sell-above 450

    # Average 20 runs over synthetic price paths with a small upward drift:
    python scripts/run_backtest.py --csv SPY=data/spy.csv --symbol SPY \
        --start 2023-01-03 --end 2023-12-29 --buy-below 400 --sell-above 450 \
        --ratio 100 --mean-deviation 0.001 --runs 20

    # Persist the run to the SQLite file named in the settings (store.sqlite_path):
    python scripts/run_backtest.py --config config/default.yaml --csv SPY=data/spy.csv \
        --symbol SPY --start 2023-01-03 --end 2023-12-29 --buy-below 400 --save

    # Re-run stored backtests, up to runner.max_concurrent_runs at a time:
    python scripts/run_backtest.py --csv SPY=data/spy.csv --db data/tradesim.db \
        --rerun 0b6c... --rerun 4f1e...
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import random
import sys
from datetime import datetime
from pathlib import Path

# Ensure project root is on sys.path
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(_PROJECT_ROOT))

from dotenv import load_dotenv

from tradesim.backtest.engine import Backtester
from tradesim.backtest.runner import BacktestRunner, run_perturbed
from tradesim.backtest.store import BacktestStore
from tradesim.core.config import Settings, SyntheticDataConfig, load_settings
from tradesim.core.exceptions import ConfigError, TradeSimError
from tradesim.core.logger import setup_logging
from tradesim.core.types import Asset, Comparator
from tradesim.data.provider import CachedHistoryProvider, PriceHistoryProvider
from tradesim.data.sources import CsvSource
from tradesim.data.symbol_cache import SymbolCache
from tradesim.portfolio.ledger import Ledger
from tradesim.portfolio.statistics import Statistics
from tradesim.strategy.allocation import Allocation, AllocationType
from tradesim.strategy.base import Strategy
from tradesim.strategy.conditions import SimplePriceCondition

logger = logging.getLogger("tradesim")


def _parse_csv_args(values: list[str]) -> dict[str, str]:
    paths: dict[str, str] = {}
    for value in values:
        symbol, sep, path = value.partition("=")
        if not sep or not symbol or not path:
            raise ValueError(f"--csv expects SYMBOL=PATH, got {value!r}")
        paths[symbol.upper()] = path
    return paths


def _build_strategy(args: argparse.Namespace) -> Strategy:
    target = Asset(args.symbol.upper())
    buy_conditions = []
    sell_conditions = []
    if args.buy_below is not None:
        buy_conditions.append(SimplePriceCondition(args.buy_below, Comparator.LESS_THAN))
    if args.sell_above is not None:
        sell_conditions.append(SimplePriceCondition(args.sell_above, Comparator.GREATER_THAN))
    return Strategy(
        name=f"{target.symbol} threshold",
        target_asset=target,
        buy_amount=Allocation(AllocationType.NUM_ASSETS, args.shares),
        sell_amount=Allocation(AllocationType.NUM_ASSETS, args.shares),
        buy_conditions=buy_conditions,
        sell_conditions=sell_conditions,
    )


def _print_statistics(title: str, stats: Statistics) -> None:
    print("=" * 60)
    print(f"  {title}")
    print("=" * 60)
    print(f"  Total change   : ${stats.total_change:>+14,.2f}")
    print(f"  Percent change : {stats.percent_change:>+14.2f}%")
    print(f"  Avg change/step: ${stats.average_change:>+14,.4f}")
    print(f"  Sharpe         : {stats.sharpe:>15.4f}")
    print(f"  Sortino        : {stats.sortino:>15.4f}")
    print(f"  Max drawdown   : ${stats.max_drawdown:>14,.2f}")
    print("=" * 60)


async def _rerun(args: argparse.Namespace, settings: Settings, source: CsvSource, store: BacktestStore) -> int:
    runner = BacktestRunner.from_config(
        store,
        lambda: CachedHistoryProvider(source, settings.data, settings.market_hours),
        settings.runner,
    )
    for backtest_id in args.rerun:
        runner.submit(backtest_id)
    failed = 0
    for backtest_id, result in zip(args.rerun, await runner.wait()):
        if isinstance(result, BaseException):
            print(f"[ERROR] {backtest_id}: {result}")
            failed += 1
        elif result.error:
            print(f"[ERROR] {backtest_id}: {result.error}")
            failed += 1
        else:
            _print_statistics(f"Backtest {backtest_id}", result.statistics)
    return 1 if failed else 0


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    source = CsvSource(_parse_csv_args(args.csv))
    provider = CachedHistoryProvider(source, settings.data, settings.market_hours)
    symbol_cache = SymbolCache.from_config(source.symbols, settings.data)

    store: BacktestStore | None = None
    db_path = args.db or (settings.store.sqlite_path if args.save else None)
    if db_path:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        store = BacktestStore(db_path)
        await store.initialize()

    if args.rerun:
        try:
            return await _rerun(args, settings, source, store)
        finally:
            await store.close()

    start = datetime.strptime(args.start, "%Y-%m-%d").date()
    end = datetime.strptime(args.end, "%Y-%m-%d").date()
    capital = args.capital if args.capital is not None else settings.backtest.initial_value

    async def build(p: PriceHistoryProvider) -> Backtester:
        ledger = Ledger(capital, [_build_strategy(args)], settings.trading, name="cli")
        return await Backtester.create(
            ledger=ledger,
            provider=p,
            start_date=start,
            end_date=end,
            interval=settings.backtest.interval,
            name=f"{args.symbol.upper()} {start}..{end}",
            config=settings.backtest,
            market_hours=settings.market_hours,
            store=store,
            save=store is not None,
            symbol_cache=symbol_cache,
        )

    try:
        if args.runs > 1 or args.ratio > 0:
            params = SyntheticDataConfig(ratio=args.ratio, mean_deviation_value=args.mean_deviation)
            stats = await run_perturbed(build, provider, params, start, end, args.runs, random.Random(args.seed))
            _print_statistics(f"Average over {args.runs} synthetic runs", stats)
            return 0

        backtest = await build(provider)
        await backtest.run()
        if backtest.error:
            print(f"[ERROR] Backtest failed: {backtest.error}")
            return 1
        _print_statistics(f"Backtest {backtest.id}", backtest.statistics)
        print(f"  Buys: {len(backtest.successful_buy_history)}  Sells: {len(backtest.successful_sell_history)}")
        print(f"  Final value: ${backtest.ledger.calculate_value():,.2f}")
        if backtest.ledger.comparison_history:
            print(f"  Baseline   : ${backtest.ledger.comparison_history[-1].value:,.2f}")
        if backtest.snapshot_misses:
            print(f"  Steps with no price snapshot: {backtest.snapshot_misses}")
        return 0
    except TradeSimError as exc:
        print(f"[ERROR] {exc}")
        return 1
    finally:
        if store is not None:
            await store.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run a threshold strategy backtest over CSV price history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", default=None, help="YAML settings file")
    parser.add_argument(
        "--csv", action="append", required=True, metavar="SYMBOL=PATH",
        help="Daily bars CSV for a symbol (repeatable)",
    )
    parser.add_argument("--symbol", help="Target symbol to trade")
    parser.add_argument("--start", help="Start date YYYY-MM-DD")
    parser.add_argument("--end", help="End date YYYY-MM-DD")
    parser.add_argument(
        "--capital", type=float, default=None, help="Initial capital (default: backtest.initial_value)",
    )
    parser.add_argument("--shares", type=float, default=10, help="Shares per buy/sell (default: 10)")
    parser.add_argument("--buy-below", type=float, default=None, help="Buy when the price is below this")
    parser.add_argument("--sell-above", type=float, default=None, help="Sell when the price is above this")
    parser.add_argument("--ratio", type=float, default=0.0, help="Percent of runs on synthetic data (0-100)")
    parser.add_argument("--mean-deviation", type=float, default=0.0, help="Drift shift for synthetic data")
    parser.add_argument("--runs", type=int, default=1, help="Number of synthetic runs to average")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--db", default=None, help="SQLite file to store backtest documents in")
    parser.add_argument("--save", action="store_true", help="Store the run in store.sqlite_path")
    parser.add_argument(
        "--rerun", action="append", default=[], metavar="ID",
        help="Re-run a stored backtest by id (repeatable)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")
    args = parser.parse_args()

    load_dotenv(_PROJECT_ROOT / "config" / ".env")
    try:
        settings = load_settings(args.config) if args.config else Settings()
        _parse_csv_args(args.csv)
        if args.rerun:
            if not (args.db or args.save):
                raise ValueError("--rerun needs --db or --save")
        else:
            if not (args.symbol and args.start and args.end):
                raise ValueError("--symbol, --start and --end are required")
            datetime.strptime(args.start, "%Y-%m-%d")
            datetime.strptime(args.end, "%Y-%m-%d")
    except (FileNotFoundError, ConfigError, ValueError) as exc:
        parser.error(str(exc))
        return

    setup_logging(
        "tradesim",
        level="DEBUG" if args.verbose else settings.system.log_level,
        log_dir=settings.system.log_dir if args.config else None,
    )
    sys.exit(asyncio.run(_run(args, settings)))


if __name__ == "__main__":
    main()
