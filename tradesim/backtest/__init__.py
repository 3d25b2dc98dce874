from tradesim.backtest.actions import Action, ActionData
from tradesim.backtest.engine import Backtester
from tradesim.backtest.runner import BacktestRunner, run_perturbed
from tradesim.backtest.store import BacktestStore

__all__ = ["Action", "ActionData", "Backtester", "BacktestRunner", "BacktestStore", "run_perturbed"]
