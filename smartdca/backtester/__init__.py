"""Backtesting of the smart DCA rule against fixed DCA baselines."""

from smartdca.backtester.data import DailyPriceData, DataLoader
from smartdca.backtester.engine import BacktestConfig, BacktestSimulator, run_backtest
from smartdca.backtester.report import BacktestReporter, BacktestResult
from smartdca.backtester.walk_forward import (
    WalkForwardEntry,
    WalkForwardSummary,
    WalkForwardValidator,
)

__all__ = [
    "BacktestConfig",
    "BacktestReporter",
    "BacktestResult",
    "BacktestSimulator",
    "DailyPriceData",
    "DataLoader",
    "WalkForwardEntry",
    "WalkForwardSummary",
    "WalkForwardValidator",
    "run_backtest",
]
