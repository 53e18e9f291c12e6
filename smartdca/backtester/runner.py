"""CLI runner for smart DCA backtests."""

from __future__ import annotations

import argparse
import asyncio
from datetime import date, datetime
from pathlib import Path

from smartdca.backtester.data import DailyPriceData, DataLoader
from smartdca.backtester.engine import BacktestConfig, BacktestSimulator
from smartdca.backtester.report import BacktestReporter, BacktestResult
from smartdca.backtester.walk_forward import WalkForwardValidator
from smartdca.config import get_settings
from smartdca.core.logging import get_logger
from smartdca.exchange import get_exchange_adapter

logger = get_logger(__name__)


async def load_price_data(
    symbol: str,
    start: date | None,
    end: date | None,
    data_source: str | None = None,
) -> list[DailyPriceData]:
    """
    Load daily prices from a CSV file, the local store or the exchange.

    Args:
        symbol: Trading pair
        start: First day (inclusive)
        end: Last day (inclusive)
        data_source: CSV file path, or "store" for persisted prices

    Returns:
        Daily prices in ascending date order
    """
    loader = DataLoader()

    if data_source == "store":
        df = await loader.load_from_store(symbol, start, end)
    elif data_source:
        if not Path(data_source).exists():
            raise FileNotFoundError(f"CSV file not found: {data_source}")
        df = loader.filter_range(loader.load_from_csv(data_source), start, end)
    else:
        if start is None or end is None:
            raise ValueError("Start and end dates are required when loading from the exchange")
        exchange = get_exchange_adapter()
        await exchange.connect()
        try:
            loader.exchange = exchange
            df = await loader.load_from_exchange(symbol, start, end)
        finally:
            await exchange.disconnect()

    prices = loader.to_daily_prices(df)
    if not prices:
        raise ValueError(f"No price data for {symbol} in specified range")
    return prices


async def run_backtest(
    config: BacktestConfig,
    symbol: str,
    start: date | None,
    end: date | None,
    data_source: str | None = None,
) -> tuple[BacktestResult, list[DailyPriceData]]:
    """
    Load data and run a single backtest.

    Returns:
        Tuple of (result, price data used)
    """
    prices = await load_price_data(symbol, start, end, data_source)
    result = await asyncio.to_thread(BacktestSimulator().run, config, prices)
    return result, prices


def parse_date(date_str: str) -> date:
    """Parse date string to date."""
    return datetime.strptime(date_str, "%Y-%m-%d").date()


def main() -> None:
    """CLI entry point for backtesting."""
    settings = get_settings()
    dca = settings.dca

    parser = argparse.ArgumentParser(
        description="SmartDCA Backtest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Backtest the configured strategy over 2023
  %(prog)s --start 2023-01-01 --end 2023-12-31

  # Backtest from a CSV file with a larger base amount
  %(prog)s --data ./btc_daily.csv --base 25

  # Backtest against the local price store and validate out of sample
  %(prog)s --data store --walk-forward
        """,
    )

    parser.add_argument("--symbol", "-s", default=settings.system.symbol, help="Trading pair")
    parser.add_argument("--start", help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="End date (YYYY-MM-DD)")
    parser.add_argument(
        "--data",
        "-d",
        help="CSV file with daily prices, or 'store' for the local price history",
    )
    parser.add_argument(
        "--base",
        type=float,
        default=dca.base_daily_amount,
        help=f"Base daily amount (default: {dca.base_daily_amount})",
    )
    parser.add_argument(
        "--lookback",
        type=int,
        default=dca.high_lookback_days,
        help=f"High lookback days (default: {dca.high_lookback_days})",
    )
    parser.add_argument(
        "--ma-period",
        type=int,
        default=dca.bear_market_ma_period,
        help=f"Bear market MA period (default: {dca.bear_market_ma_period})",
    )
    parser.add_argument(
        "--bear-boost",
        type=float,
        default=dca.bear_boost_factor,
        help=f"Bear boost factor (default: {dca.bear_boost_factor})",
    )
    parser.add_argument(
        "--cap",
        type=float,
        default=dca.max_multiplier_cap,
        help=f"Max multiplier cap (default: {dca.max_multiplier_cap})",
    )
    parser.add_argument("--output", "-o", help="Output directory for the purchase log CSV")
    parser.add_argument(
        "--walk-forward",
        action="store_true",
        help="Compare a 70%% train window against a 30%% test window",
    )

    args = parser.parse_args()

    start = parse_date(args.start) if args.start else None
    end = parse_date(args.end) if args.end else None

    config = BacktestConfig(
        base_daily_amount=args.base,
        high_lookback_days=args.lookback,
        bear_market_ma_period=args.ma_period,
        bear_boost_factor=args.bear_boost,
        max_multiplier_cap=args.cap,
        tiers=BacktestConfig.from_settings(dca).tiers,
    )

    print("\nSmartDCA Backtest")
    print(f"Symbol: {args.symbol}")
    print(f"Period: {args.start or 'earliest'} to {args.end or 'latest'}")
    print(f"Base Amount: ${config.base_daily_amount:,.2f}")
    print("\nLoading data and running backtest...")

    try:
        result, prices = asyncio.run(run_backtest(config, args.symbol, start, end, args.data))
    except Exception as e:
        print(f"\nError: {e}")
        return

    print(BacktestReporter.print_summary(result))

    if args.walk_forward:
        entry = WalkForwardValidator().validate(config, prices)
        if entry is None:
            print("\nWalk-forward: not enough data (needs 30 days in each window)")
        else:
            print("\nWALK-FORWARD")
            print(f"  Train return: {entry.train_return:+.2f}%  efficiency {entry.train_efficiency:.3f}")
            print(f"  Test return:  {entry.test_return:+.2f}%  efficiency {entry.test_efficiency:.3f}")
            if entry.overfit_warning:
                print("  WARNING: parameters degrade out of sample")

    if args.output:
        output_dir = Path(args.output)
        log_path = output_dir / "purchase_log.csv"
        BacktestReporter.save_purchase_log_csv(result, log_path)
        print(f"\nSaved purchase log to: {log_path}")


if __name__ == "__main__":
    main()
