"""CLI runner for parameter sweeps."""

import argparse
import asyncio
import sys
from pathlib import Path

from smartdca.backtester.engine import BacktestConfig
from smartdca.backtester.runner import load_price_data, parse_date
from smartdca.config import get_settings
from smartdca.core.logging import get_logger
from smartdca.optimizer.engine import ParameterSweepService
from smartdca.optimizer.grid import RANK_OPTIONS, SweepPresets, SweepRequest
from smartdca.optimizer.report import SweepReport

logger = get_logger(__name__)


def parse_values(values_str: str, cast: type) -> list:
    """Parse a comma-separated list of values."""
    return [cast(v.strip()) for v in values_str.split(",") if v.strip()]


async def run_sweep(
    request: SweepRequest,
    symbol: str,
    data_source: str | None = None,
) -> SweepReport:
    """Load data, run the sweep and wrap the response in a report.

    Args:
        request: Sweep parameters
        symbol: Trading pair
        data_source: CSV file path, "store", or None for the exchange

    Returns:
        SweepReport with ranked results
    """
    prices = await load_price_data(symbol, request.start_date, request.end_date, data_source)
    defaults = BacktestConfig.from_settings(get_settings().dca)

    response = await ParameterSweepService().run(request, prices, defaults)
    return SweepReport(response)


def main() -> None:
    """CLI entry point for parameter sweeps."""
    parser = argparse.ArgumentParser(
        description="SmartDCA Parameter Sweep",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Conservative preset (24 combinations)
  %(prog)s --data ./btc_daily.csv --preset conservative

  # Full preset (2160 combinations) ranked by cost basis
  %(prog)s --data store --preset full --max-combinations 5000 --rank-by costbasis

  # Custom ranges with walk-forward validation
  %(prog)s --start 2022-01-01 --end 2024-12-31 \\
           --base 10,20 --lookback 14,30 --boost 1.0,1.5 --validate

Presets:
  conservative - 24 combinations around the production settings
  full         - 2160 combinations
        """,
    )

    parser.add_argument("--symbol", "-s", default=get_settings().system.symbol, help="Trading pair")
    parser.add_argument("--start", help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="End date (YYYY-MM-DD)")
    parser.add_argument(
        "--data",
        "-d",
        help="CSV file with daily prices, or 'store' for the local price history",
    )
    parser.add_argument("--preset", "-p", choices=SweepPresets.NAMES, help="Preset parameter ranges")
    parser.add_argument("--base", help="Base daily amounts, e.g. 10,15,20")
    parser.add_argument("--lookback", help="High lookback days, e.g. 14,30")
    parser.add_argument("--ma-period", help="Bear market MA periods, e.g. 100,200")
    parser.add_argument("--boost", help="Bear boost factors, e.g. 1.0,1.5")
    parser.add_argument("--cap", help="Max multiplier caps, e.g. 3,4,5")
    parser.add_argument(
        "--rank-by",
        "-m",
        default="efficiency",
        choices=RANK_OPTIONS,
        help="Metric to rank by (default: efficiency)",
    )
    parser.add_argument(
        "--max-combinations",
        type=int,
        default=1000,
        help="Refuse sweeps larger than this (default: 1000)",
    )
    parser.add_argument("--validate", action="store_true", help="Run walk-forward validation")
    parser.add_argument("--output", "-o", help="Output directory for results")
    parser.add_argument("--top", type=int, default=5, help="Number of top results to show (default: 5)")
    parser.add_argument("--compact", action="store_true", help="Use compact output format")

    args = parser.parse_args()

    request = SweepRequest(
        start_date=parse_date(args.start) if args.start else None,
        end_date=parse_date(args.end) if args.end else None,
        preset=args.preset,
        base_daily_amounts=parse_values(args.base, float) if args.base else [],
        high_lookback_days=parse_values(args.lookback, int) if args.lookback else [],
        bear_market_ma_periods=parse_values(args.ma_period, int) if args.ma_period else [],
        bear_boost_factors=parse_values(args.boost, float) if args.boost else [],
        max_multiplier_caps=parse_values(args.cap, float) if args.cap else [],
        rank_by=args.rank_by,
        max_combinations=args.max_combinations,
        validate_walk_forward=args.validate,
    )

    print("\nSmartDCA Parameter Sweep")
    print(f"Symbol: {args.symbol}")
    print(f"Period: {args.start or 'earliest'} to {args.end or 'latest'}")
    print(f"Preset: {args.preset or 'custom'}")
    print(f"Ranking by: {args.rank_by}")

    try:
        report = asyncio.run(run_sweep(request, args.symbol, args.data))
    except Exception as e:
        print(f"\nError: {e}")
        sys.exit(1)

    if args.compact:
        print(report.print_compact(args.top))
    else:
        print(report.print_summary(args.top))

    if args.output:
        output_dir = Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)

        csv_path = output_dir / "sweep_results.csv"
        report.save_csv(csv_path)
        print(f"\nSaved results to: {csv_path}")

        params_path = output_dir / "best_parameters.env"
        report.save_best_params(params_path)
        print(f"Saved best parameters to: {params_path}")


if __name__ == "__main__":
    main()
