"""Report generation for parameter sweep results."""

import csv
from pathlib import Path
from typing import Any

from smartdca.optimizer.engine import SweepResponse, SweepResultEntry


class SweepReport:
    """Generate reports from a sweep response.

    Provides methods for:
    - Terminal summary output
    - CSV export of all results
    - Best parameters extraction
    """

    def __init__(self, response: SweepResponse):
        """Initialize with a sweep response.

        Args:
            response: Ranked sweep output
        """
        self.response = response
        self.results = response.results

    def print_summary(self, top_n: int = 5) -> str:
        """Generate a formatted summary report.

        Args:
            top_n: Number of top results to show

        Returns:
            Formatted string for terminal output
        """
        if not self.results:
            return "No sweep results to display."

        r = self.response
        period = (
            f"{r.start_date} -> {r.end_date} ({r.total_days} days)"
            if r.start_date and r.end_date
            else f"{r.total_days} days"
        )

        lines = [
            "",
            "=" * 60,
            "              PARAMETER SWEEP REPORT",
            "=" * 60,
            "",
            "SWEEP SUMMARY",
            "-" * 60,
            f"  Period:         {period}",
            f"  Combinations:   {r.executed_combinations}/{r.total_combinations}",
            f"  Ranked by:      {r.rank_by}",
            "",
            f"TOP {min(top_n, len(self.results))} RESULTS",
            "-" * 60,
        ]

        for entry in self.results[:top_n]:
            smart = entry.result.smart_dca
            comp = entry.result.comparison
            lines.append(
                f"  #{entry.rank}  Eff: {comp.efficiency_ratio:.3f}  "
                f"Cost: ${smart.avg_cost_basis:,.2f}  "
                f"Return: {smart.return_percent:+.1f}%  "
                f"Extra BTC: {comp.extra_btc_percent_same_base:+.1f}%"
            )
            lines.append(f"      {self._format_config(entry)}")
            if entry.walk_forward is not None:
                wf = entry.walk_forward
                flag = "  OVERFIT" if wf.overfit_warning else ""
                lines.append(
                    f"      walk-forward: return {wf.return_degradation:+.1f}  "
                    f"efficiency {wf.efficiency_degradation:+.3f}{flag}"
                )
            lines.append("")

        if r.walk_forward is not None:
            lines.append("WALK-FORWARD")
            lines.append("-" * 60)
            lines.append(f"  Train ratio:    {r.walk_forward.train_ratio:.0%}")
            lines.append(f"  Validated:      {r.walk_forward.total_validated}")
            lines.append(f"  Overfit:        {r.walk_forward.overfit_count}")
            lines.append("")

        lines.append("BEST PARAMETERS")
        lines.append("-" * 60)
        for name, value in self.best_parameters().items():
            lines.append(f"  {name}: {value}")

        lines.append("")
        lines.append("=" * 60)

        return "\n".join(lines)

    def print_compact(self, top_n: int = 10) -> str:
        """Generate a compact summary table.

        Args:
            top_n: Number of results to show

        Returns:
            Formatted table string
        """
        if not self.results:
            return "No results."

        lines = [
            "",
            f"{'#':<4} {'Eff':>7} {'CostBasis':>11} {'Return':>8} {'XtraBTC':>8} {'MaxDD':>7} Parameters",
            "-" * 80,
        ]

        for entry in self.results[:top_n]:
            smart = entry.result.smart_dca
            comp = entry.result.comparison
            lines.append(
                f"{entry.rank:<4} {comp.efficiency_ratio:>7.3f} "
                f"{smart.avg_cost_basis:>11,.2f} "
                f"{smart.return_percent:>+7.1f}% "
                f"{comp.extra_btc_percent_same_base:>+7.1f}% "
                f"{smart.max_drawdown:>6.1f}% "
                f"{self._format_config(entry)}"
            )

        return "\n".join(lines)

    def save_csv(self, path: str | Path) -> None:
        """Save all ranked results to a CSV file.

        Args:
            path: Output file path
        """
        if not self.results:
            return

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        header = [
            "rank",
            "base_daily_amount",
            "high_lookback_days",
            "bear_market_ma_period",
            "bear_boost_factor",
            "max_multiplier_cap",
            "tiers",
            "efficiency_ratio",
            "avg_cost_basis",
            "return_percent",
            "total_invested",
            "total_btc",
            "max_drawdown",
            "extra_btc_percent_same_base",
            "cost_basis_delta_same_base",
            "overfit_warning",
        ]

        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(header)

            for entry in self.results:
                c = entry.config
                smart = entry.result.smart_dca
                comp = entry.result.comparison
                writer.writerow(
                    [
                        entry.rank,
                        c.base_daily_amount,
                        c.high_lookback_days,
                        c.bear_market_ma_period,
                        c.bear_boost_factor,
                        c.max_multiplier_cap,
                        self._format_tiers(entry),
                        comp.efficiency_ratio,
                        smart.avg_cost_basis,
                        smart.return_percent,
                        smart.total_invested,
                        smart.total_btc,
                        smart.max_drawdown,
                        comp.extra_btc_percent_same_base,
                        comp.cost_basis_delta_same_base,
                        entry.walk_forward.overfit_warning if entry.walk_forward else "",
                    ]
                )

    def save_best_params(self, path: str | Path) -> None:
        """Save the best configuration as SMARTDCA_DCA_ environment lines.

        Args:
            path: Output file path
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        best = self.response.best

        with open(path, "w") as f:
            f.write(f"# Best Parameters (by {self.response.rank_by})\n")
            f.write(f"# Generated from {len(self.results)} sweep runs\n\n")

            if best is None:
                return

            smart = best.result.smart_dca
            comp = best.result.comparison
            f.write("# Performance:\n")
            f.write(f"#   Efficiency Ratio: {comp.efficiency_ratio:.3f}\n")
            f.write(f"#   Avg Cost Basis: ${smart.avg_cost_basis:,.2f}\n")
            f.write(f"#   Return: {smart.return_percent:+.2f}%\n")
            f.write(f"#   Extra BTC vs fixed: {comp.extra_btc_percent_same_base:+.2f}%\n\n")

            f.write("# Parameters:\n")
            for name, value in self.best_parameters().items():
                f.write(f"SMARTDCA_DCA_{name.upper()}={value}\n")

    def best_parameters(self) -> dict[str, Any]:
        """Get the best configuration as settings-style values."""
        best = self.response.best
        if best is None:
            return {}

        c = best.config
        return {
            "base_daily_amount": c.base_daily_amount,
            "high_lookback_days": c.high_lookback_days,
            "bear_market_ma_period": c.bear_market_ma_period,
            "bear_boost_factor": c.bear_boost_factor,
            "max_multiplier_cap": c.max_multiplier_cap,
            "multiplier_tiers": self._tiers_json(best),
        }

    def _tiers_json(self, entry: SweepResultEntry) -> str:
        parts = [
            f'{{"drop_percentage": {t.drop_percentage:g}, "multiplier": {t.multiplier:g}}}'
            for t in entry.config.tiers
        ]
        return "[" + ", ".join(parts) + "]"

    def _format_tiers(self, entry: SweepResultEntry) -> str:
        return " ".join(f"{t.drop_percentage * 100:g}%:{t.multiplier:g}x" for t in entry.config.tiers)

    def _format_config(self, entry: SweepResultEntry) -> str:
        c = entry.config
        return (
            f"base={c.base_daily_amount:g}, lookback={c.high_lookback_days}, "
            f"ma={c.bear_market_ma_period}, boost={c.bear_boost_factor:g}, "
            f"cap={c.max_multiplier_cap:g}, tiers=[{self._format_tiers(entry)}]"
        )
