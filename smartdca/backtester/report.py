"""Backtest results and report formatting."""

import csv
from dataclasses import asdict, dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import Any


@dataclass
class StrategyResult:
    """Metrics for one accumulation strategy over the whole backtest."""

    total_invested: float
    total_btc: float
    avg_cost_basis: float
    portfolio_value: float  # at the final day's close
    return_percent: float  # as percent (12.5 = 12.5%)
    max_drawdown: float  # as percent of cumulative cost, positive


@dataclass
class ComparisonMetrics:
    """Smart DCA measured against the two fixed baselines.

    Cost-basis deltas are smart minus baseline (negative means smart bought
    cheaper). Extra BTC is relative to the baseline, in percent.
    """

    cost_basis_delta_same_base: float
    cost_basis_delta_match_total: float
    extra_btc_percent_same_base: float
    extra_btc_percent_match_total: float
    efficiency_ratio: float  # smart return % / same-base return %


@dataclass
class TierBreakdownEntry:
    """Impact of one multiplier tier over the backtest."""

    tier_name: str
    trigger_count: int
    extra_usd_spent: float
    extra_btc_acquired: float


@dataclass
class PurchaseLogEntry:
    """One day with all three strategies side by side."""

    date: date
    price: float

    # Smart DCA
    smart_multiplier: float
    smart_tier: str
    smart_amount_usd: float
    smart_btc_bought: float
    smart_cumulative_usd: float
    smart_cumulative_btc: float
    smart_running_cost_basis: float

    # Fixed DCA, same base amount
    same_base_amount_usd: float
    same_base_btc_bought: float
    same_base_cumulative_usd: float
    same_base_cumulative_btc: float
    same_base_running_cost_basis: float

    # Fixed DCA, matching smart total spend
    match_total_amount_usd: float
    match_total_btc_bought: float
    match_total_cumulative_usd: float
    match_total_cumulative_btc: float
    match_total_running_cost_basis: float

    # Window values used for the multiplier
    high_30_day: float
    ma_200_day: float

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass
class BacktestResult:
    """Result of a backtest run."""

    smart_dca: StrategyResult
    fixed_dca_same_base: StrategyResult
    fixed_dca_match_total: StrategyResult
    comparison: ComparisonMetrics
    tier_breakdown: list[TierBreakdownEntry] = field(default_factory=list)
    purchase_log: list[PurchaseLogEntry] = field(default_factory=list)

    def summary(self) -> "BacktestResult":
        """Copy without the tier breakdown and day log."""
        return replace(self, tier_breakdown=[], purchase_log=[])

    def to_dict(self, include_detail: bool = True) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "smart_dca": asdict(self.smart_dca),
            "fixed_dca_same_base": asdict(self.fixed_dca_same_base),
            "fixed_dca_match_total": asdict(self.fixed_dca_match_total),
            "comparison": asdict(self.comparison),
        }
        if include_detail:
            data["tier_breakdown"] = [asdict(t) for t in self.tier_breakdown]
            data["purchase_log"] = [e.to_dict() for e in self.purchase_log]
        return data


class BacktestReporter:
    """Generates reports from backtest results."""

    @staticmethod
    def print_summary(result: BacktestResult) -> str:
        """
        Generate a formatted summary report.

        Returns:
            Formatted string for terminal output
        """
        smart = result.smart_dca
        same = result.fixed_dca_same_base
        match = result.fixed_dca_match_total
        comp = result.comparison

        def row(label: str, a: str, b: str, c: str) -> str:
            return f"  {label:<16}{a:>14}{b:>14}{c:>14}"

        lines = [
            "",
            "=" * 60,
            "               SMART DCA BACKTEST REPORT",
            "=" * 60,
            "",
            row("", "Smart", "Same Base", "Match Total"),
            "-" * 60,
            row(
                "Invested",
                f"${smart.total_invested:,.2f}",
                f"${same.total_invested:,.2f}",
                f"${match.total_invested:,.2f}",
            ),
            row(
                "BTC",
                f"{smart.total_btc:.6f}",
                f"{same.total_btc:.6f}",
                f"{match.total_btc:.6f}",
            ),
            row(
                "Avg Cost",
                f"${smart.avg_cost_basis:,.2f}",
                f"${same.avg_cost_basis:,.2f}",
                f"${match.avg_cost_basis:,.2f}",
            ),
            row(
                "Value",
                f"${smart.portfolio_value:,.2f}",
                f"${same.portfolio_value:,.2f}",
                f"${match.portfolio_value:,.2f}",
            ),
            row(
                "Return",
                f"{smart.return_percent:+.2f}%",
                f"{same.return_percent:+.2f}%",
                f"{match.return_percent:+.2f}%",
            ),
            row(
                "Max Drawdown",
                f"{smart.max_drawdown:.2f}%",
                f"{same.max_drawdown:.2f}%",
                f"{match.max_drawdown:.2f}%",
            ),
            "",
            "COMPARISON",
            "-" * 60,
            f"  Cost basis vs same base:    ${comp.cost_basis_delta_same_base:+,.2f}",
            f"  Cost basis vs match total:  ${comp.cost_basis_delta_match_total:+,.2f}",
            f"  Extra BTC vs same base:     {comp.extra_btc_percent_same_base:+.2f}%",
            f"  Extra BTC vs match total:   {comp.extra_btc_percent_match_total:+.2f}%",
            f"  Efficiency ratio:           {comp.efficiency_ratio:.3f}",
            "",
        ]

        if result.tier_breakdown:
            lines.append("TIERS")
            lines.append("-" * 60)
            for tier in result.tier_breakdown:
                lines.append(
                    f"  {tier.tier_name:<12} {tier.trigger_count:>5} days  "
                    f"+${tier.extra_usd_spent:,.2f}  +{tier.extra_btc_acquired:.6f} BTC"
                )
            lines.append("")

        lines.append("=" * 60)
        return "\n".join(lines)

    @staticmethod
    def save_purchase_log_csv(result: BacktestResult, path: str | Path) -> None:
        """
        Save the day-by-day purchase log to a CSV file.

        Args:
            result: Backtest result
            path: Output file path
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        rows = [entry.to_dict() for entry in result.purchase_log]
        if not rows:
            return

        with open(path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=list(rows[0].keys()))
            writer.writeheader()
            writer.writerows(rows)
