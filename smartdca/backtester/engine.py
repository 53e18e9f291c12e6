"""Deterministic day-by-day DCA backtest simulator."""

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from smartdca.backtester.data import DailyPriceData
from smartdca.backtester.report import (
    BacktestResult,
    ComparisonMetrics,
    PurchaseLogEntry,
    StrategyResult,
    TierBreakdownEntry,
)
from smartdca.core.logging import get_logger
from smartdca.strategies.multiplier import BASE_TIER_LABEL, MultiplierTier, calculate

if TYPE_CHECKING:
    from smartdca.config import DcaSettings

logger = get_logger(__name__)


@dataclass(frozen=True)
class BacktestConfig:
    """Parameters for one simulation run."""

    base_daily_amount: float = 10.0
    high_lookback_days: int = 30
    bear_market_ma_period: int = 200
    bear_boost_factor: float = 1.5
    max_multiplier_cap: float = 4.5
    tiers: tuple[MultiplierTier, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, settings: "DcaSettings") -> "BacktestConfig":
        """Build the production configuration."""
        return cls(
            base_daily_amount=settings.base_daily_amount,
            high_lookback_days=settings.high_lookback_days,
            bear_market_ma_period=settings.bear_market_ma_period,
            bear_boost_factor=settings.bear_boost_factor,
            max_multiplier_cap=settings.max_multiplier_cap,
            tiers=tuple(
                MultiplierTier(t.drop_percentage, t.multiplier) for t in settings.multiplier_tiers
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["tiers"] = [asdict(t) for t in self.tiers]
        return data


@dataclass
class _Ledger:
    """Running totals for one strategy."""

    invested: float = 0.0
    btc: float = 0.0
    peak_pnl: float = 0.0
    max_drawdown: float = 0.0

    def buy(self, amount: float, price: float) -> float:
        bought = amount / price if price > 0 else 0.0
        self.invested += amount
        self.btc += bought

        # Drawdown of unrealized P&L from its running peak, relative to cost
        pnl = self.btc * price - self.invested
        self.peak_pnl = max(self.peak_pnl, pnl)
        if self.invested > 0:
            drawdown = (self.peak_pnl - pnl) / self.invested * 100
            self.max_drawdown = max(self.max_drawdown, drawdown)

        return bought

    @property
    def cost_basis(self) -> float:
        return self.invested / self.btc if self.btc > 0 else 0.0

    def result(self, final_price: float) -> StrategyResult:
        value = self.btc * final_price
        return_percent = (
            (value - self.invested) / self.invested * 100 if self.invested > 0 else 0.0
        )
        return StrategyResult(
            total_invested=self.invested,
            total_btc=self.btc,
            avg_cost_basis=self.cost_basis,
            portfolio_value=value,
            return_percent=return_percent,
            max_drawdown=self.max_drawdown,
        )


class BacktestSimulator:
    """Replays the smart DCA rule over daily history against two fixed baselines.

    Strategies:
    1. Smart DCA: base amount scaled by the multiplier rule
    2. Fixed same-base: the base amount every day
    3. Fixed match-total: the smart strategy's total spend spread evenly

    Day *i* is ``price_data[i]``; callers guarantee one entry per day. All
    purchases happen at the day's close.

    Example:
        simulator = BacktestSimulator()
        result = simulator.run(BacktestConfig(tiers=(MultiplierTier(0.1, 2.0),)), prices)
        print(result.comparison.efficiency_ratio)
    """

    def run(
        self,
        config: BacktestConfig | None,
        price_data: Sequence[DailyPriceData] | None,
    ) -> BacktestResult:
        """Run one simulation.

        Args:
            config: Simulation parameters
            price_data: Daily prices in ascending date order

        Returns:
            BacktestResult with metrics, tier breakdown and purchase log

        Raises:
            ValueError: If config or price data is missing, or price data is empty
        """
        if config is None:
            raise ValueError("Backtest config is required")
        if not price_data:
            raise ValueError("Price data cannot be empty")

        closes = [day.close for day in price_data]
        num_days = len(closes)
        lookback = max(config.high_lookback_days, 1)
        ma_period = max(config.bear_market_ma_period, 1)

        prefix = [0.0]
        for close in closes:
            prefix.append(prefix[-1] + close)

        smart = _Ledger()
        same_base = _Ledger()
        smart_days: list[tuple[float, str, float, float, float, float, float]] = []
        same_base_days: list[tuple[float, float, float]] = []
        tier_counts: dict[str, list[float]] = {}

        # Pass 1: smart DCA and same-base baseline
        for i, price in enumerate(closes):
            high = max(closes[max(0, i - lookback + 1) : i + 1])
            ma = (prefix[i + 1] - prefix[i + 1 - ma_period]) / ma_period if i + 1 >= ma_period else 0.0

            mult = calculate(
                price,
                config.base_daily_amount,
                high,
                ma,
                config.tiers,
                config.bear_boost_factor,
                config.max_multiplier_cap,
            )
            smart_btc = smart.buy(mult.final_amount, price)
            smart_days.append(
                (
                    mult.multiplier,
                    mult.tier_label,
                    mult.final_amount,
                    smart_btc,
                    smart.cost_basis,
                    high,
                    ma,
                )
            )

            if mult.tier_label != BASE_TIER_LABEL:
                extra_usd = mult.final_amount - config.base_daily_amount
                stats = tier_counts.setdefault(mult.tier_label, [0, 0.0, 0.0])
                stats[0] += 1
                stats[1] += extra_usd
                stats[2] += extra_usd / price if price > 0 else 0.0

            base_btc = same_base.buy(config.base_daily_amount, price)
            same_base_days.append((base_btc, same_base.invested, same_base.btc))

        # Pass 2: match-total baseline spends the smart total evenly
        match_daily = smart.invested / num_days
        match_total = _Ledger()

        log: list[PurchaseLogEntry] = []
        smart_cum_usd = 0.0
        smart_cum_btc = 0.0
        for i, day in enumerate(price_data):
            price = closes[i]
            match_btc = match_total.buy(match_daily, price)
            multiplier, tier, amount, smart_btc, smart_basis, high, ma = smart_days[i]
            base_btc, base_cum_usd, base_cum_btc = same_base_days[i]
            smart_cum_usd += amount
            smart_cum_btc += smart_btc

            log.append(
                PurchaseLogEntry(
                    date=day.date,
                    price=price,
                    smart_multiplier=multiplier,
                    smart_tier=tier,
                    smart_amount_usd=amount,
                    smart_btc_bought=smart_btc,
                    smart_cumulative_usd=smart_cum_usd,
                    smart_cumulative_btc=smart_cum_btc,
                    smart_running_cost_basis=smart_basis,
                    same_base_amount_usd=config.base_daily_amount,
                    same_base_btc_bought=base_btc,
                    same_base_cumulative_usd=base_cum_usd,
                    same_base_cumulative_btc=base_cum_btc,
                    same_base_running_cost_basis=base_cum_usd / base_cum_btc if base_cum_btc > 0 else 0.0,
                    match_total_amount_usd=match_daily,
                    match_total_btc_bought=match_btc,
                    match_total_cumulative_usd=match_total.invested,
                    match_total_cumulative_btc=match_total.btc,
                    match_total_running_cost_basis=match_total.cost_basis,
                    high_30_day=high,
                    ma_200_day=ma,
                )
            )

        final_price = closes[-1]
        smart_result = smart.result(final_price)
        same_result = same_base.result(final_price)
        match_result = match_total.result(final_price)

        return BacktestResult(
            smart_dca=smart_result,
            fixed_dca_same_base=same_result,
            fixed_dca_match_total=match_result,
            comparison=self._compare(smart_result, same_result, match_result),
            tier_breakdown=self._tier_breakdown(config.tiers, tier_counts),
            purchase_log=log,
        )

    def _compare(
        self,
        smart: StrategyResult,
        same_base: StrategyResult,
        match_total: StrategyResult,
    ) -> ComparisonMetrics:
        def extra_btc(baseline: StrategyResult) -> float:
            if baseline.total_btc <= 0:
                return 0.0
            return (smart.total_btc - baseline.total_btc) / baseline.total_btc * 100

        efficiency = (
            smart.return_percent / same_base.return_percent if same_base.return_percent != 0 else 0.0
        )

        return ComparisonMetrics(
            cost_basis_delta_same_base=smart.avg_cost_basis - same_base.avg_cost_basis,
            cost_basis_delta_match_total=smart.avg_cost_basis - match_total.avg_cost_basis,
            extra_btc_percent_same_base=extra_btc(same_base),
            extra_btc_percent_match_total=extra_btc(match_total),
            efficiency_ratio=efficiency,
        )

    def _tier_breakdown(
        self,
        tiers: Sequence[MultiplierTier],
        tier_counts: dict[str, list[float]],
    ) -> list[TierBreakdownEntry]:
        entries = []
        seen: set[str] = set()

        # Ascending threshold order
        for tier in sorted(tiers, key=lambda t: t.drop_percentage):
            label = tier.label
            if label in seen or label not in tier_counts:
                continue
            seen.add(label)
            count, extra_usd, extra_btc = tier_counts[label]
            entries.append(
                TierBreakdownEntry(
                    tier_name=label,
                    trigger_count=int(count),
                    extra_usd_spent=extra_usd,
                    extra_btc_acquired=extra_btc,
                )
            )

        return entries


def run_backtest(config: BacktestConfig, price_data: Sequence[DailyPriceData]) -> BacktestResult:
    """Run a single backtest with a fresh simulator."""
    return BacktestSimulator().run(config, price_data)
