"""Sweep requests, presets and parameter grid expansion."""

from datetime import date
from itertools import product
from typing import Annotated

from pydantic import BaseModel, Field

from smartdca.backtester.engine import BacktestConfig
from smartdca.core.logging import get_logger
from smartdca.strategies.multiplier import MultiplierTier

logger = get_logger(__name__)

PositiveFloat = Annotated[float, Field(gt=0)]
PositiveInt = Annotated[int, Field(gt=0)]

RANK_OPTIONS = ("efficiency", "costbasis", "extrabtc", "returnpct")


class TierInput(BaseModel):
    """A tier as entered by users: drop in percent (10 = 10%)."""

    drop_percentage: float = Field(ge=0.0, le=100.0)
    multiplier: float = Field(gt=0.0)

    def to_tier(self) -> MultiplierTier:
        """Convert to the calculator's fractional form."""
        return MultiplierTier(drop_percentage=self.drop_percentage / 100, multiplier=self.multiplier)


class TierSet(BaseModel):
    """One complete tier configuration to sweep."""

    tiers: list[TierInput]

    def to_tiers(self) -> tuple[MultiplierTier, ...]:
        return tuple(t.to_tier() for t in self.tiers)


class SweepRequest(BaseModel):
    """Parameter ranges (or a named preset) for a sweep.

    Empty lists fall back to the production default for that parameter.
    """

    start_date: date | None = None
    end_date: date | None = None
    preset: str | None = None
    base_daily_amounts: list[PositiveFloat] = Field(default_factory=list)
    high_lookback_days: list[PositiveInt] = Field(default_factory=list)
    bear_market_ma_periods: list[PositiveInt] = Field(default_factory=list)
    bear_boost_factors: list[PositiveFloat] = Field(default_factory=list)
    max_multiplier_caps: list[PositiveFloat] = Field(default_factory=list)
    tier_sets: list[TierSet] = Field(default_factory=list)
    rank_by: str = "efficiency"
    max_combinations: int = Field(default=1000, gt=0)
    validate_walk_forward: bool = Field(default=False, alias="validate")

    model_config = {"populate_by_name": True}


def _tier_set(*pairs: tuple[float, float]) -> TierSet:
    return TierSet(tiers=[TierInput(drop_percentage=d, multiplier=m) for d, m in pairs])


class SweepPresets:
    """Predefined parameter ranges."""

    NAMES = ("conservative", "full")

    @classmethod
    def get(cls, name: str) -> SweepRequest:
        """Get a preset by name (case-insensitive).

        Raises:
            ValueError: If the preset name is not recognized
        """
        key = name.lower()
        if key == "conservative":
            return cls.conservative()
        if key == "full":
            return cls.full()
        raise ValueError(f"Unknown preset '{name}'. Available presets: {', '.join(cls.NAMES)}")

    @staticmethod
    def conservative() -> SweepRequest:
        """24 combinations around the production settings."""
        return SweepRequest(
            base_daily_amounts=[10.0, 15.0, 20.0],
            high_lookback_days=[21, 30],
            bear_market_ma_periods=[200],
            bear_boost_factors=[1.0, 1.5],
            max_multiplier_caps=[3.0, 4.0],
            tier_sets=[_tier_set((10, 1.5), (20, 2.0), (30, 2.5))],
        )

    @staticmethod
    def full() -> SweepRequest:
        """2160 combinations; needs a raised max_combinations."""
        return SweepRequest(
            base_daily_amounts=[10.0, 15.0, 20.0, 25.0, 30.0],
            high_lookback_days=[14, 21, 30, 60],
            bear_market_ma_periods=[100, 150, 200],
            bear_boost_factors=[1.0, 1.25, 1.5, 2.0],
            max_multiplier_caps=[3.0, 4.0, 5.0],
            tier_sets=[
                _tier_set((10, 1.5), (20, 2.0), (30, 2.5)),
                _tier_set((15, 1.8), (25, 2.5), (35, 3.0)),
                _tier_set((10, 1.3), (20, 1.8), (30, 2.3)),
            ],
        )


def apply_preset(request: SweepRequest) -> SweepRequest:
    """Fill the lists the caller left empty from the named preset."""
    if not request.preset:
        return request

    preset = SweepPresets.get(request.preset)
    updates = {}
    for name in (
        "base_daily_amounts",
        "high_lookback_days",
        "bear_market_ma_periods",
        "bear_boost_factors",
        "max_multiplier_caps",
        "tier_sets",
    ):
        if not getattr(request, name):
            updates[name] = getattr(preset, name)

    return request.model_copy(update=updates)


def normalize_rank_by(rank_by: str) -> str:
    """Validate a ranking metric name.

    Raises:
        ValueError: If the metric is unknown
    """
    key = rank_by.lower()
    if key not in RANK_OPTIONS:
        raise ValueError(
            f"Unknown rank_by value '{rank_by}'. Valid options: {', '.join(RANK_OPTIONS)}"
        )
    return key


def generate_combinations(request: SweepRequest, defaults: BacktestConfig) -> list[BacktestConfig]:
    """Expand a request into every parameter combination.

    Order: base amount x lookback x MA period x bear boost x cap x tier set.

    Args:
        request: Parameter ranges
        defaults: Production configuration for parameters without a range

    Returns:
        List of BacktestConfig
    """
    base_amounts = request.base_daily_amounts or [defaults.base_daily_amount]
    lookbacks = request.high_lookback_days or [defaults.high_lookback_days]
    ma_periods = request.bear_market_ma_periods or [defaults.bear_market_ma_period]
    boosts = request.bear_boost_factors or [defaults.bear_boost_factor]
    caps = request.max_multiplier_caps or [defaults.max_multiplier_cap]
    tier_sets = [ts.to_tiers() for ts in request.tier_sets] or [defaults.tiers]

    combinations = [
        BacktestConfig(
            base_daily_amount=base,
            high_lookback_days=lookback,
            bear_market_ma_period=ma,
            bear_boost_factor=boost,
            max_multiplier_cap=cap,
            tiers=tiers,
        )
        for base, lookback, ma, boost, cap, tiers in product(
            base_amounts, lookbacks, ma_periods, boosts, caps, tier_sets
        )
    ]

    logger.info("combinations_generated", count=len(combinations))
    return combinations
