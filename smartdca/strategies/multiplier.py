"""Smart DCA multiplier: buy more on dips and below the long-term average."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from smartdca.config import DcaSettings

BASE_TIER_LABEL = "Base"


@dataclass(frozen=True)
class MultiplierTier:
    """A price-drop threshold mapped to a purchase-size multiplier."""

    drop_percentage: float
    """Drop from the reference high as a fraction (0.10 = 10%)."""

    multiplier: float
    """Multiplier applied to the base amount when this tier is selected."""

    @property
    def label(self) -> str:
        return f">= {self.drop_percentage * 100:.1f}%"


@dataclass(frozen=True)
class MultiplierResult:
    """Outcome of one multiplier calculation, with the inputs that drove it."""

    multiplier: float
    """Final multiplier after the bear boost and the cap."""

    tier_label: str
    """Label of the selected tier, or "Base" when none qualified."""

    is_bear_market: bool
    bear_boost_applied: float
    drop_percentage: float
    high_30_day: float
    ma_200_day: float
    final_amount: float


def select_tier(drop_percentage: float, tiers: Sequence[MultiplierTier]) -> MultiplierTier | None:
    """Return the tier with the largest threshold not above ``drop_percentage``.

    Tiers may be given in any order.
    """
    best: MultiplierTier | None = None
    for tier in tiers:
        if tier.drop_percentage <= drop_percentage and (
            best is None or tier.drop_percentage > best.drop_percentage
        ):
            best = tier
    return best


def calculate(
    current_price: float,
    base_amount: float,
    high_30_day: float,
    ma_200_day: float,
    tiers: Sequence[MultiplierTier],
    bear_boost_factor: float,
    max_cap: float,
) -> MultiplierResult:
    """Calculate the purchase multiplier for a day.

    The tier multiplier and the bear boost are added, then capped:

        drop = clamp((high - price) / high, 0, 1)
        raw = tier_multiplier + (bear_boost_factor if price < ma else 0)
        final = min(raw, max_cap)

    A non-positive reference high yields the 1.0x "Base" result and a
    non-positive moving average never counts as a bear market. No input
    raises.

    Args:
        current_price: Today's price
        base_amount: Base daily purchase amount
        high_30_day: Highest close over the lookback window (0 if unknown)
        ma_200_day: Long-term simple moving average (0 if unknown)
        tiers: Drop tiers, in any order
        bear_boost_factor: Added to the multiplier in a bear market
        max_cap: Upper bound for the final multiplier

    Returns:
        MultiplierResult with the final multiplier and amount
    """
    is_bear_market = ma_200_day > 0 and current_price < ma_200_day

    if high_30_day <= 0:
        return MultiplierResult(
            multiplier=1.0,
            tier_label=BASE_TIER_LABEL,
            is_bear_market=is_bear_market,
            bear_boost_applied=0.0,
            drop_percentage=0.0,
            high_30_day=high_30_day,
            ma_200_day=ma_200_day,
            final_amount=base_amount,
        )

    drop_percentage = min(max((high_30_day - current_price) / high_30_day, 0.0), 1.0)

    tier = select_tier(drop_percentage, tiers)
    if tier is None:
        tier_multiplier = 1.0
        tier_label = BASE_TIER_LABEL
    else:
        tier_multiplier = tier.multiplier
        tier_label = tier.label

    bear_boost = bear_boost_factor if is_bear_market else 0.0
    final_multiplier = min(tier_multiplier + bear_boost, max_cap)

    return MultiplierResult(
        multiplier=final_multiplier,
        tier_label=tier_label,
        is_bear_market=is_bear_market,
        bear_boost_applied=bear_boost,
        drop_percentage=drop_percentage,
        high_30_day=high_30_day,
        ma_200_day=ma_200_day,
        final_amount=base_amount * final_multiplier,
    )


@dataclass
class MultiplierCalculator:
    """Multiplier rule bound to a tier set, bear boost and cap."""

    tiers: list[MultiplierTier] = field(default_factory=list)
    """Drop tiers (any order)."""

    bear_boost_factor: float = 1.5
    """Additive boost below the long-term moving average."""

    max_cap: float = 4.5
    """Upper bound for the final multiplier."""

    def calculate(
        self,
        current_price: float,
        base_amount: float,
        high_30_day: float,
        ma_200_day: float,
    ) -> MultiplierResult:
        """Calculate today's multiplier with the bound parameters."""
        return calculate(
            current_price,
            base_amount,
            high_30_day,
            ma_200_day,
            self.tiers,
            self.bear_boost_factor,
            self.max_cap,
        )

    @classmethod
    def from_settings(cls, settings: "DcaSettings") -> "MultiplierCalculator":
        """Build a calculator from the configured tiers."""
        return cls(
            tiers=[
                MultiplierTier(t.drop_percentage, t.multiplier) for t in settings.multiplier_tiers
            ],
            bear_boost_factor=settings.bear_boost_factor,
            max_cap=settings.max_multiplier_cap,
        )
