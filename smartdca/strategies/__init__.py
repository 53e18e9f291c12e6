"""Purchase sizing strategies.

The multiplier rule here backs both the live daily purchase and every
backtest, so offline validation and live behavior stay identical.
"""

from smartdca.strategies.multiplier import (
    BASE_TIER_LABEL,
    MultiplierCalculator,
    MultiplierResult,
    MultiplierTier,
    calculate,
)

__all__ = ["BASE_TIER_LABEL", "MultiplierCalculator", "MultiplierResult", "MultiplierTier", "calculate"]
