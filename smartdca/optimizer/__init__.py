"""Parameter sweeps over the smart DCA rule."""

from smartdca.optimizer.engine import ParameterSweepService, SweepResponse, SweepResultEntry
from smartdca.optimizer.grid import (
    SweepPresets,
    SweepRequest,
    TierInput,
    TierSet,
    generate_combinations,
)
from smartdca.optimizer.report import SweepReport

__all__ = [
    "TierInput",
    "TierSet",
    "SweepRequest",
    "SweepPresets",
    "generate_combinations",
    "SweepResultEntry",
    "SweepResponse",
    "ParameterSweepService",
    "SweepReport",
]
