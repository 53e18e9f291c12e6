"""Walk-forward validation: detect overfitting with a train/test split."""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from smartdca.backtester.data import DailyPriceData
from smartdca.backtester.engine import BacktestConfig, BacktestSimulator
from smartdca.core.logging import get_logger

if TYPE_CHECKING:
    from smartdca.optimizer.engine import SweepResultEntry

logger = get_logger(__name__)

MIN_SPLIT_DAYS = 30
RETURN_DEGRADATION_THRESHOLD = -20.0
EFFICIENCY_DEGRADATION_THRESHOLD = -0.3


@dataclass
class WalkForwardEntry:
    """Train/test comparison for one configuration.

    Attributes:
        train_return: Smart DCA return percent on the training window
        test_return: Smart DCA return percent on the test window
        train_efficiency: Efficiency ratio on the training window
        test_efficiency: Efficiency ratio on the test window
        return_degradation: test_return - train_return
        efficiency_degradation: test_efficiency - train_efficiency
        overfit_warning: True when either degradation crosses its threshold
    """

    train_return: float
    test_return: float
    train_efficiency: float
    test_efficiency: float
    return_degradation: float
    efficiency_degradation: float
    overfit_warning: bool
    rank: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "train_return": self.train_return,
            "test_return": self.test_return,
            "train_efficiency": self.train_efficiency,
            "test_efficiency": self.test_efficiency,
            "return_degradation": self.return_degradation,
            "efficiency_degradation": self.efficiency_degradation,
            "overfit_warning": self.overfit_warning,
        }


@dataclass
class WalkForwardSummary:
    """Walk-forward results across a whole sweep."""

    train_ratio: float
    train_end: date | None = None
    test_start: date | None = None
    overfit_count: int = 0
    total_validated: int = 0
    entries: list[WalkForwardEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "train_ratio": self.train_ratio,
            "train_end": self.train_end.isoformat() if self.train_end else None,
            "test_start": self.test_start.isoformat() if self.test_start else None,
            "overfit_count": self.overfit_count,
            "total_validated": self.total_validated,
            "entries": [e.to_dict() for e in self.entries],
        }


class WalkForwardValidator:
    """Runs the simulator on an earlier train window and a later test window.

    Example:
        validator = WalkForwardValidator()
        entry = validator.validate(config, prices)
        if entry and entry.overfit_warning:
            print("Parameters degrade out of sample")
    """

    def __init__(self, simulator: BacktestSimulator | None = None):
        self.simulator = simulator or BacktestSimulator()

    @staticmethod
    def split_index(num_days: int, train_ratio: float) -> int:
        """Index of the first test day."""
        return math.floor(num_days * train_ratio)

    def validate(
        self,
        config: BacktestConfig,
        full_data: Sequence[DailyPriceData],
        train_ratio: float = 0.70,
    ) -> WalkForwardEntry | None:
        """Validate one configuration.

        Args:
            config: Simulation parameters
            full_data: Complete daily history in date order
            train_ratio: Fraction of days in the training window

        Returns:
            WalkForwardEntry, or None when either window has fewer than 30 days
        """
        split = self.split_index(len(full_data), train_ratio)
        train_data = full_data[:split]
        test_data = full_data[split:]

        if len(train_data) < MIN_SPLIT_DAYS or len(test_data) < MIN_SPLIT_DAYS:
            logger.debug(
                "walk_forward_insufficient_data",
                train_days=len(train_data),
                test_days=len(test_data),
            )
            return None

        train = self.simulator.run(config, train_data)
        test = self.simulator.run(config, test_data)

        return_degradation = test.smart_dca.return_percent - train.smart_dca.return_percent
        efficiency_degradation = (
            test.comparison.efficiency_ratio - train.comparison.efficiency_ratio
        )

        return WalkForwardEntry(
            train_return=train.smart_dca.return_percent,
            test_return=test.smart_dca.return_percent,
            train_efficiency=train.comparison.efficiency_ratio,
            test_efficiency=test.comparison.efficiency_ratio,
            return_degradation=return_degradation,
            efficiency_degradation=efficiency_degradation,
            overfit_warning=(
                return_degradation < RETURN_DEGRADATION_THRESHOLD
                or efficiency_degradation < EFFICIENCY_DEGRADATION_THRESHOLD
            ),
        )

    def validate_all(
        self,
        results: Sequence["SweepResultEntry"],
        full_data: Sequence[DailyPriceData],
        train_ratio: float = 0.70,
    ) -> WalkForwardSummary:
        """Validate every configuration of a sweep.

        Entries keep the rank of the sweep result they belong to; configurations
        with too little data are left out.
        """
        split = self.split_index(len(full_data), train_ratio)
        summary = WalkForwardSummary(train_ratio=train_ratio)
        if 0 < split <= len(full_data):
            summary.train_end = full_data[split - 1].date
        if split < len(full_data):
            summary.test_start = full_data[split].date

        for result in results:
            entry = self.validate(result.config, full_data, train_ratio)
            if entry is None:
                continue
            entry.rank = result.rank
            result.walk_forward = entry
            summary.entries.append(entry)

        summary.total_validated = len(summary.entries)
        summary.overfit_count = sum(1 for e in summary.entries if e.overfit_warning)

        logger.info(
            "walk_forward_complete",
            validated=summary.total_validated,
            overfit=summary.overfit_count,
        )
        return summary
