"""Parameter sweep engine: runs many backtests concurrently and ranks them."""

import asyncio
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from smartdca.backtester.data import DailyPriceData
from smartdca.backtester.engine import BacktestConfig, BacktestSimulator
from smartdca.backtester.report import BacktestResult
from smartdca.backtester.walk_forward import WalkForwardEntry, WalkForwardSummary, WalkForwardValidator
from smartdca.core.logging import get_logger
from smartdca.optimizer.grid import SweepRequest, apply_preset, generate_combinations, normalize_rank_by

logger = get_logger(__name__)

TOP_RESULTS_WITH_DETAIL = 5


@dataclass
class SweepResultEntry:
    """One ranked configuration of a sweep.

    Attributes:
        rank: 1-based position after ranking
        config: Parameters that were simulated
        result: Backtest result (detail stripped below the top results)
        walk_forward: Train/test comparison when validation was requested
    """

    rank: int
    config: BacktestConfig
    result: BacktestResult
    walk_forward: WalkForwardEntry | None = None

    def to_dict(self, include_detail: bool = False) -> dict[str, Any]:
        data = {
            "rank": self.rank,
            "config": self.config.to_dict(),
            **self.result.to_dict(include_detail=include_detail),
        }
        data["walk_forward"] = self.walk_forward.to_dict() if self.walk_forward else None
        return data


@dataclass
class SweepResponse:
    """Ranked output of a parameter sweep."""

    total_combinations: int
    executed_combinations: int
    rank_by: str
    results: list[SweepResultEntry] = field(default_factory=list)
    top_results: list[SweepResultEntry] = field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None
    total_days: int = 0
    walk_forward: WalkForwardSummary | None = None

    @property
    def best(self) -> SweepResultEntry | None:
        return self.results[0] if self.results else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "total_combinations": self.total_combinations,
            "executed_combinations": self.executed_combinations,
            "rank_by": self.rank_by,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "total_days": self.total_days,
            "results": [r.to_dict() for r in self.results],
            "top_results": [r.to_dict(include_detail=True) for r in self.top_results],
            "walk_forward": self.walk_forward.to_dict() if self.walk_forward else None,
        }


def _rank_key(rank_by: str):
    if rank_by == "efficiency":
        return lambda r: -r.comparison.efficiency_ratio
    if rank_by == "costbasis":
        return lambda r: r.smart_dca.avg_cost_basis
    if rank_by == "extrabtc":
        return lambda r: -r.comparison.extra_btc_percent_same_base
    return lambda r: -r.smart_dca.return_percent


def default_batch_size() -> int:
    """Concurrent simulations per batch: CPU count clamped to [4, 16]."""
    return min(max(os.cpu_count() or 1, 4), 16)


class ParameterSweepService:
    """Runs a backtest for every configuration and ranks the results.

    Simulations are CPU-bound and run in worker threads, one batch at a
    time; each batch is awaited in full before the next starts.

    Example:
        service = ParameterSweepService()
        response = await service.execute_sweep(configs, prices, rank_by="costbasis")
        print(response.best.config)
    """

    def __init__(
        self,
        simulator: BacktestSimulator | None = None,
        batch_size: int | None = None,
    ):
        self.simulator = simulator or BacktestSimulator()
        self.batch_size = batch_size or default_batch_size()

    async def execute_sweep(
        self,
        configs: Sequence[BacktestConfig],
        price_data: Sequence[DailyPriceData],
        rank_by: str = "efficiency",
    ) -> SweepResponse:
        """Simulate and rank every configuration.

        Args:
            configs: Parameter combinations
            price_data: Daily prices shared by every simulation
            rank_by: efficiency, costbasis, extrabtc or returnpct

        Returns:
            SweepResponse with all results ranked and detail for the top 5

        Raises:
            ValueError: If rank_by is unknown or a simulation rejects its input
        """
        rank_key = normalize_rank_by(rank_by)
        total = len(configs)
        total_batches = (total + self.batch_size - 1) // self.batch_size

        logger.info(
            "sweep_starting",
            combinations=total,
            batch_size=self.batch_size,
            rank_by=rank_key,
        )

        pairs: list[tuple[BacktestConfig, BacktestResult]] = []
        for batch_index, start in enumerate(range(0, total, self.batch_size), start=1):
            batch = configs[start : start + self.batch_size]
            results = await asyncio.gather(
                *(asyncio.to_thread(self.simulator.run, config, price_data) for config in batch)
            )
            pairs.extend(zip(batch, results, strict=True))
            logger.info(
                "sweep_batch_complete",
                batch=batch_index,
                total_batches=total_batches,
                completed=len(pairs),
                total=total,
            )

        ranked = self.rank_results(pairs, rank_key)

        response = SweepResponse(
            total_combinations=total,
            executed_combinations=len(pairs),
            rank_by=rank_key,
            results=ranked,
            top_results=[
                SweepResultEntry(rank=e.rank, config=e.config, result=e.result)
                for e in ranked[:TOP_RESULTS_WITH_DETAIL]
            ],
            total_days=len(price_data),
        )
        if price_data:
            response.start_date = price_data[0].date
            response.end_date = price_data[-1].date

        # Keep the full day log only where it is returned
        for entry in ranked:
            entry.result = entry.result.summary()

        best = response.best
        logger.info(
            "sweep_complete",
            executed=response.executed_combinations,
            best_efficiency=best.result.comparison.efficiency_ratio if best else 0,
        )
        return response

    @staticmethod
    def rank_results(
        pairs: Sequence[tuple[BacktestConfig, BacktestResult]],
        rank_by: str,
    ) -> list[SweepResultEntry]:
        """Sort results by the chosen metric and assign ranks from 1."""
        key = _rank_key(normalize_rank_by(rank_by))
        ordered = sorted(pairs, key=lambda pair: key(pair[1]))
        return [
            SweepResultEntry(rank=i, config=config, result=result)
            for i, (config, result) in enumerate(ordered, start=1)
        ]

    async def run(
        self,
        request: SweepRequest,
        price_data: Sequence[DailyPriceData],
        defaults: BacktestConfig,
    ) -> SweepResponse:
        """Expand a request, run the sweep and optionally walk-forward validate it.

        Raises:
            ValueError: If the preset or rank_by is unknown, or the grid
                exceeds max_combinations
        """
        request = apply_preset(request)
        rank_key = normalize_rank_by(request.rank_by)
        configs = generate_combinations(request, defaults)

        if len(configs) > request.max_combinations:
            raise ValueError(
                f"Sweep would generate {len(configs)} combinations, "
                f"exceeding max_combinations of {request.max_combinations}. "
                "Narrow the parameter ranges or raise max_combinations."
            )

        response = await self.execute_sweep(configs, price_data, rank_key)

        if request.validate_walk_forward:
            validator = WalkForwardValidator(self.simulator)
            response.walk_forward = await asyncio.to_thread(
                validator.validate_all, response.results, price_data
            )
            by_rank = {e.rank: e.walk_forward for e in response.results}
            for entry in response.top_results:
                entry.walk_forward = by_rank.get(entry.rank)

        return response
