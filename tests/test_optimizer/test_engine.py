"""Tests for the parameter sweep service."""

import pytest

from smartdca.backtester.engine import BacktestConfig
from smartdca.optimizer.engine import (
    TOP_RESULTS_WITH_DETAIL,
    ParameterSweepService,
    default_batch_size,
)
from smartdca.optimizer.grid import SweepRequest, TierInput, TierSet, generate_combinations
from smartdca.strategies.multiplier import MultiplierTier

DEFAULTS = BacktestConfig(tiers=(MultiplierTier(0.05, 1.5), MultiplierTier(0.10, 2.0)))


def _dip_closes(n=60):
    """Oscillating prices so tiers and the bear boost both trigger."""
    pattern = [100.0, 96.0, 92.0, 88.0, 84.0, 90.0, 95.0, 99.0]
    return [pattern[i % len(pattern)] for i in range(n)]


@pytest.fixture
def prices(daily_prices):
    return daily_prices(_dip_closes())


class TestExecuteSweep:
    async def test_ranks_by_efficiency_descending(self, prices):
        configs = generate_combinations(
            SweepRequest(bear_boost_factors=[0.5, 1.0, 2.0], max_multiplier_caps=[2.0, 5.0]),
            DEFAULTS,
        )
        response = await ParameterSweepService(batch_size=2).execute_sweep(configs, prices)

        assert response.total_combinations == 6
        assert response.executed_combinations == 6
        assert [e.rank for e in response.results] == [1, 2, 3, 4, 5, 6]
        effs = [e.result.comparison.efficiency_ratio for e in response.results]
        assert effs == sorted(effs, reverse=True)

    async def test_ranks_by_cost_basis_ascending(self, prices):
        configs = generate_combinations(SweepRequest(max_multiplier_caps=[1.0, 2.0, 4.0]), DEFAULTS)
        response = await ParameterSweepService().execute_sweep(configs, prices, rank_by="costbasis")

        costs = [e.result.smart_dca.avg_cost_basis for e in response.results]
        assert costs == sorted(costs)
        assert response.rank_by == "costbasis"

    async def test_top_results_keep_detail(self, prices):
        configs = generate_combinations(
            SweepRequest(base_daily_amounts=[10.0, 20.0, 30.0], max_multiplier_caps=[2.0, 4.0]),
            DEFAULTS,
        )
        response = await ParameterSweepService().execute_sweep(configs, prices)

        assert len(response.top_results) == TOP_RESULTS_WITH_DETAIL
        assert all(len(e.result.purchase_log) == len(prices) for e in response.top_results)
        assert all(e.result.purchase_log == [] for e in response.results)
        assert [e.rank for e in response.top_results] == [1, 2, 3, 4, 5]

    async def test_response_period(self, prices):
        response = await ParameterSweepService().execute_sweep([DEFAULTS], prices)

        assert response.start_date == prices[0].date
        assert response.end_date == prices[-1].date
        assert response.total_days == len(prices)
        assert response.best.rank == 1

    async def test_invalid_rank_by(self, prices):
        with pytest.raises(ValueError, match="Unknown rank_by"):
            await ParameterSweepService().execute_sweep([DEFAULTS], prices, rank_by="sharpe")


class TestRun:
    async def test_preset_within_cap(self, prices):
        request = SweepRequest(preset="conservative")
        response = await ParameterSweepService().run(request, prices, DEFAULTS)

        assert response.total_combinations == 24

    async def test_full_preset_exceeds_default_cap(self, prices):
        with pytest.raises(ValueError, match="exceeding max_combinations of 1000"):
            await ParameterSweepService().run(SweepRequest(preset="full"), prices, DEFAULTS)

    async def test_max_combinations_enforced(self, prices):
        request = SweepRequest(base_daily_amounts=[1.0, 2.0, 3.0], max_combinations=2)

        with pytest.raises(ValueError, match="3 combinations"):
            await ParameterSweepService().run(request, prices, DEFAULTS)

    async def test_unknown_preset(self, prices):
        with pytest.raises(ValueError, match="Unknown preset"):
            await ParameterSweepService().run(SweepRequest(preset="wild"), prices, DEFAULTS)

    async def test_walk_forward_attached(self, daily_prices):
        prices = daily_prices(_dip_closes(120))
        request = SweepRequest(
            max_multiplier_caps=[2.0, 4.0],
            tier_sets=[TierSet(tiers=[TierInput(drop_percentage=10, multiplier=2.0)])],
            validate_walk_forward=True,
        )

        response = await ParameterSweepService().run(request, prices, DEFAULTS)

        assert response.walk_forward is not None
        assert response.walk_forward.total_validated == 2
        assert all(e.walk_forward is not None for e in response.top_results)
        assert response.top_results[0].walk_forward.rank == 1

    async def test_walk_forward_skipped_on_short_history(self, prices):
        request = SweepRequest(validate_walk_forward=True)

        response = await ParameterSweepService().run(request, prices, DEFAULTS)

        # 60 days split 70/30 leaves 18 test days
        assert response.walk_forward.total_validated == 0
        assert response.top_results[0].walk_forward is None


def test_to_dict_shape():
    from smartdca.optimizer.engine import SweepResponse

    data = SweepResponse(total_combinations=0, executed_combinations=0, rank_by="efficiency").to_dict()

    assert data["results"] == []
    assert data["top_results"] == []
    assert data["walk_forward"] is None


def test_default_batch_size_clamped():
    assert 4 <= default_batch_size() <= 16
