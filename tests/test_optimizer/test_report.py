"""Tests for sweep reports."""

import csv

import pytest

from smartdca.backtester.engine import BacktestConfig
from smartdca.optimizer.engine import ParameterSweepService, SweepResponse
from smartdca.optimizer.grid import SweepRequest, generate_combinations
from smartdca.optimizer.report import SweepReport
from smartdca.strategies.multiplier import MultiplierTier

DEFAULTS = BacktestConfig(tiers=(MultiplierTier(0.10, 2.0), MultiplierTier(0.20, 3.0)))


@pytest.fixture
async def response(daily_prices):
    prices = daily_prices([100.0, 92.0, 85.0, 78.0, 90.0, 97.0, 88.0, 80.0])
    configs = generate_combinations(SweepRequest(base_daily_amounts=[10.0, 20.0]), DEFAULTS)
    return await ParameterSweepService().execute_sweep(configs, prices)


async def test_summary_lists_top_results(response):
    text = SweepReport(response).print_summary(top_n=1)

    assert "PARAMETER SWEEP REPORT" in text
    assert "Combinations:   2/2" in text
    assert "#1" in text
    assert "#2" not in text
    assert "tiers=[10%:2x 20%:3x]" in text


async def test_compact_table(response):
    text = SweepReport(response).print_compact()

    lines = text.strip().splitlines()
    assert lines[0].startswith("#")
    assert len(lines) == 4  # header, rule, two rows


async def test_save_csv(response, tmp_path):
    path = tmp_path / "sweep_results.csv"
    SweepReport(response).save_csv(path)

    with open(path) as f:
        rows = list(csv.DictReader(f))

    assert len(rows) == 2
    assert rows[0]["rank"] == "1"
    assert rows[0]["tiers"] == "10%:2x 20%:3x"
    assert rows[0]["overfit_warning"] == ""


async def test_save_best_params(response, tmp_path):
    path = tmp_path / "best_parameters.env"
    SweepReport(response).save_best_params(path)

    content = path.read_text()
    best = response.best.config
    assert f"SMARTDCA_DCA_BASE_DAILY_AMOUNT={best.base_daily_amount}" in content
    assert (
        'SMARTDCA_DCA_MULTIPLIER_TIERS=[{"drop_percentage": 0.1, "multiplier": 2}, '
        '{"drop_percentage": 0.2, "multiplier": 3}]'
    ) in content


def test_empty_response():
    report = SweepReport(SweepResponse(total_combinations=0, executed_combinations=0, rank_by="efficiency"))

    assert report.print_summary() == "No sweep results to display."
    assert report.print_compact() == "No results."
    assert report.best_parameters() == {}
