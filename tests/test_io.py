"""
Unit tests for result serialization and CSV export.
"""
import io
import json
import pytest
import pandas as pd
from decimal import Decimal
from schemas import ScenarioInput
from deterministic import DeterministicProjector
from simulation import MonteCarloSimulator
from io_utils import (
    export_final_balances_csv, export_percentile_trajectories_csv, export_projection_csv,
    load_request_json, result_to_dict, result_to_json, to_float, write_text
)


@pytest.fixture
def scenario():
    return ScenarioInput(initial_amount=10_000, annual_return_rate=0.07, time_horizon_years=3,
                         contribution_amount=100, inflation_rate=0.02)


class TestToFloat:
    """Test Decimal to float conversion"""

    def test_rounds_half_up(self):
        """Test money rounds half-up to cents"""
        assert to_float(Decimal("1.005")) == 1.01
        assert to_float(Decimal("2.344")) == 2.34

    def test_rate_precision(self):
        """Test custom decimal places"""
        assert to_float(Decimal("0.0712345678"), 6) == 0.071235


class TestResultToDict:
    """Test JSON conversion of results"""

    def test_projection_round_trips_through_json(self, scenario):
        """Test projection results serialize to plain JSON"""
        result = DeterministicProjector(scenario).run_projection()
        data = json.loads(result_to_json(result))

        assert len(data['annual_projection']) == 4
        assert data['scenario']['initial_amount'] == 10_000
        assert data['scenario']['contribution_frequency'] == 'monthly'
        assert isinstance(data['summary']['final_balance'], float)

    def test_money_in_cents_rates_precise(self, scenario):
        """Test balances are rounded to cents and rates keep six places"""
        data = result_to_dict(DeterministicProjector(scenario).run_projection())
        summary = data['summary']

        assert summary['final_balance'] == round(summary['final_balance'], 2)
        assert summary['compound_annual_growth_rate'] != round(summary['compound_annual_growth_rate'], 2)

    def test_arrays_excluded_by_default(self, scenario):
        """Test simulation arrays are only included on request"""
        result = MonteCarloSimulator(scenario, simulation_runs=5, seed=1).run_simulation()

        assert 'wealth_paths' not in result_to_dict(result)
        full = result_to_dict(result, include_arrays=True)
        assert len(full['wealth_paths']) == 5
        assert set(full['percentile_trajectories']) == {'p10', 'p25', 'p50', 'p75', 'p90'}

    def test_none_preserved(self):
        """Test undefined values stay null"""
        scenario = ScenarioInput(initial_amount=0, annual_return_rate=0.05, time_horizon_years=2,
                                 contribution_amount=10)
        data = result_to_dict(DeterministicProjector(scenario).run_projection())
        assert data['summary']['compound_annual_growth_rate'] is None


class TestCsvExport:
    """Test CSV exports"""

    def test_annual_projection_csv(self, scenario):
        """Test the annual schedule exports one row per year"""
        csv = export_projection_csv(DeterministicProjector(scenario).run_projection())
        df = pd.read_csv(io.StringIO(csv))

        assert list(df['year']) == [0, 1, 2, 3]
        assert df['closing_balance'].iloc[0] == 10_000

    def test_monthly_projection_csv(self, scenario):
        """Test the monthly schedule exports when it was requested"""
        result = DeterministicProjector(scenario).run_projection(include_monthly=True)
        df = pd.read_csv(io.StringIO(export_projection_csv(result, monthly=True)))
        assert len(df) == 37
        assert 'month' in df.columns

    def test_monthly_missing(self, scenario):
        """Test asking for a monthly export without the schedule fails"""
        with pytest.raises(ValueError):
            export_projection_csv(DeterministicProjector(scenario).run_projection(), monthly=True)

    def test_simulation_exports(self, scenario):
        """Test trajectory and final balance exports"""
        result = MonteCarloSimulator(scenario, simulation_runs=8, seed=2).run_simulation()

        trajectories = pd.read_csv(io.StringIO(export_percentile_trajectories_csv(result)))
        assert list(trajectories.columns) == ['year', 'p10_balance', 'p25_balance', 'p50_balance',
                                              'p75_balance', 'p90_balance']
        assert len(trajectories) == 4

        finals = pd.read_csv(io.StringIO(export_final_balances_csv(result)))
        assert list(finals['simulation']) == list(range(1, 9))


class TestFiles:
    """Test request loading and writing"""

    def test_load_request(self, tmp_path):
        """Test a JSON object loads as a dict"""
        path = tmp_path / "request.json"
        path.write_text(json.dumps({'initial_amount': 5}))
        assert load_request_json(str(path)) == {'initial_amount': 5}

    def test_load_request_rejects_lists(self, tmp_path):
        """Test a request file must hold an object"""
        path = tmp_path / "request.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            load_request_json(str(path))

    def test_write_text_creates_directories(self, tmp_path):
        """Test exports create missing parent directories"""
        target = tmp_path / "out" / "schedule.csv"
        write_text(str(target), "a,b\n")
        assert target.read_text() == "a,b\n"
