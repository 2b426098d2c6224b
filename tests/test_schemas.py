"""
Unit tests for request models and boundary validation.
"""
import pytest
from pydantic import ValidationError
from errors import FieldError, ScenarioValidationError
from schemas import (
    ContributionFrequency, Invalid, Ok, RetirementPlanRequest, ScenarioComparisonRequest, ScenarioInput,
    SimulationRequest, StrategyRequest, TaxEstimateRequest, WithholdingRequest, validate_request
)


class TestScenarioInput:
    """Test scenario field bounds"""

    def test_defaults(self):
        """Test optional fields default to no fees, taxes or contributions"""
        scenario = ScenarioInput(initial_amount=1_000, annual_return_rate=0.05, time_horizon_years=5)
        assert scenario.fee_percentage == 0
        assert scenario.tax_rate == 0
        assert scenario.contribution_frequency is ContributionFrequency.MONTHLY
        assert scenario.volatility is None

    @pytest.mark.parametrize("field,value", [
        ("initial_amount", -1),
        ("annual_return_rate", -1.5),
        ("annual_return_rate", 6),
        ("fee_percentage", 1.5),
        ("time_horizon_years", -1),
        ("contribution_amount", -10),
        ("inflation_rate", -0.01),
    ])
    def test_out_of_range_rejected(self, field, value):
        """Test each bound is enforced"""
        values = dict(initial_amount=1_000, annual_return_rate=0.05, time_horizon_years=5)
        values[field] = value
        with pytest.raises(ValidationError):
            ScenarioInput(**values)

    def test_unknown_fields_rejected(self):
        """Test misspelled fields are not silently ignored"""
        with pytest.raises(ValidationError):
            ScenarioInput(initial_amount=1_000, annual_return_rate=0.05, time_horizon_years=5, horizon=10)

    def test_frozen(self):
        """Test validated requests cannot be mutated"""
        scenario = ScenarioInput(initial_amount=1_000, annual_return_rate=0.05, time_horizon_years=5)
        with pytest.raises(ValidationError):
            scenario.initial_amount = 5


class TestRequestModels:
    """Test cross-field validation"""

    def test_negative_goal_rejected(self):
        """Test goal amounts must be non-negative"""
        scenario = dict(initial_amount=1_000, annual_return_rate=0.05, time_horizon_years=5)
        with pytest.raises(ValidationError):
            SimulationRequest(scenario=scenario, goal_amounts=[-1])

    def test_duplicate_scenario_names(self):
        """Test scenario names must be unique within a comparison"""
        scenario = dict(name="a", initial_amount=1_000, annual_return_rate=0.05, time_horizon_years=5)
        with pytest.raises(ValidationError, match="unique"):
            ScenarioComparisonRequest(scenarios=[scenario, scenario])

    def test_generated_name_collision(self):
        """Test a scenario named scenario_2 collides with an unnamed second scenario"""
        base = dict(initial_amount=1_000, annual_return_rate=0.05, time_horizon_years=5)
        with pytest.raises(ValidationError, match="unique"):
            ScenarioComparisonRequest(scenarios=[{**base, 'name': 'scenario_2'}, base])

    def test_unnamed_scenarios_allowed(self):
        """Test several unnamed scenarios get distinct generated names"""
        base = dict(initial_amount=1_000, annual_return_rate=0.05, time_horizon_years=5)
        assert len(ScenarioComparisonRequest(scenarios=[base, base, base]).scenarios) == 3

    def test_tranches_must_fit_horizon(self):
        """Test DCA tranches cannot exceed the months in the horizon"""
        with pytest.raises(ValidationError):
            StrategyRequest(total_amount=10_000, time_horizon_years=1, dca_periods=24)

    def test_state_uppercased(self):
        """Test state codes are normalized"""
        assert WithholdingRequest(annual_salary=50_000, state="ca").state == "CA"

    @pytest.mark.parametrize("ages", [
        dict(current_age=65, retirement_age=65),
        dict(current_age=50, retirement_age=70, life_expectancy=70),
    ])
    def test_retirement_ages_ordered(self, ages):
        """Test retirement must come after today and before life expectancy"""
        with pytest.raises(ValidationError):
            RetirementPlanRequest(**ages)

    def test_retirement_defaults(self):
        """Test retirement plan defaults"""
        request = RetirementPlanRequest(current_age=40, retirement_age=65)
        assert request.life_expectancy == 90
        assert request.withdrawal_rate == 0.04
        assert request.simulation_runs is None

    def test_tax_estimate_nested_defaults(self):
        """Test every tax estimate section defaults to zero amounts"""
        request = TaxEstimateRequest()
        assert request.income.wages == 0
        assert request.use_standard_deduction

    def test_tax_estimate_negative_amount(self):
        """Test negative amounts are rejected in nested sections"""
        with pytest.raises(ValidationError):
            TaxEstimateRequest(income={'wages': -1})


class TestValidateRequest:
    """Test the tagged validation outcome"""

    def test_ok(self):
        """Test a valid payload returns Ok with the model"""
        outcome = validate_request(ScenarioInput, {'initial_amount': 100, 'annual_return_rate': 0.05,
                                                   'time_horizon_years': 3})
        assert isinstance(outcome, Ok)
        assert outcome.value.initial_amount == 100

    def test_model_passes_through(self):
        """Test an existing model instance is accepted as is"""
        scenario = ScenarioInput(initial_amount=100, annual_return_rate=0.05, time_horizon_years=3)
        assert validate_request(ScenarioInput, scenario).value is scenario

    def test_invalid_lists_every_field(self):
        """Test every offending field is reported"""
        outcome = validate_request(ScenarioInput, {'initial_amount': -5, 'annual_return_rate': 0.05,
                                                   'time_horizon_years': -1})
        assert isinstance(outcome, Invalid)
        assert {error.field for error in outcome.errors} == {'initial_amount', 'time_horizon_years'}

    def test_missing_fields(self):
        """Test required fields are reported when absent"""
        outcome = validate_request(ScenarioInput, {})
        fields = {error.field for error in outcome.errors}
        assert {'initial_amount', 'annual_return_rate', 'time_horizon_years'} <= fields

    def test_nested_field_path(self):
        """Test nested errors use dotted paths"""
        outcome = validate_request(SimulationRequest, {'scenario': {'initial_amount': 100,
                                                                    'annual_return_rate': 0.05,
                                                                    'time_horizon_years': -2}})
        assert outcome.errors[0].field == 'scenario.time_horizon_years'

    def test_non_mapping(self):
        """Test a non-object payload is rejected"""
        outcome = validate_request(ScenarioInput, [1, 2, 3])
        assert isinstance(outcome, Invalid)
        assert outcome.errors[0].field == 'request'


class TestErrors:
    """Test the validation error type"""

    def test_message_joins_errors(self):
        """Test the message lists every field"""
        error = ScenarioValidationError([FieldError('a', 'bad'), FieldError('b', 'worse')])
        assert str(error) == "a: bad; b: worse"
        assert isinstance(error, ValueError)

    def test_single(self):
        """Test the single-field constructor"""
        error = ScenarioValidationError.single('state', 'unknown')
        assert error.errors == (FieldError('state', 'unknown'),)
