"""
Request models and boundary validation for the projection engine.

Loosely typed request bodies are parsed into frozen pydantic models here;
validate_request() returns a tagged result (Ok or Invalid) instead of raising,
so callers can decide how to surface rejected input.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Mapping, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from errors import FieldError


class ContributionFrequency(str, Enum):
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"
    ONE_TIME = "one_time"


# Payments per year; one-time contributions are handled separately
CONTRIBUTIONS_PER_YEAR = {
    ContributionFrequency.WEEKLY: 52,
    ContributionFrequency.BI_WEEKLY: 26,
    ContributionFrequency.MONTHLY: 12,
    ContributionFrequency.QUARTERLY: 4,
    ContributionFrequency.ANNUALLY: 1,
    ContributionFrequency.ONE_TIME: 0,
}


class RiskLevel(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATELY_CONSERVATIVE = "moderately_conservative"
    MODERATE = "moderate"
    MODERATELY_AGGRESSIVE = "moderately_aggressive"
    AGGRESSIVE = "aggressive"


class FilingStatus(str, Enum):
    SINGLE = "single"
    MARRIED_JOINTLY = "married_jointly"
    MARRIED_SEPARATELY = "married_separately"
    HEAD_OF_HOUSEHOLD = "head_of_household"


class PayFrequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    SEMIMONTHLY = "semimonthly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class _Request(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=False)


class ScenarioInput(_Request):
    """Financial assumptions for one projection scenario"""

    name: Optional[str] = Field(default=None, description="Label used when comparing scenarios")
    initial_amount: float = Field(..., ge=0, description="Balance invested at period 0")
    annual_return_rate: float = Field(..., ge=-1, le=5, description="Expected annual return as a fraction")
    volatility: Optional[float] = Field(default=None, ge=0, le=5, description="Std. dev. of the annual return")
    inflation_rate: float = Field(default=0.0, ge=0, le=1)
    fee_percentage: float = Field(default=0.0, ge=0, le=1, description="Annual fee as a fraction of the balance")
    tax_rate: float = Field(default=0.0, ge=0, le=1, description="Flat tax on positive growth")
    tax_deferred: bool = Field(default=False, description="When true, growth is not taxed")
    time_horizon_years: int = Field(..., ge=0)
    contribution_amount: float = Field(default=0.0, ge=0)
    contribution_frequency: ContributionFrequency = ContributionFrequency.MONTHLY
    contribution_growth_rate: float = Field(default=0.0, ge=0, le=1, description="Annual escalation of contributions")


class SimulationRequest(_Request):
    """Monte Carlo request: a scenario plus simulation controls"""

    scenario: ScenarioInput
    simulation_runs: int = Field(default=1000, ge=1)
    seed: Optional[int] = Field(default=None, ge=0)
    goal_amounts: Tuple[float, ...] = Field(default=(), description="Balances whose reach probability is reported")

    @field_validator("goal_amounts")
    @classmethod
    def _goals_non_negative(cls, value):
        if any(goal < 0 for goal in value):
            raise ValueError("goal amounts must be non-negative")
        return value


class ScenarioComparisonRequest(_Request):
    scenarios: Tuple[ScenarioInput, ...] = Field(..., min_length=1)

    @field_validator("scenarios")
    @classmethod
    def _unique_names(cls, value):
        # Unnamed scenarios are reported as scenario_<position>
        names = [scenario.name or f"scenario_{i + 1}" for i, scenario in enumerate(value)]
        if len(set(names)) != len(names):
            raise ValueError("scenario names must be unique")
        return value


class StrategyRequest(_Request):
    """Lump sum vs dollar-cost-averaging comparison request"""

    total_amount: float = Field(..., gt=0)
    time_horizon_years: int = Field(..., ge=1)
    risk_level: RiskLevel = RiskLevel.MODERATE
    dca_periods: int = Field(default=12, ge=1, description="Number of monthly tranches")
    expected_return_rate: Optional[float] = Field(default=None, ge=-1, le=5)
    inflation_rate: float = Field(default=0.025, ge=0, le=1)

    @model_validator(mode="after")
    def _tranches_fit_horizon(self):
        if self.dca_periods > self.time_horizon_years * 12:
            raise ValueError("dca_periods cannot exceed the number of months in the horizon")
        return self


class AllocationRequest(_Request):
    """Asset allocation request"""

    risk_level: RiskLevel
    age: Optional[int] = Field(default=None, ge=18, le=100)
    time_horizon_years: Optional[int] = Field(default=None, ge=1, le=50)
    custom_stock_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    current_allocation: Optional[Dict[str, float]] = None

    @field_validator("current_allocation")
    @classmethod
    def _allocation_bounds(cls, value):
        if value is not None and any(pct < 0 or pct > 100 for pct in value.values()):
            raise ValueError("allocation percentages must be within [0, 100]")
        return value


class WithholdingAllowances(_Request):
    """W-4 style withholding settings"""

    federal: int = Field(default=0, ge=0)
    state: int = Field(default=0, ge=0)
    additional: float = Field(default=0.0, ge=0, description="Extra federal withholding per pay period")
    is_tax_exempt: bool = False


class ContributionElection(_Request):
    """One retirement plan election (401k-style)"""

    is_percentage_based: bool = True
    contribution_percentage: float = Field(default=0.0, ge=0, le=100, description="Percent of gross pay")
    contribution_amount: float = Field(default=0.0, ge=0, description="Fixed amount per pay period")
    is_pretax: bool = True
    has_employer_match: bool = False
    employer_match_percentage: float = Field(default=0.0, ge=0, le=100,
                                             description="Percent of the employee contribution matched")
    employer_match_limit: float = Field(default=0.0, ge=0, le=100,
                                        description="Matched contributions capped at this percent of salary")


class WithholdingRequest(_Request):
    """Paycheck withholding request"""

    annual_salary: float = Field(..., ge=0)
    filing_status: FilingStatus = FilingStatus.SINGLE
    pay_frequency: PayFrequency = PayFrequency.BIWEEKLY
    state: str = Field(default="TX", min_length=2, max_length=2)
    allowances: WithholdingAllowances = WithholdingAllowances()
    contributions: Tuple[ContributionElection, ...] = ()
    bonuses: float = Field(default=0.0, ge=0)

    @field_validator("state")
    @classmethod
    def _state_upper(cls, value: str) -> str:
        return value.upper()


class OptimizeWithholdingRequest(WithholdingRequest):
    target_refund: float


class RetirementOptionsRequest(WithholdingRequest):
    options: Tuple[ContributionElection, ...] = Field(..., min_length=1)


class RetirementPlanRequest(_Request):
    """
    Retirement readiness request.

    Income, benefit and healthcare amounts are annual and in today's money;
    they are grown with inflation (healthcare with its own rate).
    """

    current_age: int = Field(..., ge=18, le=100)
    retirement_age: int = Field(..., ge=50, le=100)
    life_expectancy: int = Field(default=90, ge=65, le=120)
    current_savings: float = Field(..., ge=0)
    monthly_contribution: float = Field(default=0.0, ge=0)
    contribution_increase_rate: float = Field(default=0.0, ge=0, le=0.2,
                                              description="Annual escalation of the monthly contribution")
    expected_return_rate: float = Field(default=0.07, ge=-0.1, le=0.5)
    inflation_rate: float = Field(default=0.025, ge=0, le=0.2)
    current_annual_income: float = Field(default=0.0, ge=0)
    income_replacement_goal: float = Field(default=0.8, ge=0.1, le=2,
                                           description="Target retirement income as a fraction of current income")
    withdrawal_rate: float = Field(default=0.04, ge=0.01, le=0.1)
    withdrawal_tax_rate: float = Field(default=0.0, ge=0, le=0.5)
    social_security_income: float = Field(default=0.0, ge=0)
    pension_income: float = Field(default=0.0, ge=0)
    healthcare_costs: float = Field(default=0.0, ge=0)
    healthcare_inflation: float = Field(default=0.05, ge=0, le=0.2)
    volatility: Optional[float] = Field(default=None, ge=0, le=0.5)
    risk_free_rate: float = Field(default=0.03, ge=0, le=0.1)
    downside_deviation: Optional[float] = Field(default=None, ge=0, le=0.3)
    simulation_runs: Optional[int] = Field(default=None, ge=1)
    seed: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _ages_ordered(self):
        if self.retirement_age <= self.current_age:
            raise ValueError("retirement_age must be greater than current_age")
        if self.life_expectancy <= self.retirement_age:
            raise ValueError("life_expectancy must be greater than retirement_age")
        return self


class TaxableIncome(_Request):
    """Annual income by source"""

    wages: float = Field(default=0.0, ge=0)
    self_employment_income: float = Field(default=0.0, ge=0)
    investment_income: float = Field(default=0.0, ge=0)
    other_income: float = Field(default=0.0, ge=0)


class IncomeAdjustments(_Request):
    """Pre-tax amounts subtracted from total income to reach AGI"""

    retirement_401k: float = Field(default=0.0, ge=0)
    traditional_ira: float = Field(default=0.0, ge=0)
    hsa: float = Field(default=0.0, ge=0)
    other_pretax: float = Field(default=0.0, ge=0)


class ItemizedDeductions(_Request):
    mortgage_interest: float = Field(default=0.0, ge=0)
    property_taxes: float = Field(default=0.0, ge=0)
    charitable_donations: float = Field(default=0.0, ge=0)
    medical_expenses: float = Field(default=0.0, ge=0)
    student_loan_interest: float = Field(default=0.0, ge=0)
    other_deductions: float = Field(default=0.0, ge=0)


class TaxCredits(_Request):
    child_tax_credit: float = Field(default=0.0, ge=0)
    child_and_dependent_care: float = Field(default=0.0, ge=0)
    education_credits: float = Field(default=0.0, ge=0)
    energy_credits: float = Field(default=0.0, ge=0)
    other_credits: float = Field(default=0.0, ge=0)


class TaxEstimateRequest(_Request):
    """Annual federal income tax estimate request"""

    filing_status: FilingStatus = FilingStatus.SINGLE
    income: TaxableIncome = TaxableIncome()
    adjustments: IncomeAdjustments = IncomeAdjustments()
    use_standard_deduction: bool = True
    itemized_deductions: ItemizedDeductions = ItemizedDeductions()
    credits: TaxCredits = TaxCredits()
    withholding_to_date: float = Field(default=0.0, ge=0)


T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successfully validated request"""
    value: T


@dataclass(frozen=True)
class Invalid:
    """Rejected request with one entry per offending field"""
    errors: Tuple[FieldError, ...]


ValidationOutcome = Union[Ok, Invalid]


def _field_errors(exc: ValidationError) -> Tuple[FieldError, ...]:
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "request"
        errors.append(FieldError(location, error.get("msg", "invalid value")))
    return tuple(errors)


def validate_request(model_cls: Type[T], payload: Union[T, Mapping[str, Any]]) -> ValidationOutcome:
    """
    Validate a request body against a request model.

    Args:
        model_cls: Request model class (e.g. ScenarioInput)
        payload: Mapping of raw values, or an already-built model instance

    Returns:
        Ok(model) when the payload is valid, Invalid(errors) otherwise
    """
    if isinstance(payload, model_cls):
        return Ok(payload)
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if not isinstance(payload, Mapping):
        return Invalid((FieldError("request", f"expected an object, got {type(payload).__name__}"),))
    try:
        return Ok(model_cls.model_validate(dict(payload)))
    except ValidationError as exc:
        return Invalid(_field_errors(exc))
