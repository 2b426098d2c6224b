"""
Retirement readiness planning.

Savings accumulate through the deterministic projector (monthly contributions
landing at each year end, escalated once a year). In retirement each year
withdraws what the income goal needs beyond inflation-indexed Social Security
and pension income, grossed up for tax on withdrawals, plus healthcare costs.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from scipy import stats

from compounding import ONE, ZERO, quantize_cents, to_decimal
from deterministic import MONTHS_PER_YEAR, DeterministicProjector, ProjectionResult
from logging_config import get_logger
from schemas import ContributionFrequency, RetirementPlanRequest, ScenarioInput
from simulation import DEFAULT_CHUNK_SIZE, DEFAULT_VOLATILITY, MonteCarloSimulator, goal_key
from tax import bisect_to_target

logger = get_logger(__name__)

ACCUMULATION = 'accumulation'
RETIREMENT = 'retirement'

DEFAULT_SIMULATION_RUNS = 1000
MAX_LONGEVITY_YEARS = 50
VAR_CONFIDENCE = 0.95
SAVINGS_TOLERANCE = Decimal("1")
SENSITIVITY_STEPS = (-0.02, -0.01, 0.0, 0.01, 0.02)
COMPOUNDING_FREQUENCIES = (('annual', 1), ('quarterly', 4), ('monthly', 12), ('daily', 365))


@dataclass(frozen=True)
class RetirementYear:
    """One year of the lifetime schedule"""
    age: int
    year: int
    phase: str
    opening_balance: Decimal
    contribution: Decimal
    growth: Decimal
    withdrawal: Decimal
    unmet_need: Decimal
    closing_balance: Decimal


@dataclass(frozen=True)
class RiskMetrics:
    """Single-period risk statistics of the assumed return"""
    expected_return: float
    volatility: float
    real_return_rate: float
    sharpe_ratio: Optional[float]
    sortino_ratio: Optional[float]
    value_at_risk_95: float


@dataclass(frozen=True)
class SuccessEstimate:
    """Share of simulated accumulations that reach the target nest egg"""
    simulation_runs: int
    seed: Optional[int]
    target_nest_egg: Decimal
    success_probability: float
    median_at_retirement: Decimal
    p10_at_retirement: Decimal
    p90_at_retirement: Decimal


@dataclass(frozen=True)
class SensitivityPoint:
    return_rate: float
    total_at_retirement: Decimal
    difference: Decimal


@dataclass(frozen=True)
class CompoundingEffect:
    frequency: str
    periods_per_year: int
    value: Decimal
    difference: Decimal


@dataclass(frozen=True)
class RetirementPlan:
    """Results from a retirement readiness plan"""
    request: RetirementPlanRequest
    years_to_retirement: int
    years_in_retirement: int
    total_at_retirement: Decimal
    future_value_current_savings: Decimal
    future_value_contributions: Decimal
    annual_withdrawal: Decimal
    guaranteed_income: Decimal
    annual_income: Decimal
    monthly_income: Decimal
    required_annual_income: Decimal
    income_replacement_ratio: Optional[Decimal]
    meets_income_goal: bool
    target_nest_egg: Decimal
    additional_monthly_savings: Decimal
    additional_savings_converged: bool
    total_required_monthly_savings: Decimal
    portfolio_longevity_years: int
    depletion_age: Optional[int]
    risk: RiskMetrics
    success: SuccessEstimate
    sensitivity: Tuple[SensitivityPoint, ...]
    compounding_effect: Tuple[CompoundingEffect, ...]
    schedule: Tuple[RetirementYear, ...]
    insights: Tuple[str, ...]


def accumulation_scenario(request: RetirementPlanRequest) -> ScenarioInput:
    """The saving years as a projection scenario"""
    return ScenarioInput(
        name=ACCUMULATION,
        initial_amount=request.current_savings,
        annual_return_rate=request.expected_return_rate,
        volatility=request.volatility,
        inflation_rate=request.inflation_rate,
        time_horizon_years=request.retirement_age - request.current_age,
        contribution_amount=request.monthly_contribution,
        contribution_frequency=ContributionFrequency.MONTHLY,
        contribution_growth_rate=request.contribution_increase_rate,
    )


def annual_need(request: RetirementPlanRequest, years_from_now: int) -> Decimal:
    """
    Gross withdrawal needed in a given year.

    Income goal and benefits grow with general inflation, healthcare with its
    own rate. The shortfall of benefits against the goal is grossed up for the
    tax on withdrawals; healthcare is added on top.
    """
    prices = (ONE + to_decimal(request.inflation_rate)) ** years_from_now
    goal = to_decimal(request.current_annual_income) * to_decimal(request.income_replacement_goal) * prices
    benefits = (to_decimal(request.social_security_income) + to_decimal(request.pension_income)) * prices
    gross = max(ZERO, goal - benefits) / (ONE - to_decimal(request.withdrawal_tax_rate))
    healthcare = to_decimal(request.healthcare_costs) * (ONE + to_decimal(request.healthcare_inflation)) ** years_from_now
    return gross + healthcare


def portfolio_longevity(balance: Decimal,
                        withdrawal: Decimal,
                        return_rate: Decimal,
                        inflation_rate: Decimal,
                        healthcare_costs: Decimal = ZERO,
                        healthcare_inflation: Decimal = ZERO,
                        max_years: int = MAX_LONGEVITY_YEARS) -> int:
    """
    Years a balance sustains a fixed-rate withdrawal plus healthcare costs.

    Each year the balance grows, then the withdrawal and healthcare costs are
    taken; both escalate afterwards. Counting stops when the balance is
    exhausted or at max_years.
    """
    years = 0
    while balance > 0 and years < max_years:
        balance = balance * (ONE + return_rate) - withdrawal - healthcare_costs
        withdrawal *= ONE + inflation_rate
        healthcare_costs *= ONE + healthcare_inflation
        years += 1
    return years


def risk_metrics(expected_return: float,
                 volatility: float,
                 inflation_rate: float,
                 risk_free_rate: float,
                 downside_deviation: Optional[float] = None) -> RiskMetrics:
    """Sharpe and Sortino ratios, one-year 95% value at risk and real return"""
    excess = expected_return - risk_free_rate
    sharpe = excess / volatility if volatility > 0 else None
    sortino = excess / downside_deviation if downside_deviation else None
    value_at_risk = expected_return + float(stats.norm.ppf(1 - VAR_CONFIDENCE)) * volatility

    return RiskMetrics(
        expected_return=expected_return,
        volatility=volatility,
        real_return_rate=(1 + expected_return) / (1 + inflation_rate) - 1,
        sharpe_ratio=sharpe,
        sortino_ratio=sortino,
        value_at_risk_95=value_at_risk,
    )


def lifetime_schedule(request: RetirementPlanRequest,
                      accumulation: ProjectionResult) -> Tuple[Tuple[RetirementYear, ...], Optional[int]]:
    """
    Year-by-year balances from today to life expectancy.

    Returns:
        (schedule, depletion_age) where depletion_age is the first age whose
        need could not be fully withdrawn, or None
    """
    rows: List[RetirementYear] = [
        RetirementYear(
            age=request.current_age + row.period_index,
            year=row.period_index,
            phase=ACCUMULATION,
            opening_balance=row.opening_balance,
            contribution=row.contribution_in_period,
            growth=row.growth_in_period,
            withdrawal=ZERO,
            unmet_need=ZERO,
            closing_balance=row.closing_balance,
        )
        for row in accumulation.annual_projection
    ]

    rate = to_decimal(request.expected_return_rate)
    balance = rows[-1].closing_balance
    depletion_age = None
    for year in range(len(rows), request.life_expectancy - request.current_age + 1):
        age = request.current_age + year
        opening = balance
        growth = opening * rate if opening > 0 else ZERO
        need = annual_need(request, year)
        withdrawal = min(need, max(ZERO, opening + growth))
        balance = opening + growth - withdrawal
        unmet = need - withdrawal
        if unmet > 0 and depletion_age is None:
            depletion_age = age

        rows.append(RetirementYear(
            age=age,
            year=year,
            phase=RETIREMENT,
            opening_balance=opening,
            contribution=ZERO,
            growth=growth,
            withdrawal=withdrawal,
            unmet_need=unmet,
            closing_balance=balance,
        ))

    return tuple(rows), depletion_age


def _final_balance(scenario: ScenarioInput) -> Decimal:
    return DeterministicProjector(scenario).run_projection().summary.final_balance


def sensitivity_analysis(scenario: ScenarioInput, base_total: Decimal) -> Tuple[SensitivityPoint, ...]:
    """Balance at retirement when the return is shifted by -2 to +2 points"""
    points = []
    for step in SENSITIVITY_STEPS:
        rate = round(scenario.annual_return_rate + step, 10)
        total = _final_balance(scenario.model_copy(update={'annual_return_rate': rate}))
        points.append(SensitivityPoint(return_rate=rate, total_at_retirement=total,
                                       difference=total - base_total))
    return tuple(points)


def compounding_effect(savings: Decimal, annual_rate: Decimal, years: int) -> Tuple[CompoundingEffect, ...]:
    """Current savings compounded at the nominal rate over several frequencies"""
    annual_value = savings * (ONE + annual_rate) ** years
    effects = []
    for label, periods in COMPOUNDING_FREQUENCIES:
        value = savings * (ONE + annual_rate / periods) ** (periods * years)
        effects.append(CompoundingEffect(frequency=label, periods_per_year=periods, value=value,
                                         difference=value - annual_value))
    return tuple(effects)


def additional_monthly_savings(scenario: ScenarioInput, target: Decimal) -> Tuple[Decimal, bool]:
    """
    Extra monthly contribution that brings the balance at retirement to target.

    Returns:
        (amount rounded to cents, converged); zero when there is no shortfall
    """
    shortfall = target - _final_balance(scenario)
    if shortfall <= 0:
        return ZERO, True

    def total_with(extra: Decimal) -> Decimal:
        bumped = scenario.model_copy(update={'contribution_amount': scenario.contribution_amount + float(extra)})
        return _final_balance(bumped)

    # A whole shortfall paid every month always overshoots
    search = bisect_to_target(total_with, target, ZERO, shortfall / MONTHS_PER_YEAR,
                              tolerance=SAVINGS_TOLERANCE)
    return quantize_cents(search.value), search.converged


def _insights(request: RetirementPlanRequest, plan_values: dict) -> Tuple[str, ...]:
    insights = []
    goal = request.income_replacement_goal

    if plan_values['meets_income_goal']:
        insights.append(f"On track to replace {goal:.0%} of current income in retirement.")
    else:
        insights.append(f"Projected income falls short of the {goal:.0%} replacement goal; saving about "
                        f"${plan_values['additional_monthly_savings']:,.0f} more per month closes the gap.")

    longevity = plan_values['portfolio_longevity_years']
    if longevity >= plan_values['years_in_retirement']:
        insights.append(f"Withdrawing {request.withdrawal_rate:.1%} a year lasts through age "
                        f"{request.life_expectancy}.")
    else:
        insights.append(f"At a {request.withdrawal_rate:.1%} withdrawal rate the portfolio lasts about "
                        f"{longevity} years of a {plan_values['years_in_retirement']} year retirement.")

    risk = plan_values['risk']
    if risk.sharpe_ratio is not None:
        if risk.sharpe_ratio > 1:
            insights.append("Excellent risk-adjusted return expected.")
        elif risk.sharpe_ratio > 0.5:
            insights.append("Good risk-adjusted return expected.")
        else:
            insights.append("Low risk-adjusted return; review the risk and return assumptions.")
    if risk.value_at_risk_95 < -0.20:
        insights.append(f"In a bad year (5% chance) the portfolio could lose more than "
                        f"{-risk.value_at_risk_95:.0%}; diversification reduces this risk.")

    years_to_retirement = plan_values['years_to_retirement']
    if years_to_retirement <= 10:
        insights.append("Retirement is within ten years; consider shifting toward conservative investments.")
    elif years_to_retirement >= 30:
        insights.append("A long horizon leaves room for growth-oriented investments.")

    total = plan_values['total_at_retirement']
    if total > 2_000_000:
        insights.append("Projected savings at retirement exceed $2 million.")
    elif total > 1_000_000:
        insights.append("Projected savings at retirement exceed $1 million.")

    return tuple(insights)


def plan_retirement(request: RetirementPlanRequest,
                    simulation_runs: int = DEFAULT_SIMULATION_RUNS,
                    workers: int = 1,
                    chunk_size: int = DEFAULT_CHUNK_SIZE) -> RetirementPlan:
    """
    Project savings to retirement and test them against the income goal.

    Args:
        request: Validated retirement plan request
        simulation_runs: Runs used when the request does not set its own
        workers: Simulation worker processes
        chunk_size: Simulated runs per worker task

    Returns:
        RetirementPlan
    """
    years_to_retirement = request.retirement_age - request.current_age
    years_in_retirement = request.life_expectancy - request.retirement_age
    rate = to_decimal(request.expected_return_rate)
    inflation = to_decimal(request.inflation_rate)
    tax_rate = to_decimal(request.withdrawal_tax_rate)
    volatility = request.volatility if request.volatility is not None else DEFAULT_VOLATILITY

    scenario = accumulation_scenario(request)
    accumulation = DeterministicProjector(scenario).run_projection()
    total = accumulation.summary.final_balance
    savings = to_decimal(request.current_savings)
    future_savings = savings * (ONE + rate) ** years_to_retirement

    prices_at_retirement = (ONE + inflation) ** years_to_retirement
    annual_withdrawal = total * to_decimal(request.withdrawal_rate)
    guaranteed = (to_decimal(request.social_security_income)
                  + to_decimal(request.pension_income)) * prices_at_retirement
    annual_income = annual_withdrawal * (ONE - tax_rate) + guaranteed
    income_at_retirement = to_decimal(request.current_annual_income) * prices_at_retirement
    required_income = income_at_retirement * to_decimal(request.income_replacement_goal)
    replacement_ratio = annual_income / income_at_retirement if income_at_retirement > 0 else None

    target = quantize_cents(annual_need(request, years_to_retirement) / to_decimal(request.withdrawal_rate))
    additional, converged = additional_monthly_savings(scenario, target)

    healthcare_at_retirement = (to_decimal(request.healthcare_costs)
                                * (ONE + to_decimal(request.healthcare_inflation)) ** years_to_retirement)
    longevity = portfolio_longevity(total, annual_withdrawal, rate, inflation,
                                    healthcare_at_retirement, to_decimal(request.healthcare_inflation))
    schedule, depletion_age = lifetime_schedule(request, accumulation)

    risk = risk_metrics(request.expected_return_rate, volatility, request.inflation_rate,
                        request.risk_free_rate, request.downside_deviation)

    runs = request.simulation_runs or simulation_runs
    simulation = MonteCarloSimulator(scenario, simulation_runs=runs, seed=request.seed,
                                     goal_amounts=(float(target),), workers=workers,
                                     chunk_size=chunk_size).run_simulation()
    success = SuccessEstimate(
        simulation_runs=runs,
        seed=simulation.seed,
        target_nest_egg=target,
        success_probability=simulation.probabilities[goal_key(float(target))],
        median_at_retirement=simulation.percentile_final_balances['p50'],
        p10_at_retirement=simulation.percentile_final_balances['p10'],
        p90_at_retirement=simulation.percentile_final_balances['p90'],
    )

    values = dict(
        years_to_retirement=years_to_retirement,
        years_in_retirement=years_in_retirement,
        total_at_retirement=total,
        future_value_current_savings=future_savings,
        future_value_contributions=total - future_savings,
        annual_withdrawal=annual_withdrawal,
        guaranteed_income=guaranteed,
        annual_income=annual_income,
        monthly_income=annual_income / MONTHS_PER_YEAR,
        required_annual_income=required_income,
        income_replacement_ratio=replacement_ratio,
        meets_income_goal=annual_income >= required_income,
        target_nest_egg=target,
        additional_monthly_savings=additional,
        additional_savings_converged=converged,
        total_required_monthly_savings=to_decimal(request.monthly_contribution) + additional,
        portfolio_longevity_years=longevity,
        depletion_age=depletion_age,
        risk=risk,
    )

    logger.info("retirement_plan_complete",
                years_to_retirement=years_to_retirement,
                total_at_retirement=str(quantize_cents(total)),
                target_nest_egg=str(target),
                success_probability=success.success_probability,
                depletion_age=depletion_age)

    return RetirementPlan(
        request=request,
        success=success,
        sensitivity=sensitivity_analysis(scenario, total),
        compounding_effect=compounding_effect(savings, rate, years_to_retirement),
        schedule=schedule,
        insights=_insights(request, values),
        **values,
    )
