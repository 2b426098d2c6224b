"""
Paycheck withholding estimates.

Annual amounts are computed first and spread evenly over the pay periods.
Federal liability applies the brackets to adjusted gross (gross less
pre-tax deferrals) minus the standard deduction; withholding additionally
subtracts allowances and adds any extra per-period withholding, so the
difference between the two is the expected refund (positive) or amount owed.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from compounding import ZERO, to_decimal
from errors import ScenarioValidationError
from logging_config import get_logger
from schemas import (ContributionElection, FilingStatus, OptimizeWithholdingRequest, PayFrequency,
                     RetirementOptionsRequest, WithholdingRequest)
from tax import bisect_to_target, calculate_tax, effective_tax_rate, marginal_tax_rate
from tax_utils import PAY_PERIODS_PER_YEAR, TaxTables, get_state_tax_rates, tax_tables_2024

logger = get_logger(__name__)

HUNDRED = Decimal(100)
OPTIMIZER_TOLERANCE = Decimal("1")
OPTIMIZER_MAX_ITERATIONS = 100


@dataclass(frozen=True)
class ContributionBreakdown:
    """Annual amounts for one retirement election after the deferral limit"""
    is_pretax: bool
    requested_annual: Decimal
    employee_annual: Decimal
    employer_match_annual: Decimal
    limited: bool


@dataclass(frozen=True)
class PaycheckEstimate:
    """Per-period paycheck and annual tax position"""
    pay_frequency: PayFrequency
    periods_per_year: int
    gross_pay_per_period: Decimal
    pretax_deductions_per_period: Decimal
    adjusted_gross_per_period: Decimal
    taxable_income_per_period: Decimal
    federal_tax_per_period: Decimal
    state_tax_per_period: Decimal
    social_security_per_period: Decimal
    medicare_per_period: Decimal
    fica_tax_per_period: Decimal
    posttax_deductions_per_period: Decimal
    net_pay_per_period: Decimal
    employer_match_per_period: Decimal
    annual_gross: Decimal
    annual_adjusted_gross: Decimal
    annual_taxable_income: Decimal
    federal_tax_liability: Decimal
    state_tax_liability: Decimal
    federal_withholding_annual: Decimal
    state_withholding_annual: Decimal
    refund_or_owed: Decimal
    effective_tax_rate: float
    marginal_tax_rate: float
    contributions: Tuple[ContributionBreakdown, ...]

    @property
    def total_tax_per_period(self) -> Decimal:
        return self.federal_tax_per_period + self.state_tax_per_period + self.fica_tax_per_period


@dataclass(frozen=True)
class WithholdingOptimization:
    """Extra withholding needed to land on a target refund"""
    target_refund: Decimal
    additional_withholding_per_period: Decimal
    achieved_refund_estimate: Decimal
    iterations_used: int
    converged: bool
    estimate: PaycheckEstimate


@dataclass(frozen=True)
class RetirementOption:
    """One candidate election compared against contributing nothing"""
    election: ContributionElection
    estimate: PaycheckEstimate
    employee_contribution_per_period: Decimal
    employer_match_per_period: Decimal
    total_contribution_per_period: Decimal
    tax_savings_per_period: Decimal
    tax_savings_annual: Decimal
    net_pay_per_period: Decimal
    net_pay_change_per_period: Decimal


@dataclass(frozen=True)
class RetirementOptionsComparison:
    baseline: PaycheckEstimate
    options: Tuple[RetirementOption, ...]


def _employee_contributions(elections: Sequence[ContributionElection],
                            annual_gross: Decimal,
                            periods: int,
                            tables: TaxTables) -> Tuple[ContributionBreakdown, ...]:
    """Annual employee and employer amounts, deferrals capped jointly in election order"""
    remaining = tables.elective_deferral_limit
    breakdown = []
    for election in elections:
        if election.is_percentage_based:
            requested = annual_gross * to_decimal(election.contribution_percentage) / HUNDRED
        else:
            requested = to_decimal(election.contribution_amount) * periods
        employee = min(requested, remaining)
        remaining -= employee

        match = ZERO
        if election.has_employer_match:
            matchable = employee
            # A zero limit means the match is not capped by salary
            if election.employer_match_limit > 0:
                matchable = min(employee, annual_gross * to_decimal(election.employer_match_limit) / HUNDRED)
            match = matchable * to_decimal(election.employer_match_percentage) / HUNDRED

        breakdown.append(ContributionBreakdown(
            is_pretax=election.is_pretax,
            requested_annual=requested,
            employee_annual=employee,
            employer_match_annual=match,
            limited=employee < requested,
        ))
    return tuple(breakdown)


def _state_brackets(state: str, tables: TaxTables):
    try:
        return get_state_tax_rates(state, tables)
    except KeyError:
        raise ScenarioValidationError.single('state', f"no tax table for state '{state}'") from None


def estimate_paycheck(request: WithholdingRequest,
                      tables: Optional[TaxTables] = None,
                      extra_withholding: Decimal = ZERO) -> PaycheckEstimate:
    """
    Estimate one paycheck and the year-end refund or amount owed.

    Args:
        request: Validated withholding request
        tables: Tax tables (defaults to 2024)
        extra_withholding: Federal withholding per period on top of the request's own additional amount

    Returns:
        PaycheckEstimate
    """
    tables = tables or tax_tables_2024()
    status = FilingStatus(request.filing_status)
    frequency = PayFrequency(request.pay_frequency)
    periods = PAY_PERIODS_PER_YEAR[frequency]
    allowances = request.allowances
    state_brackets = _state_brackets(request.state, tables)

    annual_gross = to_decimal(request.annual_salary) + to_decimal(request.bonuses)
    contributions = _employee_contributions(request.contributions, annual_gross, periods, tables)
    pretax = sum((c.employee_annual for c in contributions if c.is_pretax), ZERO)
    posttax = sum((c.employee_annual for c in contributions if not c.is_pretax), ZERO)
    employer_match = sum((c.employer_match_annual for c in contributions), ZERO)

    adjusted_gross = max(ZERO, annual_gross - pretax)
    standard_deduction = tables.standard_deduction[status]
    brackets = tables.brackets_for(status)
    # Income the federal brackets apply to
    taxable = max(ZERO, adjusted_gross - standard_deduction)

    federal_liability = calculate_tax(taxable, brackets)
    if allowances.is_tax_exempt:
        federal_withheld = ZERO
    else:
        federal_withheld = calculate_tax(
            taxable - allowances.federal * tables.allowance_value, brackets)
    federal_withheld += (to_decimal(allowances.additional) + to_decimal(extra_withholding)) * periods

    state_liability = calculate_tax(adjusted_gross, state_brackets)
    state_withheld = calculate_tax(adjusted_gross - allowances.state * tables.state_allowance_value, state_brackets)

    social_security = min(annual_gross, tables.social_security_wage_base) * tables.social_security_rate
    medicare = annual_gross * tables.medicare_rate
    surtax_threshold = tables.additional_medicare_threshold[status]
    if annual_gross > surtax_threshold:
        medicare += (annual_gross - surtax_threshold) * tables.additional_medicare_rate

    net_annual = (annual_gross - pretax - federal_withheld - state_withheld
                  - social_security - medicare - posttax)
    total_liability = federal_liability + state_liability + social_security + medicare
    refund_or_owed = (federal_withheld - federal_liability) + (state_withheld - state_liability)

    return PaycheckEstimate(
        pay_frequency=frequency,
        periods_per_year=periods,
        gross_pay_per_period=annual_gross / periods,
        pretax_deductions_per_period=pretax / periods,
        adjusted_gross_per_period=adjusted_gross / periods,
        taxable_income_per_period=taxable / periods,
        federal_tax_per_period=federal_withheld / periods,
        state_tax_per_period=state_withheld / periods,
        social_security_per_period=social_security / periods,
        medicare_per_period=medicare / periods,
        fica_tax_per_period=(social_security + medicare) / periods,
        posttax_deductions_per_period=posttax / periods,
        net_pay_per_period=net_annual / periods,
        employer_match_per_period=employer_match / periods,
        annual_gross=annual_gross,
        annual_adjusted_gross=adjusted_gross,
        annual_taxable_income=taxable,
        federal_tax_liability=federal_liability,
        state_tax_liability=state_liability,
        federal_withholding_annual=federal_withheld,
        state_withholding_annual=state_withheld,
        refund_or_owed=refund_or_owed,
        effective_tax_rate=effective_tax_rate(total_liability, annual_gross),
        marginal_tax_rate=marginal_tax_rate(taxable, brackets),
        contributions=contributions,
    )


def optimize_withholding(request: OptimizeWithholdingRequest,
                         tables: Optional[TaxTables] = None) -> WithholdingOptimization:
    """
    Find the extra federal withholding per period that yields the target refund.

    Searches [0, net pay per period] by bisection to within $1 of the target.
    A target outside that range (e.g. a refund smaller than the current one)
    returns the closest achievable estimate with converged=False.
    """
    tables = tables or tax_tables_2024()
    target = to_decimal(request.target_refund)
    baseline = estimate_paycheck(request, tables)
    upper = max(ZERO, baseline.net_pay_per_period)

    def refund_for(extra: Decimal) -> Decimal:
        return estimate_paycheck(request, tables, extra_withholding=extra).refund_or_owed

    search = bisect_to_target(refund_for, target, ZERO, upper,
                              tolerance=OPTIMIZER_TOLERANCE, max_iterations=OPTIMIZER_MAX_ITERATIONS)

    if not search.converged:
        logger.warning("withholding_target_not_reached",
                       target_refund=str(target),
                       achieved_refund=str(search.achieved),
                       iterations=search.iterations)

    return WithholdingOptimization(
        target_refund=target,
        additional_withholding_per_period=search.value,
        achieved_refund_estimate=search.achieved,
        iterations_used=search.iterations,
        converged=search.converged,
        estimate=estimate_paycheck(request, tables, extra_withholding=search.value),
    )


def compare_retirement_options(request: RetirementOptionsRequest,
                               tables: Optional[TaxTables] = None) -> RetirementOptionsComparison:
    """Estimate the paycheck under each candidate election against a no-contribution baseline"""
    tables = tables or tax_tables_2024()
    baseline = estimate_paycheck(request.model_copy(update={'contributions': ()}), tables)

    options = []
    for election in request.options:
        estimate = estimate_paycheck(request.model_copy(update={'contributions': (election,)}), tables)
        employee = estimate.pretax_deductions_per_period + estimate.posttax_deductions_per_period
        savings = baseline.total_tax_per_period - estimate.total_tax_per_period
        options.append(RetirementOption(
            election=election,
            estimate=estimate,
            employee_contribution_per_period=employee,
            employer_match_per_period=estimate.employer_match_per_period,
            total_contribution_per_period=employee + estimate.employer_match_per_period,
            tax_savings_per_period=savings,
            tax_savings_annual=savings * estimate.periods_per_year,
            net_pay_per_period=estimate.net_pay_per_period,
            net_pay_change_per_period=estimate.net_pay_per_period - baseline.net_pay_per_period,
        ))

    logger.debug("retirement_options_compared", options=len(options))
    return RetirementOptionsComparison(baseline=baseline, options=tuple(options))
