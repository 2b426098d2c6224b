"""
Deterministic projection of a single scenario using its expected return.
Produces the annual schedule (and optionally the monthly one) plus a summary;
also provides the baseline path that the Monte Carlo simulator perturbs.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from compounding import ONE, ZERO, compound_period, period_fee_rate, period_rate, to_decimal
from logging_config import get_logger
from schemas import CONTRIBUTIONS_PER_YEAR, ContributionFrequency, ScenarioInput

logger = get_logger(__name__)

MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class PeriodProjection:
    """One row of a projection schedule (a year or a month)"""
    period_index: int
    opening_balance: Decimal
    contribution_in_period: Decimal
    growth_in_period: Decimal
    fees_in_period: Decimal
    taxes_in_period: Decimal
    closing_balance: Decimal
    inflation_adjusted_closing_balance: Decimal


@dataclass(frozen=True)
class ProjectionSummary:
    """Aggregate outcome of a projection"""
    final_balance: Decimal
    total_contributions: Decimal
    total_growth: Decimal
    total_fees: Decimal
    total_taxes: Decimal
    compound_annual_growth_rate: Optional[Decimal]
    growth_multiple: Optional[Decimal]
    real_return_rate: Optional[Decimal]
    inflation_adjusted_balance: Decimal
    inflation_adjusted_benefit: Decimal


@dataclass(frozen=True)
class ProjectionResult:
    """Results from a deterministic projection"""
    scenario: ScenarioInput
    summary: ProjectionSummary
    annual_projection: Tuple[PeriodProjection, ...]
    monthly_projection: Optional[Tuple[PeriodProjection, ...]] = None


def compound_annual_growth_rate(initial_amount: Decimal,
                                final_balance: Decimal,
                                years: int) -> Optional[Decimal]:
    """CAGR, or None when it is undefined (no initial amount or no elapsed time)"""
    if initial_amount <= 0 or years <= 0:
        return None
    if final_balance <= 0:
        return -ONE
    return (final_balance / initial_amount) ** (ONE / Decimal(years)) - ONE


def build_summary(initial_amount: Decimal,
                  total_contributions: Decimal,
                  final_balance: Decimal,
                  years: int,
                  inflation_rate: Decimal,
                  total_growth: Decimal,
                  total_fees: Decimal = ZERO,
                  total_taxes: Decimal = ZERO) -> ProjectionSummary:
    """
    Summarize a finished schedule.

    Args:
        initial_amount: Amount invested at period 0 (CAGR base)
        total_contributions: Initial amount plus every later contribution
        final_balance: Closing balance of the last period
        years: Elapsed years
        inflation_rate: Annual inflation used to deflate the final balance
        total_growth: Sum of investment growth
        total_fees: Sum of fees
        total_taxes: Sum of taxes on growth

    Returns:
        ProjectionSummary
    """
    cagr = compound_annual_growth_rate(initial_amount, final_balance, years)
    inflation_adjusted = final_balance / (ONE + inflation_rate) ** years
    growth_multiple = final_balance / total_contributions if total_contributions > 0 else None
    real_return = (ONE + cagr) / (ONE + inflation_rate) - ONE if cagr is not None else None

    return ProjectionSummary(
        final_balance=final_balance,
        total_contributions=total_contributions,
        total_growth=total_growth,
        total_fees=total_fees,
        total_taxes=total_taxes,
        compound_annual_growth_rate=cagr,
        growth_multiple=growth_multiple,
        real_return_rate=real_return,
        inflation_adjusted_balance=inflation_adjusted,
        inflation_adjusted_benefit=inflation_adjusted - total_contributions,
    )


def deflate_to_real(nominal_values: Sequence[Decimal],
                    inflation_rate: Decimal,
                    periods_per_year: int = 1) -> List[Decimal]:
    """
    Convert nominal values to today's money using compound inflation.

    Args:
        nominal_values: Values indexed by period, starting at period 0
        inflation_rate: Annual inflation rate
        periods_per_year: Granularity of the series

    Returns:
        List of inflation-adjusted values
    """
    inflation = to_decimal(inflation_rate)
    return [value / (ONE + inflation) ** (Decimal(t) / Decimal(periods_per_year))
            for t, value in enumerate(nominal_values)]


class DeterministicProjector:
    """Deterministic projection of one scenario with expected returns"""

    def __init__(self, scenario: ScenarioInput):
        self.scenario = scenario
        self._initial = to_decimal(scenario.initial_amount)
        self._annual_rate = to_decimal(scenario.annual_return_rate)
        self._inflation = to_decimal(scenario.inflation_rate)
        self._fee = to_decimal(scenario.fee_percentage)
        self._tax_rate = ZERO if scenario.tax_deferred else to_decimal(scenario.tax_rate)
        self._contribution = to_decimal(scenario.contribution_amount)
        self._contribution_growth = to_decimal(scenario.contribution_growth_rate)

    @property
    def horizon_years(self) -> int:
        return self.scenario.time_horizon_years

    def _get_contribution(self, period: int, periods_per_year: int) -> Decimal:
        """Contribution landing at the end of the given period (1-based)"""
        if period < 1 or self._contribution == 0:
            return ZERO

        frequency = ContributionFrequency(self.scenario.contribution_frequency)
        if frequency is ContributionFrequency.ONE_TIME:
            return self._contribution if period == 1 else ZERO

        # Escalation compounds once per year, not per period
        year = (period - 1) // periods_per_year + 1
        amount = self._contribution * (ONE + self._contribution_growth) ** (year - 1)

        payments_per_year = CONTRIBUTIONS_PER_YEAR[frequency]
        if periods_per_year == 1:
            return amount * payments_per_year
        if payments_per_year >= periods_per_year:
            return amount * payments_per_year / periods_per_year

        interval = periods_per_year // payments_per_year
        period_in_year = (period - 1) % periods_per_year + 1
        return amount if period_in_year % interval == 0 else ZERO

    def _tax_on_growth(self, growth: Decimal) -> Decimal:
        """Flat tax on positive growth only; losses earn no credit"""
        if growth <= 0 or self._tax_rate == 0:
            return ZERO
        return growth * self._tax_rate

    def _run_schedule(self, periods_per_year: int,
                      annual_rates: Optional[Sequence[Decimal]] = None) -> List[PeriodProjection]:
        """Run the full horizon at the given granularity"""
        fee_rate = period_fee_rate(self._fee, periods_per_year)
        rate_cache: Dict[Decimal, Decimal] = {}

        balance = self._initial
        # (opening, contribution, growth, fees, taxes, closing) per period
        steps = [(balance, ZERO, ZERO, ZERO, ZERO, balance)]

        for period in range(1, self.horizon_years * periods_per_year + 1):
            year_idx = (period - 1) // periods_per_year
            annual_rate = annual_rates[year_idx] if annual_rates is not None else self._annual_rate
            if annual_rate not in rate_cache:
                rate_cache[annual_rate] = period_rate(annual_rate, periods_per_year)

            step = compound_period(balance, rate_cache[annual_rate],
                                   self._get_contribution(period, periods_per_year), fee_rate)
            taxes = self._tax_on_growth(step.growth)
            balance = step.closing_balance - taxes
            steps.append((step.opening_balance, step.contribution, step.growth, step.fees, taxes, balance))

        real_closings = deflate_to_real([closing for *_, closing in steps], self._inflation, periods_per_year)
        return [
            PeriodProjection(
                period_index=period,
                opening_balance=opening,
                contribution_in_period=contribution,
                growth_in_period=growth,
                fees_in_period=fees,
                taxes_in_period=taxes,
                closing_balance=closing,
                inflation_adjusted_closing_balance=real,
            )
            for period, ((opening, contribution, growth, fees, taxes, closing), real)
            in enumerate(zip(steps, real_closings))
        ]

    def balance_path(self, annual_rates: Sequence[Decimal]) -> List[Decimal]:
        """
        Year-end balances when each year earns the supplied rate.

        Applies exactly the same period step as run_projection, so a path
        built from the expected rate reproduces the deterministic schedule.

        Args:
            annual_rates: One annual return per year of the horizon

        Returns:
            Balances for years 0..horizon
        """
        if len(annual_rates) != self.horizon_years:
            raise ValueError(f"Expected {self.horizon_years} annual rates, got {len(annual_rates)}")

        fee_rate = self._fee
        balance = self._initial
        path = [balance]
        for year_idx, annual_rate in enumerate(annual_rates):
            step = compound_period(balance, annual_rate, self._get_contribution(year_idx + 1, 1), fee_rate)
            balance = step.closing_balance - self._tax_on_growth(step.growth)
            path.append(balance)
        return path

    def summarize(self, annual_rows: Sequence[PeriodProjection]) -> ProjectionSummary:
        """Build the summary of an annual schedule"""
        contributions = sum((row.contribution_in_period for row in annual_rows), ZERO)
        return build_summary(
            initial_amount=self._initial,
            total_contributions=self._initial + contributions,
            final_balance=annual_rows[-1].closing_balance,
            years=self.horizon_years,
            inflation_rate=self._inflation,
            total_growth=sum((row.growth_in_period for row in annual_rows), ZERO),
            total_fees=sum((row.fees_in_period for row in annual_rows), ZERO),
            total_taxes=sum((row.taxes_in_period for row in annual_rows), ZERO),
        )

    def run_projection(self, include_monthly: bool = False) -> ProjectionResult:
        """Run the deterministic projection"""
        annual = self._run_schedule(1)
        monthly = tuple(self._run_schedule(MONTHS_PER_YEAR)) if include_monthly else None
        summary = self.summarize(annual)

        logger.debug("projection_complete",
                     scenario=self.scenario.name,
                     horizon_years=self.horizon_years,
                     include_monthly=include_monthly,
                     final_balance=str(summary.final_balance))

        return ProjectionResult(
            scenario=self.scenario,
            summary=summary,
            annual_projection=tuple(annual),
            monthly_projection=monthly,
        )
