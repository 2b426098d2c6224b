"""
Investment strategy comparison.
Lump sum vs dollar-cost averaging vs a partial lump sum, plus a ranking
of arbitrary named scenarios.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from allocation import AllocationAdvisor
from compounding import ONE, ZERO, to_decimal
from deterministic import (DeterministicProjector, PeriodProjection, ProjectionResult,
                           ProjectionSummary, build_summary)
from errors import ScenarioValidationError
from logging_config import get_logger
from schemas import ContributionFrequency, RiskLevel, ScenarioInput

logger = get_logger(__name__)

LUMP_SUM = 'lump_sum'
DCA = 'dollar_cost_averaging'
PARTIAL = 'partial_lump_sum'
STRATEGY_NAMES = (LUMP_SUM, DCA, PARTIAL)

PARTIAL_IMMEDIATE_SHARE = Decimal("0.5")
HIGH_VOLATILITY = 0.15
MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class StrategyProjection:
    """Projection of one investment strategy"""
    name: str
    initial_investment: Decimal
    investment_per_period: Decimal
    investment_periods: int
    summary: ProjectionSummary
    annual_projection: Tuple[PeriodProjection, ...]


@dataclass(frozen=True)
class StrategyDelta:
    """Difference in final balance between two strategies"""
    amount: Decimal
    percentage: Optional[Decimal]


@dataclass(frozen=True)
class StrategyResult:
    """Results from comparing investment strategies"""
    total_amount: Decimal
    time_horizon_years: int
    risk_level: RiskLevel
    expected_return_rate: Decimal
    volatility: float
    strategies: Dict[str, StrategyProjection]
    best_strategy: str
    comparisons: Dict[str, StrategyDelta]
    risk_considerations: Tuple[str, ...]
    recommendation: str


@dataclass(frozen=True)
class ScenarioComparison:
    """Several named scenarios ranked against each other"""
    results: Dict[str, ProjectionResult]
    rankings: Dict[str, Tuple[str, ...]]
    best_scenario: str
    recommendation: str


def strategy_delta(first: Decimal, second: Decimal) -> StrategyDelta:
    """Final-balance difference first - second, as an amount and a percentage of second"""
    amount = first - second
    percentage = amount / second * 100 if second != 0 else None
    return StrategyDelta(amount=amount, percentage=percentage)


class StrategyComparator:
    """Compare lump sum, dollar-cost averaging and partial lump sum investing"""

    def __init__(self, total_amount: float,
                 time_horizon_years: int,
                 risk_level: RiskLevel = RiskLevel.MODERATE,
                 dca_periods: int = 12,
                 expected_return_rate: Optional[float] = None,
                 inflation_rate: float = 0.025,
                 advisor: Optional[AllocationAdvisor] = None):
        self.total_amount = to_decimal(total_amount)
        self.time_horizon_years = time_horizon_years
        self.risk_level = RiskLevel(risk_level)
        self.dca_periods = dca_periods
        self.inflation_rate = to_decimal(inflation_rate)
        self.advisor = advisor or AllocationAdvisor()

        profile = self.advisor.recommend(self.risk_level)
        self.volatility = profile.volatility
        if expected_return_rate is None:
            expected_return_rate = profile.expected_return
        self.expected_return_rate = to_decimal(expected_return_rate)
        self._validate_params()

    def _validate_params(self):
        if self.total_amount <= 0:
            raise ValueError(f"total_amount must be positive, got {self.total_amount}")
        if self.time_horizon_years < 1:
            raise ValueError(f"time_horizon_years must be at least 1, got {self.time_horizon_years}")
        if not 1 <= self.dca_periods <= self.time_horizon_years * MONTHS_PER_YEAR:
            raise ValueError(f"dca_periods must be between 1 and {self.time_horizon_years * MONTHS_PER_YEAR}")

    def _unit_growth_factors(self) -> List[Decimal]:
        """Growth of $1 after m months, m = 0..horizon*12, from the monthly projection"""
        unit = ScenarioInput(
            initial_amount=1.0,
            annual_return_rate=float(self.expected_return_rate),
            time_horizon_years=self.time_horizon_years,
            contribution_amount=0.0,
            contribution_frequency=ContributionFrequency.ONE_TIME,
        )
        projection = DeterministicProjector(unit).run_projection(include_monthly=True)
        return [row.closing_balance for row in projection.monthly_projection]

    def _deposit_schedule(self, name: str) -> Dict[int, Decimal]:
        """Amount invested at each month for a strategy"""
        if name == LUMP_SUM:
            return {0: self.total_amount}

        if name == DCA:
            tranche = self.total_amount / self.dca_periods
            return {month: tranche for month in range(self.dca_periods)}

        immediate = self.total_amount * PARTIAL_IMMEDIATE_SHARE
        tranche = (self.total_amount - immediate) / self.dca_periods
        deposits = {month: tranche for month in range(self.dca_periods)}
        deposits[0] += immediate
        return deposits

    def _project_strategy(self, name: str, factors: Sequence[Decimal]) -> StrategyProjection:
        """Value each tranche from its own entry month; uninvested cash is held at face value"""
        deposits = self._deposit_schedule(name)

        def balance_at(month: int) -> Decimal:
            total = ZERO
            for entry_month, amount in deposits.items():
                if entry_month <= month:
                    total += amount * factors[month - entry_month]
                else:
                    total += amount
            return total

        rows = []
        previous = self.total_amount
        for year in range(self.time_horizon_years + 1):
            closing = balance_at(year * MONTHS_PER_YEAR)
            opening = previous if year > 0 else closing
            rows.append(PeriodProjection(
                period_index=year,
                opening_balance=opening,
                contribution_in_period=ZERO,
                growth_in_period=closing - opening,
                fees_in_period=ZERO,
                taxes_in_period=ZERO,
                closing_balance=closing,
                inflation_adjusted_closing_balance=closing / (ONE + self.inflation_rate) ** year,
            ))
            previous = closing

        summary = build_summary(
            initial_amount=self.total_amount,
            total_contributions=self.total_amount,
            final_balance=rows[-1].closing_balance,
            years=self.time_horizon_years,
            inflation_rate=self.inflation_rate,
            total_growth=rows[-1].closing_balance - self.total_amount,
        )

        later = [amount for month, amount in deposits.items() if month > 0]
        return StrategyProjection(
            name=name,
            initial_investment=deposits[0],
            investment_per_period=later[0] if later else ZERO,
            investment_periods=len(deposits),
            summary=summary,
            annual_projection=tuple(rows),
        )

    def _risk_considerations(self) -> Tuple[str, ...]:
        considerations = [
            "Lump sum investing is fully exposed to a market decline right after investing",
            f"Dollar-cost averaging holds uninvested cash for up to {self.dca_periods} months",
        ]
        if self.volatility >= HIGH_VOLATILITY:
            considerations.append(f"Portfolio volatility of {self.volatility:.1%} makes entry timing matter more")
        if self.time_horizon_years < 5:
            considerations.append("A horizon under 5 years leaves little time to recover from losses")
        return tuple(considerations)

    def _recommendation(self, best_strategy: str) -> str:
        if self.volatility >= HIGH_VOLATILITY:
            return ("Dollar-cost averaging is favoured for peace of mind at this risk level, "
                    "even though investing at once has the higher expected balance")
        if best_strategy == LUMP_SUM:
            return "Investing the full amount immediately has the highest expected balance"
        return f"The {best_strategy.replace('_', ' ')} strategy has the highest expected balance"

    def compare(self) -> StrategyResult:
        """Project every strategy and rank them by final balance"""
        factors = self._unit_growth_factors()
        strategies = {name: self._project_strategy(name, factors) for name in STRATEGY_NAMES}

        finals = {name: s.summary.final_balance for name, s in strategies.items()}
        # max() keeps the first of equal balances, i.e. declaration order
        best_strategy = max(STRATEGY_NAMES, key=lambda name: finals[name])

        comparisons = {
            'lump_sum_vs_dca': strategy_delta(finals[LUMP_SUM], finals[DCA]),
            'lump_sum_vs_partial': strategy_delta(finals[LUMP_SUM], finals[PARTIAL]),
            'partial_vs_dca': strategy_delta(finals[PARTIAL], finals[DCA]),
        }

        logger.info("strategies_compared",
                    total_amount=str(self.total_amount),
                    horizon_years=self.time_horizon_years,
                    dca_periods=self.dca_periods,
                    best_strategy=best_strategy)

        return StrategyResult(
            total_amount=self.total_amount,
            time_horizon_years=self.time_horizon_years,
            risk_level=self.risk_level,
            expected_return_rate=self.expected_return_rate,
            volatility=self.volatility,
            strategies=strategies,
            best_strategy=best_strategy,
            comparisons=comparisons,
            risk_considerations=self._risk_considerations(),
            recommendation=self._recommendation(best_strategy),
        )


def _scenario_names(scenarios: Sequence[ScenarioInput]) -> List[str]:
    return [scenario.name or f"scenario_{i + 1}" for i, scenario in enumerate(scenarios)]


def compare_scenarios(scenarios: Sequence[ScenarioInput]) -> ScenarioComparison:
    """
    Project several scenarios and rank them.

    Rankings are by final balance, inflation-adjusted balance and CAGR
    (scenarios without a CAGR rank last); ties keep input order.

    Args:
        scenarios: Scenarios to compare; unnamed ones are called scenario_1, scenario_2, ...

    Returns:
        ScenarioComparison
    """
    names = _scenario_names(scenarios)
    if len(set(names)) != len(names):
        raise ScenarioValidationError.single("scenarios", "scenario names must be unique")

    results = {name: DeterministicProjector(scenario).run_projection()
               for name, scenario in zip(names, scenarios)}

    def ranked(metric) -> Tuple[str, ...]:
        return tuple(sorted(names, key=lambda name: metric(results[name].summary), reverse=True))

    rankings = {
        'final_balance': ranked(lambda s: s.final_balance),
        'inflation_adjusted_balance': ranked(lambda s: s.inflation_adjusted_balance),
        'compound_annual_growth_rate': ranked(
            lambda s: (s.compound_annual_growth_rate is not None,
                       s.compound_annual_growth_rate if s.compound_annual_growth_rate is not None else ZERO)),
    }
    best = rankings['final_balance'][0]

    if len(names) == 1:
        recommendation = f"{best} is the only scenario provided"
    else:
        runner_up = rankings['final_balance'][1]
        gap = results[best].summary.final_balance - results[runner_up].summary.final_balance
        recommendation = f"{best} ends highest, {gap:,.2f} ahead of {runner_up}"
        if rankings['inflation_adjusted_balance'][0] != best:
            recommendation += (f"; after inflation {rankings['inflation_adjusted_balance'][0]} "
                               f"preserves the most purchasing power")

    logger.info("scenarios_compared", scenarios=len(names), best_scenario=best)

    return ScenarioComparison(
        results=results,
        rankings=rankings,
        best_scenario=best,
        recommendation=recommendation,
    )
