"""
Unit tests for retirement readiness planning.
"""
import pytest
from decimal import Decimal
from compounding import ZERO
from retirement import (
    ACCUMULATION, RETIREMENT, MAX_LONGEVITY_YEARS, compounding_effect, plan_retirement,
    portfolio_longevity, risk_metrics
)
from schemas import RetirementPlanRequest


def make_request(**overrides):
    """Age 40 to 65 with no growth or inflation, so every amount is easy to check by hand"""
    params = dict(
        current_age=40,
        retirement_age=65,
        life_expectancy=90,
        current_savings=10_000,
        monthly_contribution=500,
        expected_return_rate=0.0,
        inflation_rate=0.0,
        current_annual_income=50_000,
        income_replacement_goal=0.8,
        withdrawal_rate=0.04,
        healthcare_inflation=0.0,
        simulation_runs=50,
        seed=7,
    )
    params.update(overrides)
    return RetirementPlanRequest(**params)


@pytest.fixture
def plan():
    return plan_retirement(make_request())


class TestAccumulation:
    """Test savings projected to retirement"""

    def test_zero_return_total(self, plan):
        """Test savings plus twelve contributions a year with no growth"""
        assert plan.years_to_retirement == 25
        assert plan.years_in_retirement == 25
        assert plan.total_at_retirement == Decimal(160_000)
        assert plan.future_value_current_savings == Decimal(10_000)
        assert plan.future_value_contributions == Decimal(150_000)

    def test_current_savings_compound(self):
        """Test savings alone grow at the annual rate"""
        plan = plan_retirement(make_request(current_age=30, retirement_age=60, current_savings=100_000,
                                            monthly_contribution=0, expected_return_rate=0.07))
        expected = Decimal(100_000) * Decimal("1.07") ** 30

        assert abs(plan.total_at_retirement - expected) < Decimal("0.01")
        assert abs(plan.future_value_contributions) < Decimal("0.01")

    def test_contribution_escalation(self):
        """Test the monthly contribution rises once a year"""
        plan = plan_retirement(make_request(current_age=48, retirement_age=50,
                                            contribution_increase_rate=0.1))
        # 10,000 + 6,000 + 6,600
        assert abs(plan.total_at_retirement - Decimal(22_600)) < Decimal("1e-9")


class TestIncome:
    """Test retirement income against the replacement goal"""

    def test_withdrawal_income(self, plan):
        """Test income from the withdrawal rate alone"""
        assert plan.annual_withdrawal == Decimal(6_400)
        assert plan.annual_income == Decimal(6_400)
        assert abs(plan.monthly_income * 12 - Decimal(6_400)) < Decimal("1e-9")
        assert plan.required_annual_income == Decimal(40_000)
        assert plan.income_replacement_ratio == Decimal("0.128")
        assert not plan.meets_income_goal

    def test_benefits_and_withdrawal_tax(self):
        """Test benefits count in full while withdrawals are taxed"""
        plan = plan_retirement(make_request(social_security_income=24_000, pension_income=6_000,
                                            withdrawal_tax_rate=0.2))
        assert plan.guaranteed_income == Decimal(30_000)
        assert plan.annual_income == Decimal(6_400) * Decimal("0.8") + Decimal(30_000)
        # (40,000 goal - 30,000 benefits) grossed up for 20% tax, at a 4% withdrawal rate
        assert plan.target_nest_egg == Decimal(312_500)

    def test_benefits_indexed_to_inflation(self):
        """Test benefits in today's money are inflated to the retirement year"""
        plan = plan_retirement(make_request(inflation_rate=0.02, social_security_income=10_000))
        expected = Decimal(10_000) * Decimal("1.02") ** 25
        assert abs(plan.guaranteed_income - expected) < Decimal("1e-6")

    def test_goal_met(self):
        """Test a large balance meets the income goal"""
        plan = plan_retirement(make_request(current_savings=2_000_000))
        assert plan.meets_income_goal
        assert plan.income_replacement_ratio > Decimal("0.8")

    def test_no_current_income(self):
        """Test the replacement ratio is undefined without a current income"""
        plan = plan_retirement(make_request(current_annual_income=0))
        assert plan.income_replacement_ratio is None
        assert plan.required_annual_income == 0
        assert plan.meets_income_goal
        assert plan.target_nest_egg == 0
        assert plan.additional_monthly_savings == 0
        assert plan.success.success_probability == 1.0


class TestSavingsGap:
    """Test the target nest egg and the extra saving needed to reach it"""

    def test_target_nest_egg(self, plan):
        """Test the target funds the income goal at the withdrawal rate"""
        assert plan.target_nest_egg == Decimal(1_000_000)

    def test_additional_monthly_savings(self, plan):
        """Test the 840,000 shortfall spread over 300 months"""
        assert abs(plan.additional_monthly_savings - Decimal(2_800)) <= Decimal("0.01")
        assert plan.additional_savings_converged
        assert plan.total_required_monthly_savings == Decimal(500) + plan.additional_monthly_savings

    def test_additional_savings_reach_target(self):
        """Test saving the extra amount lands on the target when returns compound"""
        request = make_request(expected_return_rate=0.06)
        first = plan_retirement(request)
        topped_up = plan_retirement(make_request(
            expected_return_rate=0.06,
            monthly_contribution=500 + float(first.additional_monthly_savings)))

        assert abs(topped_up.total_at_retirement - first.target_nest_egg) < Decimal(5)
        assert topped_up.additional_monthly_savings < Decimal(1)

    def test_no_shortfall(self):
        """Test no extra saving is needed when the target is already reached"""
        plan = plan_retirement(make_request(current_savings=2_000_000))
        assert plan.additional_monthly_savings == 0
        assert plan.additional_savings_converged

    def test_healthcare_raises_target(self):
        """Test healthcare costs, grown at their own rate, are funded by the target"""
        base = plan_retirement(make_request())
        with_healthcare = plan_retirement(make_request(healthcare_costs=5_000, healthcare_inflation=0.05))
        expected = Decimal(5_000) * Decimal("1.05") ** 25 / Decimal("0.04")
        assert abs(with_healthcare.target_nest_egg - base.target_nest_egg - expected) < Decimal("0.02")


class TestPortfolioLongevity:
    """Test how long a balance sustains withdrawals"""

    def test_even_withdrawals(self):
        """Test 160,000 lasts 25 years at 6,400 a year with no growth"""
        assert portfolio_longevity(Decimal(160_000), Decimal(6_400), ZERO, ZERO) == 25

    def test_capped(self):
        """Test a balance that is never drawn down stops at the cap"""
        assert portfolio_longevity(Decimal(1_000), ZERO, Decimal("0.05"), ZERO) == MAX_LONGEVITY_YEARS

    def test_empty_balance(self):
        """Test nothing saved lasts no years"""
        assert portfolio_longevity(ZERO, Decimal(1_000), Decimal("0.05"), ZERO) == 0

    def test_inflation_and_healthcare_shorten(self):
        """Test rising withdrawals and healthcare costs exhaust the balance sooner"""
        inflated = portfolio_longevity(Decimal(160_000), Decimal(6_400), ZERO, Decimal("0.03"))
        with_healthcare = portfolio_longevity(Decimal(160_000), Decimal(6_400), ZERO, ZERO,
                                              Decimal(2_000), Decimal("0.05"))
        assert inflated < 25
        assert with_healthcare < 25

    def test_plan_longevity(self, plan):
        """Test the plan reports longevity at the withdrawal rate"""
        assert plan.portfolio_longevity_years == 25


class TestLifetimeSchedule:
    """Test the year-by-year schedule to life expectancy"""

    def test_rows_cover_lifetime(self, plan):
        """Test one row per age from today to life expectancy"""
        assert len(plan.schedule) == 51
        assert [row.age for row in plan.schedule] == list(range(40, 91))
        assert plan.schedule[0].opening_balance == Decimal(10_000)

    def test_phases(self, plan):
        """Test saving years end at the retirement age"""
        at_retirement = plan.schedule[25]
        assert at_retirement.age == 65
        assert at_retirement.phase == ACCUMULATION
        assert at_retirement.closing_balance == Decimal(160_000)

        first_retired = plan.schedule[26]
        assert first_retired.phase == RETIREMENT
        assert first_retired.contribution == 0
        assert first_retired.withdrawal == Decimal(40_000)

    def test_depletion_age(self, plan):
        """Test four years of 40,000 withdrawals empty 160,000 and the fifth goes unmet"""
        assert plan.depletion_age == 70
        row = plan.schedule[30]
        assert row.age == 70
        assert row.withdrawal == 0
        assert row.unmet_need == Decimal(40_000)
        assert all(row.closing_balance >= 0 for row in plan.schedule)

    def test_no_depletion(self):
        """Test a well-funded plan never runs out"""
        plan = plan_retirement(make_request(current_savings=2_000_000))
        assert plan.depletion_age is None
        assert all(row.unmet_need == 0 for row in plan.schedule)


class TestRiskMetrics:
    """Test return risk statistics"""

    def test_ratios(self):
        """Test Sharpe ratio, value at risk and real return"""
        metrics = risk_metrics(0.07, 0.15, 0.025, 0.03)
        assert metrics.sharpe_ratio == pytest.approx(0.04 / 0.15)
        assert metrics.sortino_ratio is None
        assert metrics.value_at_risk_95 == pytest.approx(0.07 - 1.644854 * 0.15, abs=1e-6)
        assert metrics.real_return_rate == pytest.approx(1.07 / 1.025 - 1)

    def test_downside_deviation(self):
        """Test the Sortino ratio uses downside deviation"""
        assert risk_metrics(0.07, 0.15, 0.0, 0.03, 0.10).sortino_ratio == pytest.approx(0.4)

    def test_zero_volatility(self):
        """Test ratios are undefined without volatility"""
        metrics = risk_metrics(0.05, 0.0, 0.0, 0.03)
        assert metrics.sharpe_ratio is None
        assert metrics.value_at_risk_95 == pytest.approx(0.05)

    def test_default_volatility(self, plan):
        """Test a missing volatility uses the simulation default"""
        assert plan.risk.volatility == 0.15


class TestSuccessEstimate:
    """Test the simulated chance of reaching the target"""

    def test_seeded_reproducible(self):
        """Test identical seeds give identical estimates"""
        request = make_request(expected_return_rate=0.06)
        assert plan_retirement(request).success == plan_retirement(request).success

    def test_certain_outcomes_without_volatility(self):
        """Test without volatility the outcome is the deterministic one"""
        short = plan_retirement(make_request(volatility=0.0))
        funded = plan_retirement(make_request(volatility=0.0, current_savings=2_000_000))
        assert short.success.success_probability == 0.0
        assert funded.success.success_probability == 1.0
        assert short.success.median_at_retirement == short.total_at_retirement

    def test_default_runs(self):
        """Test the run count falls back to the argument when the request has none"""
        plan = plan_retirement(make_request(simulation_runs=None), simulation_runs=20)
        assert plan.success.simulation_runs == 20


class TestSensitivityAndCompounding:
    """Test return sensitivity and compounding frequency comparisons"""

    def test_sensitivity(self):
        """Test five return shifts around the base case"""
        plan = plan_retirement(make_request(expected_return_rate=0.06))
        rates = [point.return_rate for point in plan.sensitivity]
        totals = [point.total_at_retirement for point in plan.sensitivity]

        assert rates == [0.04, 0.05, 0.06, 0.07, 0.08]
        assert plan.sensitivity[2].difference == 0
        assert totals == sorted(totals)

    def test_compounding_frequency(self):
        """Test more frequent compounding earns more on the same nominal rate"""
        effects = compounding_effect(Decimal(10_000), Decimal("0.07"), 25)
        values = [effect.value for effect in effects]

        assert [effect.frequency for effect in effects] == ['annual', 'quarterly', 'monthly', 'daily']
        assert effects[0].difference == 0
        assert values == sorted(values)
        assert abs(effects[2].value - Decimal(10_000) * (1 + Decimal("0.07") / 12) ** 300) < Decimal("1e-9")


class TestInsights:
    """Test the plain-text insights"""

    def test_shortfall_insight(self, plan):
        """Test a missed income goal is called out"""
        assert any('short of' in text for text in plan.insights)
        assert all(text.isascii() for text in plan.insights)

    def test_on_track_insight(self):
        """Test a met goal is reported as on track"""
        plan = plan_retirement(make_request(current_savings=2_000_000))
        assert plan.insights[0].startswith('On track')
