"""
Unit tests for the asset allocation advisor.
"""
import pytest
import numpy as np
from dataclasses import replace
from scipy import stats
from schemas import RiskLevel
from allocation import (
    ASSET_CLASSES, AllocationAdvisor, allocation_config_from_dict, default_allocation_config
)


class TestTargetAllocation:
    """Test base table and glide path"""

    @pytest.mark.parametrize("risk_level", list(RiskLevel))
    def test_allocations_sum_to_100(self, risk_level):
        """Test every risk level sums to 100% with and without adjustments"""
        advisor = AllocationAdvisor()
        for age, horizon in ((None, None), (25, None), (70, 3), (45, 30)):
            result = advisor.recommend(risk_level, age=age, time_horizon_years=horizon)
            assert abs(sum(result.allocation.values()) - 100.0) < 1e-9
            assert all(pct >= 0 for pct in result.allocation.values())

    def test_base_table_lookup(self):
        """Test the moderate base allocation without adjustments"""
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE)
        assert result.allocation == {'stocks': 55.0, 'bonds': 30.0, 'cash': 5.0,
                                     'real_estate': 5.0, 'alternatives': 5.0}

    def test_risk_levels_increase_stock_share(self):
        """Test stock share rises with risk level"""
        advisor = AllocationAdvisor()
        stocks = [advisor.recommend(level).allocation['stocks'] for level in RiskLevel]
        assert stocks == sorted(stocks)

    def test_older_investor_holds_more_bonds(self):
        """Test the glide path shifts stocks into bonds with age"""
        advisor = AllocationAdvisor()
        young = advisor.recommend(RiskLevel.MODERATE, age=30)
        old = advisor.recommend(RiskLevel.MODERATE, age=75)

        assert old.allocation['bonds'] > young.allocation['bonds']
        assert old.allocation['stocks'] < young.allocation['stocks']

    def test_age_rule_coefficients(self):
        """Test stocks move halfway toward 120 - age"""
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE, age=75)
        # target 45, base 55 -> shift 5 points to bonds
        assert result.allocation['stocks'] == pytest.approx(50.0)
        assert result.allocation['bonds'] == pytest.approx(35.0)

    def test_short_horizon_shift(self):
        """Test a short horizon moves 3 points per missing year into bonds"""
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE, time_horizon_years=5)
        assert result.allocation['stocks'] == pytest.approx(40.0)
        assert result.allocation['bonds'] == pytest.approx(45.0)

    def test_custom_stock_percentage(self):
        """Test a custom stock share overrides the glide path and rescales the rest"""
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE, age=80, custom_stock_percentage=75)
        allocation = result.allocation

        assert allocation['stocks'] == 75.0
        assert abs(sum(allocation.values()) - 100.0) < 1e-9
        # Bonds keep their 30:5 ratio to cash
        assert allocation['bonds'] / allocation['cash'] == pytest.approx(6.0)


class TestPortfolioMetrics:
    """Test expected return, volatility and derived metrics"""

    def test_expected_return_is_weighted_average(self):
        """Test portfolio expected return"""
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE)
        expected = 0.55 * 0.10 + 0.30 * 0.05 + 0.05 * 0.03 + 0.05 * 0.08 + 0.05 * 0.06
        assert result.expected_return == pytest.approx(expected)

    def test_covariance_volatility(self):
        """Test volatility uses sqrt(w' Sigma w) when correlations are configured"""
        config = default_allocation_config()
        result = AllocationAdvisor(config).recommend(RiskLevel.AGGRESSIVE)

        weights = np.array([result.allocation[a] / 100 for a in ASSET_CLASSES])
        vols = np.array([config.asset_metrics[a].volatility for a in ASSET_CLASSES])
        covariance = np.outer(vols, vols) * np.array(config.correlations)
        assert result.volatility == pytest.approx(float(np.sqrt(weights @ covariance @ weights)))
        assert result.volatility_is_approximation is False

    def test_diversification_lowers_volatility(self):
        """Test correlated volatility is below the weighted average"""
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE)
        weighted = sum(result.allocation[a] / 100 * result.asset_class_metrics[a].volatility
                       for a in ASSET_CLASSES)
        assert result.volatility < weighted

    def test_weighted_average_fallback_is_flagged(self):
        """Test missing correlations fall back to the weighted average and say so"""
        config = replace(default_allocation_config(), correlations=None)
        result = AllocationAdvisor(config).recommend(RiskLevel.MODERATE)

        weighted = sum(result.allocation[a] / 100 * result.asset_class_metrics[a].volatility
                       for a in ASSET_CLASSES)
        assert result.volatility == pytest.approx(weighted)
        assert result.volatility_is_approximation is True
        assert any("weighted average" in line for line in result.rationale)

    def test_sharpe_and_loss_probability(self):
        """Test Sharpe ratio and the normal approximation of a losing year"""
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE)
        assert result.sharpe_ratio == pytest.approx((result.expected_return - 0.03) / result.volatility)
        assert result.probability_of_loss == pytest.approx(
            stats.norm.cdf(0, loc=result.expected_return, scale=result.volatility))
        assert 0 < result.probability_of_loss < 0.5

    def test_projected_growth(self):
        """Test projected growth defaults to ten years"""
        result = AllocationAdvisor().recommend(RiskLevel.CONSERVATIVE)
        assert result.projection_years == 10
        assert result.projected_growth_percentage == pytest.approx(((1 + result.expected_return) ** 10 - 1) * 100)

    def test_historical_range(self):
        """Test weighted best and worst years bracket the expected return"""
        result = AllocationAdvisor().recommend(RiskLevel.AGGRESSIVE)
        assert result.historical_worst_year < result.expected_return < result.historical_best_year

    def test_portfolio_expected_return(self):
        """Test the unadjusted expected return used by the strategy comparator"""
        advisor = AllocationAdvisor()
        assert advisor.portfolio_expected_return(RiskLevel.MODERATE) == pytest.approx(
            advisor.recommend(RiskLevel.MODERATE).expected_return)


class TestRebalancing:
    """Test rebalancing suggestions"""

    def test_suggestions_against_current_allocation(self):
        """Test trades are suggested where the current mix is off target"""
        current = {'stocks': 80, 'bonds': 10, 'cash': 10, 'real_estate': 0, 'alternatives': 0}
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE, current_allocation=current)
        by_asset = {s.asset_class: s for s in result.rebalancing_suggestions}

        assert by_asset['stocks'].action == 'decrease'
        assert by_asset['stocks'].difference == pytest.approx(-25.0)
        assert by_asset['bonds'].action == 'increase'
        assert 'real_estate' in by_asset

    def test_on_target_needs_no_trades(self):
        """Test an allocation already on target yields no suggestions"""
        current = {'stocks': 55, 'bonds': 30, 'cash': 5, 'real_estate': 5, 'alternatives': 5}
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE, current_allocation=current)
        assert result.rebalancing_suggestions == ()

    def test_allocation_not_summing_to_100_is_ignored(self):
        """Test a current allocation far from 100% produces no suggestions"""
        current = {'stocks': 50, 'bonds': 20}
        result = AllocationAdvisor().recommend(RiskLevel.MODERATE, current_allocation=current)
        assert result.rebalancing_suggestions == ()
        assert any("sums to 70%" in line for line in result.rationale)


class TestAllocationConfig:
    """Test allocation configuration loading"""

    def test_override_base_allocation(self):
        """Test overriding one risk level's table"""
        config = allocation_config_from_dict({
            'base_allocations': {'aggressive': {'stocks': 95, 'bonds': 5}},
        })
        result = AllocationAdvisor(config).recommend(RiskLevel.AGGRESSIVE)
        assert result.allocation['stocks'] == 95.0
        assert result.allocation['cash'] == 0.0

    def test_null_correlations(self):
        """Test correlations can be switched off"""
        config = allocation_config_from_dict({'correlations': None})
        assert config.correlations is None

    def test_invalid_table_rejected(self):
        """Test base tables must sum to 100"""
        config = allocation_config_from_dict({
            'base_allocations': {'moderate': {'stocks': 50, 'bonds': 30}},
        })
        with pytest.raises(ValueError, match="must sum to 100"):
            AllocationAdvisor(config)
