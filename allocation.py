"""
Asset allocation advisor.

Maps a risk level (plus optional age and horizon) to a target mix across
stocks, bonds, cash, real estate and alternatives using a lookup table and
an age-based glide path, then derives portfolio-level metrics from
per-asset-class assumptions.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
from scipy import stats

from logging_config import get_logger
from schemas import RiskLevel

logger = get_logger(__name__)

ASSET_CLASSES = ('stocks', 'bonds', 'cash', 'real_estate', 'alternatives')


@dataclass(frozen=True)
class AssetClassMetrics:
    """Long-run assumptions for one asset class (annual, as fractions)"""
    expected_return: float
    volatility: float
    best_year: float
    worst_year: float


@dataclass(frozen=True)
class GlidePath:
    """Coefficients of the age and horizon adjustments"""
    age_anchor: int = 120
    age_weight: float = 0.5
    min_stock_percentage: float = 20.0
    max_stock_percentage: float = 90.0
    short_horizon_years: int = 10
    short_horizon_shift_per_year: float = 3.0


@dataclass(frozen=True)
class AllocationConfig:
    """Allocation tables and assumptions; swap the whole object to change them"""
    base_allocations: Mapping[RiskLevel, Mapping[str, float]]
    asset_metrics: Mapping[str, AssetClassMetrics]
    correlations: Optional[Tuple[Tuple[float, ...], ...]] = None
    glide_path: GlidePath = field(default_factory=GlidePath)
    risk_free_asset: str = 'cash'
    default_projection_years: int = 10
    rebalance_tolerance: float = 1.0
    rebalance_threshold: float = 1.0


@dataclass(frozen=True)
class RebalanceSuggestion:
    asset_class: str
    current_percentage: float
    target_percentage: float
    difference: float
    action: str


@dataclass(frozen=True)
class AllocationResult:
    """Target allocation with its portfolio-level metrics"""
    risk_level: RiskLevel
    allocation: Dict[str, float]
    asset_class_metrics: Dict[str, AssetClassMetrics]
    expected_return: float
    volatility: float
    volatility_is_approximation: bool
    sharpe_ratio: Optional[float]
    probability_of_loss: float
    historical_best_year: float
    historical_worst_year: float
    projection_years: int
    projected_growth_percentage: float
    rebalancing_suggestions: Tuple[RebalanceSuggestion, ...]
    rationale: Tuple[str, ...]


_BASE_ALLOCATIONS = {
    RiskLevel.CONSERVATIVE: (30, 50, 10, 5, 5),
    RiskLevel.MODERATELY_CONSERVATIVE: (40, 40, 10, 5, 5),
    RiskLevel.MODERATE: (55, 30, 5, 5, 5),
    RiskLevel.MODERATELY_AGGRESSIVE: (70, 20, 3, 4, 3),
    RiskLevel.AGGRESSIVE: (85, 10, 0, 3, 2),
}

_ASSET_METRICS = {
    'stocks': AssetClassMetrics(0.10, 0.18, 0.54, -0.43),
    'bonds': AssetClassMetrics(0.05, 0.06, 0.33, -0.13),
    'cash': AssetClassMetrics(0.03, 0.01, 0.147, 0.0),
    'real_estate': AssetClassMetrics(0.08, 0.16, 0.38, -0.38),
    'alternatives': AssetClassMetrics(0.06, 0.12, 0.30, -0.25),
}

# Rows and columns follow ASSET_CLASSES
_CORRELATIONS = (
    (1.0, 0.1, 0.0, 0.6, 0.5),
    (0.1, 1.0, 0.2, 0.2, 0.1),
    (0.0, 0.2, 1.0, 0.0, 0.0),
    (0.6, 0.2, 0.0, 1.0, 0.4),
    (0.5, 0.1, 0.0, 0.4, 1.0),
)

_RISK_DESCRIPTIONS = {
    RiskLevel.CONSERVATIVE: "Capital preservation first, with a bond-heavy mix",
    RiskLevel.MODERATELY_CONSERVATIVE: "Income and stability with modest growth",
    RiskLevel.MODERATE: "Balanced growth and stability",
    RiskLevel.MODERATELY_AGGRESSIVE: "Growth-oriented with some ballast from bonds",
    RiskLevel.AGGRESSIVE: "Maximum long-term growth, accepting large drawdowns",
}


def default_allocation_config() -> AllocationConfig:
    """Allocation tables with a correlation matrix"""
    return AllocationConfig(
        base_allocations=MappingProxyType({
            level: MappingProxyType(dict(zip(ASSET_CLASSES, map(float, weights))))
            for level, weights in _BASE_ALLOCATIONS.items()
        }),
        asset_metrics=MappingProxyType(dict(_ASSET_METRICS)),
        correlations=_CORRELATIONS,
    )


def allocation_config_from_dict(data: Dict[str, Any], base: AllocationConfig = None) -> AllocationConfig:
    """
    Build an allocation config from a JSON-style dictionary, overriding a base config.

    Recognised keys: base_allocations (risk level -> {asset: pct}),
    asset_metrics (asset -> {expected_return, volatility, best_year, worst_year}),
    correlations (5x5 list, or null to use weighted-average volatility),
    glide_path (GlidePath fields) and default_projection_years.
    """
    base = base or default_allocation_config()

    base_allocations = base.base_allocations
    if 'base_allocations' in data:
        merged = dict(base.base_allocations)
        for level, weights in data['base_allocations'].items():
            merged[RiskLevel(level)] = MappingProxyType({asset: float(weights.get(asset, 0.0))
                                                         for asset in ASSET_CLASSES})
        base_allocations = MappingProxyType(merged)

    asset_metrics = base.asset_metrics
    if 'asset_metrics' in data:
        merged_metrics = dict(base.asset_metrics)
        for asset, values in data['asset_metrics'].items():
            merged_metrics[asset] = AssetClassMetrics(**values)
        asset_metrics = MappingProxyType(merged_metrics)

    correlations = base.correlations
    if 'correlations' in data:
        rows = data['correlations']
        correlations = tuple(tuple(float(v) for v in row) for row in rows) if rows is not None else None

    glide_path = GlidePath(**data['glide_path']) if 'glide_path' in data else base.glide_path

    return AllocationConfig(
        base_allocations=base_allocations,
        asset_metrics=asset_metrics,
        correlations=correlations,
        glide_path=glide_path,
        risk_free_asset=data.get('risk_free_asset', base.risk_free_asset),
        default_projection_years=int(data.get('default_projection_years', base.default_projection_years)),
        rebalance_tolerance=float(data.get('rebalance_tolerance', base.rebalance_tolerance)),
        rebalance_threshold=float(data.get('rebalance_threshold', base.rebalance_threshold)),
    )


def _move_between(allocation: Dict[str, float], source: str, target: str, amount: float) -> float:
    """Move up to amount percentage points from source to target; returns the amount moved"""
    moved = max(0.0, min(amount, allocation[source]))
    allocation[source] -= moved
    allocation[target] += moved
    return moved


class AllocationAdvisor:
    """Risk-profile driven allocation recommendations"""

    def __init__(self, config: Optional[AllocationConfig] = None):
        self.config = config or default_allocation_config()
        self._validate_config()

    def _validate_config(self):
        for level, weights in self.config.base_allocations.items():
            total = sum(weights.values())
            if abs(total - 100.0) > 1e-6:
                raise ValueError(f"Base allocation for {RiskLevel(level).value} must sum to 100, got {total:.4f}")
        missing = [asset for asset in ASSET_CLASSES if asset not in self.config.asset_metrics]
        if missing:
            raise ValueError(f"Missing asset class metrics for: {', '.join(missing)}")
        if self.config.correlations is not None:
            matrix = np.asarray(self.config.correlations, dtype=float)
            if matrix.shape != (len(ASSET_CLASSES), len(ASSET_CLASSES)):
                raise ValueError(f"Correlation matrix must be {len(ASSET_CLASSES)}x{len(ASSET_CLASSES)}")

    def target_allocation(self, risk_level: RiskLevel,
                          age: Optional[int] = None,
                          time_horizon_years: Optional[int] = None,
                          custom_stock_percentage: Optional[float] = None) -> Tuple[Dict[str, float], List[str]]:
        """
        Target allocation in percent, with notes on each adjustment applied.

        A custom stock percentage replaces the glide path; the remaining
        classes are rescaled in proportion to the base table.
        """
        risk_level = RiskLevel(risk_level)
        glide = self.config.glide_path
        allocation = dict(self.config.base_allocations[risk_level])
        notes = [_RISK_DESCRIPTIONS.get(risk_level, risk_level.value)]

        if custom_stock_percentage is not None:
            others = [asset for asset in ASSET_CLASSES if asset != 'stocks']
            others_total = sum(allocation[asset] for asset in others)
            remaining = 100.0 - custom_stock_percentage
            for asset in others:
                if others_total > 0:
                    allocation[asset] = allocation[asset] * remaining / others_total
                else:
                    allocation[asset] = remaining if asset == 'bonds' else 0.0
            allocation['stocks'] = float(custom_stock_percentage)
            notes.append(f"Stocks set to {custom_stock_percentage:g}% by request; other classes rescaled")
            return allocation, notes

        if age is not None:
            target = min(max(glide.age_anchor - age, glide.min_stock_percentage), glide.max_stock_percentage)
            shift = (target - allocation['stocks']) * glide.age_weight
            if shift > 0:
                moved = _move_between(allocation, 'bonds', 'stocks', shift)
                if moved:
                    notes.append(f"Age {age}: moved {moved:g} points from bonds to stocks")
            elif shift < 0:
                moved = _move_between(allocation, 'stocks', 'bonds', -shift)
                if moved:
                    notes.append(f"Age {age}: moved {moved:g} points from stocks to bonds")

        if time_horizon_years is not None and time_horizon_years < glide.short_horizon_years:
            shift = (glide.short_horizon_years - time_horizon_years) * glide.short_horizon_shift_per_year
            moved = _move_between(allocation, 'stocks', 'bonds', shift)
            if moved:
                notes.append(f"{time_horizon_years}-year horizon: moved {moved:g} points from stocks to bonds")

        return allocation, notes

    def portfolio_metrics(self, allocation: Mapping[str, float]) -> Tuple[float, float, bool]:
        """Expected return, volatility and whether the volatility is a weighted-average approximation"""
        weights = np.array([allocation.get(asset, 0.0) / 100.0 for asset in ASSET_CLASSES])
        metrics = [self.config.asset_metrics[asset] for asset in ASSET_CLASSES]
        returns = np.array([m.expected_return for m in metrics])
        vols = np.array([m.volatility for m in metrics])

        expected_return = float(weights @ returns)
        if self.config.correlations is None:
            return expected_return, float(weights @ vols), True

        covariance = np.outer(vols, vols) * np.asarray(self.config.correlations, dtype=float)
        variance = float(weights @ covariance @ weights)
        return expected_return, float(np.sqrt(max(variance, 0.0))), False

    def portfolio_expected_return(self, risk_level: RiskLevel) -> float:
        """Expected return of the unadjusted base allocation for a risk level"""
        allocation = self.config.base_allocations[RiskLevel(risk_level)]
        return self.portfolio_metrics(allocation)[0]

    def rebalancing_suggestions(self, current: Mapping[str, float],
                                target: Mapping[str, float]) -> Tuple[RebalanceSuggestion, ...]:
        """Trades needed to move from the current to the target allocation"""
        suggestions = []
        extra = [asset for asset in current if asset not in ASSET_CLASSES]
        for asset in list(ASSET_CLASSES) + sorted(extra):
            current_pct = float(current.get(asset, 0.0))
            target_pct = float(target.get(asset, 0.0))
            difference = target_pct - current_pct
            if abs(difference) < self.config.rebalance_threshold:
                continue
            suggestions.append(RebalanceSuggestion(
                asset_class=asset,
                current_percentage=current_pct,
                target_percentage=target_pct,
                difference=difference,
                action='increase' if difference > 0 else 'decrease',
            ))
        return tuple(suggestions)

    def recommend(self, risk_level: RiskLevel,
                  age: Optional[int] = None,
                  time_horizon_years: Optional[int] = None,
                  custom_stock_percentage: Optional[float] = None,
                  current_allocation: Optional[Mapping[str, float]] = None) -> AllocationResult:
        """
        Recommend an allocation and describe its risk/return profile.

        Args:
            risk_level: Investor risk level
            age: Investor age, drives the glide path
            time_horizon_years: Years until the money is needed
            custom_stock_percentage: Explicit stock percentage overriding the glide path
            current_allocation: Existing allocation in percent, for rebalancing suggestions

        Returns:
            AllocationResult
        """
        risk_level = RiskLevel(risk_level)
        allocation, rationale = self.target_allocation(risk_level, age, time_horizon_years,
                                                       custom_stock_percentage)
        expected_return, volatility, approximate = self.portfolio_metrics(allocation)

        if approximate:
            rationale.append("Volatility is a weighted average of asset volatilities and overstates risk")

        risk_free = self.config.asset_metrics[self.config.risk_free_asset].expected_return
        sharpe = (expected_return - risk_free) / volatility if volatility > 0 else None

        if volatility > 0:
            probability_of_loss = float(stats.norm.cdf(0.0, loc=expected_return, scale=volatility))
        else:
            probability_of_loss = 1.0 if expected_return < 0 else 0.0

        weights = {asset: allocation.get(asset, 0.0) / 100.0 for asset in ASSET_CLASSES}
        best_year = sum(weights[a] * self.config.asset_metrics[a].best_year for a in ASSET_CLASSES)
        worst_year = sum(weights[a] * self.config.asset_metrics[a].worst_year for a in ASSET_CLASSES)

        projection_years = time_horizon_years or self.config.default_projection_years
        projected_growth = ((1 + expected_return) ** projection_years - 1) * 100

        suggestions = ()
        if current_allocation:
            current_total = sum(current_allocation.values())
            if abs(current_total - 100.0) <= self.config.rebalance_tolerance:
                suggestions = self.rebalancing_suggestions(current_allocation, allocation)
            else:
                rationale.append(f"Current allocation sums to {current_total:g}%, not 100%; "
                                 f"no rebalancing suggestions made")

        logger.debug("allocation_recommended",
                     risk_level=risk_level.value,
                     age=age,
                     time_horizon_years=time_horizon_years,
                     expected_return=expected_return,
                     volatility=volatility)

        return AllocationResult(
            risk_level=risk_level,
            allocation=allocation,
            asset_class_metrics={asset: self.config.asset_metrics[asset] for asset in ASSET_CLASSES},
            expected_return=expected_return,
            volatility=volatility,
            volatility_is_approximation=approximate,
            sharpe_ratio=sharpe,
            probability_of_loss=probability_of_loss,
            historical_best_year=best_year,
            historical_worst_year=worst_year,
            projection_years=projection_years,
            projected_growth_percentage=projected_growth,
            rebalancing_suggestions=suggestions,
            rationale=tuple(rationale),
        )
