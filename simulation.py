"""
Monte Carlo simulation of a scenario's ending balance.
Each run draws one normal annual return per year and replays the
deterministic projector's compounding step with those rates.
"""
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from compounding import ZERO, to_decimal
from deterministic import DeterministicProjector
from logging_config import get_logger
from schemas import ScenarioInput

logger = get_logger(__name__)

PERCENTILES = (10, 25, 50, 75, 90)
DEFAULT_VOLATILITY = 0.15
DEFAULT_CHUNK_SIZE = 250


class ReturnSampler(Protocol):
    """Source of annual return draws"""

    seed: Optional[int]

    def sample(self, mean: float, volatility: float, size: Tuple[int, int]) -> np.ndarray:
        ...


class NormalReturnSampler:
    """Normally distributed annual returns from numpy's default generator"""

    def __init__(self, seed: Optional[int] = None):
        # Fresh entropy per instance; keep it so the run can be replayed
        self.seed = seed if seed is not None else np.random.SeedSequence().entropy
        self._rng = np.random.default_rng(self.seed)

    def sample(self, mean: float, volatility: float, size: Tuple[int, int]) -> np.ndarray:
        return self._rng.normal(mean, volatility, size)


@dataclass(frozen=True)
class SimulationResult:
    """Results from Monte Carlo simulation"""
    simulation_runs: int
    seed: Optional[int]
    volatility: Decimal
    total_contributions: Decimal
    median_final_balance: Decimal
    mean_final_balance: Decimal
    best_case: Decimal
    worst_case: Decimal
    percentile_final_balances: Dict[str, Decimal]
    percentile_trajectories: Dict[str, Tuple[Decimal, ...]]
    percentile_bands: Dict[str, Tuple[Decimal, ...]]
    probabilities: Dict[str, float]
    final_balances: np.ndarray = field(compare=False, repr=False)
    wealth_paths: np.ndarray = field(compare=False, repr=False)


def _simulate_chunk(scenario: ScenarioInput, rate_rows: Sequence[Sequence[float]]) -> List[List[Decimal]]:
    """Year-end balance paths for a block of runs (module level so it pickles)"""
    projector = DeterministicProjector(scenario)
    return [projector.balance_path([to_decimal(float(rate)) for rate in rates])
            for rates in rate_rows]


def percentile_of_sorted(sorted_values: Sequence[Decimal], percentile: float) -> Decimal:
    """
    Percentile of pre-sorted values using linear interpolation between ranks.

    Matches numpy's default ('linear') method, but stays in Decimal.
    """
    if not sorted_values:
        raise ValueError("Cannot take a percentile of an empty sequence")
    rank = to_decimal(percentile) / 100 * (len(sorted_values) - 1)
    lower = int(rank)
    upper = min(lower + 1, len(sorted_values) - 1)
    fraction = rank - lower
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * fraction


def closest_run_index(final_balances: Sequence[Decimal], value: Decimal) -> int:
    """Index of the run whose final balance is nearest value; ties go to the lowest index"""
    return min(range(len(final_balances)), key=lambda i: (abs(final_balances[i] - value), i))


def calculate_percentiles(wealth_paths: np.ndarray) -> Dict[str, np.ndarray]:
    """Calculate per-year wealth percentile bands over time"""
    return {f"p{p}": np.percentile(wealth_paths, p, axis=0) for p in PERCENTILES}


def goal_key(goal: float) -> str:
    """Probability key for a goal amount, e.g. reach_100000 or reach_2500.5"""
    amount = to_decimal(goal)
    if amount == amount.to_integral_value():
        return f"reach_{int(amount)}"
    return f"reach_{amount.normalize()}"


def calculate_probabilities(final_balances: Sequence[Decimal],
                            total_contributions: Decimal,
                            goal_amounts: Sequence[float] = ()) -> Dict[str, float]:
    """Share of runs whose final balance is at least each threshold"""
    runs = len(final_balances)

    def share(threshold: Decimal) -> float:
        return sum(1 for balance in final_balances if balance >= threshold) / runs

    probabilities = {
        'exceeds_total_contributions': share(total_contributions),
        'doubles_total_contributions': share(total_contributions * 2),
    }
    for goal in goal_amounts:
        probabilities[goal_key(goal)] = share(to_decimal(goal))
    return probabilities


class MonteCarloSimulator:
    """Monte Carlo simulation of a single scenario"""

    def __init__(self, scenario: ScenarioInput,
                 simulation_runs: int = 1000,
                 sampler: Optional[ReturnSampler] = None,
                 seed: Optional[int] = None,
                 goal_amounts: Sequence[float] = (),
                 workers: int = 1,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.scenario = scenario
        self.simulation_runs = simulation_runs
        self.sampler = sampler if sampler is not None else NormalReturnSampler(seed)
        self.goal_amounts = tuple(goal_amounts)
        self.workers = workers
        self.chunk_size = chunk_size
        self._validate_params()

    @property
    def volatility(self) -> float:
        if self.scenario.volatility is None:
            return DEFAULT_VOLATILITY
        return self.scenario.volatility

    def _validate_params(self):
        """Validate simulation parameters"""
        if self.simulation_runs <= 0:
            raise ValueError(f"simulation_runs must be positive, got {self.simulation_runs}")
        if self.volatility < 0:
            raise ValueError(f"volatility must be non-negative, got {self.volatility}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")

    def _draw_returns(self) -> np.ndarray:
        """All annual returns up front, one row per run; losses floor at -100%"""
        draws = self.sampler.sample(self.scenario.annual_return_rate, self.volatility,
                                    (self.simulation_runs, self.scenario.time_horizon_years))
        return np.clip(np.asarray(draws, dtype=float), -1.0, None)

    def _run_paths(self, draws: np.ndarray) -> List[List[Decimal]]:
        """Fan the runs out in fixed-size chunks and gather them back in run order"""
        chunks = [draws[start:start + self.chunk_size].tolist()
                  for start in range(0, self.simulation_runs, self.chunk_size)]

        if self.workers <= 1 or len(chunks) == 1:
            results = [_simulate_chunk(self.scenario, chunk) for chunk in chunks]
        else:
            with ProcessPoolExecutor(max_workers=self.workers) as executor:
                results = list(executor.map(_simulate_chunk, [self.scenario] * len(chunks), chunks))

        return [path for chunk_paths in results for path in chunk_paths]

    def run_simulation(self) -> SimulationResult:
        """Run the Monte Carlo simulation"""
        logger.info("simulation_started",
                    runs=self.simulation_runs,
                    horizon_years=self.scenario.time_horizon_years,
                    volatility=self.volatility,
                    workers=self.workers)

        paths = self._run_paths(self._draw_returns())
        finals = [path[-1] for path in paths]
        sorted_finals = sorted(finals)

        projection = DeterministicProjector(self.scenario).run_projection()
        total_contributions = projection.summary.total_contributions

        percentile_finals = {}
        trajectories = {}
        for p in PERCENTILES:
            value = percentile_of_sorted(sorted_finals, p)
            percentile_finals[f"p{p}"] = value
            trajectories[f"p{p}"] = tuple(paths[closest_run_index(finals, value)])

        wealth_paths = np.array([[float(balance) for balance in path] for path in paths])
        bands = {key: tuple(to_decimal(float(v)) for v in values)
                 for key, values in calculate_percentiles(wealth_paths).items()}

        result = SimulationResult(
            simulation_runs=self.simulation_runs,
            seed=getattr(self.sampler, 'seed', None),
            volatility=to_decimal(self.volatility),
            total_contributions=total_contributions,
            median_final_balance=percentile_finals['p50'],
            mean_final_balance=sum(finals, ZERO) / len(finals),
            best_case=sorted_finals[-1],
            worst_case=sorted_finals[0],
            percentile_final_balances=percentile_finals,
            percentile_trajectories=trajectories,
            percentile_bands=bands,
            probabilities=calculate_probabilities(finals, total_contributions, self.goal_amounts),
            final_balances=wealth_paths[:, -1].copy(),
            wealth_paths=wealth_paths,
        )

        logger.info("simulation_complete",
                    runs=self.simulation_runs,
                    median_final_balance=str(result.median_final_balance),
                    worst_case=str(result.worst_case),
                    best_case=str(result.best_case))
        return result
