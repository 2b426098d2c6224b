"""
Public entry points of the projection engine.

Every operation accepts either a request model or the equivalent plain
values, validates them before computing anything and returns a result
dataclass. Invalid input raises ScenarioValidationError.
"""
from typing import Any, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

from allocation import AllocationAdvisor, AllocationResult
from config_utils import EngineConfig
from deterministic import DeterministicProjector, ProjectionResult
from errors import ScenarioValidationError
from logging_config import get_logger
from retirement import RetirementPlan
from retirement import plan_retirement as _plan_retirement
from schemas import (AllocationRequest, Invalid, OptimizeWithholdingRequest, RetirementOptionsRequest,
                     RetirementPlanRequest, ScenarioComparisonRequest, ScenarioInput, SimulationRequest,
                     StrategyRequest, TaxEstimateRequest, WithholdingRequest, validate_request)
from simulation import MonteCarloSimulator, ReturnSampler, SimulationResult
from strategies import ScenarioComparison, StrategyComparator, StrategyResult
from strategies import compare_scenarios as _compare_scenarios
from tax_estimate import AnnualTaxEstimate
from tax_estimate import estimate_annual_tax as _estimate_annual_tax
from withholding import PaycheckEstimate, RetirementOptionsComparison, WithholdingOptimization
from withholding import compare_retirement_options as _compare_retirement_options
from withholding import estimate_paycheck
from withholding import optimize_withholding as _optimize_withholding

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


def _validated(model_cls: Type[T], request: Any, values: Mapping[str, Any]) -> T:
    """Merge keyword values over the request body and validate the result"""
    if request is None:
        payload = dict(values)
    elif values:
        base = request.model_dump() if isinstance(request, BaseModel) else request
        if not isinstance(base, Mapping):
            raise ScenarioValidationError.single("request", f"expected an object, got {type(base).__name__}")
        payload = {**base, **values}
    else:
        payload = request

    outcome = validate_request(model_cls, payload)
    if isinstance(outcome, Invalid):
        logger.info("request_rejected", request=model_cls.__name__,
                    errors=[str(error) for error in outcome.errors])
        raise ScenarioValidationError(outcome.errors)
    return outcome.value


def project(scenario: Any = None, include_monthly: bool = False, *,
            config: Optional[EngineConfig] = None, **values: Any) -> ProjectionResult:
    """
    Deterministic annual (and optionally monthly) projection of one scenario.

    config is accepted so every operation shares one calling convention;
    projection reads no configured tables or limits.
    """
    scenario = _validated(ScenarioInput, scenario, values)
    return DeterministicProjector(scenario).run_projection(include_monthly=include_monthly)


def simulate(request: Any = None, simulation_runs: Optional[int] = None, *,
             sampler: Optional[ReturnSampler] = None,
             config: Optional[EngineConfig] = None, **values: Any) -> SimulationResult:
    """
    Monte Carlo distribution of final balances.

    request may be a SimulationRequest (or its dict form) or a bare
    ScenarioInput; simulation_runs defaults to the configured default.
    """
    config = config or EngineConfig()
    if isinstance(request, ScenarioInput):
        request = {'scenario': request}
    elif request is None and 'scenario' not in values:
        request, values = split_simulation_payload(values), {}
    elif isinstance(request, Mapping) and 'scenario' not in request:
        request = split_simulation_payload(request)

    if simulation_runs is not None:
        values = {**values, 'simulation_runs': simulation_runs}
    elif request is None or 'simulation_runs' not in _as_mapping(request):
        values = {'simulation_runs': config.default_simulation_runs, **values}

    request = _validated(SimulationRequest, request, values)
    simulator = MonteCarloSimulator(
        request.scenario,
        simulation_runs=request.simulation_runs,
        sampler=sampler,
        seed=request.seed,
        goal_amounts=request.goal_amounts,
        workers=config.simulation_workers,
        chunk_size=config.chunk_size,
    )
    return simulator.run_simulation()


def split_simulation_payload(flat: Mapping[str, Any]) -> dict:
    """Separate simulation controls from scenario fields given side by side"""
    controls = set(SimulationRequest.model_fields) - {'scenario'}
    payload = {key: value for key, value in flat.items() if key in controls}
    payload['scenario'] = {key: value for key, value in flat.items() if key not in controls}
    return payload


def _as_mapping(request: Any) -> Mapping[str, Any]:
    if isinstance(request, BaseModel):
        return request.model_dump()
    return request if isinstance(request, Mapping) else {}


def compare_scenarios(request: Any = None, *, config: Optional[EngineConfig] = None,
                      **values: Any) -> ScenarioComparison:
    """
    Rank several named scenarios by final balance, real balance and CAGR.

    config is accepted for a uniform signature and is not read; horizon
    limits are applied by the caller.
    """
    if isinstance(request, (list, tuple)):
        request = {'scenarios': list(request)}
    request = _validated(ScenarioComparisonRequest, request, values)
    return _compare_scenarios(request.scenarios)


def compare_strategies(request: Any = None, *, config: Optional[EngineConfig] = None,
                       **values: Any) -> StrategyResult:
    """Lump sum vs dollar-cost averaging vs partial lump sum"""
    config = config or EngineConfig()
    request = _validated(StrategyRequest, request, values)
    comparator = StrategyComparator(
        total_amount=request.total_amount,
        time_horizon_years=request.time_horizon_years,
        risk_level=request.risk_level,
        dca_periods=request.dca_periods,
        expected_return_rate=request.expected_return_rate,
        inflation_rate=request.inflation_rate,
        advisor=AllocationAdvisor(config.allocation),
    )
    return comparator.compare()


def allocate(request: Any = None, *, config: Optional[EngineConfig] = None,
             **values: Any) -> AllocationResult:
    """Target allocation and portfolio metrics for a risk level"""
    config = config or EngineConfig()
    request = _validated(AllocationRequest, request, values)
    return AllocationAdvisor(config.allocation).recommend(
        request.risk_level,
        age=request.age,
        time_horizon_years=request.time_horizon_years,
        custom_stock_percentage=request.custom_stock_percentage,
        current_allocation=request.current_allocation,
    )


def estimate_withholding(request: Any = None, *, config: Optional[EngineConfig] = None,
                         **values: Any) -> PaycheckEstimate:
    """Per-period paycheck and annual refund or amount owed"""
    config = config or EngineConfig()
    request = _validated(WithholdingRequest, request, values)
    return estimate_paycheck(request, config.tax_tables)


def optimize_withholding(request: Any = None, *, config: Optional[EngineConfig] = None,
                         **values: Any) -> WithholdingOptimization:
    """Extra withholding per period that lands on a target refund"""
    config = config or EngineConfig()
    request = _validated(OptimizeWithholdingRequest, request, values)
    return _optimize_withholding(request, config.tax_tables)


def compare_retirement_options(request: Any = None, *, config: Optional[EngineConfig] = None,
                               **values: Any) -> RetirementOptionsComparison:
    """Paycheck and tax savings for each candidate retirement election"""
    config = config or EngineConfig()
    request = _validated(RetirementOptionsRequest, request, values)
    return _compare_retirement_options(request, config.tax_tables)


def plan_retirement(request: Any = None, *, config: Optional[EngineConfig] = None,
                    **values: Any) -> RetirementPlan:
    """
    Retirement readiness: savings at retirement, income against the goal,
    portfolio longevity, risk metrics and a simulated success probability.

    The request's simulation_runs falls back to the configured default.
    """
    config = config or EngineConfig()
    request = _validated(RetirementPlanRequest, request, values)
    return _plan_retirement(request,
                            simulation_runs=config.default_simulation_runs,
                            workers=config.simulation_workers,
                            chunk_size=config.chunk_size)


def estimate_annual_tax(request: Any = None, *, config: Optional[EngineConfig] = None,
                        **values: Any) -> AnnualTaxEstimate:
    """Annual federal income tax, self-employment tax and refund or amount owed"""
    config = config or EngineConfig()
    request = _validated(TaxEstimateRequest, request, values)
    return _estimate_annual_tax(request, config.tax_tables)
