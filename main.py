"""
Projection Engine - Command Line Entry Point

Each sub-command reads one JSON request file, runs the matching engine
operation and prints the result as JSON:

    python main.py project scenario.json --include-monthly --csv schedule.csv
    python main.py simulate simulation.json --runs 5000 --seed 42
    python main.py compare-strategies strategy.json
    python main.py compare-scenarios scenarios.json
    python main.py allocate allocation.json
    python main.py withholding paycheck.json
    python main.py optimize-withholding paycheck.json
    python main.py retirement-options paycheck.json
    python main.py retirement-plan retirement.json
    python main.py tax-estimate tax.json

Invalid requests exit with status 2 and a JSON error body.
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

import engine
from config_utils import EngineConfig, load_engine_config
from errors import FieldError, ScenarioValidationError
from io_utils import export_projection_csv, load_request_json, result_to_json, write_text
from logging_config import LOG_LEVELS, configure_logging, get_logger

logger = get_logger(__name__)

EXIT_INVALID_REQUEST = 2


def _check_horizon(years: Any, field: str, config: EngineConfig) -> None:
    if isinstance(years, int) and years > config.max_horizon_years:
        raise ScenarioValidationError.single(
            field, f"must be at most {config.max_horizon_years} years")


def _check_runs(runs: Any, config: EngineConfig) -> None:
    if isinstance(runs, int) and runs > config.max_simulation_runs:
        raise ScenarioValidationError.single(
            'simulation_runs', f"must be at most {config.max_simulation_runs}")


def _enforce_limits(command: str, request: Dict[str, Any], config: EngineConfig) -> None:
    """Caller-side bounds on work per request; the engine itself does not limit them"""
    if command == 'project':
        _check_horizon(request.get('time_horizon_years'), 'time_horizon_years', config)
    elif command == 'simulate':
        scenario = request.get('scenario', request)
        if isinstance(scenario, dict):
            _check_horizon(scenario.get('time_horizon_years'), 'scenario.time_horizon_years', config)
        _check_runs(request.get('simulation_runs'), config)
    elif command == 'compare-scenarios':
        for i, scenario in enumerate(request.get('scenarios') or []):
            if isinstance(scenario, dict):
                _check_horizon(scenario.get('time_horizon_years'), f'scenarios.{i}.time_horizon_years', config)
    elif command == 'compare-strategies':
        _check_horizon(request.get('time_horizon_years'), 'time_horizon_years', config)
    elif command == 'retirement-plan':
        _check_runs(request.get('simulation_runs'), config)


def _run(args: argparse.Namespace, config: EngineConfig) -> str:
    request = load_request_json(args.request)

    if args.command == 'simulate':
        if 'scenario' not in request:
            request = engine.split_simulation_payload(request)
        if args.runs is not None:
            request['simulation_runs'] = args.runs
        if args.seed is not None:
            request['seed'] = args.seed

    _enforce_limits(args.command, request, config)

    if args.command == 'project':
        result = engine.project(request, include_monthly=args.include_monthly, config=config)
        if args.csv:
            write_text(args.csv, export_projection_csv(result))
            logger.info("projection_csv_written", path=args.csv)
        return result_to_json(result)

    operations = {
        'simulate': engine.simulate,
        'compare-strategies': engine.compare_strategies,
        'compare-scenarios': engine.compare_scenarios,
        'allocate': engine.allocate,
        'withholding': engine.estimate_withholding,
        'optimize-withholding': engine.optimize_withholding,
        'retirement-options': engine.compare_retirement_options,
        'retirement-plan': engine.plan_retirement,
        'tax-estimate': engine.estimate_annual_tax,
    }
    return result_to_json(operations[args.command](request, config=config))


def _error_body(errors: List[FieldError]) -> str:
    return json.dumps({
        'error': 'invalid_request',
        'errors': [{'field': e.field, 'message': e.message} for e in errors],
    }, indent=2)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Financial projection and simulation engine")
    parser.add_argument('--config', help="Engine config JSON (defaults to $ENGINE_CONFIG_PATH)")
    parser.add_argument('--log-level', default=None, type=str.upper, choices=LOG_LEVELS,
                        help="Override the configured log level")
    parser.add_argument('--log-json', action='store_true', help="Emit logs as JSON lines")

    sub = parser.add_subparsers(dest='command', required=True)

    project = sub.add_parser('project', help="Deterministic projection")
    project.add_argument('request')
    project.add_argument('--include-monthly', action='store_true')
    project.add_argument('--csv', help="Also write the annual schedule to this CSV file")

    simulate = sub.add_parser('simulate', help="Monte Carlo simulation")
    simulate.add_argument('request')
    simulate.add_argument('--runs', type=int, default=None)
    simulate.add_argument('--seed', type=int, default=None)

    for name, help_text in (('compare-strategies', "Lump sum vs dollar-cost averaging"),
                            ('compare-scenarios', "Rank named scenarios"),
                            ('allocate', "Asset allocation recommendation"),
                            ('withholding', "Paycheck withholding estimate"),
                            ('optimize-withholding', "Extra withholding for a target refund"),
                            ('retirement-options', "Compare retirement contribution options"),
                            ('retirement-plan', "Retirement readiness plan"),
                            ('tax-estimate', "Annual federal income tax estimate")):
        command = sub.add_parser(name, help=help_text)
        command.add_argument('request')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_engine_config(args.config)
    configure_logging(level=args.log_level or config.log_level, format_json=args.log_json or config.log_json)

    try:
        output = _run(args, config)
    except ScenarioValidationError as exc:
        print(_error_body(list(exc.errors)))
        return EXIT_INVALID_REQUEST
    except (ValueError, OSError) as exc:
        # Unreadable or malformed request files
        print(_error_body([FieldError('request', str(exc))]))
        return EXIT_INVALID_REQUEST

    print(output)
    return 0


if __name__ == '__main__':
    sys.exit(main())
