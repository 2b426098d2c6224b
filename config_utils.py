"""
Configuration Utilities for the projection engine.
Immutable engine configuration and loading it from JSON.
"""

import json
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

from allocation import AllocationConfig, allocation_config_from_dict, default_allocation_config
from logging_config import LOG_LEVELS, get_logger
from tax_utils import TaxTables, tax_tables_2024, tax_tables_from_dict

logger = get_logger(__name__)

CONFIG_PATH_ENV = 'ENGINE_CONFIG_PATH'


@dataclass(frozen=True)
class EngineConfig:
    """Tables and limits passed into every engine operation"""
    tax_tables: TaxTables = field(default_factory=tax_tables_2024)
    allocation: AllocationConfig = field(default_factory=default_allocation_config)
    default_simulation_runs: int = 1000
    max_simulation_runs: int = 50_000
    simulation_workers: int = 1
    chunk_size: int = 250
    max_horizon_years: int = 100
    log_level: str = 'INFO'
    log_json: bool = False


_SCALAR_FIELDS = {f.name for f in fields(EngineConfig)} - {'tax_tables', 'allocation'}


def engine_config_from_dict(data: Dict[str, Any], base: Optional[EngineConfig] = None) -> EngineConfig:
    """
    Build an EngineConfig from a parsed JSON dictionary.

    'tax_tables' and 'allocation' sections override the default tables;
    scalar keys override the defaults directly. Unknown keys are ignored
    with a warning.
    """
    base = base or EngineConfig()
    updates: Dict[str, Any] = {}

    for key, value in data.items():
        if key == 'tax_tables':
            updates['tax_tables'] = tax_tables_from_dict(value, base.tax_tables)
        elif key == 'allocation':
            updates['allocation'] = allocation_config_from_dict(value, base.allocation)
        elif key in _SCALAR_FIELDS:
            updates[key] = value
        else:
            logger.warning("unknown_config_key", key=key)

    config = replace(base, **updates)
    _validate_config(config)
    return config


def _validate_config(config: EngineConfig) -> None:
    for name in ('default_simulation_runs', 'max_simulation_runs', 'simulation_workers',
                 'chunk_size', 'max_horizon_years'):
        value = getattr(config, name)
        if not isinstance(value, int) or value < 1:
            raise ValueError(f"{name} must be a positive integer, got {value!r}")
    if config.default_simulation_runs > config.max_simulation_runs:
        raise ValueError("default_simulation_runs cannot exceed max_simulation_runs")
    if not isinstance(config.log_level, str) or config.log_level.upper() not in LOG_LEVELS:
        raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {config.log_level!r}")


def load_engine_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration from a JSON file.

    Args:
        path: JSON file path; falls back to $ENGINE_CONFIG_PATH, then to defaults

    Returns:
        EngineConfig
    """
    path = path or os.environ.get(CONFIG_PATH_ENV)
    if not path:
        return EngineConfig()

    with open(path, 'r') as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Engine config {path} must contain a JSON object")

    logger.debug("engine_config_loaded", path=path, keys=sorted(data))
    return engine_config_from_dict(data)
