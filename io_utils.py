"""
IO utilities for loading requests and exporting engine results.
Decimal amounts become floats here and nowhere else: money is rounded to
cents, rates and ratios keep their precision.
"""
import json
from dataclasses import fields, is_dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel

from deterministic import PeriodProjection, ProjectionResult
from simulation import SimulationResult

# Field names containing one of these hold rates or ratios, not money
_RATE_MARKERS = ('rate', 'percentage', 'multiple', 'ratio', 'volatility', 'probab', 'return')
_RATE_PLACES = 6

PROJECTION_COLUMNS = [
    'period_index', 'opening_balance', 'contribution_in_period', 'growth_in_period',
    'fees_in_period', 'taxes_in_period', 'closing_balance', 'inflation_adjusted_closing_balance',
]


def to_float(value: Decimal, places: int = 2) -> float:
    """Round a Decimal half-up to the given places and convert to float"""
    return float(value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def _is_rate_field(name: Optional[str]) -> bool:
    return bool(name) and any(marker in name for marker in _RATE_MARKERS) and 'balance' not in name


def _convert(value: Any, name: Optional[str], include_arrays: bool) -> Any:
    if isinstance(value, Decimal):
        return to_float(value, _RATE_PLACES if _is_rate_field(name) else 2)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode='json')
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _convert(getattr(value, f.name), f.name, include_arrays)
                for f in fields(value)
                if include_arrays or not isinstance(getattr(value, f.name), np.ndarray)}
    if isinstance(value, dict):
        return {(key.value if isinstance(key, Enum) else str(key)): _convert(item, name, include_arrays)
                for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_convert(item, name, include_arrays) for item in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value


def result_to_dict(result: Any, include_arrays: bool = False) -> Dict[str, Any]:
    """
    Convert an engine result into JSON-ready primitives.

    Args:
        result: Any result dataclass
        include_arrays: Also include raw numpy arrays (e.g. every simulated path)

    Returns:
        Nested dictionary of floats, strings, lists and dicts
    """
    return _convert(result, None, include_arrays)


def result_to_json(result: Any, include_arrays: bool = False, indent: Optional[int] = 2) -> str:
    """Serialize an engine result to a JSON string"""
    return json.dumps(result_to_dict(result, include_arrays), indent=indent)


def projection_to_dataframe(rows: Sequence[PeriodProjection]) -> pd.DataFrame:
    """Projection schedule as a DataFrame with amounts in dollars and cents"""
    records = [{column: (to_float(getattr(row, column)) if column != 'period_index' else row.period_index)
                for column in PROJECTION_COLUMNS}
               for row in rows]
    return pd.DataFrame(records, columns=PROJECTION_COLUMNS)


def export_projection_csv(result: ProjectionResult, monthly: bool = False) -> str:
    """
    Export a projection schedule to CSV string.

    Args:
        result: Projection result
        monthly: Export the monthly schedule instead of the annual one

    Returns:
        CSV string
    """
    rows = result.monthly_projection if monthly else result.annual_projection
    if rows is None:
        raise ValueError("Projection was run without the monthly schedule")
    df = projection_to_dataframe(rows)
    if monthly:
        df = df.rename(columns={'period_index': 'month'})
    else:
        df = df.rename(columns={'period_index': 'year'})
    return df.to_csv(index=False)


def export_percentile_trajectories_csv(result: SimulationResult) -> str:
    """
    Export the percentile trajectories (one simulated run each) to CSV string.

    Returns:
        CSV string with a year column and one column per percentile
    """
    trajectories = result.percentile_trajectories
    horizon = len(next(iter(trajectories.values())))
    df = pd.DataFrame({'year': range(horizon)})
    for key, path in trajectories.items():
        df[f'{key}_balance'] = [to_float(balance) for balance in path]
    return df.to_csv(index=False)


def export_final_balances_csv(result: SimulationResult) -> str:
    """
    Export every run's final balance to CSV string.

    Returns:
        CSV string
    """
    df = pd.DataFrame({
        'simulation': range(1, len(result.final_balances) + 1),
        'final_balance': np.round(result.final_balances, 2),
    })
    return df.to_csv(index=False)


def load_request_json(filepath: str) -> Dict[str, Any]:
    """
    Load a request body from a JSON file.

    Args:
        filepath: Path to a file containing one JSON object

    Returns:
        Parsed request dictionary
    """
    with open(filepath, 'r') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{filepath} must contain a JSON object")
    return data


def write_text(filepath: str, content: str) -> None:
    """Write an export, creating parent directories as needed"""
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
