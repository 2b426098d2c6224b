"""
Exception taxonomy for the projection engine.

Only malformed input is raised. Optimizer non-convergence is reported as data
(converged=False) and undefined ratios are reported as None fields.
"""
from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class FieldError:
    """One rejected input field"""
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class EngineError(Exception):
    """Base class for all engine errors"""


class ScenarioValidationError(EngineError, ValueError):
    """Input rejected before any computation was attempted"""

    def __init__(self, errors: Iterable[FieldError]):
        self.errors: Tuple[FieldError, ...] = tuple(errors)
        super().__init__("; ".join(str(error) for error in self.errors) or "invalid input")

    @classmethod
    def single(cls, field: str, message: str) -> "ScenarioValidationError":
        return cls([FieldError(field, message)])
