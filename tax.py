"""
Progressive bracket arithmetic and a bounded bisection solver.
Includes marginal/effective rate helpers used by the paycheck estimator.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Sequence, Tuple

from compounding import ZERO, Number, to_decimal

BracketTable = Sequence[Tuple[Decimal, Decimal]]


def _sorted_brackets(tax_brackets: BracketTable) -> list:
    """Brackets as Decimal pairs ordered by threshold"""
    return sorted(((to_decimal(threshold), to_decimal(rate)) for threshold, rate in tax_brackets),
                  key=lambda x: x[0])


def calculate_tax(taxable_income: Number, tax_brackets: BracketTable) -> Decimal:
    """
    Calculate tax using progressive brackets.

    Each slice of income is taxed at the rate of the bracket it falls in;
    the top rate never applies to income below its threshold.

    Args:
        taxable_income: Income subject to tax (after deductions)
        tax_brackets: Sequence of (threshold, rate) pairs where threshold is the START of each bracket

    Returns:
        Total tax owed
    """
    income = to_decimal(taxable_income)
    if income <= 0 or not tax_brackets:
        return ZERO

    tax = ZERO

    # Sort brackets by threshold to ensure proper order
    sorted_brackets = _sorted_brackets(tax_brackets)

    for i, (threshold, rate) in enumerate(sorted_brackets):
        if i + 1 < len(sorted_brackets):
            upper_limit = sorted_brackets[i + 1][0]
        else:
            upper_limit = None  # No upper limit for highest bracket

        top = income if upper_limit is None else min(income, upper_limit)
        income_in_bracket = top - threshold

        if income_in_bracket > 0:
            tax += income_in_bracket * rate

    return max(ZERO, tax)


def effective_tax_rate(tax_paid: Number, gross_income: Number) -> float:
    """
    Tax paid as a fraction of gross income.

    Returns:
        Effective rate, 0.0 when there is no income
    """
    gross = to_decimal(gross_income)
    if gross <= 0:
        return 0.0
    return float(to_decimal(tax_paid) / gross)


def marginal_tax_rate(taxable_income: Number, tax_brackets: BracketTable) -> float:
    """
    Rate applied to the next dollar of taxable income.

    Returns:
        Marginal rate, 0.0 when there is no taxable income
    """
    income = to_decimal(taxable_income)
    if income <= 0 or not tax_brackets:
        return 0.0

    current_rate = ZERO
    for threshold, rate in _sorted_brackets(tax_brackets):
        if income >= threshold:
            current_rate = rate
        else:
            break

    return float(current_rate)


@dataclass(frozen=True)
class BisectionResult:
    """Outcome of a bounded search"""
    value: Decimal
    achieved: Decimal
    iterations: int
    converged: bool


def bisect_to_target(func: Callable[[Decimal], Decimal],
                     target: Decimal,
                     low: Decimal,
                     high: Decimal,
                     tolerance: Decimal = Decimal("1"),
                     max_iterations: int = 100) -> BisectionResult:
    """
    Find x in [low, high] such that func(x) is within tolerance of target.

    func must be monotonic on the interval. The search never runs more than
    max_iterations evaluations past the endpoints; when the target lies
    outside [func(low), func(high)] the closest endpoint is returned with
    converged=False.

    Args:
        func: Monotonic function of the search variable
        target: Desired function value
        low: Lower bound of the search variable
        high: Upper bound of the search variable
        tolerance: Acceptable absolute distance from target
        max_iterations: Maximum bisection steps

    Returns:
        BisectionResult with the best value found
    """
    f_low = func(low)
    if abs(f_low - target) <= tolerance:
        return BisectionResult(low, f_low, 0, True)

    f_high = func(high)
    if abs(f_high - target) <= tolerance:
        return BisectionResult(high, f_high, 0, True)

    increasing = f_high >= f_low
    lower_value, upper_value = (f_low, f_high) if increasing else (f_high, f_low)
    if target < lower_value or target > upper_value:
        if abs(f_low - target) <= abs(f_high - target):
            return BisectionResult(low, f_low, 0, False)
        return BisectionResult(high, f_high, 0, False)

    best = BisectionResult(low, f_low, 0, False)
    for iteration in range(1, max_iterations + 1):
        mid = (low + high) / 2
        f_mid = func(mid)

        if abs(f_mid - target) < abs(best.achieved - target):
            best = BisectionResult(mid, f_mid, iteration, False)

        if abs(f_mid - target) <= tolerance:
            return BisectionResult(mid, f_mid, iteration, True)

        if (f_mid < target) == increasing:
            low = mid
        else:
            high = mid

    return BisectionResult(best.value, best.achieved, max_iterations, False)
