"""
Compounding core shared by every projection in the engine.

One period is always applied in the same order: growth on the opening
balance, then the contribution, then fees on the post-growth,
post-contribution balance. Money is carried as Decimal throughout.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

ZERO = Decimal(0)
ONE = Decimal(1)
CENT = Decimal("0.01")

Number = Union[Decimal, float, int, str]


@dataclass(frozen=True)
class PeriodStep:
    """Flows of a single compounding period (before any tax on growth)"""
    opening_balance: Decimal
    growth: Decimal
    contribution: Decimal
    fees: Decimal
    closing_balance: Decimal


def to_decimal(value: Number) -> Decimal:
    """Convert a float/int/str to Decimal using the shortest round-trip repr"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        return Decimal(value)
    return Decimal(repr(float(value)))


def quantize_cents(value: Decimal) -> Decimal:
    """Round a monetary amount to whole cents"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def period_rate(annual_rate: Number, periods_per_year: int = 1) -> Decimal:
    """
    Convert an annual return rate into the equivalent per-period rate.

    Uses (1 + r)^(1/n) - 1 so that n periods compound to exactly one year.

    Args:
        annual_rate: Annual rate as a fraction (may be negative, >= -1)
        periods_per_year: Number of periods in one year

    Returns:
        Per-period rate
    """
    rate = to_decimal(annual_rate)
    if periods_per_year == 1:
        return rate
    base = ONE + rate
    if base <= ZERO:
        return -ONE
    return base ** (ONE / Decimal(periods_per_year)) - ONE


def period_fee_rate(annual_fee: Number, periods_per_year: int = 1) -> Decimal:
    """Per-period fee rate whose compounded effect equals the annual fee"""
    fee = to_decimal(annual_fee)
    if periods_per_year == 1 or fee == ZERO:
        return fee
    return ONE - (ONE - fee) ** (ONE / Decimal(periods_per_year))


def compound_period(opening_balance: Decimal,
                    rate: Decimal,
                    contribution: Decimal = ZERO,
                    fee_rate: Decimal = ZERO) -> PeriodStep:
    """
    Apply one period of growth, contribution and fees.

    Args:
        opening_balance: Balance at the start of the period
        rate: Per-period return rate
        contribution: Amount added after growth
        fee_rate: Per-period fee rate charged on the post-contribution balance

    Returns:
        PeriodStep with the flows and the closing balance
    """
    growth = opening_balance * rate
    funded = opening_balance + growth + contribution
    fees = funded * fee_rate if fee_rate else ZERO
    return PeriodStep(
        opening_balance=opening_balance,
        growth=growth,
        contribution=contribution,
        fees=fees,
        closing_balance=funded - fees,
    )
