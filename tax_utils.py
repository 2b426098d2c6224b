"""
Tax tables used by the withholding calculator.

Tables are immutable values built per tax year and passed into the
calculators, so a different year (or a test fixture) can be swapped in
without touching module state.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple

from schemas import FilingStatus, PayFrequency

Brackets = Tuple[Tuple[Decimal, Decimal], ...]

PAY_PERIODS_PER_YEAR = MappingProxyType({
    PayFrequency.WEEKLY: 52,
    PayFrequency.BIWEEKLY: 26,
    PayFrequency.SEMIMONTHLY: 24,
    PayFrequency.MONTHLY: 12,
    PayFrequency.QUARTERLY: 4,
    PayFrequency.ANNUALLY: 1,
})


def _brackets(rows) -> Brackets:
    """Build a bracket tuple from (threshold, rate) pairs; threshold is the START of each bracket"""
    return tuple((Decimal(str(threshold)), Decimal(str(rate))) for threshold, rate in rows)


@dataclass(frozen=True)
class TaxTables:
    """Federal, FICA and state parameters for one tax year"""
    year: int
    federal_brackets: Mapping[FilingStatus, Brackets]
    standard_deduction: Mapping[FilingStatus, Decimal]
    social_security_rate: Decimal
    social_security_wage_base: Decimal
    medicare_rate: Decimal
    additional_medicare_rate: Decimal
    additional_medicare_threshold: Mapping[FilingStatus, Decimal]
    elective_deferral_limit: Decimal
    allowance_value: Decimal
    state_allowance_value: Decimal
    state_brackets: Mapping[str, Brackets] = field(default_factory=lambda: MappingProxyType({}))

    def brackets_for(self, filing_status: FilingStatus) -> Brackets:
        return self.federal_brackets[FilingStatus(filing_status)]

    def state_brackets_for(self, state: str) -> Brackets:
        """Brackets for a two-letter state code; KeyError when the state is not tabulated"""
        return self.state_brackets[state.upper()]


def get_state_tax_rates(state: str, tables: "TaxTables") -> Brackets:
    """Get the state bracket table, an empty tuple meaning no state income tax"""
    return tables.state_brackets_for(state)


_FEDERAL_2024 = {
    FilingStatus.SINGLE: [(0, 0.10), (11_600, 0.12), (47_150, 0.22), (100_525, 0.24),
                          (191_950, 0.32), (243_725, 0.35), (609_350, 0.37)],
    FilingStatus.MARRIED_JOINTLY: [(0, 0.10), (23_200, 0.12), (94_300, 0.22), (201_050, 0.24),
                                   (383_900, 0.32), (487_450, 0.35), (731_200, 0.37)],
    FilingStatus.MARRIED_SEPARATELY: [(0, 0.10), (11_600, 0.12), (47_150, 0.22), (100_525, 0.24),
                                      (191_950, 0.32), (243_725, 0.35), (365_600, 0.37)],
    FilingStatus.HEAD_OF_HOUSEHOLD: [(0, 0.10), (16_550, 0.12), (63_100, 0.22), (100_500, 0.24),
                                     (191_950, 0.32), (243_700, 0.35), (609_350, 0.37)],
}

_STANDARD_DEDUCTION_2024 = {
    FilingStatus.SINGLE: 14_600,
    FilingStatus.MARRIED_JOINTLY: 29_200,
    FilingStatus.MARRIED_SEPARATELY: 14_600,
    FilingStatus.HEAD_OF_HOUSEHOLD: 21_900,
}

_ADDITIONAL_MEDICARE_THRESHOLD = {
    FilingStatus.SINGLE: 200_000,
    FilingStatus.MARRIED_JOINTLY: 250_000,
    FilingStatus.MARRIED_SEPARATELY: 125_000,
    FilingStatus.HEAD_OF_HOUSEHOLD: 200_000,
}

# Single-filer schedules; states without a wage income tax map to no brackets
_STATE_2024 = {
    'AK': [], 'FL': [], 'NV': [], 'NH': [], 'SD': [], 'TN': [], 'TX': [], 'WA': [], 'WY': [],
    'AZ': [(0, 0.025)],
    'CO': [(0, 0.044)],
    'IL': [(0, 0.0495)],
    'IN': [(0, 0.0305)],
    'MA': [(0, 0.05), (1_053_750, 0.09)],
    'MI': [(0, 0.0425)],
    'NC': [(0, 0.045)],
    'PA': [(0, 0.0307)],
    'UT': [(0, 0.0465)],
    'CA': [(0, 0.01), (10_412, 0.02), (24_684, 0.04), (38_959, 0.06), (54_081, 0.08),
           (68_350, 0.093), (349_137, 0.103), (418_961, 0.113), (698_271, 0.123)],
    'NY': [(0, 0.04), (8_500, 0.045), (11_700, 0.0525), (13_900, 0.055), (80_650, 0.06),
           (215_400, 0.0685), (1_077_550, 0.0965), (5_000_000, 0.103), (25_000_000, 0.109)],
    'OH': [(0, 0.0), (26_050, 0.0275), (100_000, 0.035)],
    'GA': [(0, 0.0539)],
    'NJ': [(0, 0.014), (20_000, 0.0175), (35_000, 0.035), (40_000, 0.05525), (75_000, 0.0637),
           (500_000, 0.0897), (1_000_000, 0.1075)],
    'VA': [(0, 0.02), (3_000, 0.03), (5_000, 0.05), (17_000, 0.0575)],
}


def tax_tables_2024() -> TaxTables:
    """2024 federal, FICA and state tables"""
    return TaxTables(
        year=2024,
        federal_brackets=MappingProxyType({status: _brackets(rows) for status, rows in _FEDERAL_2024.items()}),
        standard_deduction=MappingProxyType(
            {status: Decimal(amount) for status, amount in _STANDARD_DEDUCTION_2024.items()}),
        social_security_rate=Decimal("0.062"),
        social_security_wage_base=Decimal(168_600),
        medicare_rate=Decimal("0.0145"),
        additional_medicare_rate=Decimal("0.009"),
        additional_medicare_threshold=MappingProxyType(
            {status: Decimal(amount) for status, amount in _ADDITIONAL_MEDICARE_THRESHOLD.items()}),
        elective_deferral_limit=Decimal(23_000),
        allowance_value=Decimal(4_300),
        state_allowance_value=Decimal(1_000),
        state_brackets=MappingProxyType({state: _brackets(rows) for state, rows in _STATE_2024.items()}),
    )


def tax_tables_from_dict(data: Dict[str, Any], base: TaxTables = None) -> TaxTables:
    """
    Build tax tables from a JSON-style dictionary, overriding a base table.

    Bracket lists use [threshold, rate] pairs keyed by filing status (federal)
    or two-letter state code (state). Missing keys keep the base values.

    Args:
        data: Parsed JSON dictionary
        base: Tables to start from (defaults to 2024)

    Returns:
        New TaxTables instance
    """
    base = base or tax_tables_2024()

    def _status_map(key, convert, current):
        if key not in data:
            return current
        merged = dict(current)
        for status, value in data[key].items():
            merged[FilingStatus(status)] = convert(value)
        return MappingProxyType(merged)

    def _decimal(key, current):
        return Decimal(str(data[key])) if key in data else current

    state_brackets = base.state_brackets
    if 'state_brackets' in data:
        merged_states = dict(base.state_brackets)
        for state, rows in data['state_brackets'].items():
            merged_states[state.upper()] = _brackets(rows)
        state_brackets = MappingProxyType(merged_states)

    return TaxTables(
        year=int(data.get('year', base.year)),
        federal_brackets=_status_map('federal_brackets', _brackets, base.federal_brackets),
        standard_deduction=_status_map('standard_deduction', lambda v: Decimal(str(v)), base.standard_deduction),
        social_security_rate=_decimal('social_security_rate', base.social_security_rate),
        social_security_wage_base=_decimal('social_security_wage_base', base.social_security_wage_base),
        medicare_rate=_decimal('medicare_rate', base.medicare_rate),
        additional_medicare_rate=_decimal('additional_medicare_rate', base.additional_medicare_rate),
        additional_medicare_threshold=_status_map('additional_medicare_threshold', lambda v: Decimal(str(v)),
                                                  base.additional_medicare_threshold),
        elective_deferral_limit=_decimal('elective_deferral_limit', base.elective_deferral_limit),
        allowance_value=_decimal('allowance_value', base.allowance_value),
        state_allowance_value=_decimal('state_allowance_value', base.state_allowance_value),
        state_brackets=state_brackets,
    )
