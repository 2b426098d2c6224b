"""
Annual federal income tax estimate.

Total income less pre-tax adjustments gives adjusted gross income (AGI);
the larger of the standard deduction and itemized deductions (when the
filer chooses to itemize) is subtracted to reach taxable income. Liability
is bracket tax plus self-employment tax less credits, floored at zero.
Payroll FICA on wages is reported in the breakdown but is not part of the
liability, since employers withhold it separately.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from compounding import ZERO, quantize_cents, to_decimal
from logging_config import get_logger
from schemas import FilingStatus, TaxEstimateRequest
from tax import calculate_tax, effective_tax_rate, marginal_tax_rate
from tax_utils import TaxTables, tax_tables_2024

logger = get_logger(__name__)

# Share of net self-employment earnings subject to self-employment tax
SELF_EMPLOYMENT_EARNINGS_FACTOR = Decimal("0.9235")


@dataclass(frozen=True)
class TaxBreakdown:
    federal_income_tax: Decimal
    self_employment_tax: Decimal
    social_security_tax: Decimal
    medicare_tax: Decimal


@dataclass(frozen=True)
class AnnualTaxEstimate:
    """Annual federal tax position"""
    filing_status: FilingStatus
    total_income: Decimal
    total_adjustments: Decimal
    adjusted_gross_income: Decimal
    itemized_deductions: Decimal
    deduction_applied: Decimal
    itemizing: bool
    taxable_income: Decimal
    income_tax: Decimal
    self_employment_tax: Decimal
    total_credits: Decimal
    total_tax_liability: Decimal
    withholding_to_date: Decimal
    refund_or_owed: Decimal
    marginal_tax_rate: float
    effective_tax_rate: float
    breakdown: TaxBreakdown


def self_employment_tax(earnings: Decimal, wages: Decimal, tables: TaxTables) -> Decimal:
    """
    Both halves of Social Security and Medicare on self-employment earnings.

    The Social Security part only applies to the room left under the wage
    base after wages.
    """
    if earnings <= 0:
        return ZERO
    base = earnings * SELF_EMPLOYMENT_EARNINGS_FACTOR
    room = max(ZERO, tables.social_security_wage_base - wages)
    social_security = min(base, room) * tables.social_security_rate * 2
    medicare = base * tables.medicare_rate * 2
    return social_security + medicare


def payroll_taxes(wages: Decimal, status: FilingStatus, tables: TaxTables):
    """Employee Social Security and Medicare (with surtax) on wages"""
    social_security = min(wages, tables.social_security_wage_base) * tables.social_security_rate
    medicare = wages * tables.medicare_rate
    threshold = tables.additional_medicare_threshold[status]
    if wages > threshold:
        medicare += (wages - threshold) * tables.additional_medicare_rate
    return social_security, medicare


def estimate_annual_tax(request: TaxEstimateRequest,
                        tables: Optional[TaxTables] = None) -> AnnualTaxEstimate:
    """
    Estimate the year's federal income tax and the refund or balance due.

    Args:
        request: Validated tax estimate request
        tables: Tax tables (defaults to 2024)

    Returns:
        AnnualTaxEstimate
    """
    tables = tables or tax_tables_2024()
    status = FilingStatus(request.filing_status)
    income = request.income

    wages = to_decimal(income.wages)
    self_employment = to_decimal(income.self_employment_income)
    total_income = (wages + self_employment + to_decimal(income.investment_income)
                    + to_decimal(income.other_income))

    adjustments = sum((to_decimal(value) for value in request.adjustments.model_dump().values()), ZERO)
    agi = max(ZERO, total_income - adjustments)

    standard = tables.standard_deduction[status]
    itemized = sum((to_decimal(value) for value in request.itemized_deductions.model_dump().values()), ZERO)
    # Itemizing only applies when it beats the standard deduction
    itemizing = not request.use_standard_deduction and itemized > standard
    deduction = itemized if itemizing else standard

    taxable = max(ZERO, agi - deduction)
    brackets = tables.brackets_for(status)
    income_tax = calculate_tax(taxable, brackets)
    se_tax = self_employment_tax(self_employment, wages, tables)
    credits = sum((to_decimal(value) for value in request.credits.model_dump().values()), ZERO)

    # Credits are non-refundable
    liability = max(ZERO, income_tax + se_tax - credits)
    withheld = to_decimal(request.withholding_to_date)
    social_security, medicare = payroll_taxes(wages, status, tables)

    logger.debug("tax_estimate_complete",
                 filing_status=status.value,
                 taxable_income=str(quantize_cents(taxable)),
                 liability=str(quantize_cents(liability)))

    return AnnualTaxEstimate(
        filing_status=status,
        total_income=total_income,
        total_adjustments=adjustments,
        adjusted_gross_income=agi,
        itemized_deductions=itemized,
        deduction_applied=deduction,
        itemizing=itemizing,
        taxable_income=taxable,
        income_tax=income_tax,
        self_employment_tax=se_tax,
        total_credits=credits,
        total_tax_liability=liability,
        withholding_to_date=withheld,
        refund_or_owed=withheld - liability,
        marginal_tax_rate=marginal_tax_rate(taxable, brackets),
        effective_tax_rate=effective_tax_rate(liability, total_income),
        breakdown=TaxBreakdown(
            federal_income_tax=income_tax,
            self_employment_tax=se_tax,
            social_security_tax=social_security,
            medicare_tax=medicare,
        ),
    )
