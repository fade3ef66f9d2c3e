"""Simple (non-compounding) interest over a date window.

All functions here are pure: no clock reads, no persistence.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from community_fund.config import (
    AVERAGE_DAYS_PER_MONTH,
    CURRENCY_QUANTUM,
    DAYS_PER_YEAR,
    SECONDS_PER_DAY,
)
from community_fund.data_structures import AccruedInterest, InterestCalculation
from community_fund.exceptions import InvalidInputError
from community_fund.models import LoanStatus
from community_fund.periods import as_datetime

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value, field_name="amount"):
    """Convert an int, float, str or Decimal to a finite Decimal without float noise."""
    if isinstance(value, bool) or value is None:
        raise InvalidInputError(f"Invalid {field_name}", {field_name: repr(value)})
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidInputError(f"Invalid {field_name}", {field_name: repr(value)})
    if not value.is_finite():
        raise InvalidInputError(f"{field_name} must be a finite number", {field_name: str(value)})
    return value


def round_currency(amount):
    """Round to two decimal places, half up."""
    return to_decimal(amount).quantize(CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)


def days_between(from_date, to_date):
    """Elapsed days between two timestamps, fractional part kept; never negative."""
    delta = as_datetime(to_date) - as_datetime(from_date)
    days = (
        Decimal(delta.days)
        + Decimal(delta.seconds) / SECONDS_PER_DAY
        + Decimal(delta.microseconds) / (SECONDS_PER_DAY * 1000000)
    )
    return max(days, ZERO)


def calculate_interest_between_dates(principal, annual_rate, from_date, to_date):
    """Prorated simple interest for ``principal`` over [from_date, to_date).
    
    ``interest = principal * rate/100 * days/365``, rounded half up to cents.
    A window with ``to_date <= from_date`` accrues nothing.
    
    Args:
        principal: Principal amount, must be >= 0.
        annual_rate: Annual rate in percent (16 means 16%), must be >= 0.
        from_date: Window start (date or datetime).
        to_date: Window end (date or datetime).
        
    Returns:
        InterestCalculation with the rounded amount and audit figures.
        
    Raises:
        InvalidInputError: If principal or rate is negative.
    """
    principal = to_decimal(principal, "principal")
    annual_rate = to_decimal(annual_rate, "annual_rate")
    if principal < 0:
        raise InvalidInputError("Principal cannot be negative", {"principal": str(principal)})
    if annual_rate < 0:
        raise InvalidInputError("Interest rate cannot be negative", {"annual_rate": str(annual_rate)})

    from_dt = as_datetime(from_date)
    to_dt = as_datetime(to_date)
    days = days_between(from_dt, to_dt)

    interest = principal * (annual_rate / HUNDRED) * (days / DAYS_PER_YEAR)

    return InterestCalculation(
        principal=principal,
        annual_rate=annual_rate,
        from_date=from_dt,
        to_date=to_dt,
        days_elapsed=days,
        months_elapsed=round_currency(days / AVERAGE_DAYS_PER_MONTH),
        interest_amount=round_currency(interest),
    )


def calculate_prorated_interest(principal, annual_rate, from_date, to_date):
    """Shorthand returning only the rounded interest amount."""
    return calculate_interest_between_dates(principal, annual_rate, from_date, to_date).interest_amount


def accrued_interest(loan, reference_now):
    """Interest accrued on a live loan since its current anchor.
    
    The anchor is the last interest payment, else disbursement, else approval.
    Loans that are not approved or disbursed accrue nothing.
    """
    as_of = as_datetime(reference_now)
    anchor = loan.interest_anchor or loan.approval_date
    calculation = None
    interest = ZERO

    if loan.status in (LoanStatus.APPROVED, LoanStatus.DISBURSED) and anchor is not None:
        calculation = calculate_interest_between_dates(
            loan.principal, loan.interest_rate, anchor, as_of
        )
        interest = calculation.interest_amount

    return AccruedInterest(
        loan_id=loan.loan_id,
        as_of=as_of,
        calculation=calculation,
        remaining_balance=loan.remaining_balance,
        accrued_interest=interest,
        outstanding_amount=loan.remaining_balance + interest,
    )
