"""Joining payment for members who join after the community opened.

Missed months run from the community opening month through the last
completed month before the reference time, and are grouped into consecutive
12-month buckets (the last one may be partial). Money from earlier buckets
would have earned interest for longer, so bucket ``k`` of ``n`` is credited
``(n - k + 1) * 12`` months of simple interest.
"""
import math
from decimal import Decimal

from community_fund.config import CATCH_UP_SPREAD_MONTHS, CommunityConfig
from community_fund.data_structures import CatchUpResult, YearBucket
from community_fund.exceptions import InvalidInputError
from community_fund.logging import get_logger
from community_fund.periods import as_datetime, last_completed_month, months_between
from community_fund.services.interest_calculator import round_currency

logger = get_logger(__name__)

MONTHS_PER_YEAR = 12


class NewMemberCatchUpCalculator:
    """Computes the lump-sum and amortized catch-up payment for a late joiner."""
    
    def __init__(self, config=None, spread_months=CATCH_UP_SPREAD_MONTHS):
        self.config = config or CommunityConfig()
        self.spread_months = spread_months

    def calculate(self, joining_date, reference_now):
        """Calculate the joining payment.
        
        Args:
            joining_date: Date the member joins.
            reference_now: Reference timestamp; its month is excluded.
            
        Returns:
            CatchUpResult with the per-year breakdown and totals.
            
        Raises:
            InvalidInputError: If the member joins on or before the opening
                date, or no month has been completed since opening.
        """
        joining_date = as_datetime(joining_date)
        opening = as_datetime(self.config.opening_date)
        if joining_date <= opening:
            raise InvalidInputError(
                "Joining date must be after community start date",
                {"joining_date": joining_date.isoformat(), "opening_date": opening.isoformat()},
            )

        months_missed = months_between(opening, last_completed_month(reference_now))
        if months_missed <= 0:
            raise InvalidInputError(
                "No completed months since community opening",
                {"reference_now": as_datetime(reference_now).isoformat()},
            )

        monthly = self.config.default_contribution_amount
        rate = self.config.annual_interest_rate / Decimal("100")
        total_years = math.ceil(months_missed / MONTHS_PER_YEAR)

        buckets = []
        for year_number in range(1, total_years + 1):
            start_month = (year_number - 1) * MONTHS_PER_YEAR + 1
            end_month = min(start_month + MONTHS_PER_YEAR - 1, months_missed)
            months_count = end_month - start_month + 1
            base = round_currency(monthly * months_count)
            period_months = (total_years - year_number + 1) * MONTHS_PER_YEAR
            interest = round_currency(base * rate * Decimal(period_months) / MONTHS_PER_YEAR)
            buckets.append(YearBucket(
                year_number=year_number,
                start_month=start_month,
                end_month=end_month,
                months_count=months_count,
                base_contribution=base,
                interest_period_months=period_months,
                interest_amount=interest,
            ))

        total_base = sum((b.base_contribution for b in buckets), Decimal("0"))
        total_interest = sum((b.interest_amount for b in buckets), Decimal("0"))
        grand_total = round_currency(total_base + total_interest)

        result = CatchUpResult(
            joining_date=joining_date,
            months_missed=months_missed,
            year_breakdown=buckets,
            total_base_contribution=total_base,
            total_interest=round_currency(total_interest),
            grand_total=grand_total,
            monthly_payment_option=round_currency(grand_total / self.spread_months),
        )
        logger.debug(
            "Catch-up for joining %s: %d months, grand total %s",
            joining_date.date(), months_missed, grand_total,
        )
        return result
