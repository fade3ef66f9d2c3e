"""Value objects returned by the accrual services."""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import pandas as pd

from community_fund.models import Contribution, HistoricalInterest


@dataclass(frozen=True)
class InterestCalculation:
    """Simple interest over one window, with audit figures."""
    principal: Decimal
    annual_rate: Decimal
    from_date: datetime
    to_date: datetime
    days_elapsed: Decimal
    months_elapsed: Decimal  # display only
    interest_amount: Decimal


@dataclass(frozen=True)
class AccruedInterest:
    """Display snapshot of interest accrued on a live loan."""
    loan_id: str
    as_of: datetime
    calculation: Optional[InterestCalculation]
    remaining_balance: Decimal
    accrued_interest: Decimal
    outstanding_amount: Decimal


@dataclass(frozen=True)
class SettlementQuote:
    """Interest-only and full settlement amounts for one settlement date."""
    loan_id: str
    settlement_date: datetime
    interest: InterestCalculation
    principal_amount: Decimal

    @property
    def interest_only_amount(self) -> Decimal:
        return self.interest.interest_amount

    @property
    def full_settlement_amount(self) -> Decimal:
        return self.principal_amount + self.interest.interest_amount


@dataclass(frozen=True)
class ContributionMonth:
    """One required month in a member's contribution history."""
    month: str
    year: int
    label: str
    required_amount: Decimal
    contribution: Optional[Contribution] = None


@dataclass
class ContributionPlan:
    """Paid/pending/overdue/missing partition of a member's required months."""
    member_id: str
    reference_now: datetime
    required_months: List[ContributionMonth] = field(default_factory=list)
    paid_months: List[ContributionMonth] = field(default_factory=list)
    pending_months: List[ContributionMonth] = field(default_factory=list)
    overdue_months: List[ContributionMonth] = field(default_factory=list)
    missing_months: List[ContributionMonth] = field(default_factory=list)
    total_required: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    total_pending: Decimal = Decimal("0")
    total_overdue: Decimal = Decimal("0")
    total_missing: Decimal = Decimal("0")

    @property
    def is_current(self) -> bool:
        return not self.missing_months

    @property
    def required_months_count(self) -> int:
        return len(self.required_months)

    @property
    def missing_months_count(self) -> int:
        return len(self.missing_months)

    @property
    def paid_months_count(self) -> int:
        return len(self.paid_months)

    @property
    def pending_months_count(self) -> int:
        return len(self.pending_months)

    def to_frame(self) -> pd.DataFrame:
        """Month-by-month status table for display."""
        rows = []
        for m in self.required_months:
            c = m.contribution
            rows.append({
                "month": m.month,
                "label": m.label,
                "status": c.paid_status.value if c else "missing",
                "amount": m.required_amount,
                "paid_date": c.paid_date if c else None,
            })
        return pd.DataFrame(rows, columns=["month", "label", "status", "amount", "paid_date"])


@dataclass
class HistoricalCreationResult:
    """Outcome of a bulk historical contribution creation."""
    created: List[Contribution] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class YearBucket:
    """Up to twelve consecutive missed months and the interest credited on them."""
    year_number: int
    start_month: int
    end_month: int
    months_count: int
    base_contribution: Decimal
    interest_period_months: int
    interest_amount: Decimal

    @property
    def total_for_year(self) -> Decimal:
        return self.base_contribution + self.interest_amount


@dataclass
class CatchUpResult:
    """Joining payment owed by a late member."""
    joining_date: datetime
    months_missed: int
    year_breakdown: List[YearBucket]
    total_base_contribution: Decimal
    total_interest: Decimal
    grand_total: Decimal
    monthly_payment_option: Decimal

    def to_frame(self) -> pd.DataFrame:
        """Year bucket breakdown as a table."""
        return pd.DataFrame(
            [
                {
                    "year": b.year_number,
                    "start_month": b.start_month,
                    "end_month": b.end_month,
                    "months": b.months_count,
                    "base_contribution": b.base_contribution,
                    "interest_period_months": b.interest_period_months,
                    "interest": b.interest_amount,
                    "total": b.total_for_year,
                }
                for b in self.year_breakdown
            ]
        )


@dataclass(frozen=True)
class LoanSummary:
    loan_id: str
    member_id: str
    principal_amount: Decimal
    interest_rate: Decimal
    yearly_interest_amount: Decimal
    total_interest_earned: Decimal
    remaining_balance: Decimal
    loan_start_date: datetime
    status: str


@dataclass
class CommunityFinances:
    """Community-wide totals and a monthly history table."""
    total_contributions: Decimal
    total_active_loans: Decimal
    total_interest_collected: Decimal
    available_liquid_funds: Decimal
    expected_annual_interest: Decimal
    loan_summaries: List[LoanSummary]
    monthly_history: pd.DataFrame
    historical_interest_collected: Decimal = Decimal("0")


@dataclass
class HistoricalInterestSummary:
    """Totals and breakdowns over the historical interest ledger."""
    total_amount: Decimal
    record_count: int
    average_amount: Decimal
    by_source: pd.DataFrame  # source, total_amount, count; largest first
    yearly_totals: pd.DataFrame  # year, total_amount, count; oldest first
    recent_records: List[HistoricalInterest]
    year: Optional[int] = None
    year_total: Decimal = Decimal("0")
    monthly_breakdown: Optional[pd.DataFrame] = None  # twelve rows when ``year`` is set
